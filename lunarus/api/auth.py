"""
Development authentication endpoint.
Any username is accepted; the issued JWT is what REST calls and the gateway
handshake verify.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lunarus.api.dependencies import get_db
from lunarus.api.schemas import LoginRequest, LoginResponse, UserOut
from lunarus.core.config import settings
from lunarus.core.security import create_access_token
from lunarus.db.repository import Repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse)
def login(request: Optional[LoginRequest] = None, db: Session = Depends(get_db)):
    """
    Issue a bearer token for a username.

    The user is also joined to the default server so the single-server
    clients keep working. A failed join is logged and does not block login.

    Example Request:
        ```json
        POST /auth/login
        {"username": "alice"}
        ```

    Example Response:
        ```json
        {"token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...", "user": {"id": "alice", "username": "alice"}}
        ```
    """
    username = (request.username if request else None) or "user"
    user = UserOut(id=username, username=username)
    token_data = create_access_token(user.id, user.username)

    try:
        Repository(db).ensure_member(settings.default_server_id, user.id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to join {user.id} to default server during login: {e}")

    logger.info(f"User {user.id} logged in")
    return LoginResponse(token=token_data["token"], user=user)
