"""
Dependency injection functions for FastAPI.

Gateway services (registry, fanout, ingress) are owned by the application
instance and reached through app.state, so each app (and each test) gets
its own registry.
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from lunarus.core.exceptions import InvalidCredential
from lunarus.core.security import Principal, verify_token
from lunarus.gateway.registry import ConnectionRegistry
from lunarus.services.ingress import MessageIngress
from lunarus.services.message_store import MessageStore
from lunarus.services.tenor_client import TenorClient
from lunarus.services.upload_storage import UploadStorage

security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Bearer authentication dependency.
    Validates the JWT signature and expiry and returns the caller's principal.

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing authorization",
            headers={"WWW-Authenticate": "Bearer"}
        )
    try:
        return verify_token(credentials.credentials)
    except InvalidCredential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid authorization",
            headers={"WWW-Authenticate": "Bearer"}
        )


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_ingress(request: Request) -> MessageIngress:
    return request.app.state.ingress


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_upload_storage(request: Request) -> UploadStorage:
    return request.app.state.upload_storage


def get_tenor_client(request: Request) -> Optional[TenorClient]:
    """Configured Tenor client, or None when no API key is set."""
    return request.app.state.tenor_client
