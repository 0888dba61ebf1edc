"""
Security utilities for bearer credentials.
Uses python-jose for JWT token generation and validation.

Gateway and REST callers share verify_token(): any failure is a hard deny.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from lunarus.core.config import settings
from lunarus.core.exceptions import InvalidCredential


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to a request or gateway connection."""
    user_id: str
    display_name: str


def create_access_token(user_id: str, username: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a signed JWT bearer token.

    Args:
        user_id: User ID to encode as the subject
        username: Display name (defaults to user_id)

    Returns:
        Dictionary with token, expires_at, issued_at
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(days=settings.token_expiry_days)

    payload = {
        "sub": str(user_id),
        "username": str(username or user_id),
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return {
        "token": token,
        "expires_at": expires_at,
        "issued_at": now
    }


def verify_token(token: Optional[str]) -> Principal:
    """
    Verify a bearer token's signature and expiry and extract the principal.

    Args:
        token: Opaque signed token string

    Returns:
        Principal with user_id and display_name

    Raises:
        InvalidCredential: if the token is absent, malformed, forged or expired
    """
    if not token or not isinstance(token, str):
        raise InvalidCredential("missing token")

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise InvalidCredential(str(e)) from e

    subject = payload.get("sub")
    if subject is None or str(subject) == "":
        raise InvalidCredential("token has no subject")

    username = payload.get("username") or subject
    return Principal(user_id=str(subject), display_name=str(username))


def create_voice_token(identity: str, room: str) -> str:
    """
    Mint a LiveKit-compatible room access token.

    The media server validates the HS256 signature with the shared API secret
    and reads the room grant from the "video" claim.

    Args:
        identity: Participant identity shown to other room members
        room: Room name to grant access to

    Returns:
        Signed JWT string
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.livekit_token_ttl_hours)

    payload = {
        "iss": settings.livekit_api_key,
        "sub": identity,
        "name": identity,
        "jti": identity,
        "nbf": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "video": {
            "room": room,
            "roomJoin": True,
            "canPublish": True,
            "canSubscribe": True,
        },
    }
    return jwt.encode(payload, settings.livekit_api_secret, algorithm="HS256")
