"""
Unit tests for bearer credential handling.
"""
from datetime import datetime, timedelta, timezone
import pytest
from jose import jwt

from lunarus.core.config import settings
from lunarus.core.exceptions import InvalidCredential
from lunarus.core.security import Principal, create_access_token, verify_token


class TestVerifyToken:
    """Tests for verify_token."""

    def test_round_trip(self):
        token = create_access_token("u1", "Alice")["token"]

        assert verify_token(token) == Principal(user_id="u1", display_name="Alice")

    def test_username_defaults_to_subject(self):
        token = jwt.encode({"sub": "u1"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

        assert verify_token(token).display_name == "u1"

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_malformed_tokens(self, token):
        with pytest.raises(InvalidCredential):
            verify_token(token)

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "u1"}, "someone-elses-secret", algorithm="HS256")

        with pytest.raises(InvalidCredential):
            verify_token(token)

    def test_expired(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "u1", "exp": int(past.timestamp())},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm
        )

        with pytest.raises(InvalidCredential):
            verify_token(token)

    def test_missing_subject(self):
        token = jwt.encode({"username": "nobody"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

        with pytest.raises(InvalidCredential):
            verify_token(token)
