"""Tests for auth security functions."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from jose import JWTError, jwt

from src.auth.permissions import UserRole
from src.auth.security import create_access_token, decode_access_token
from src.config.settings import get_settings


class TestAccessToken:
    """Tests for access token creation and decoding."""

    def test_round_trip_claims(self) -> None:
        """Decoded payload keeps subject and role and adds token metadata."""
        user_id = uuid4()
        token = create_access_token(
            {"sub": str(user_id), "role": UserRole.INSTRUCTOR.value}
        )

        payload = decode_access_token(token)

        assert payload["sub"] == str(user_id)
        assert payload["role"] == "instructor"
        assert payload["type"] == "access"
        assert "exp" in payload
        assert "iat" in payload

    def test_expired_token(self) -> None:
        """Expired tokens should be rejected."""
        token = create_access_token(
            {"sub": str(uuid4())}, expires_delta=timedelta(seconds=-1)
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_invalid_token(self) -> None:
        """Malformed tokens should be rejected."""
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")

    def test_wrong_type(self) -> None:
        """Tokens of another type should be rejected."""
        settings = get_settings()
        token = jwt.encode(
            {
                "sub": str(uuid4()),
                "type": "refresh",
                "exp": datetime.now(UTC) + timedelta(minutes=5),
            },
            settings.auth_secret_key,
            algorithm=settings.auth_algorithm,
        )
        with pytest.raises(JWTError, match="Invalid token type"):
            decode_access_token(token)

    def test_missing_subject(self) -> None:
        """Tokens without a subject should be rejected."""
        token = create_access_token({"role": UserRole.ADMIN.value})
        with pytest.raises(JWTError, match="missing sub"):
            decode_access_token(token)

    def test_wrong_secret(self) -> None:
        """Tokens signed with another key should be rejected."""
        token = jwt.encode(
            {"sub": str(uuid4()), "type": "access"},
            "another-secret-key-with-at-least-32-chars",
            algorithm="HS256",
        )
        with pytest.raises(JWTError):
            decode_access_token(token)
