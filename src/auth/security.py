"""Access token verification.

Stepwise does not log users in: the identity service issues HS256 access
tokens carrying ``sub`` (user ID) and ``role``. ``create_access_token``
mints the same shape for tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from src.config.settings import get_settings


ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Sign ``data`` as an access token.

    Args:
        data: Claims, usually {"sub": str(user_id), "role": role}
        expires_delta: Lifetime (settings default when omitted)
    """
    settings = get_settings()
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(
        minutes=settings.auth_access_token_expire_minutes
    )
    claims = {
        **data,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry and return the claims.

    Raises:
        JWTError: If the token is malformed, expired, not an access token
            or has no subject
    """
    settings = get_settings()
    claims = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
        options={"require_exp": True},
    )

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        msg = f"Invalid token type: expected '{ACCESS_TOKEN_TYPE}'"
        raise JWTError(msg)
    if not claims.get("sub"):
        msg = "Access token missing sub claim"
        raise JWTError(msg)
    return claims
