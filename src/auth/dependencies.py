"""FastAPI dependencies resolving the caller from a bearer token.

Provides:
- Current user (any role)
- Role gates for catalog authoring and admin repair routes
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.permissions import UserRole, has_permission
from src.auth.schemas import AuthenticatedUser
from src.auth.security import decode_access_token
from src.core.context import set_user_id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_token_from_header(request: Request) -> str | None:
    """Token of an ``Authorization: Bearer <token>`` header, if present."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> AuthenticatedUser:
    """Verify the token and bind the user to the log context.

    Unknown roles are treated as students.

    Raises:
        HTTPException(401): If the token is missing, invalid or expired
    """
    if token is None:
        raise _unauthorized("Access token not provided")

    try:
        claims = decode_access_token(token)
        user_id = UUID(str(claims["sub"]))
    except (JWTError, ValueError) as e:
        raise _unauthorized("Invalid or expired token") from e

    set_user_id(user_id)

    try:
        role = UserRole(claims.get("role", UserRole.STUDENT.value))
    except ValueError:
        role = UserRole.STUDENT
    return AuthenticatedUser(id=user_id, role=role)


def require_permission(required_role: UserRole):
    """Dependency factory admitting ``required_role`` and anything above it."""

    async def check_role(
        user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    ) -> AuthenticatedUser:
        if not has_permission(user.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission",
            )
        return user

    return check_role


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
InstructorUser = Annotated[
    AuthenticatedUser, Depends(require_permission(UserRole.INSTRUCTOR))
]
AdminUser = Annotated[AuthenticatedUser, Depends(require_permission(UserRole.ADMIN))]
