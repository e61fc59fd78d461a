"""Pydantic schemas for authentication."""

from uuid import UUID

from pydantic import BaseModel, Field

from .permissions import UserRole


class AuthenticatedUser(BaseModel):
    """Caller identity extracted from a verified access token."""

    id: UUID = Field(..., description="User ID (token sub claim)")
    role: UserRole = Field(default=UserRole.STUDENT, description="User role")
