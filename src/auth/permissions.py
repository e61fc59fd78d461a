"""Role-based access control (RBAC) for Stepwise.

Hierarchical permission system:
- ADMIN (level 2): Catalog administration and progress repair
- INSTRUCTOR (level 1): Catalog authoring, unrestricted quiz access
- STUDENT (level 0): Sequential access gated by progression
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels.

    Higher level = more permissions.
    """

    STUDENT = "student"  # Level 0: Learner
    INSTRUCTOR = "instructor"  # Level 1: Content author
    ADMIN = "admin"  # Level 2: System administrator


# Role hierarchy mapping (role -> permission level)
ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.STUDENT: 0,
    UserRole.INSTRUCTOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role.

    Args:
        role: UserRole enum or string representation

    Returns:
        Permission level (0-2), defaults to 0 for unknown roles
    """
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.INSTRUCTOR)
        True
        >>> has_permission("student", "instructor")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def bypasses_progression(user_role: UserRole | str) -> bool:
    """Instructors and admins can open any quiz regardless of unlock state."""
    return has_permission(user_role, UserRole.INSTRUCTOR)
