"""
Role-Based Access Control (RBAC) for the RADC platform.

This module provides:
- The closed catalogues of roles and permissions
- The read-only role -> permission table
- Role and permission checks over identity records

Role checks are identity checks (exact match, no hierarchy). Permission
checks are capability checks over the role's default set plus the
identity's explicit, additive overrides.
"""

from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, FrozenSet, Mapping, Optional, Union

from loguru import logger

if TYPE_CHECKING:
    from .models import IdentityRecord


class Permission(str, Enum):
    """
    Enum of all permissions on the platform.

    Each permission is an independent capability; none implies another.
    """
    # Dashboard
    DASHBOARD_VIEW = "dashboard_view"
    DASHBOARD_MANAGE = "dashboard_manage"

    # Projects
    PROJECTS_CREATE = "projects_create"
    PROJECTS_EDIT = "projects_edit"
    PROJECTS_DELETE = "projects_delete"
    PROJECTS_VIEW = "projects_view"

    # Donations
    DONATIONS_VIEW = "donations_view"
    DONATIONS_MANAGE = "donations_manage"
    DONATIONS_PROCESS = "donations_process"

    # Community
    FORUM_VIEW = "forum_view"
    FORUM_MODERATE = "forum_moderate"
    EVENTS_CREATE = "events_create"
    EVENTS_MANAGE = "events_manage"

    # Training courses
    COURSES_VIEW = "courses_view"
    COURSES_CREATE = "courses_create"
    COURSES_MANAGE = "courses_manage"

    # Administration
    USERS_MANAGE = "users_manage"
    SYSTEM_CONFIG = "system_config"
    ANALYTICS_VIEW = "analytics_view"


class Role(str, Enum):
    """
    Roles a principal can hold. New principals start as VISITOR.
    """
    ADMIN = "admin"             # Full catalogue
    MANAGER = "manager"         # Runs projects, donations, events, courses
    VOLUNTEER = "volunteer"
    DONOR = "donor"
    VISITOR = "visitor"         # Public content only


_VOLUNTEER_PERMISSIONS = frozenset({
    Permission.DASHBOARD_VIEW,
    Permission.PROJECTS_VIEW,
    Permission.DONATIONS_VIEW,
    Permission.FORUM_VIEW,
    Permission.EVENTS_CREATE,
    Permission.COURSES_VIEW,
})

# Fixed at import time; never mutated at runtime.
ROLE_PERMISSIONS: Mapping[Role, FrozenSet[Permission]] = MappingProxyType({
    Role.ADMIN: frozenset(Permission),

    Role.MANAGER: frozenset({
        Permission.DASHBOARD_VIEW,
        Permission.DASHBOARD_MANAGE,
        Permission.PROJECTS_CREATE,
        Permission.PROJECTS_EDIT,
        Permission.DONATIONS_VIEW,
        Permission.DONATIONS_MANAGE,
        Permission.FORUM_VIEW,
        Permission.EVENTS_CREATE,
        Permission.EVENTS_MANAGE,
        Permission.COURSES_VIEW,
        Permission.COURSES_MANAGE,
        Permission.ANALYTICS_VIEW,
    }),

    Role.VOLUNTEER: _VOLUNTEER_PERMISSIONS,
    Role.DONOR: _VOLUNTEER_PERMISSIONS,

    Role.VISITOR: frozenset({
        Permission.PROJECTS_VIEW,
        Permission.FORUM_VIEW,
        Permission.COURSES_VIEW,
    }),
})


RoleLike = Union[Role, str]
PermissionLike = Union[Permission, str]


def coerce_role(value: Optional[RoleLike]) -> Optional[Role]:
    """
    Parse a role value, exact and case-sensitive.

    Returns:
        The Role, or None if the value is not in the catalogue
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def coerce_permission(value: Optional[PermissionLike]) -> Optional[Permission]:
    """
    Parse a permission value, exact and case-sensitive.

    Returns:
        The Permission, or None if the value is not in the catalogue
    """
    if isinstance(value, Permission):
        return value
    try:
        return Permission(value)
    except ValueError:
        return None


def permissions_for(role: Optional[RoleLike]) -> FrozenSet[Permission]:
    """
    Default permission set for a role.

    Unknown roles get the empty set.
    """
    role_enum = coerce_role(role)
    if role_enum is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(role_enum, frozenset())


class PermissionChecker:
    """
    Answers role and permission questions about an identity.

    Every check is total: a missing identity or an unknown requirement
    is a denial, never an exception.
    """

    def __init__(self, role_permissions: Mapping[Role, FrozenSet[Permission]] = ROLE_PERMISSIONS):
        """
        Initialize permission checker.

        Args:
            role_permissions: Role -> permission table (read-only)
        """
        self.role_permissions = role_permissions

    def effective_permissions(self, identity: Optional["IdentityRecord"]) -> FrozenSet[Permission]:
        """
        Role defaults plus explicit overrides.

        Args:
            identity: Identity record, or None if unauthenticated

        Returns:
            FrozenSet[Permission]: Empty for a missing identity
        """
        if identity is None:
            return frozenset()

        role_enum = coerce_role(identity.role)
        defaults = self.role_permissions.get(role_enum, frozenset()) if role_enum else frozenset()
        return defaults | frozenset(identity.permissions or ())

    def has_role(self, identity: Optional["IdentityRecord"], required_role: RoleLike) -> bool:
        """
        Check that the identity holds exactly the required role.

        There is no hierarchy: an admin does not satisfy a manager check.

        Args:
            identity: Identity record, or None
            required_role: Role to match

        Returns:
            bool: True on an exact match
        """
        if identity is None:
            return False

        role_enum = coerce_role(required_role)
        if role_enum is None:
            logger.debug(f"Role check against unknown role {required_role!r}")
            return False

        return coerce_role(identity.role) is role_enum

    def has_permission(self, identity: Optional["IdentityRecord"], required_permission: PermissionLike) -> bool:
        """
        Check that the identity holds a permission, by role or override.

        Args:
            identity: Identity record, or None
            required_permission: Permission to look for

        Returns:
            bool: True if the permission is in the effective set
        """
        if identity is None:
            return False

        permission = coerce_permission(required_permission)
        if permission is None:
            logger.debug(f"Permission check against unknown permission {required_permission!r}")
            return False

        return permission in self.effective_permissions(identity)

    def check_access(
        self,
        identity: Optional["IdentityRecord"],
        required_role: Optional[RoleLike] = None,
        required_permission: Optional[PermissionLike] = None,
    ) -> bool:
        """
        Combined gate: every supplied requirement must pass.

        Absent requirements are satisfied. A missing identity never passes.
        """
        if identity is None:
            return False
        if required_role is not None and not self.has_role(identity, required_role):
            return False
        if required_permission is not None and not self.has_permission(identity, required_permission):
            return False
        return True


class PermissionDeniedError(Exception):
    """
    Raised when an identity attempts an action it is not allowed to perform.

    Attributes:
        user_id: The identity that was denied (None if unauthenticated)
        action: The action that was denied
        required_permission: The permission that was required
        required_role: The role that was required
    """

    def __init__(
        self,
        user_id: Optional[str],
        action: str,
        required_permission: Optional[Permission] = None,
        required_role: Optional[Role] = None,
    ):
        self.user_id = user_id
        self.action = action
        self.required_permission = required_permission
        self.required_role = required_role

        message = f"User {user_id or '<anonymous>'} denied permission for action: {action}"
        if required_role:
            message += f" (requires role: {required_role.value})"
        if required_permission:
            message += f" (requires: {required_permission.value})"

        super().__init__(message)


# Global permission checker instance
_permission_checker = PermissionChecker()


def effective_permissions(identity: Optional["IdentityRecord"]) -> FrozenSet[Permission]:
    return _permission_checker.effective_permissions(identity)


def has_role(identity: Optional["IdentityRecord"], required_role: RoleLike) -> bool:
    return _permission_checker.has_role(identity, required_role)


def has_permission(identity: Optional["IdentityRecord"], required_permission: PermissionLike) -> bool:
    return _permission_checker.has_permission(identity, required_permission)


def check_access(
    identity: Optional["IdentityRecord"],
    required_role: Optional[RoleLike] = None,
    required_permission: Optional[PermissionLike] = None,
) -> bool:
    return _permission_checker.check_access(identity, required_role, required_permission)


def require_role(identity: Optional["IdentityRecord"], role: Role, action: Optional[str] = None) -> None:
    """
    Require a role, raising PermissionDeniedError if the identity lacks it.

    Raises:
        PermissionDeniedError: If the identity is missing or holds another role
    """
    if not has_role(identity, role):
        raise PermissionDeniedError(
            user_id=identity.uid if identity else None,
            action=action or f"act as {role.value}",
            required_role=role,
        )


def require_permission(
    identity: Optional["IdentityRecord"],
    permission: Permission,
    action: Optional[str] = None,
) -> None:
    """
    Require a permission, raising PermissionDeniedError if not authorized.

    Raises:
        PermissionDeniedError: If the identity doesn't have the permission
    """
    if not has_permission(identity, permission):
        raise PermissionDeniedError(
            user_id=identity.uid if identity else None,
            action=action or permission.value,
            required_permission=permission,
        )
