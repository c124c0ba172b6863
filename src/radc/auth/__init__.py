"""
Authentication and authorization for the RADC platform.

Provides the role/permission table, identity records and store, the
session bridge to the identity provider, and the route guard.
"""

from .models import AuditEntry, IdentityRecord, Principal
from .database import IdentityNotFoundError, IdentityStore
from .tokens import TokenVerifier
from .session import AuthSession, AuthState, IdentityProvider, TokenIdentityProvider
from .guard import (
    GuardDecision,
    GuardState,
    Panel,
    ProtectedResource,
    evaluate,
    render_panel,
)
from .permissions import (
    Permission,
    Role,
    PermissionChecker,
    PermissionDeniedError,
    ROLE_PERMISSIONS,
    check_access,
    effective_permissions,
    has_permission,
    has_role,
    permissions_for,
    require_permission,
    require_role,
)
from .admin import BootstrapRefusedError, RoleAdministrator

__all__ = [
    # Identity models and store
    "AuditEntry",
    "IdentityRecord",
    "Principal",
    "IdentityNotFoundError",
    "IdentityStore",
    # Identity provider boundary
    "TokenVerifier",
    "AuthSession",
    "AuthState",
    "IdentityProvider",
    "TokenIdentityProvider",
    # Route guard
    "GuardDecision",
    "GuardState",
    "Panel",
    "ProtectedResource",
    "evaluate",
    "render_panel",
    # RBAC
    "Permission",
    "Role",
    "PermissionChecker",
    "PermissionDeniedError",
    "ROLE_PERMISSIONS",
    "check_access",
    "effective_permissions",
    "has_permission",
    "has_role",
    "permissions_for",
    "require_permission",
    "require_role",
    # Administration
    "BootstrapRefusedError",
    "RoleAdministrator",
]
