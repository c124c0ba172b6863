"""
Route guard for protected views.

The decision is pure: evaluate() maps an AuthState and a ProtectedResource
declaration to a GuardDecision. Callers perform the redirect or render the
panel themselves.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .permissions import Permission, Role, has_permission, has_role
from .session import AuthState


DEFAULT_FALLBACK_PATH = "/login"


class GuardState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    ROLE_DENIED = "role_denied"
    PERMISSION_DENIED = "permission_denied"
    AUTHORIZED = "authorized"


class ProtectedResource(BaseModel):
    """
    Access requirements declared by a protected view.

    Both requirements are optional; every one that is given must hold.
    """
    model_config = ConfigDict(frozen=True)

    required_role: Optional[Role] = None
    required_permission: Optional[Permission] = None
    fallback_path: str = DEFAULT_FALLBACK_PATH

    @field_validator("fallback_path")
    @classmethod
    def _fallback_is_local_path(cls, value: str) -> str:
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("fallback_path must be an absolute local path")
        return value


@dataclass(frozen=True)
class GuardDecision:
    """
    Outcome of one guard evaluation.

    Attributes:
        state: Resulting guard state
        redirect_to: Navigation target for UNAUTHENTICATED
        required_role: Role named by a ROLE_DENIED decision
        required_permission: Permission named by a PERMISSION_DENIED decision
    """
    state: GuardState
    redirect_to: Optional[str] = None
    required_role: Optional[Role] = None
    required_permission: Optional[Permission] = None

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.AUTHORIZED


def evaluate(auth_state: AuthState, resource: Optional[ProtectedResource] = None) -> GuardDecision:
    """
    Decide how a protected view should render.

    Checks run in a fixed order: loading, authentication, role,
    permission. The first one that fails decides the outcome.

    Args:
        auth_state: Current authentication snapshot
        resource: Requirements of the view (None means authentication only)

    Returns:
        GuardDecision for this render pass
    """
    if resource is None:
        resource = ProtectedResource()

    if auth_state.is_loading:
        return GuardDecision(GuardState.LOADING)

    identity = auth_state.identity
    if identity is None:
        return GuardDecision(GuardState.UNAUTHENTICATED, redirect_to=resource.fallback_path)

    if resource.required_role is not None and not has_role(identity, resource.required_role):
        return GuardDecision(GuardState.ROLE_DENIED, required_role=resource.required_role)

    if resource.required_permission is not None and not has_permission(identity, resource.required_permission):
        return GuardDecision(GuardState.PERMISSION_DENIED, required_permission=resource.required_permission)

    return GuardDecision(GuardState.AUTHORIZED)


@dataclass(frozen=True)
class Panel:
    """Static user-facing text for a non-content guard outcome."""
    title: str
    message: str
    detail: Optional[str] = None


LOADING_PANEL = Panel(title="Loading", message="Loading...")


def render_panel(decision: GuardDecision) -> Optional[Panel]:
    """
    Panel to show for a decision.

    Returns:
        Panel, or None when the decision is a redirect or authorized
    """
    if decision.state is GuardState.LOADING:
        return LOADING_PANEL

    if decision.state is GuardState.ROLE_DENIED:
        return Panel(
            title="Access Restricted",
            message="You do not have the permissions required to access this page.",
            detail=f"Required role: {decision.required_role.value}",
        )

    if decision.state is GuardState.PERMISSION_DENIED:
        return Panel(
            title="Permission Required",
            message="You do not have the permission required to perform this action.",
            detail=f"Required permission: {decision.required_permission.value}",
        )

    return None
