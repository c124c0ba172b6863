"""
HTTP surface of the platform.

aiohttp application exposing the protected dashboard views. Every request
is resolved to an AuthState by auth_middleware; handlers declare their
requirements with the protected() decorator.
"""

import functools
import html
from datetime import datetime
from typing import Awaitable, Callable, List, NamedTuple, Optional, Sequence

from aiohttp import web
from loguru import logger
from yarl import URL

from .auth.database import IdentityStore
from .auth.guard import GuardState, Panel, ProtectedResource, evaluate, render_panel
from .auth.models import IdentityRecord
from .auth.permissions import Permission, PermissionLike, Role, RoleLike, effective_permissions, has_permission
from .auth.session import AuthState
from .auth.tokens import TokenVerifier
from .config import Settings, get_settings
from .donations import Donation, donation_stats, impact_metrics


SETTINGS = web.AppKey("settings", Settings)
STORE = web.AppKey("store", IdentityStore)
VERIFIER = web.AppKey("verifier", TokenVerifier)
DONATIONS = web.AppKey("donations", list)

AUTH_STATE = "auth_state"
TOKEN_COOKIE = "radc_token"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class DashboardSection(NamedTuple):
    name: str
    path: str
    permission: Permission


DASHBOARD_SECTIONS: Sequence[DashboardSection] = (
    DashboardSection("Overview", "/dashboard", Permission.DASHBOARD_VIEW),
    DashboardSection("Users", "/dashboard/users", Permission.USERS_MANAGE),
    DashboardSection("Projects", "/dashboard/projects", Permission.PROJECTS_EDIT),
    DashboardSection("Donations", "/dashboard/donations", Permission.DONATIONS_VIEW),
    DashboardSection("Courses", "/dashboard/courses", Permission.COURSES_MANAGE),
    DashboardSection("Events", "/dashboard/events", Permission.EVENTS_MANAGE),
    DashboardSection("Forum", "/dashboard/forum", Permission.FORUM_MODERATE),
    DashboardSection("Analytics", "/dashboard/analytics", Permission.ANALYTICS_VIEW),
    DashboardSection("Settings", "/dashboard/settings", Permission.SYSTEM_CONFIG),
)


def visible_sections(identity: Optional[IdentityRecord]) -> List[DashboardSection]:
    return [s for s in DASHBOARD_SECTIONS if has_permission(identity, s.permission)]


# ============================================================================
# Authentication
# ============================================================================

def _request_token(request: web.Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(TOKEN_COOKIE)


def resolve_auth_state(request: web.Request) -> AuthState:
    """
    Resolve the caller's AuthState from its ID token.

    Faults in the verifier or the store leave the caller unauthenticated.
    """
    token = _request_token(request)
    if token is None:
        return AuthState(identity=None, is_loading=False)

    try:
        principal = request.app[VERIFIER].verify(token)
        if principal is None:
            return AuthState(identity=None, is_loading=False, error="Invalid or expired token")
        identity = request.app[STORE].find_or_create(principal)
    except Exception as e:
        logger.error(f"Failed to resolve identity: {e}")
        return AuthState(identity=None, is_loading=False, error="Could not load your account")

    return AuthState(identity=identity, is_loading=False)


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    request[AUTH_STATE] = resolve_auth_state(request)
    return await handler(request)


def _panel_response(panel: Panel, status: int) -> web.Response:
    detail = f"<p class=\"detail\">{html.escape(panel.detail)}</p>" if panel.detail else ""
    body = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(panel.title)}</title></head><body>"
        f"<h2>{html.escape(panel.title)}</h2>"
        f"<p>{html.escape(panel.message)}</p>{detail}"
        "</body></html>"
    )
    return web.Response(text=body, status=status, content_type="text/html")


def protected(
    required_role: Optional[RoleLike] = None,
    required_permission: Optional[PermissionLike] = None,
    fallback_path: Optional[str] = None,
) -> Callable[[Handler], Handler]:
    """
    Guard a handler with role and/or permission requirements.

    Unauthenticated callers are redirected to the fallback path (the
    configured login path by default). Denied callers get a 403 panel
    naming the missing requirement.
    """
    declared = {"required_role": required_role, "required_permission": required_permission}
    if fallback_path is not None:
        declared["fallback_path"] = fallback_path
    resource = ProtectedResource(**declared)

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.StreamResponse:
            guarded = resource
            if fallback_path is None:
                guarded = ProtectedResource(**{**declared, "fallback_path": request.app[SETTINGS].login_path})

            auth_state = request.get(AUTH_STATE) or AuthState(identity=None, is_loading=False)
            decision = evaluate(auth_state, guarded)

            if decision.state is GuardState.UNAUTHENTICATED:
                location = URL(decision.redirect_to).update_query(next=request.path_qs)
                raise web.HTTPFound(location=str(location))

            if decision.state is GuardState.AUTHORIZED:
                return await handler(request)

            logger.info(f"Access denied to {request.path}: {decision.state.value}")
            status = 202 if decision.state is GuardState.LOADING else 403
            return _panel_response(render_panel(decision), status)

        return wrapper

    return decorator


# ============================================================================
# Handlers
# ============================================================================

def _identity_json(identity: IdentityRecord) -> dict:
    return {
        "uid": identity.uid,
        "display_name": identity.display_name,
        "email": identity.email,
        "role": identity.role.value,
        "permissions": sorted(p.value for p in identity.permissions),
        "effective_permissions": sorted(p.value for p in effective_permissions(identity)),
        "verified": identity.verified,
        "registered_at": identity.registered_at.isoformat(),
        "last_access_at": identity.last_access_at.isoformat(),
    }


async def handle_login(request: web.Request) -> web.Response:
    """
    Public sign-in page.

    GET /login
    """
    panel = Panel(title="Sign in", message=f"Sign in to {request.app[SETTINGS].app_name} to continue.")
    return _panel_response(panel, 200)


@protected()
async def handle_me(request: web.Request) -> web.Response:
    """
    GET /api/me
    Returns: the caller's identity with its effective permissions
    """
    return web.json_response(_identity_json(request[AUTH_STATE].identity))


@protected(required_permission=Permission.DASHBOARD_VIEW)
async def handle_dashboard(request: web.Request) -> web.Response:
    """
    GET /dashboard
    Returns: dashboard sections the caller may open
    """
    identity = request[AUTH_STATE].identity
    return web.json_response({
        "role": identity.role.value,
        "sections": [{"name": s.name, "path": s.path} for s in visible_sections(identity)],
    })


@protected(required_permission=Permission.DONATIONS_VIEW)
async def handle_donation_stats(request: web.Request) -> web.Response:
    """
    GET /dashboard/donations
    Returns: time-bucketed donation statistics
    """
    stats = donation_stats(request.app[DONATIONS], datetime.now())
    return web.json_response(stats.model_dump(mode="json"))


@protected(required_permission=Permission.ANALYTICS_VIEW)
async def handle_analytics(request: web.Request) -> web.Response:
    """
    GET /dashboard/analytics
    Returns: impact metrics
    """
    donations: List[Donation] = request.app[DONATIONS]
    funded = len({d.project_id for d in donations if d.project_id})
    metrics = impact_metrics(donations, datetime.now(), funded_projects=funded)
    return web.json_response(metrics.model_dump(mode="json"))


@protected(required_role=Role.ADMIN)
async def handle_users(request: web.Request) -> web.Response:
    """
    GET /dashboard/users
    Returns: every identity
    """
    identities = request.app[STORE].list_identities()
    return web.json_response({"users": [_identity_json(i) for i in identities]})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[IdentityStore] = None,
    verifier: Optional[TokenVerifier] = None,
    donations: Optional[List[Donation]] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        settings: Application settings (default: from the environment)
        store: Identity store (default: at settings.database_path)
        verifier: ID token verifier (default: from settings)
        donations: Donation records served by the dashboard

    Returns:
        web.Application
    """
    settings = settings or get_settings()
    # Rejects a login path that would redirect off-site
    ProtectedResource(fallback_path=settings.login_path)

    app = web.Application(middlewares=[auth_middleware])
    app[SETTINGS] = settings
    app[STORE] = store or IdentityStore(settings.database_path)
    app[VERIFIER] = verifier or TokenVerifier.from_settings(settings)
    app[DONATIONS] = list(donations or [])

    app.router.add_get(settings.login_path, handle_login)
    app.router.add_get("/api/me", handle_me)
    app.router.add_get("/dashboard", handle_dashboard)
    app.router.add_get("/dashboard/donations", handle_donation_stats)
    app.router.add_get("/dashboard/analytics", handle_analytics)
    app.router.add_get("/dashboard/users", handle_users)

    logger.info(f"{settings.app_name} application created")
    return app


def main():
    settings = get_settings()
    web.run_app(create_app(settings))


if __name__ == "__main__":
    main()
