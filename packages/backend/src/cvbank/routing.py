"""Access guard — pure route decisions from the session state.

Learn: resolve() is a pure function of (route class, session state):
no I/O, no clock, no globals; the router calls it on every navigation
and tests call it with plain values. Rules, in order:
1. Public routes (login/register) → Allow
2. Auth required, no session → RedirectTo(login)
3. Admin required, role isn't admin → RedirectTo(user landing)
4. Otherwise → Allow
Unmatched paths go to the landing page that fits the session.
"""

import enum
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from cvbank.schemas.session import SessionState

LOGIN_PATH = "/login"
REGISTER_PATH = "/register"
USER_LANDING_PATH = "/my-profile"
ADMIN_LANDING_PATH = "/admin/dashboard"


class RouteClass(str, enum.Enum):
    PUBLIC = "public"
    AUTHENTICATED_USER = "authenticated_user"
    AUTHENTICATED_ADMIN = "authenticated_admin"


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class RedirectTo:
    path: str


Decision = Union[Allow, RedirectTo]


def resolve(route_class: RouteClass, session: Optional[SessionState]) -> Decision:
    if route_class == RouteClass.PUBLIC:
        return Allow()
    if session is None:
        return RedirectTo(LOGIN_PATH)
    if route_class == RouteClass.AUTHENTICATED_ADMIN and not session.is_admin:
        return RedirectTo(USER_LANDING_PATH)
    return Allow()


def landing_path(session: Optional[SessionState]) -> str:
    if session is None:
        return LOGIN_PATH
    return ADMIN_LANDING_PATH if session.is_admin else USER_LANDING_PATH


def resolve_unmatched(session: Optional[SessionState]) -> RedirectTo:
    return RedirectTo(landing_path(session))


# ─── Route table ─────────────────────────────────────────

ROUTES: dict[str, RouteClass] = {
    LOGIN_PATH: RouteClass.PUBLIC,
    REGISTER_PATH: RouteClass.PUBLIC,
    USER_LANDING_PATH: RouteClass.AUTHENTICATED_USER,
    "/personal-data": RouteClass.AUTHENTICATED_USER,
    "/dashboard/professional-experience": RouteClass.AUTHENTICATED_USER,
    "/academic-education": RouteClass.AUTHENTICATED_USER,
    "/languages": RouteClass.AUTHENTICATED_USER,
    "/tool-management": RouteClass.AUTHENTICATED_USER,
    "/references": RouteClass.AUTHENTICATED_USER,
    "/settings": RouteClass.AUTHENTICATED_USER,
    ADMIN_LANDING_PATH: RouteClass.AUTHENTICATED_ADMIN,
    "/admin/users": RouteClass.AUTHENTICATED_ADMIN,
    "/admin/users/{user_id}": RouteClass.AUTHENTICATED_ADMIN,
}

# Index routes that just forward to a child page
_INDEX_REDIRECTS: dict[str, tuple[RouteClass, str]] = {
    "/": (RouteClass.AUTHENTICATED_USER, USER_LANDING_PATH),
    "/admin": (RouteClass.AUTHENTICATED_ADMIN, ADMIN_LANDING_PATH),
}


def _pattern(template: str) -> re.Pattern:
    return re.compile("^" + re.sub(r"\{[^/]+\}", r"[^/]+", template) + "$")


_COMPILED = [(_pattern(template), route_class) for template, route_class in ROUTES.items()]


def classify(path: str) -> Optional[RouteClass]:
    """The route class of a concrete path, or None if no route matches."""
    path = path.rstrip("/") or "/"
    for pattern, route_class in _COMPILED:
        if pattern.match(path):
            return route_class
    return None


def resolve_path(path: str, session: Optional[SessionState]) -> Decision:
    """Apply the guard to a concrete path (the router's view)."""
    normalized = path.rstrip("/") or "/"
    if normalized in _INDEX_REDIRECTS:
        route_class, target = _INDEX_REDIRECTS[normalized]
        decision = resolve(route_class, session)
        return RedirectTo(target) if isinstance(decision, Allow) else decision
    route_class = classify(normalized)
    if route_class is None:
        return resolve_unmatched(session)
    return resolve(route_class, session)


class Navigator:
    """Where the app currently is. The gateway uses it to force /login."""

    def __init__(self, on_navigate: Optional[Callable[[str], None]] = None):
        self.location: Optional[str] = None
        self._on_navigate = on_navigate

    def navigate(self, path: str) -> None:
        self.location = path
        if self._on_navigate is not None:
            self._on_navigate(path)
