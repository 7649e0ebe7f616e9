"""Access guard tests — pure decisions, no fixtures needed."""

import pytest

from cvbank.routing import (
    ADMIN_LANDING_PATH,
    LOGIN_PATH,
    USER_LANDING_PATH,
    Allow,
    Navigator,
    RedirectTo,
    RouteClass,
    classify,
    resolve,
    resolve_path,
)
from cvbank.schemas.profile import UserRole
from cvbank.schemas.session import SessionState

USER = SessionState(token="t", user_id="u-1", user_name="Ana", role=UserRole.USER)
ADMIN = SessionState(token="t", user_id="a-1", user_name="Admin", role=UserRole.ADMIN)


@pytest.mark.parametrize(
    "route_class, session, expected",
    [
        (RouteClass.PUBLIC, None, Allow()),
        (RouteClass.PUBLIC, USER, Allow()),
        (RouteClass.PUBLIC, ADMIN, Allow()),
        (RouteClass.AUTHENTICATED_USER, None, RedirectTo(LOGIN_PATH)),
        (RouteClass.AUTHENTICATED_USER, USER, Allow()),
        (RouteClass.AUTHENTICATED_USER, ADMIN, Allow()),
        (RouteClass.AUTHENTICATED_ADMIN, None, RedirectTo(LOGIN_PATH)),
        (RouteClass.AUTHENTICATED_ADMIN, USER, RedirectTo(USER_LANDING_PATH)),
        (RouteClass.AUTHENTICATED_ADMIN, ADMIN, Allow()),
    ],
)
def test_resolve(route_class, session, expected):
    assert resolve(route_class, session) == expected


def test_classify():
    assert classify("/login") == RouteClass.PUBLIC
    assert classify("/languages/") == RouteClass.AUTHENTICATED_USER
    assert classify("/admin/users/abc-123") == RouteClass.AUTHENTICATED_ADMIN
    assert classify("/admin/users/abc/extra") is None
    assert classify("/nope") is None


@pytest.mark.parametrize(
    "session, expected",
    [
        (None, RedirectTo(LOGIN_PATH)),
        (USER, RedirectTo(USER_LANDING_PATH)),
        (ADMIN, RedirectTo(ADMIN_LANDING_PATH)),
    ],
)
def test_unmatched_path_goes_to_landing(session, expected):
    assert resolve_path("/does-not-exist", session) == expected


def test_index_routes():
    assert resolve_path("/", None) == RedirectTo(LOGIN_PATH)
    assert resolve_path("/", USER) == RedirectTo(USER_LANDING_PATH)
    assert resolve_path("/admin", USER) == RedirectTo(USER_LANDING_PATH)
    assert resolve_path("/admin", ADMIN) == RedirectTo(ADMIN_LANDING_PATH)


def test_resolve_path_admin_pages():
    assert resolve_path("/admin/users/u-9", ADMIN) == Allow()
    assert resolve_path("/admin/users/u-9", USER) == RedirectTo(USER_LANDING_PATH)
    assert resolve_path("/settings", None) == RedirectTo(LOGIN_PATH)


def test_navigator_records_location():
    seen = []
    nav = Navigator(seen.append)
    assert nav.location is None
    nav.navigate(LOGIN_PATH)
    assert nav.location == LOGIN_PATH
    assert seen == [LOGIN_PATH]
