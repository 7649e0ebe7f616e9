"""Identity provider tests — session lifecycle per provider.

Learn: Providers keep their own session (tokens) in durable storage and
push what they learn on their own through events:
1. get_session() refreshes an expired access token → TOKEN_REFRESHED
2. a revoked session is dropped → SIGNED_OUT
3. an unreachable provider raises BackendError (never a raw httpx error)
"""

import httpx
import pytest
from httpx import ASGITransport

from cvbank.auth.password import hash_password, verify_password
import cvbank.backends as backends_registry
from cvbank.auth.gateway import AuthGateway
from cvbank.auth.session_cache import SessionCache
from cvbank.backends import get_backend, list_backends, register_backend
from cvbank.backends.base import PROVIDER_SESSION_KEY
from cvbank.errors import BackendError, EmailAlreadyRegisteredError, InvalidCredentialsError
from cvbank.main import create_app
from cvbank.db.engine import init_models
from cvbank.realtime.events import AuthEventType
from cvbank.schemas.collections import Collection
from cvbank.schemas.profile import UserRole
from cvbank.schemas.session import SessionState
from cvbank.services.profile_service import ProfileRepository
from cvbank.storage import MemoryKeyValueStore

from conftest import sign_up_user


def _recorder(backend):
    seen = []
    backend.identity.subscribe(lambda event: seen.append(event.type))
    return seen


def test_registry_lists_backends():
    assert list_backends() == ["local", "rest", "sql"]


@pytest.mark.asyncio
async def test_unknown_backend(settings, storage):
    with pytest.raises(ValueError):
        await get_backend("mongo", settings, storage)


@pytest.mark.asyncio
async def test_register_custom_backend(settings, storage, monkeypatch):
    monkeypatch.setattr(backends_registry, "_BACKENDS", dict(backends_registry._BACKENDS))
    register_backend("embedded", "cvbank.backends.local")
    assert "embedded" in list_backends()

    backend = await get_backend("embedded", settings, storage)
    try:
        assert await backend.store.find_user_by_email(settings.admin_email) is not None
    finally:
        await backend.aclose()


def test_password_hashing():
    hashed = hash_password("pw123", rounds=4)
    assert hashed != "pw123"
    assert verify_password("pw123", hashed)
    assert not verify_password("nope", hashed)
    assert not verify_password("pw123", "not-a-hash")


# ═══════════════════════════════════════════════════════════
# Contract on every backend
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sign_up_persists_session(backend, storage):
    seen = _recorder(backend)
    session = await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
    assert storage.read_json(PROVIDER_SESSION_KEY)["user_id"] == session.user_id
    assert seen == [AuthEventType.SIGNED_IN]

    current = await backend.identity.get_session()
    assert current.user_id == session.user_id


@pytest.mark.asyncio
async def test_sign_up_duplicate(backend):
    await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
    with pytest.raises(EmailAlreadyRegisteredError):
        await backend.identity.sign_up("ANA@x.com", "pw123", "Ana")


@pytest.mark.asyncio
async def test_sign_in_wrong_password(backend):
    await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
    with pytest.raises(InvalidCredentialsError):
        await backend.identity.sign_in("ana@x.com", "wrong")


@pytest.mark.asyncio
async def test_sign_out(backend, storage):
    await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
    seen = _recorder(backend)
    await backend.identity.sign_out()
    assert storage.read_raw(PROVIDER_SESSION_KEY) is None
    assert seen == [AuthEventType.SIGNED_OUT]
    assert await backend.identity.get_session() is None

    # Nothing to sign out from: no event
    await backend.identity.sign_out()
    assert seen == [AuthEventType.SIGNED_OUT]


# ═══════════════════════════════════════════════════════════
# Sql provider
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sql_sign_out_elsewhere_revokes(sql_backend, settings, storage):
    await sql_backend.identity.sign_up("ana@x.com", "pw123", "Ana")

    # Second process, signed in as the same identity
    other_storage = MemoryKeyValueStore()
    other = await get_backend("sql", settings, other_storage)
    try:
        await other.identity.sign_in("ana@x.com", "pw123")
        await sql_backend.identity.sign_out()

        seen = _recorder(other)
        # Refresh tokens were revoked with the access tokens
        assert await other.identity.get_session() is None
        assert seen == [AuthEventType.SIGNED_OUT]
        assert other_storage.read_raw(PROVIDER_SESSION_KEY) is None
    finally:
        await other.aclose()


@pytest.mark.asyncio
async def test_sql_expired_access_token_refreshes(settings, storage):
    expired = settings.model_copy(update={"access_token_expire_minutes": -1})
    backend = await get_backend("sql", expired, storage)
    try:
        await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
        seen = _recorder(backend)
        session = await backend.identity.get_session()
        assert session is not None
        assert seen == [AuthEventType.TOKEN_REFRESHED]
    finally:
        await backend.aclose()


# ═══════════════════════════════════════════════════════════
# Rest provider
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_rest_expired_access_token_refreshes(settings, storage):
    expired = settings.model_copy(update={"access_token_expire_minutes": -1})
    app = create_app(expired)
    await init_models(app.state.engine)
    backend = await get_backend("rest", expired, storage, transport=ASGITransport(app=app))
    try:
        await backend.identity.sign_up("ana@x.com", "pw123", "Ana")
        seen = _recorder(backend)
        session = await backend.identity.get_session()
        assert session is not None
        assert seen == [AuthEventType.TOKEN_REFRESHED]
    finally:
        await backend.aclose()
        await app.state.engine.dispose()


@pytest.mark.asyncio
async def test_rest_rejected_session_signs_out(rest_backend, client, storage):
    user = await sign_up_user(rest_backend, "Ana", "ana@x.com")
    token = storage.read_json(PROVIDER_SESSION_KEY)["access_token"]
    # Revoked behind the client's back (e.g. logout from another device)
    r = await client.post("/api/v1/auth/logout", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200

    seen = _recorder(rest_backend)
    with pytest.raises(BackendError):
        await rest_backend.store.read(user.id, Collection.TOOLS)
    assert seen == [AuthEventType.SIGNED_OUT]
    assert storage.read_raw(PROVIDER_SESSION_KEY) is None


@pytest.mark.asyncio
async def test_rest_unreachable(settings, storage):
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = await get_backend(
        "rest", settings, storage, transport=httpx.MockTransport(unreachable)
    )
    try:
        with pytest.raises(BackendError):
            await backend.identity.sign_in("ana@x.com", "pw123")
        with pytest.raises(BackendError):
            await backend.store.find_user_by_email("ana@x.com")
    finally:
        await backend.aclose()


@pytest.mark.asyncio
async def test_rest_sends_api_key(settings, storage):
    seen_headers = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_headers.append(request.headers.get("apikey"))
        return httpx.Response(404, json={"detail": "User not found"})

    backend = await get_backend("rest", settings, storage, transport=httpx.MockTransport(handler))
    try:
        assert await backend.store.find_user_by_email("nobody@x.com") is None
        assert seen_headers == [settings.remote_api_key]
    finally:
        await backend.aclose()


# ─── Malformed provider responses ─────────────────────────


def _malformed_provider(request: httpx.Request) -> httpx.Response:
    """Answers like the provider service, but with broken user and tool rows."""
    path = request.url.path
    if path == "/api/v1/auth/token":
        return httpx.Response(
            200, json={"user_id": "u1", "email": "ana@x.com", "access_token": "tok"}
        )
    if path == "/api/v1/users/u1":
        return httpx.Response(200, json={"id": "u1"})
    if path == "/api/v1/records/tools":
        return httpx.Response(200, json=[{"category": "no name, no id"}])
    if path.startswith("/api/v1/records/"):
        return httpx.Response(200, json=[])
    if path.startswith("/api/v1/singletons/"):
        return httpx.Response(200, json=None)
    return httpx.Response(404, json={"detail": "Not found"})


@pytest.mark.asyncio
async def test_rest_malformed_rows_raise_backend_error(settings, storage):
    backend = await get_backend(
        "rest", settings, storage, transport=httpx.MockTransport(_malformed_provider)
    )
    try:
        with pytest.raises(BackendError):
            await backend.store.get_user("u1")
        with pytest.raises(BackendError):
            await backend.store.read("u1", Collection.TOOLS)
        assert await backend.store.read("u1", Collection.LANGUAGES) == []
    finally:
        await backend.aclose()


@pytest.mark.asyncio
async def test_rest_malformed_user_is_a_failed_login(settings, storage):
    backend = await get_backend(
        "rest", settings, storage, transport=httpx.MockTransport(_malformed_provider)
    )
    try:
        cache = SessionCache(storage)
        gateway = AuthGateway(backend.identity, backend.store, cache, settings)
        assert await gateway.login("ana@x.com", "pw123") is False
        assert cache.get() is None
    finally:
        await backend.aclose()


@pytest.mark.asyncio
async def test_rest_malformed_section_defaults_only_that_section(settings, storage):
    backend = await get_backend(
        "rest", settings, storage, transport=httpx.MockTransport(_malformed_provider)
    )
    try:
        cache = SessionCache(storage)
        cache.set(SessionState(token="tok", user_id="u1", user_name="Ana", role=UserRole.USER))
        profile = await ProfileRepository(backend.store, cache.reader()).get_own_profile()
        assert profile.tools == []
        assert profile.languages == []
        assert profile.personal_data.full_name == ""
        assert profile.settings.notifications.new_opportunities is True
    finally:
        await backend.aclose()
