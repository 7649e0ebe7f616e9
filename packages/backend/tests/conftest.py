"""Test fixtures — one throwaway world per test.

Learn: Testing pattern for the three backends:

1. Settings point at a per-test SQLite file (tmp_path) through aiosqlite,
   so the sql backend and the provider service need no running server.
2. Durable client storage is a MemoryKeyValueStore; each test starts
   with an empty session cache and an empty local database.
3. The provider service is driven in-process with httpx's ASGITransport,
   and the rest backend is pointed at that same transport, so rest tests
   exercise the real HTTP contract end to end.

bcrypt_rounds=4 keeps password hashing fast.
"""

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient

from cvbank.auth.gateway import AuthGateway
from cvbank.auth.session_cache import SessionCache
from cvbank.backends import get_backend
from cvbank.config import Settings
from cvbank.db.engine import init_models
from cvbank.main import create_app
from cvbank.routing import Navigator
from cvbank.schemas.profile import User, UserRole
from cvbank.services.profile_service import ProfileRepository
from cvbank.storage import MemoryKeyValueStore

API_KEY = "test-api-key"
ADMIN_EMAIL = "admin@usm.edu.co"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(autouse=True)
def _reset_logging():
    """CLI tests configure structlog; put the defaults back afterwards."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        backend="local",
        data_dir=tmp_path / "data",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cvbank.db'}",
        remote_url="http://test",
        remote_api_key=API_KEY,
        redis_url="",
        admin_email=ADMIN_EMAIL,
        local_admin_password=ADMIN_PASSWORD,
        jwt_secret="test-secret-for-cvbank-tests-0123456789",
        bcrypt_rounds=4,
        environment="development",
        log_level="WARNING",
    )


@pytest.fixture()
def storage():
    return MemoryKeyValueStore()


@pytest_asyncio.fixture()
async def app(settings):
    """Provider service with its schema created (lifespan doesn't run here)."""
    application = create_app(settings)
    await init_models(application.state.engine)
    yield application
    await application.state.engine.dispose()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client for the provider service, sending the client api key."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"apikey": API_KEY}
    ) as ac:
        yield ac


@pytest_asyncio.fixture()
async def local_backend(settings, storage):
    backend = await get_backend("local", settings, storage)
    yield backend
    await backend.aclose()


@pytest_asyncio.fixture()
async def sql_backend(settings, storage):
    backend = await get_backend("sql", settings, storage)
    yield backend
    await backend.aclose()


@pytest_asyncio.fixture()
async def rest_backend(app, settings, storage):
    backend = await get_backend("rest", settings, storage, transport=ASGITransport(app=app))
    yield backend
    await backend.aclose()


@pytest_asyncio.fixture(params=["local", "sql", "rest"])
async def backend(request, app, settings, storage):
    """The same contract, once per backend."""
    options = {}
    if request.param == "rest":
        options["transport"] = ASGITransport(app=app)
    b = await get_backend(request.param, settings, storage, **options)
    yield b
    await b.aclose()


@pytest.fixture()
def cache(storage):
    return SessionCache(storage)


@pytest.fixture()
def navigator():
    return Navigator()


@pytest.fixture()
def gateway(backend, cache, settings, navigator):
    return AuthGateway(backend.identity, backend.store, cache, settings, navigator)


@pytest.fixture()
def profiles(backend, cache):
    return ProfileRepository(backend.store, cache.reader())


async def sign_up_user(backend, name: str, email: str, password: str = "pw123") -> User:
    """Create an identity + user record directly; leaves it signed in."""
    session = await backend.identity.sign_up(email, password, name)
    await backend.store.create_user(
        User(id=session.user_id, name=name, email=email, role=UserRole.USER)
    )
    return await backend.store.get_user(session.user_id)


async def sign_in_admin(gateway: AuthGateway, backend) -> bool:
    """The local backend seeds the administrator; the others register it."""
    if backend.name == "local":
        return await gateway.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    return await gateway.register("Administrator", ADMIN_EMAIL, ADMIN_PASSWORD)
