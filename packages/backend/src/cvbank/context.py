"""Application context — one backend, one session cache, per process.

Learn: This is the client-side counterpart of the server lifespan. It
builds everything a front end needs, in dependency order, and tears it
down in reverse:

    async with open_context() as ctx:
        if await ctx.gateway.login(email, password):
            profile = await ctx.profiles.get_own_profile()

On entry the stored provider session is checked once so a restarted
process starts with a cache that agrees with the provider. With
CVBANK_REDIS_URL set, sign-outs from other processes reach this one
through the Redis relay.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import structlog
from redis.exceptions import RedisError

from cvbank.auth.gateway import AuthGateway
from cvbank.auth.session_cache import SessionCache
from cvbank.backends import Backend, get_backend
from cvbank.config import Settings, get_settings
from cvbank.realtime.events import AuthEvent, Subscription
from cvbank.realtime.pubsub import AuthEventRelay, close_redis, init_redis
from cvbank.routing import Navigator
from cvbank.schemas.session import SessionState
from cvbank.services.profile_service import ProfileRepository
from cvbank.storage import FileKeyValueStore, KeyValueStore

logger = structlog.get_logger()


@dataclass
class AppContext:
    settings: Settings
    storage: KeyValueStore
    backend: Backend
    cache: SessionCache
    gateway: AuthGateway
    profiles: ProfileRepository
    navigator: Navigator
    relay: Optional[AuthEventRelay] = None
    subscriptions: list[Subscription] = field(default_factory=list)


async def _start_relay(settings: Settings, ctx: AppContext) -> None:
    try:
        redis = await init_redis(settings.redis_url)
    except (RedisError, OSError) as e:
        logger.warning("context.redis_unavailable", error=str(e))
        return
    ctx.relay = AuthEventRelay(redis, ctx.backend.identity.events)
    current = ctx.cache.get()
    await ctx.relay.follow(current.user_id if current else None)

    async def follow_session(event: AuthEvent, state: Optional[SessionState]) -> None:
        await ctx.relay.follow(state.user_id if state else None)

    ctx.subscriptions.append(ctx.gateway.on_auth_state_change(follow_session))


@asynccontextmanager
async def open_context(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStore] = None,
    *,
    check_session: bool = True,
    **backend_options: Any,
) -> AsyncIterator[AppContext]:
    """Build the process context. Raises ConfigurationError on bad config."""
    settings = settings or get_settings()
    settings.require_backend_config()
    storage = storage or FileKeyValueStore(settings.data_dir)

    backend = await get_backend(settings.backend, settings, storage, **backend_options)
    cache = SessionCache(storage)
    navigator = Navigator()
    gateway = AuthGateway(backend.identity, backend.store, cache, settings, navigator)
    ctx = AppContext(
        settings=settings,
        storage=storage,
        backend=backend,
        cache=cache,
        gateway=gateway,
        profiles=ProfileRepository(backend.store, cache.reader()),
        navigator=navigator,
    )
    ctx.subscriptions.append(gateway.on_auth_state_change())
    logger.debug("context.opened", backend=backend.name)

    try:
        if check_session:
            await gateway.check_session()
        if settings.redis_url:
            await _start_relay(settings, ctx)
        yield ctx
    finally:
        for subscription in ctx.subscriptions:
            subscription.unsubscribe()
        if ctx.relay is not None:
            await ctx.relay.stop()
            await close_redis()
        await backend.aclose()
        logger.debug("context.closed", backend=backend.name)
