"""Provider service — FastAPI application factory.

Learn: This is the remote identity + data service the rest backend talks
to ("Provider B"). It serves the sql store over HTTP and enforces row
ownership from the bearer token. App factory pattern. create_app()
returns a configured FastAPI instance; run it with
`uvicorn cvbank.main:create_app --factory` or `cvbank serve`.

Engine and services are built in create_app (not in lifespan) so that
tests driving the app through httpx's ASGITransport get a working app.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cvbank import __version__
from cvbank.api import api_router
from cvbank.backends.sql import SqlEntityStore
from cvbank.config import Settings, get_settings
from cvbank.db.engine import create_engine, create_session_factory, init_models
from cvbank.errors import BackendError
from cvbank.logconfig import configure_logging
from cvbank.middleware.request_id import RequestIdMiddleware
from cvbank.middleware.security import SecurityHeadersMiddleware
from cvbank.realtime.pubsub import close_redis, init_redis
from cvbank.services.identity_service import IdentityService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    settings: Settings = app.state.settings
    configure_logging(settings.log_level, json_output=settings.environment != "development")
    logger.info(
        "cvbank.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    if settings.environment == "development":
        await init_models(app.state.engine)

    if settings.redis_url:
        try:
            await init_redis(settings.redis_url)
            logger.info("cvbank.redis_connected", url=settings.redis_url)
        except Exception as e:
            # Redis is optional; without it sign-outs just aren't broadcast
            logger.warning("cvbank.redis_unavailable", error=str(e))

    yield

    logger.info("cvbank.shutdown")
    await close_redis()
    await app.state.engine.dispose()


async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
    logger.error("cvbank.backend_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="CV Bank Provider",
        description="Identity and profile storage service for CV Bank clients",
        version=__version__,
        lifespan=lifespan,
    )

    engine = create_engine(settings.database_url, echo=settings.debug)
    factory = create_session_factory(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = SqlEntityStore(factory)
    app.state.identities = IdentityService(factory, settings)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → Security → RequestId → handler
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BackendError, backend_error_handler)
    app.include_router(api_router)

    return app
