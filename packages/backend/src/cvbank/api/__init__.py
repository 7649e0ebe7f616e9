"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: The apikey check is applied at the include_router level, so every
route except health requires the client application's key. Bearer auth
is per-route (sign up / sign in obviously can't require a session).
"""

from fastapi import APIRouter, Depends

from cvbank.api.auth import router as auth_router
from cvbank.api.dependencies import require_api_key
from cvbank.api.health import router as health_router
from cvbank.api.records import router as records_router
from cvbank.api.users import router as users_router

_apikey = [Depends(require_api_key)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])

# Client-key routes
api_router.include_router(auth_router, tags=["auth"], dependencies=_apikey)
api_router.include_router(users_router, tags=["users"], dependencies=_apikey)
api_router.include_router(records_router, tags=["records"], dependencies=_apikey)
