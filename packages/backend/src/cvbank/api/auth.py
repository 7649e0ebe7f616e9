"""Auth API — the identity half of the provider contract.

Learn: Routes for the remote identity provider used by the rest backend:
- POST /auth/signup → create credentials, returns a session (tokens)
- POST /auth/token → email/password → session
- POST /auth/refresh → refresh token → new session
- GET /auth/user → who does this access token belong to
- POST /auth/logout → revoke every token of the caller

Sessions are returned as ProviderSession JSON. Role is not part of the
session: clients resolve it from the users directory.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cvbank.api.dependencies import (
    CurrentIdentity,
    get_current_identity,
    get_identities,
)
from cvbank.errors import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    SessionExpiredError,
)
from cvbank.realtime.events import AuthEventType
from cvbank.realtime.pubsub import publish_auth_event
from cvbank.schemas.profile import RegisterRequest
from cvbank.schemas.session import ProviderSession
from cvbank.services.identity_service import IdentityService

router = APIRouter(prefix="/auth")


class TokenRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


# ─── Sign up ─────────────────────────────────────────────


@router.post("/signup", response_model=ProviderSession, status_code=201)
async def signup(
    body: RegisterRequest,
    identities: IdentityService = Depends(get_identities),
):
    """Create credentials and sign them in."""
    try:
        return await identities.create_identity(body.email, body.password)
    except EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email already registered")


# ─── Sign in ─────────────────────────────────────────────


@router.post("/token", response_model=ProviderSession)
async def token(
    body: TokenRequest,
    identities: IdentityService = Depends(get_identities),
):
    """Password grant."""
    try:
        return await identities.authenticate(body.email, body.password)
    except InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Invalid credentials")


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=ProviderSession)
async def refresh(
    body: RefreshRequest,
    identities: IdentityService = Depends(get_identities),
):
    """Exchange a refresh token for a new access + refresh pair."""
    try:
        return await identities.refresh(body.refresh_token)
    except SessionExpiredError as e:
        raise HTTPException(status_code=401, detail=str(e))


# ─── Current identity ───────────────────────────────────


@router.get("/user")
async def get_user(identity: CurrentIdentity = Depends(get_current_identity)):
    return {"id": identity.user_id, "email": identity.email}


# ─── Sign out ───────────────────────────────────────────


@router.post("/logout")
async def logout(
    identity: CurrentIdentity = Depends(get_current_identity),
    identities: IdentityService = Depends(get_identities),
):
    """Revoke the caller's tokens and tell their other processes."""
    await identities.revoke(identity.user_id)
    await publish_auth_event(identity.user_id, AuthEventType.SIGNED_OUT)
    return {"signed_out": True}
