"""FastAPI dependencies for the provider service.

Learn: These are used as Depends() in route handlers to reach the
app-scoped services and to resolve the caller:
1. apikey header — identifies the client application (always required
   when CVBANK_REMOTE_API_KEY is set)
2. Bearer access token — identifies the signed-in user

Row ownership is decided here, once: owner_for_read / owner_for_write
turn the mandatory ?user_id= filter into the owner id a route may use.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, Request

from cvbank.backends.sql import SqlEntityStore
from cvbank.config import Settings
from cvbank.errors import BackendError, SessionExpiredError
from cvbank.schemas.profile import UserRole
from cvbank.services.identity_service import IdentityService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SqlEntityStore:
    return request.app.state.store


def get_identities(request: Request) -> IdentityService:
    return request.app.state.identities


async def require_api_key(
    apikey: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.remote_api_key and apikey != settings.remote_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@dataclass
class CurrentIdentity:
    """The signed-in caller. role is None until a user record exists."""
    user_id: str
    email: str
    role: Optional[UserRole] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return authorization[7:]


async def get_current_identity(
    authorization: Optional[str] = Header(None),
    identities: IdentityService = Depends(get_identities),
    store: SqlEntityStore = Depends(get_store),
) -> CurrentIdentity:
    """Resolve the bearer token (required, 401 if missing or revoked)."""
    token = bearer_token(authorization)
    try:
        session = await identities.resolve_access_token(token)
        user = await store.get_user(session.user_id)
    except SessionExpiredError as e:
        raise HTTPException(
            status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"}
        )
    except BackendError:
        raise HTTPException(status_code=503, detail="Storage unavailable")
    return CurrentIdentity(
        user_id=session.user_id,
        email=session.email,
        role=user.role if user else None,
    )


def owner_for_read(
    user_id: str = Query(..., min_length=1),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> str:
    """Owners read their own rows; admins may read anyone's."""
    if user_id != identity.user_id and not identity.is_admin:
        raise HTTPException(status_code=403, detail="Not the owner of these rows")
    return user_id


def owner_for_write(
    user_id: str = Query(..., min_length=1),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> str:
    """Only the owner writes their rows, admins included."""
    if user_id != identity.user_id:
        raise HTTPException(status_code=403, detail="Not the owner of these rows")
    return user_id
