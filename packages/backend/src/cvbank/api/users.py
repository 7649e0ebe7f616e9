"""Users API — the directory of CV bank accounts.

Learn: A user row is created by its own identity right after sign up.
The server decides the role: the configured administrator email gets
role=admin, everyone else role=user. Whatever role a client sends is
ignored.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from cvbank.api.dependencies import (
    CurrentIdentity,
    get_current_identity,
    get_settings,
    get_store,
)
from cvbank.backends.sql import SqlEntityStore
from cvbank.config import Settings
from cvbank.errors import EmailAlreadyRegisteredError
from cvbank.schemas.profile import User, UserRole

router = APIRouter(prefix="/users")


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)


@router.post("", response_model=User, status_code=201)
async def create_user(
    body: UserCreate,
    identity: CurrentIdentity = Depends(get_current_identity),
    store: SqlEntityStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Create the caller's own user record."""
    if body.email.strip().lower() != identity.email.lower():
        raise HTTPException(status_code=403, detail="Email does not match the signed-in identity")
    role = (
        UserRole.ADMIN
        if identity.email.lower() == settings.admin_email.lower()
        else UserRole.USER
    )
    user = User(
        id=identity.user_id,
        name=body.name,
        email=body.email.strip(),
        role=role,
        created_at=datetime.now(timezone.utc),
    )
    try:
        await store.create_user(user)
    except EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email already registered")
    return user


@router.get("/lookup", response_model=User)
async def lookup_user(
    email: str = Query(..., min_length=1),
    store: SqlEntityStore = Depends(get_store),
):
    """Case-insensitive lookup by email (used before sign up)."""
    user = await store.find_user_by_email(email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("", response_model=list[User])
async def list_users(
    identity: CurrentIdentity = Depends(get_current_identity),
    store: SqlEntityStore = Depends(get_store),
):
    """Every user. Administrators only."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return await store.list_users()


@router.get("/{user_id}", response_model=User)
async def get_user(
    user_id: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    store: SqlEntityStore = Depends(get_store),
):
    if user_id != identity.user_id and not identity.is_admin:
        raise HTTPException(status_code=403, detail="Not allowed")
    user = await store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
