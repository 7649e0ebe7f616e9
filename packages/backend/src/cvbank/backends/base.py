"""Backend base — the capability set every storage/identity backend provides.

Learn: The app talks to exactly one backend, chosen at process start.
A backend is a pair:
1. EntityStore — owner-scoped CRUD for profile sections + the user directory
2. IdentityProvider — sign up / sign in / session refresh / sign out,
   plus a push channel of auth events

Every EntityStore operation takes the owner id first and must apply it as
a filter at the storage boundary (WHERE user_id = ..., a per-owner document,
or a mandatory query parameter), never by filtering rows after the fact.
Stores only ever raise BackendError (plus EmailAlreadyRegisteredError from
create_user); raw driver / network exceptions never escape.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ValidationError

from cvbank.errors import BackendError
from cvbank.realtime.events import AuthCallback, AuthEventBus, Subscription
from cvbank.schemas.collections import COLLECTIONS, Collection, Singleton
from cvbank.schemas.profile import User
from cvbank.schemas.session import ProviderSession
from cvbank.storage import KeyValueStore

logger = structlog.get_logger()

PROVIDER_SESSION_KEY = "cv_bank_provider_session"


def require_owner(owner_id: str) -> str:
    if not owner_id:
        raise ValueError("owner_id is required for every store operation")
    return owner_id


def entity_payload(collection: Collection, data: BaseModel, mode: str = "python") -> dict[str, Any]:
    """Dump only the writable fields of a section (never id or owner)."""
    fields = set(COLLECTIONS[collection].create_schema.model_fields)
    return data.model_dump(include=fields, mode=mode)


class EntityStore(ABC):
    """Owner-scoped CRUD over profile sections, plus the user directory."""

    # ─── Users ──────────────────────────────────────────

    @abstractmethod
    async def create_user(self, user: User) -> None:
        """Persist a new user. Raises EmailAlreadyRegisteredError on a
        case-insensitive email clash."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup."""

    @abstractmethod
    async def list_users(self) -> list[User]:
        ...

    # ─── Collections ────────────────────────────────────

    @abstractmethod
    async def create(self, owner_id: str, collection: Collection, data: BaseModel) -> str:
        """Insert a section row for owner_id. Returns the generated id."""

    @abstractmethod
    async def read(self, owner_id: str, collection: Collection) -> list[BaseModel]:
        """All rows of owner_id in the collection's order."""

    @abstractmethod
    async def update(
        self, owner_id: str, collection: Collection, entity_id: str, data: BaseModel
    ) -> bool:
        """Replace a row's fields. False when owner_id has no such row."""

    @abstractmethod
    async def delete(self, owner_id: str, collection: Collection, entity_id: str) -> None:
        """Remove a row. Deleting a missing id is a successful no-op."""

    # ─── Singletons ─────────────────────────────────────

    @abstractmethod
    async def get_singleton(self, owner_id: str, kind: Singleton) -> Optional[BaseModel]:
        """The singleton, or None if it was never written."""

    @abstractmethod
    async def upsert_singleton(self, owner_id: str, kind: Singleton, data: BaseModel) -> None:
        """Create or replace the singleton."""

    async def aclose(self) -> None:
        pass


class IdentityProvider(ABC):
    """A remote (or mock) authority for who is signed in.

    Learn: The provider keeps its own session object (tokens) in durable
    storage under PROVIDER_SESSION_KEY, separate from the app's session
    cache, which only the auth gateway writes. Changes the provider learns
    about on its own (expiry, refresh, sign-out elsewhere) are pushed to
    subscribers through self.events.
    """

    def __init__(self, storage: KeyValueStore):
        self.storage = storage
        self.events = AuthEventBus()

    @abstractmethod
    async def sign_up(self, email: str, password: str, name: str) -> ProviderSession:
        """Create an identity and sign it in. Raises EmailAlreadyRegisteredError."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> ProviderSession:
        """Raises InvalidCredentialsError on unknown email / wrong password."""

    @abstractmethod
    async def get_session(self) -> Optional[ProviderSession]:
        """The current provider session, refreshed if needed, or None.

        Raises BackendError when the provider can't be reached.
        """

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    def subscribe(self, callback: AuthCallback) -> Subscription:
        return self.events.subscribe(callback)

    async def aclose(self) -> None:
        pass

    # ─── Provider session persistence ───────────────────

    def load_session(self) -> Optional[ProviderSession]:
        data = self.storage.read_json(PROVIDER_SESSION_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return ProviderSession.model_validate(data)
        except ValidationError:
            return None

    def save_session(self, session: ProviderSession) -> None:
        try:
            self.storage.write_json(PROVIDER_SESSION_KEY, session.model_dump(mode="json"))
        except OSError as e:
            logger.error("provider_session.write_failed", error=str(e))
            raise BackendError("Could not persist the provider session", e)

    def forget_session(self) -> None:
        try:
            self.storage.remove(PROVIDER_SESSION_KEY)
        except OSError as e:
            logger.error("provider_session.clear_failed", error=str(e))
            raise BackendError("Could not clear the provider session", e)


@dataclass
class Backend:
    """The selected store + identity provider pair."""
    name: str
    store: EntityStore
    identity: IdentityProvider

    async def aclose(self) -> None:
        await self.identity.aclose()
        await self.store.aclose()
