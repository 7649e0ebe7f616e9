"""Local backend — embedded JSON database + mock identity provider.

Learn: The whole database is one JSON document under a single durable key
(DB_KEY). Layout:

    {"users": [User...],
     "credentials": {email_lower: {"user_id": ..., "password_hash": ...}},
     "profiles": {user_id: {"personal_data": {...}, "settings": {...},
                            "professional_experiences": [...], ...}}}

Owner scoping is structural: every operation starts from
profiles[owner_id], so another owner's rows are never even loaded into
the working set. A missing or corrupt document is re-seeded with the
bootstrap administrator.

Each operation reads, mutates and writes the document with no await in
between, so under cooperative scheduling no other operation can observe
or interleave with a half-applied change.
"""

import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ValidationError

from cvbank.auth.password import hash_password, verify_password
from cvbank.backends.base import (
    Backend,
    EntityStore,
    IdentityProvider,
    entity_payload,
    require_owner,
)
from cvbank.config import Settings
from cvbank.errors import BackendError, EmailAlreadyRegisteredError, InvalidCredentialsError
from cvbank.realtime.events import AuthEvent, AuthEventType
from cvbank.schemas.collections import COLLECTIONS, SINGLETONS, Collection, Singleton, sort_entities
from cvbank.schemas.profile import User, UserRole
from cvbank.schemas.session import ProviderSession
from cvbank.storage import KeyValueStore

logger = structlog.get_logger()

DB_KEY = "cv_bank_db"
ADMIN_USER_ID = "admin_user_001"


class LocalDatabase:
    """Read/modify/write access to the embedded JSON document."""

    def __init__(self, storage: KeyValueStore, settings: Settings):
        self.storage = storage
        self.settings = settings

    def _seed(self) -> dict[str, Any]:
        admin = User(
            id=ADMIN_USER_ID,
            name="Administrator",
            email=self.settings.admin_email,
            role=UserRole.ADMIN,
        )
        db = {
            "users": [admin.model_dump(mode="json")],
            "credentials": {
                admin.email.lower(): {
                    "user_id": admin.id,
                    "password_hash": hash_password(
                        self.settings.local_admin_password,
                        rounds=self.settings.bcrypt_rounds,
                    ),
                }
            },
            "profiles": {},
        }
        self.write(db)
        logger.info("local_db.seeded", admin_email=admin.email)
        return db

    def read(self) -> dict[str, Any]:
        db = self.storage.read_json(DB_KEY)
        if not isinstance(db, dict) or not isinstance(db.get("users"), list):
            return self._seed()
        db.setdefault("credentials", {})
        db.setdefault("profiles", {})
        return db

    def write(self, db: dict[str, Any]) -> None:
        try:
            self.storage.write_json(DB_KEY, db)
        except OSError as e:
            logger.error("local_db.write_failed", error=str(e))
            raise BackendError("Could not write the local database", e)


def _new_id() -> str:
    return uuid.uuid4().hex


class LocalEntityStore(EntityStore):
    def __init__(self, database: LocalDatabase):
        self.database = database

    # ─── Users ──────────────────────────────────────────

    def _users(self, db: dict[str, Any]) -> list[User]:
        users = []
        for row in db["users"]:
            try:
                users.append(User.model_validate(row))
            except ValidationError:
                logger.warning("local_db.bad_user_row", row=row)
        return users

    async def create_user(self, user: User) -> None:
        db = self.database.read()
        if any(u.email.lower() == user.email.lower() for u in self._users(db)):
            raise EmailAlreadyRegisteredError(user.email)
        db["users"].append(user.model_dump(mode="json"))
        self.database.write(db)

    async def get_user(self, user_id: str) -> Optional[User]:
        db = self.database.read()
        return next((u for u in self._users(db) if u.id == user_id), None)

    async def find_user_by_email(self, email: str) -> Optional[User]:
        db = self.database.read()
        wanted = email.strip().lower()
        return next((u for u in self._users(db) if u.email.lower() == wanted), None)

    async def list_users(self) -> list[User]:
        return self._users(self.database.read())

    # ─── Collections ────────────────────────────────────

    @staticmethod
    def _profile(db: dict[str, Any], owner_id: str) -> dict[str, Any]:
        return db["profiles"].setdefault(require_owner(owner_id), {})

    async def create(self, owner_id: str, collection: Collection, data: BaseModel) -> str:
        db = self.database.read()
        entity_id = _new_id()
        row = {"id": entity_id, **entity_payload(collection, data, mode="json")}
        self._profile(db, owner_id).setdefault(collection.value, []).append(row)
        self.database.write(db)
        return entity_id

    async def read(self, owner_id: str, collection: Collection) -> list[BaseModel]:
        db = self.database.read()
        rows = db["profiles"].get(require_owner(owner_id), {}).get(collection.value, [])
        schema = COLLECTIONS[collection].read_schema
        entities = []
        for row in rows:
            try:
                entities.append(schema.model_validate(row))
            except ValidationError:
                logger.warning("local_db.bad_row", collection=collection.value, row=row)
        return sort_entities(collection, entities)

    async def update(
        self, owner_id: str, collection: Collection, entity_id: str, data: BaseModel
    ) -> bool:
        db = self.database.read()
        rows = self._profile(db, owner_id).get(collection.value, [])
        for i, row in enumerate(rows):
            if row.get("id") == entity_id:
                rows[i] = {"id": entity_id, **entity_payload(collection, data, mode="json")}
                self.database.write(db)
                return True
        return False

    async def delete(self, owner_id: str, collection: Collection, entity_id: str) -> None:
        db = self.database.read()
        profile = db["profiles"].get(require_owner(owner_id))
        if not profile or collection.value not in profile:
            return
        rows = profile[collection.value]
        kept = [row for row in rows if row.get("id") != entity_id]
        if len(kept) != len(rows):
            profile[collection.value] = kept
            self.database.write(db)

    # ─── Singletons ─────────────────────────────────────

    async def get_singleton(self, owner_id: str, kind: Singleton) -> Optional[BaseModel]:
        db = self.database.read()
        raw = db["profiles"].get(require_owner(owner_id), {}).get(kind.value)
        if raw is None:
            return None
        try:
            return SINGLETONS[kind].model_validate(raw)
        except ValidationError:
            logger.warning("local_db.bad_singleton", kind=kind.value)
            return None

    async def upsert_singleton(self, owner_id: str, kind: Singleton, data: BaseModel) -> None:
        db = self.database.read()
        self._profile(db, owner_id)[kind.value] = data.model_dump(mode="json")
        self.database.write(db)


class LocalIdentityProvider(IdentityProvider):
    """Mock identity provider over the embedded database's credentials."""

    def __init__(self, storage: KeyValueStore, database: LocalDatabase):
        super().__init__(storage)
        self.database = database

    def _issue(self, user_id: str, email: str) -> ProviderSession:
        session = ProviderSession(
            user_id=user_id,
            email=email,
            access_token=f"local-{secrets.token_urlsafe(24)}",
        )
        self.save_session(session)
        return session

    async def sign_up(self, email: str, password: str, name: str) -> ProviderSession:
        db = self.database.read()
        key = email.strip().lower()
        if key in db["credentials"]:
            raise EmailAlreadyRegisteredError(email)
        user_id = str(uuid.uuid4())
        db["credentials"][key] = {
            "user_id": user_id,
            "password_hash": hash_password(password, rounds=self.database.settings.bcrypt_rounds),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.database.write(db)
        session = self._issue(user_id, email.strip())
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_IN, session))
        return session

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        db = self.database.read()
        cred = db["credentials"].get(email.strip().lower())
        if not cred or not verify_password(password, cred.get("password_hash", "")):
            raise InvalidCredentialsError("Invalid credentials")
        session = self._issue(cred["user_id"], email.strip())
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_IN, session))
        return session

    async def get_session(self) -> Optional[ProviderSession]:
        session = self.load_session()
        if session is None:
            return None
        db = self.database.read()
        cred = db["credentials"].get(session.email.lower())
        if not cred or cred["user_id"] != session.user_id:
            self.forget_session()
            return None
        return session

    async def sign_out(self) -> None:
        had_session = self.load_session() is not None
        self.forget_session()
        if had_session:
            await self.events.publish(AuthEvent(AuthEventType.SIGNED_OUT))


def create_backend(settings: Settings, storage: KeyValueStore, **_: Any) -> Backend:
    database = LocalDatabase(storage, settings)
    return Backend(
        name="local",
        store=LocalEntityStore(database),
        identity=LocalIdentityProvider(storage, database),
    )
