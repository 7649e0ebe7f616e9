"""Sql backend ("Provider A") — SQLAlchemy async database + JWT identities.

Learn: Every query is built with .where(Row.user_id == owner_id), so the
database itself only ever returns or touches the owner's rows. Updates and
deletes match on (id, user_id) together: an id belonging to someone else
behaves exactly like an id that doesn't exist.

Driver/connection failures (SQLAlchemyError, OSError) are logged and
re-raised as BackendError.
"""

import enum
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvbank.backends.base import (
    Backend,
    EntityStore,
    IdentityProvider,
    entity_payload,
    require_owner,
)
from cvbank.config import Settings
from cvbank.db.engine import create_engine, create_session_factory, init_models
from cvbank.db.models import COLLECTION_ROWS, SINGLETON_ROWS, UserRow, new_id
from cvbank.errors import BackendError, EmailAlreadyRegisteredError, SessionExpiredError
from cvbank.realtime.events import AuthEvent, AuthEventType
from cvbank.realtime.pubsub import publish_auth_event
from cvbank.schemas.collections import COLLECTIONS, SINGLETONS, Collection, Singleton
from cvbank.schemas.profile import NotificationSettings, User, UserSettings
from cvbank.schemas.session import ProviderSession
from cvbank.services.identity_service import IdentityService
from cvbank.storage import KeyValueStore

logger = structlog.get_logger()

_DB_ERRORS = (SQLAlchemyError, OSError)


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v.value if isinstance(v, enum.Enum) else v for k, v in values.items()}


def _singleton_values(kind: Singleton, data: BaseModel) -> dict[str, Any]:
    if kind == Singleton.SETTINGS:
        return {"notifications_new_opportunities": data.notifications.new_opportunities}
    return data.model_dump()


def _singleton_schema(kind: Singleton, row) -> BaseModel:
    if kind == Singleton.SETTINGS:
        return UserSettings(
            notifications=NotificationSettings(
                new_opportunities=row.notifications_new_opportunities
            )
        )
    return SINGLETONS[kind].model_validate(row)


class SqlEntityStore(EntityStore):
    """EntityStore over the users + section tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine=None):
        self.session_factory = session_factory
        self.engine = engine

    @asynccontextmanager
    async def _db(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as db:
                yield db
        except _DB_ERRORS as e:
            logger.error("store.sql_failed", op=op, error=str(e))
            raise BackendError(f"Database operation '{op}' failed", e) from e

    # ─── Users ──────────────────────────────────────────

    async def create_user(self, user: User) -> None:
        async with self._db("create_user") as db:
            existing = await db.execute(
                select(UserRow.id).where(func.lower(UserRow.email) == user.email.lower())
            )
            if existing.first():
                raise EmailAlreadyRegisteredError(user.email)
            db.add(UserRow(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role.value,
                created_at=user.created_at,
            ))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise EmailAlreadyRegisteredError(user.email)

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._db("get_user") as db:
            row = await db.get(UserRow, user_id)
            return User.model_validate(row) if row else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        async with self._db("find_user_by_email") as db:
            result = await db.execute(
                select(UserRow).where(func.lower(UserRow.email) == email.strip().lower())
            )
            row = result.scalars().first()
            return User.model_validate(row) if row else None

    async def list_users(self) -> list[User]:
        async with self._db("list_users") as db:
            result = await db.execute(select(UserRow).order_by(UserRow.created_at, UserRow.id))
            return [User.model_validate(row) for row in result.scalars().all()]

    # ─── Collections ────────────────────────────────────

    async def create(self, owner_id: str, collection: Collection, data: BaseModel) -> str:
        model = COLLECTION_ROWS[collection]
        row = model(
            id=new_id(),
            user_id=require_owner(owner_id),
            **_column_values(entity_payload(collection, data)),
        )
        async with self._db("create") as db:
            db.add(row)
            await db.commit()
        return row.id

    async def read(self, owner_id: str, collection: Collection) -> list[BaseModel]:
        model = COLLECTION_ROWS[collection]
        meta = COLLECTIONS[collection]
        column = getattr(model, meta.order_field)
        order = column.desc() if meta.newest_first else func.lower(column)
        async with self._db("read") as db:
            result = await db.execute(
                select(model)
                .where(model.user_id == require_owner(owner_id))
                .order_by(order, model.id)
            )
            return [meta.read_schema.model_validate(r) for r in result.scalars().all()]

    async def update(
        self, owner_id: str, collection: Collection, entity_id: str, data: BaseModel
    ) -> bool:
        model = COLLECTION_ROWS[collection]
        async with self._db("update") as db:
            result = await db.execute(
                update(model)
                .where(model.id == entity_id, model.user_id == require_owner(owner_id))
                .values(**_column_values(entity_payload(collection, data)))
            )
            await db.commit()
            return result.rowcount > 0

    async def delete(self, owner_id: str, collection: Collection, entity_id: str) -> None:
        model = COLLECTION_ROWS[collection]
        async with self._db("delete") as db:
            await db.execute(
                delete(model).where(
                    model.id == entity_id, model.user_id == require_owner(owner_id)
                )
            )
            await db.commit()

    # ─── Singletons ─────────────────────────────────────

    async def get_singleton(self, owner_id: str, kind: Singleton) -> Optional[BaseModel]:
        model = SINGLETON_ROWS[kind]
        async with self._db("get_singleton") as db:
            result = await db.execute(
                select(model).where(model.user_id == require_owner(owner_id))
            )
            row = result.scalars().first()
            return _singleton_schema(kind, row) if row else None

    async def upsert_singleton(self, owner_id: str, kind: Singleton, data: BaseModel) -> None:
        model = SINGLETON_ROWS[kind]
        values = _singleton_values(kind, data)
        async with self._db("upsert_singleton") as db:
            result = await db.execute(
                select(model).where(model.user_id == require_owner(owner_id))
            )
            row = result.scalars().first()
            if row is None:
                db.add(model(user_id=owner_id, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await db.commit()

    async def aclose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


class SqlIdentityProvider(IdentityProvider):
    """Signs in against the identities table; session = JWT pair."""

    def __init__(self, storage: KeyValueStore, identities: IdentityService):
        super().__init__(storage)
        self.identities = identities

    @asynccontextmanager
    async def _guard(self, op: str) -> AsyncIterator[None]:
        try:
            yield
        except _DB_ERRORS as e:
            logger.error("identity.sql_failed", op=op, error=str(e))
            raise BackendError(f"Identity operation '{op}' failed", e) from e

    async def _signed_in(self, session: ProviderSession) -> ProviderSession:
        self.save_session(session)
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_IN, session))
        return session

    async def sign_up(self, email: str, password: str, name: str) -> ProviderSession:
        async with self._guard("sign_up"):
            session = await self.identities.create_identity(email, password)
        return await self._signed_in(session)

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        async with self._guard("sign_in"):
            session = await self.identities.authenticate(email, password)
        return await self._signed_in(session)

    async def get_session(self) -> Optional[ProviderSession]:
        stored = self.load_session()
        if stored is None:
            return None
        async with self._guard("get_session"):
            try:
                await self.identities.resolve_access_token(stored.access_token)
                return stored
            except SessionExpiredError:
                pass
            if stored.refresh_token:
                try:
                    refreshed = await self.identities.refresh(stored.refresh_token)
                except SessionExpiredError:
                    refreshed = None
                if refreshed is not None:
                    self.save_session(refreshed)
                    await self.events.publish(
                        AuthEvent(AuthEventType.TOKEN_REFRESHED, refreshed)
                    )
                    return refreshed
        logger.info("identity.session_expired", user_id=stored.user_id)
        self.forget_session()
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_OUT))
        return None

    async def sign_out(self) -> None:
        stored = self.load_session()
        self.forget_session()
        if stored is None:
            return
        try:
            async with self._guard("sign_out"):
                await self.identities.revoke(stored.user_id)
        finally:
            await publish_auth_event(stored.user_id, AuthEventType.SIGNED_OUT)
            await self.events.publish(AuthEvent(AuthEventType.SIGNED_OUT))


async def create_backend(settings: Settings, storage: KeyValueStore, **_: Any) -> Backend:
    engine = create_engine(settings.database_url, echo=settings.debug)
    if settings.environment == "development":
        try:
            await init_models(engine)
        except _DB_ERRORS as e:
            # Unreachable at startup: the session check degrades to logged-out
            logger.warning("sql_backend.schema_init_failed", error=str(e))
    factory = create_session_factory(engine)
    return Backend(
        name="sql",
        store=SqlEntityStore(factory, engine=engine),
        identity=SqlIdentityProvider(storage, IdentityService(factory, settings)),
    )
