"""Rest backend ("Provider B") — remote identity + data service over HTTP.

Learn: Talks to the provider service (cvbank.main) with httpx. Two headers
go out on every call: the client application's apikey, and, once signed
in, the bearer access token from the provider session. Data requests
always carry the owner filter as ?user_id=; the server rejects a filter
that doesn't match the token (except admin reads).

A 401 on a data call means the provider no longer honours our session
(expired, or signed out elsewhere): the provider session is dropped and
SIGNED_OUT is pushed to subscribers, so the session cache follows.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from cvbank.backends.base import (
    Backend,
    EntityStore,
    IdentityProvider,
    entity_payload,
    require_owner,
)
from cvbank.config import Settings
from cvbank.errors import (
    AuthError,
    BackendError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
)
from cvbank.realtime.events import AuthEvent, AuthEventType
from cvbank.schemas.collections import COLLECTIONS, SINGLETONS, Collection, Singleton
from cvbank.schemas.profile import User
from cvbank.schemas.session import ProviderSession
from cvbank.storage import KeyValueStore

logger = structlog.get_logger()


class RestIdentityProvider(IdentityProvider):
    def __init__(self, storage: KeyValueStore, http: httpx.AsyncClient):
        super().__init__(storage)
        self.http = http

    def auth_headers(self) -> dict[str, str]:
        session = self.load_session()
        return {"Authorization": f"Bearer {session.access_token}"} if session else {}

    async def _post(self, path: str, json: dict, headers: Optional[dict] = None) -> httpx.Response:
        try:
            return await self.http.post(path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("identity.http_failed", path=path, error=str(e))
            raise BackendError(f"Provider unreachable ({path})", e) from e

    def _session_from(self, response: httpx.Response) -> ProviderSession:
        try:
            return ProviderSession.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BackendError("Provider returned a malformed session", e) from e

    async def _signed_in(self, session: ProviderSession) -> ProviderSession:
        self.save_session(session)
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_IN, session))
        return session

    async def sign_up(self, email: str, password: str, name: str) -> ProviderSession:
        r = await self._post(
            "/auth/signup", {"email": email, "password": password, "name": name}
        )
        if r.status_code == 409:
            raise EmailAlreadyRegisteredError(email)
        if r.status_code in (400, 401, 422):
            raise AuthError(f"Sign up rejected ({r.status_code})")
        if not r.is_success:
            raise BackendError(f"Sign up failed with status {r.status_code}")
        return await self._signed_in(self._session_from(r))

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        r = await self._post("/auth/token", {"email": email, "password": password})
        if r.status_code in (400, 401, 422):
            raise InvalidCredentialsError("Invalid credentials")
        if not r.is_success:
            raise BackendError(f"Sign in failed with status {r.status_code}")
        return await self._signed_in(self._session_from(r))

    async def get_session(self) -> Optional[ProviderSession]:
        stored = self.load_session()
        if stored is None:
            return None
        try:
            r = await self.http.get("/auth/user", headers=self.auth_headers())
        except httpx.HTTPError as e:
            logger.warning("identity.http_failed", path="/auth/user", error=str(e))
            raise BackendError("Provider unreachable (/auth/user)", e) from e
        if r.is_success:
            return stored
        if r.status_code != 401:
            raise BackendError(f"Session check failed with status {r.status_code}")

        if stored.refresh_token:
            r = await self._post("/auth/refresh", {"refresh_token": stored.refresh_token})
            if r.is_success:
                refreshed = self._session_from(r)
                self.save_session(refreshed)
                await self.events.publish(AuthEvent(AuthEventType.TOKEN_REFRESHED, refreshed))
                return refreshed
            if r.status_code != 401:
                raise BackendError(f"Token refresh failed with status {r.status_code}")

        await self.session_rejected()
        return None

    async def sign_out(self) -> None:
        headers = self.auth_headers()
        if not headers:
            return
        self.forget_session()
        try:
            r = await self._post("/auth/logout", {}, headers=headers)
            if not r.is_success and r.status_code != 401:
                raise BackendError(f"Sign out failed with status {r.status_code}")
        finally:
            await self.events.publish(AuthEvent(AuthEventType.SIGNED_OUT))

    async def session_rejected(self) -> None:
        """The provider refused our token: drop it and announce the sign-out."""
        if self.load_session() is None:
            return
        logger.info("identity.session_rejected")
        self.forget_session()
        await self.events.publish(AuthEvent(AuthEventType.SIGNED_OUT))

    async def aclose(self) -> None:
        await self.http.aclose()


class RestEntityStore(EntityStore):
    def __init__(self, http: httpx.AsyncClient, identity: RestIdentityProvider):
        self.http = http
        self.identity = identity

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            r = await self.http.request(
                method, path, headers=self.identity.auth_headers(), **kwargs
            )
        except httpx.HTTPError as e:
            logger.warning("store.http_failed", method=method, path=path, error=str(e))
            raise BackendError(f"Provider unreachable ({method} {path})", e) from e
        if r.status_code == 401:
            await self.identity.session_rejected()
            raise BackendError("Provider rejected the session")
        return r

    @staticmethod
    def _ok(r: httpx.Response) -> httpx.Response:
        if not r.is_success:
            logger.warning("store.http_status", url=str(r.url), status=r.status_code)
            raise BackendError(f"Provider returned {r.status_code}")
        return r

    @staticmethod
    def _json(r: httpx.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise BackendError("Provider returned invalid JSON", e) from e

    @classmethod
    def _model(cls, schema: type[BaseModel], r: httpx.Response) -> BaseModel:
        return cls._validate(schema, cls._json(cls._ok(r)))

    @classmethod
    def _models(cls, schema: type[BaseModel], r: httpx.Response) -> list[BaseModel]:
        rows = cls._json(cls._ok(r))
        if not isinstance(rows, list):
            raise BackendError(f"Provider returned {type(rows).__name__}, expected a list")
        return [cls._validate(schema, row) for row in rows]

    @staticmethod
    def _validate(schema: type[BaseModel], data: Any) -> BaseModel:
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "store.malformed_response", schema=schema.__name__, errors=e.error_count()
            )
            raise BackendError(f"Provider returned a malformed {schema.__name__}", e) from e

    # ─── Users ──────────────────────────────────────────

    async def create_user(self, user: User) -> None:
        r = await self._request("POST", "/users", json={"name": user.name, "email": user.email})
        if r.status_code == 409:
            raise EmailAlreadyRegisteredError(user.email)
        self._ok(r)

    async def get_user(self, user_id: str) -> Optional[User]:
        r = await self._request("GET", f"/users/{user_id}")
        if r.status_code in (403, 404):
            return None
        return self._model(User, r)

    async def find_user_by_email(self, email: str) -> Optional[User]:
        r = await self._request("GET", "/users/lookup", params={"email": email.strip()})
        if r.status_code == 404:
            return None
        return self._model(User, r)

    async def list_users(self) -> list[User]:
        return self._models(User, await self._request("GET", "/users"))

    # ─── Collections ────────────────────────────────────

    async def create(self, owner_id: str, collection: Collection, data: BaseModel) -> str:
        r = await self._request(
            "POST",
            f"/records/{collection.value}",
            params={"user_id": require_owner(owner_id)},
            json=entity_payload(collection, data, mode="json"),
        )
        body = self._json(self._ok(r))
        if not isinstance(body, dict) or not isinstance(body.get("id"), str):
            raise BackendError("Provider did not return the new record id")
        return body["id"]

    async def read(self, owner_id: str, collection: Collection) -> list[BaseModel]:
        r = await self._request(
            "GET",
            f"/records/{collection.value}",
            params={"user_id": require_owner(owner_id)},
        )
        # Server already applies the collection order
        return self._models(COLLECTIONS[collection].read_schema, r)

    async def update(
        self, owner_id: str, collection: Collection, entity_id: str, data: BaseModel
    ) -> bool:
        r = await self._request(
            "PUT",
            f"/records/{collection.value}/{entity_id}",
            params={"user_id": require_owner(owner_id)},
            json=entity_payload(collection, data, mode="json"),
        )
        if r.status_code == 404:
            return False
        self._ok(r)
        return True

    async def delete(self, owner_id: str, collection: Collection, entity_id: str) -> None:
        r = await self._request(
            "DELETE",
            f"/records/{collection.value}/{entity_id}",
            params={"user_id": require_owner(owner_id)},
        )
        self._ok(r)

    # ─── Singletons ─────────────────────────────────────

    async def get_singleton(self, owner_id: str, kind: Singleton) -> Optional[BaseModel]:
        r = await self._request(
            "GET", f"/singletons/{kind.value}", params={"user_id": require_owner(owner_id)}
        )
        data = self._json(self._ok(r))
        return self._validate(SINGLETONS[kind], data) if data is not None else None

    async def upsert_singleton(self, owner_id: str, kind: Singleton, data: BaseModel) -> None:
        r = await self._request(
            "PUT",
            f"/singletons/{kind.value}",
            params={"user_id": require_owner(owner_id)},
            json=data.model_dump(mode="json"),
        )
        self._ok(r)


def create_backend(
    settings: Settings,
    storage: KeyValueStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **_: Any,
) -> Backend:
    http = httpx.AsyncClient(
        base_url=settings.remote_url.rstrip("/") + "/api/v1",
        headers={"apikey": settings.remote_api_key},
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    identity = RestIdentityProvider(storage, http)
    return Backend(name="rest", store=RestEntityStore(http, identity), identity=identity)
