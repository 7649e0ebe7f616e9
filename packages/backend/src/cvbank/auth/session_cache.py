"""Session cache — the locally persisted identity + role.

Learn: The cache is the single answer to "who is the current user and
what may they do". It is kept in durable storage so it survives a
restart, and it is independent of the provider's own session object.

- get() never raises: a missing, corrupt or half-empty value is Empty
- set() and clear() raise BackendError (never OSError) on storage faults
- set() replaces the whole value in one write, so the very next get()
  sees either the old state or the new one, never a mix
- is_authenticated() / is_admin() are synchronous and side-effect free;
  the access guard calls them on every navigation

Only the auth gateway writes the cache. Everything else gets a
SessionReader (cache.reader()) with the read half of the API.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from cvbank.errors import BackendError, NotAuthenticatedError
from cvbank.schemas.session import SessionState
from cvbank.storage import KeyValueStore

logger = structlog.get_logger()

AUTH_KEY = "cv_bank_auth"
DEFAULT_USER_NAME = "User"


class SessionReader:
    """Read-only view over a SessionCache."""

    def __init__(self, cache: "SessionCache"):
        self._cache = cache

    def get(self) -> Optional[SessionState]:
        return self._cache.get()

    def is_authenticated(self) -> bool:
        return self._cache.is_authenticated()

    def is_admin(self) -> bool:
        return self._cache.is_admin()

    def current_user_id(self) -> str:
        return self._cache.current_user_id()

    def user_name(self) -> str:
        return self._cache.user_name()


class SessionCache:
    def __init__(self, storage: KeyValueStore, key: str = AUTH_KEY):
        self.storage = storage
        self.key = key

    def get(self) -> Optional[SessionState]:
        data = self.storage.read_json(self.key)
        if not isinstance(data, dict):
            return None
        try:
            state = SessionState.model_validate(data)
        except ValidationError:
            return None
        return state if state.token else None

    def set(self, state: SessionState) -> None:
        """Raises BackendError when durable storage refuses the write."""
        try:
            self.storage.write_json(self.key, state.model_dump(mode="json"))
        except OSError as e:
            logger.error("session_cache.write_failed", error=str(e))
            raise BackendError("Could not persist the session", e)

    def clear(self) -> None:
        try:
            self.storage.remove(self.key)
        except OSError as e:
            logger.error("session_cache.clear_failed", error=str(e))
            raise BackendError("Could not clear the session", e)

    def is_authenticated(self) -> bool:
        return self.get() is not None

    def is_admin(self) -> bool:
        state = self.get()
        return state is not None and state.is_admin

    def current_user_id(self) -> str:
        """The cached user id. Raises NotAuthenticatedError when Empty."""
        state = self.get()
        if state is None:
            raise NotAuthenticatedError("No user is signed in")
        return state.user_id

    def user_name(self) -> str:
        state = self.get()
        return state.user_name if state and state.user_name else DEFAULT_USER_NAME

    def reader(self) -> SessionReader:
        return SessionReader(self)
