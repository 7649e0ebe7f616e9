"""Auth gateway — keeps the session cache consistent with the provider.

Learn: The gateway is the only writer of the session cache. State machine
per process:

    Unauthenticated --login/register ok--> Authenticated{user_id, role}
    Authenticated --logout | SIGNED_OUT event | invalid check--> Unauthenticated

Every public method reports a plain outcome (True/False) and never lets
a provider or storage fault escape into UI code: bad credentials,
duplicate emails, unreachable providers and a storage that refuses the
cache write are all logged and turned into False, and for check_session,
into "logged out".

The role written to the cache always comes from the persisted User
record, looked up after the provider confirmed the identity.

Subscribers registered with on_auth_state_change() hear about every
change of the cache, whichever side caused it: provider-pushed events
once the cache has followed them, and the gateway's own login, register,
check_session and logout once they have written or cleared it. Provider
events that arrive while one of those calls is running are neither
applied nor delivered; the call reports the outcome itself.
"""

import inspect
from typing import Awaitable, Callable, Optional, Union

import structlog

from cvbank.backends.base import EntityStore, IdentityProvider
from cvbank.auth.session_cache import SessionCache
from cvbank.config import Settings
from cvbank.errors import (
    AuthError,
    CvBankError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
)
from cvbank.realtime.events import (
    AuthEvent,
    AuthEventBus,
    AuthEventType,
    LinkedSubscription,
    Subscription,
)
from cvbank.routing import LOGIN_PATH, Navigator
from cvbank.schemas.profile import User, UserRole
from cvbank.schemas.session import ProviderSession, SessionState

logger = structlog.get_logger()

AuthStateCallback = Callable[
    [AuthEvent, Optional[SessionState]], Union[None, Awaitable[None]]
]


class AuthGateway:
    def __init__(
        self,
        identity: IdentityProvider,
        store: EntityStore,
        cache: SessionCache,
        settings: Settings,
        navigator: Optional[Navigator] = None,
    ):
        self.identity = identity
        self.store = store
        self.cache = cache
        self.settings = settings
        self.navigator = navigator or Navigator()
        # Changes made by the gateway's own calls, for on_auth_state_change
        self.changes = AuthEventBus()
        # >0 while login/register/check_session/logout run; they own the cache meanwhile
        self._in_flight = 0

    # ─── Cache writes ─────────────────────────────────────

    def _write(self, session: ProviderSession, user: User) -> SessionState:
        """Cache the identity. Raises BackendError if storage refuses it."""
        state = SessionState(
            token=session.access_token,
            user_id=user.id,
            user_name=user.name,
            role=user.role,
        )
        self.cache.set(state)
        return state

    def _clear(self) -> bool:
        try:
            self.cache.clear()
        except CvBankError as e:
            logger.error("auth.cache_clear_failed", error=str(e))
            return False
        return True

    async def _announce(
        self, event_type: AuthEventType, session: Optional[ProviderSession] = None
    ) -> None:
        await self.changes.publish(AuthEvent(event_type, session))

    async def _commit(self, session: ProviderSession, user: User, event: str) -> bool:
        """Write the cache for a confirmed identity and tell subscribers."""
        try:
            self._write(session, user)
        except CvBankError as e:
            logger.error("auth.cache_write_failed", user_id=user.id, error=str(e))
            await self._abandon_provider_session()
            return False
        logger.info(event, user_id=user.id, role=user.role.value)
        await self._announce(AuthEventType.SIGNED_IN, session)
        return True

    def role_for_email(self, email: str) -> UserRole:
        """role=admin only for the reserved administrator email."""
        if email.strip().lower() == self.settings.admin_email.strip().lower():
            return UserRole.ADMIN
        return UserRole.USER

    async def _abandon_provider_session(self) -> None:
        try:
            await self.identity.sign_out()
        except CvBankError as e:
            logger.warning("auth.sign_out_failed", error=str(e))

    # ─── Login / register ─────────────────────────────────

    async def login(self, email: str, password: str) -> bool:
        """Sign in and cache the identity. Cache untouched on failure."""
        self._in_flight += 1
        try:
            return await self._login(email, password)
        finally:
            self._in_flight -= 1

    async def _login(self, email: str, password: str) -> bool:
        try:
            session = await self.identity.sign_in(email.strip(), password)
            user = await self.store.get_user(session.user_id)
        except AuthError as e:
            logger.info("auth.login_rejected", email=email, reason=type(e).__name__)
            return False
        except CvBankError as e:
            logger.warning("auth.login_failed", email=email, error=str(e))
            return False

        if user is None:
            logger.warning("auth.login_user_missing", user_id=session.user_id)
            await self._abandon_provider_session()
            return False

        return await self._commit(session, user, "auth.logged_in")

    async def register(self, name: str, email: str, password: str) -> bool:
        """Create the identity + user record, then behave as login."""
        self._in_flight += 1
        try:
            return await self._register(name, email, password)
        finally:
            self._in_flight -= 1

    async def _sign_up(self, email: str, password: str, name: str) -> ProviderSession:
        """Create the identity, or resume one left without a user record.

        An identity without a user record is what a registration that
        failed after sign-up leaves behind. Whoever knows its password
        may finish that registration; anyone else gets the duplicate error.
        """
        try:
            return await self.identity.sign_up(email, password, name)
        except EmailAlreadyRegisteredError:
            try:
                session = await self.identity.sign_in(email, password)
            except InvalidCredentialsError:
                raise EmailAlreadyRegisteredError(email) from None
            logger.info("auth.register_resumed", user_id=session.user_id)
            return session

    async def _register(self, name: str, email: str, password: str) -> bool:
        name, email = name.strip(), email.strip()
        if not name or not email or not password:
            logger.info("auth.register_invalid", email=email)
            return False

        try:
            if await self.store.find_user_by_email(email) is not None:
                logger.info("auth.register_duplicate", email=email)
                return False
            session = await self._sign_up(email, password, name)
        except EmailAlreadyRegisteredError:
            logger.info("auth.register_duplicate", email=email)
            return False
        except CvBankError as e:
            logger.warning("auth.register_failed", email=email, error=str(e))
            return False

        try:
            await self.store.create_user(
                User(id=session.user_id, name=name, email=email, role=self.role_for_email(email))
            )
            user = await self.store.get_user(session.user_id)
        except CvBankError as e:
            logger.error("auth.register_user_record_failed", email=email, error=str(e))
            await self._abandon_provider_session()
            return False
        if user is None:
            await self._abandon_provider_session()
            return False

        return await self._commit(session, user, "auth.registered")

    # ─── Session check / logout ───────────────────────────

    async def check_session(self) -> bool:
        """Repopulate the cache from the provider's session, or clear it."""
        self._in_flight += 1
        try:
            return await self._check_session()
        finally:
            self._in_flight -= 1

    async def _check_session(self) -> bool:
        try:
            session = await self.identity.get_session()
            user = await self.store.get_user(session.user_id) if session else None
        except CvBankError as e:
            logger.warning("auth.session_check_failed", error=str(e))
            session = user = None

        if session is None or user is None:
            self._clear()
            await self._announce(AuthEventType.SIGNED_OUT)
            return False

        try:
            self._write(session, user)
        except CvBankError as e:
            logger.error("auth.cache_write_failed", user_id=user.id, error=str(e))
            self._clear()
            await self._announce(AuthEventType.SIGNED_OUT)
            return False
        await self._announce(AuthEventType.SIGNED_IN, session)
        return True

    async def logout(self) -> None:
        """Revoke the provider session, clear the cache, go to /login."""
        self._in_flight += 1
        try:
            await self.identity.sign_out()
        except CvBankError as e:
            logger.warning("auth.sign_out_failed", error=str(e))
        finally:
            self._in_flight -= 1
            self._clear()
            self.navigator.navigate(LOGIN_PATH)
        await self._announce(AuthEventType.SIGNED_OUT)

    # ─── Provider-pushed changes ──────────────────────────

    async def _sync(self, event: AuthEvent) -> None:
        if event.type == AuthEventType.SIGNED_OUT:
            if self.cache.is_authenticated():
                logger.info("auth.signed_out_remotely")
            self._clear()
            return

        session = event.session
        if session is None:
            return
        current = self.cache.get()
        if current is not None and current.user_id == session.user_id:
            # Same identity: only the handle changes, never the role
            if current.token != session.access_token:
                self.cache.set(current.model_copy(update={"token": session.access_token}))
            return

        try:
            user = await self.store.get_user(session.user_id)
        except CvBankError as e:
            logger.warning("auth.sync_failed", error=str(e))
            user = None
        if user is None:
            self._clear()
        else:
            self._write(session, user)

    def on_auth_state_change(self, callback: Optional[AuthStateCallback] = None) -> Subscription:
        """Keep the cache in step with provider events; optionally notify.

        callback(event, state) runs after the cache was updated, with the
        state now cached. The returned Subscription must be unsubscribed
        on teardown.
        """

        async def notify(event: AuthEvent) -> None:
            result = callback(event, self.cache.get())
            if inspect.isawaitable(result):
                await result

        async def follow_provider(event: AuthEvent) -> None:
            if self._in_flight:
                return
            try:
                await self._sync(event)
            except CvBankError as e:
                logger.error("auth.sync_failed", event_type=event.type.value, error=str(e))
            if callback is not None:
                await notify(event)

        provider_side = self.identity.subscribe(follow_provider)
        if callback is None:
            return provider_side
        return LinkedSubscription(provider_side, self.changes.subscribe(notify))
