"""In-process auth event bus (observer pattern).

Learn: subscribe() returns a Subscription; the caller owns it and must
call unsubscribe() on teardown, otherwise the callback keeps acting on
state that no longer matters. Unsubscribing twice is harmless.
"""

import enum
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

import structlog

from cvbank.schemas.session import ProviderSession

logger = structlog.get_logger()


class AuthEventType(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass
class AuthEvent:
    type: AuthEventType
    session: Optional[ProviderSession] = None


AuthCallback = Callable[[AuthEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop delivery."""

    def __init__(self, bus: "AuthEventBus", callback: AuthCallback):
        self._bus = bus
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self._callback)
            self.active = False


class LinkedSubscription(Subscription):
    """Several subscriptions released by one unsubscribe()."""

    def __init__(self, *parts: Subscription):
        self._parts = parts
        self.active = True

    def unsubscribe(self) -> None:
        for part in self._parts:
            part.unsubscribe()
        self.active = False


class AuthEventBus:
    """Fan-out of provider-pushed auth events to registered callbacks."""

    def __init__(self):
        self._callbacks: list[AuthCallback] = []

    def subscribe(self, callback: AuthCallback) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: AuthCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    async def publish(self, event: AuthEvent) -> None:
        """Deliver to every current subscriber, in subscription order.

        A failing callback is logged and does not stop delivery to the rest.
        """
        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "auth_events.callback_failed",
                    event_type=event.type.value,
                    error=str(e),
                )
