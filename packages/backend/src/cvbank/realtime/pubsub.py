"""Redis pub/sub — auth events between processes.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine here: a process that misses a sign-out still finds the
session invalid at its next check_session(). Channel naming:
cvbank:auth:{user_id}, so each process only listens for its own user.

Redis is optional: with no CVBANK_REDIS_URL the relay is simply not started.
"""

import asyncio
import json
from typing import Optional

import redis.asyncio as aioredis
import structlog

from cvbank.realtime.events import AuthEvent, AuthEventBus, AuthEventType

logger = structlog.get_logger()

# Global Redis connection pool (initialized by the app context / server lifespan)
_redis: Optional[aioredis.Redis] = None


def channel_for(user_id: str) -> str:
    return f"cvbank:auth:{user_id}"


async def init_redis(url: str) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> Optional[aioredis.Redis]:
    """Get the Redis connection, or None when Redis isn't configured."""
    return _redis


async def publish_auth_event(user_id: str, event_type: AuthEventType) -> None:
    """Broadcast an auth event for a user to every listening process.

    Failures are logged and swallowed: the broadcast is best-effort.
    """
    r = get_redis()
    if r is None:
        return
    payload = json.dumps({"type": event_type.value, "user_id": user_id})
    try:
        await r.publish(channel_for(user_id), payload)
    except Exception as e:
        logger.warning("pubsub.publish_failed", user_id=user_id, error=str(e))


class AuthEventRelay:
    """Forwards Redis auth messages for one user onto the local event bus."""

    def __init__(self, redis: aioredis.Redis, bus: AuthEventBus):
        self.redis = redis
        self.bus = bus
        self._task: Optional[asyncio.Task] = None
        self._user_id: Optional[str] = None

    @property
    def following(self) -> Optional[str]:
        """The user whose channel is being listened on, if any."""
        return self._user_id if self._task is not None else None

    async def follow(self, user_id: Optional[str]) -> None:
        """Listen on the channel of user_id (None stops listening)."""
        if user_id == self._user_id and self._task is not None:
            return
        await self.stop()
        self._user_id = user_id
        if user_id:
            self._task = asyncio.create_task(self._listen(user_id))

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._user_id = None
        if task is None:
            return
        task.cancel()
        if task is asyncio.current_task():
            # Stopped by a callback of its own message; the cancel lands
            # at the listener's next await
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _listen(self, user_id: str) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_for(user_id))
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                    event_type = AuthEventType(data["type"])
                except (ValueError, KeyError, TypeError):
                    logger.warning("pubsub.bad_message", data=message.get("data"))
                    continue
                if event_type == AuthEventType.SIGNED_OUT:
                    await self.bus.publish(AuthEvent(AuthEventType.SIGNED_OUT))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("pubsub.listener_failed", user_id=user_id, error=str(e))
        finally:
            await pubsub.unsubscribe(channel_for(user_id))
            await pubsub.aclose()
