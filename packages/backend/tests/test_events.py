"""Auth event bus tests (observer pattern)."""

import pytest

from cvbank.realtime.events import AuthEvent, AuthEventBus, AuthEventType
from cvbank.realtime.pubsub import channel_for


@pytest.mark.asyncio
async def test_publish_reaches_sync_and_async_callbacks():
    bus = AuthEventBus()
    seen = []

    async def async_cb(event):
        seen.append(("async", event.type))

    bus.subscribe(lambda event: seen.append(("sync", event.type)))
    bus.subscribe(async_cb)
    await bus.publish(AuthEvent(AuthEventType.SIGNED_IN))

    assert seen == [("sync", AuthEventType.SIGNED_IN), ("async", AuthEventType.SIGNED_IN)]


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_others():
    bus = AuthEventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(lambda event: seen.append(event.type))
    await bus.publish(AuthEvent(AuthEventType.SIGNED_OUT))
    assert seen == [AuthEventType.SIGNED_OUT]


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = AuthEventBus()
    seen = []
    subscription = bus.subscribe(lambda event: seen.append(event.type))
    assert bus.subscriber_count == 1

    subscription.unsubscribe()
    subscription.unsubscribe()
    assert subscription.active is False
    assert bus.subscriber_count == 0

    await bus.publish(AuthEvent(AuthEventType.SIGNED_OUT))
    assert seen == []


@pytest.mark.asyncio
async def test_callback_may_unsubscribe_during_publish():
    bus = AuthEventBus()
    seen = []
    subscription = None

    def once(event):
        seen.append(event.type)
        subscription.unsubscribe()

    subscription = bus.subscribe(once)
    await bus.publish(AuthEvent(AuthEventType.SIGNED_IN))
    await bus.publish(AuthEvent(AuthEventType.SIGNED_IN))
    assert seen == [AuthEventType.SIGNED_IN]


def test_redis_channel_per_user():
    assert channel_for("u-1") == "cvbank:auth:u-1"
