import asyncio
import uuid

import pytest
from fakeredis import FakeAsyncRedis

from messaging_core.database.types import utcnow
from messaging_core.realtime.bus import RedisEventBus
from messaging_core.realtime.events import (
    MessageDeleted,
    MessageInserted,
    ParticipantAdded,
    conversation_topic,
    user_topic,
)

PREFIX = "test-messaging:"


def inserted(conversation_id, n=0) -> MessageInserted:
    return MessageInserted(
        conversation_id=conversation_id,
        message_id=uuid.UUID(int=n + 1),
        sender_id=uuid.uuid4(),
        created_at=utcnow(),
    )


async def eventually(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


async def subscriber_count(client, topic: str) -> int:
    ((_, count),) = await client.pubsub_numsub(f"{PREFIX}{topic}")
    return count


@pytest.fixture
async def redis_client():
    return FakeAsyncRedis(decode_responses=True)


@pytest.fixture
async def redis_bus(redis_client):
    bus = RedisEventBus(redis_client, channel_prefix=PREFIX)
    yield bus
    listeners = [t for t in asyncio.all_tasks() if t.get_name().startswith("bus:")]
    for task in listeners:
        task.cancel()
    await asyncio.gather(*listeners, return_exceptions=True)
    await bus.close()


@pytest.mark.asyncio
class TestRedisEventBus:

    async def test_delivers_in_publish_order(self, redis_bus):
        """
        Behavior:
                - Events published on one topic arrive decoded, equal to what was
                  published and in publish order.
        """
        conversation_id = uuid.uuid4()
        received = []

        async def handler(event):
            received.append(event)

        await redis_bus.subscribe(conversation_topic(conversation_id), handler)
        events = [inserted(conversation_id, n) for n in range(5)]
        events.append(MessageDeleted(conversation_id=conversation_id, message_id=events[0].message_id))
        for event in events:
            await redis_bus.publish(event)

        await eventually(lambda: len(received) == len(events))
        assert received == events
        assert isinstance(received[-1], MessageDeleted)

    async def test_topics_are_isolated(self, redis_bus):
        mine, other = uuid.uuid4(), uuid.uuid4()
        user_id = uuid.uuid4()
        conversation_events, user_events = [], []

        async def on_conversation(event):
            conversation_events.append(event)

        async def on_user(event):
            user_events.append(event)

        await redis_bus.subscribe(conversation_topic(mine), on_conversation)
        await redis_bus.subscribe(user_topic(user_id), on_user)
        await redis_bus.publish(inserted(other))
        await redis_bus.publish(ParticipantAdded(conversation_id=mine, user_id=user_id))
        await redis_bus.publish(inserted(mine))

        await eventually(lambda: conversation_events and user_events)
        assert [e.conversation_id for e in conversation_events] == [mine]
        assert [type(e) for e in user_events] == [ParticipantAdded]

    async def test_malformed_payload_is_discarded(self, redis_bus, redis_client, caplog):
        """
        Behavior:
                - Garbage and unknown event types on the channel are logged and
                  skipped; the next valid event is still delivered.
        """
        conversation_id = uuid.uuid4()
        topic = conversation_topic(conversation_id)
        received = []

        async def handler(event):
            received.append(event)

        await redis_bus.subscribe(topic, handler)

        with caplog.at_level("WARNING", logger="messaging_core"):
            await redis_client.publish(f"{PREFIX}{topic}", "not json")
            await redis_client.publish(f"{PREFIX}{topic}", '{"type": "typing_started"}')
            await redis_bus.publish(inserted(conversation_id, 7))
            await eventually(lambda: received)

        assert [e.message_id for e in received] == [uuid.UUID(int=8)]
        malformed = [r for r in caplog.records if r.getMessage() == "bus.malformed_event"]
        assert len(malformed) == 2

    async def test_handler_failure_keeps_the_listener_alive(self, redis_bus, caplog):
        conversation_id = uuid.uuid4()
        received = []

        async def flaky_handler(event):
            received.append(event.message_id)
            if len(received) == 1:
                raise RuntimeError("boom")

        await redis_bus.subscribe(conversation_topic(conversation_id), flaky_handler)

        with caplog.at_level("ERROR", logger="messaging_core"):
            await redis_bus.publish(inserted(conversation_id, 1))
            await redis_bus.publish(inserted(conversation_id, 2))
            await eventually(lambda: len(received) == 2)

        assert any(r.getMessage() == "bus.handler_failed" for r in caplog.records)

    async def test_close_unsubscribes_and_stops_delivery(self, redis_bus, redis_client):
        """
        Behavior:
                - close() is idempotent, releases the channel subscription and no
                  event published afterwards reaches the handler.
        """
        conversation_id = uuid.uuid4()
        topic = conversation_topic(conversation_id)
        received = []

        async def handler(event):
            received.append(event)

        subscription = await redis_bus.subscribe(topic, handler)
        assert await subscriber_count(redis_client, topic) == 1

        subscription.close()
        subscription.close()
        assert subscription.closed is True

        async def _unsubscribed():
            while await subscriber_count(redis_client, topic):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_unsubscribed(), 2.0)
        await redis_bus.publish(inserted(conversation_id))
        await asyncio.sleep(0.05)

        assert received == []

    async def test_ping(self, redis_bus):
        assert await redis_bus.ping() is True
