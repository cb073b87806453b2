"""
Realtime event bus.

Two implementations of one small interface:

  - InProcessEventBus: asyncio queues inside a single process (development, tests,
    single-instance deployments).
  - RedisEventBus: Redis pub/sub, so every backend instance sees every event.

Delivery contract (both implementations):
  - push-based, ordered per subscription/topic, no cross-topic ordering;
  - a subscription lives as long as the viewing session and is closed synchronously
    with `Subscription.close()`; nothing is replayed after a reconnect;
  - handler exceptions are logged and never propagate back to the publisher.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Awaitable, Callable

from pydantic import ValidationError
import redis.asyncio as redis

from messaging_core.config.settings import Settings
from .events import MessageInserted, MessageDeleted, ParticipantAdded, parse_event

logger = logging.getLogger(__name__)

BusEvent = MessageInserted | MessageDeleted | ParticipantAdded
EventHandler = Callable[[BusEvent], Awaitable[None]]


class Subscription(ABC):
    """Handle returned by `EventBus.subscribe()`."""

    topic: str

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop delivery immediately; safe to call more than once."""


class EventBus(ABC):

    @abstractmethod
    async def publish(self, event: BusEvent) -> None:
        ...

    @abstractmethod
    async def subscribe(self, topic: str, handler: EventHandler) -> Subscription:
        ...

    async def close(self) -> None:
        return None


async def _deliver(topic: str, handler: EventHandler, event: BusEvent) -> None:
    try:
        await handler(event)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("bus.handler_failed", extra={"topic": topic, "event_type": event.type})


# =================================================================================================================
# In-process bus
# =================================================================================================================

class _LocalSubscription(Subscription):
    """One queue + one dispatcher task; the queue preserves publish order."""

    def __init__(self, bus: "InProcessEventBus", topic: str, handler: EventHandler, queue_size: int):
        self.topic = topic
        self._bus = bus
        self._handler = handler
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.dropped = 0
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"bus:{topic}")

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: BusEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # The session falls back to re-fetching; dropping keeps publishers non-blocking.
            self.dropped += 1
            logger.warning("bus.subscription_overflow", extra={"topic": self.topic, "dropped": self.dropped})

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await _deliver(self.topic, self._handler, event)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._discard(self)
        self._task.cancel()
        # Nobody will consume what is left; unblock anyone waiting in join().
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class InProcessEventBus(EventBus):
    """
    Event bus for a single process.

    Usage:
        bus = InProcessEventBus()
        sub = await bus.subscribe(conversation_topic(cid), on_event)
        await bus.publish(MessageInserted(...))
        sub.close()
    """

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: dict[str, set[_LocalSubscription]] = defaultdict(set)

    async def publish(self, event: BusEvent) -> None:
        subscribers = list(self._subscriptions.get(event.topic, ()))
        for subscription in subscribers:
            subscription.offer(event)
        logger.debug("bus.published", extra={"topic": event.topic, "event_type": event.type, "subscribers": len(subscribers)})

    async def subscribe(self, topic: str, handler: EventHandler) -> Subscription:
        subscription = _LocalSubscription(self, topic, handler, self._queue_size)
        self._subscriptions[topic].add(subscription)
        logger.debug("bus.subscribed", extra={"topic": topic})
        return subscription

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    async def drain(self) -> None:
        """Wait until every event published so far has been handled."""
        subscriptions = [s for subs in self._subscriptions.values() for s in subs]
        await asyncio.gather(*(s.join() for s in subscriptions))

    async def close(self) -> None:
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                subscription.close()

    def _discard(self, subscription: _LocalSubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.topic)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.topic]


# =================================================================================================================
# Redis bus
# =================================================================================================================

class _RedisSubscription(Subscription):

    def __init__(self, topic: str, channel: str, pubsub, handler: EventHandler):
        self.topic = topic
        self._channel = channel
        self._pubsub = pubsub
        self._handler = handler
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"bus:{topic}")

    @property
    def closed(self) -> bool:
        return self._closed

    async def _run(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = parse_event(message["data"])
                except ValidationError:
                    logger.warning("bus.malformed_event", extra={"topic": self.topic})
                    continue
                await _deliver(self.topic, self._handler, event)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Connection lost: the session recovers by re-fetching, not by replay.
            logger.exception("bus.redis_listener_failed", extra={"topic": self.topic})
        finally:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.aclose()
            except Exception:
                logger.debug("bus.redis_unsubscribe_failed", exc_info=True, extra={"topic": self.topic})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()


class RedisEventBus(EventBus):
    """
    Event bus over Redis pub/sub; one pubsub connection per subscription.
    """

    def __init__(self, client: "redis.Redis", channel_prefix: str = "messaging:"):
        self._redis = client
        self._prefix = channel_prefix

    @classmethod
    def from_url(cls, url: str, channel_prefix: str = "messaging:") -> "RedisEventBus":
        return cls(redis.from_url(url, decode_responses=True), channel_prefix=channel_prefix)

    def _channel(self, topic: str) -> str:
        return f"{self._prefix}{topic}"

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def publish(self, event: BusEvent) -> None:
        receivers = await self._redis.publish(self._channel(event.topic), event.model_dump_json())
        logger.debug("bus.published", extra={"topic": event.topic, "event_type": event.type, "subscribers": receivers})

    async def subscribe(self, topic: str, handler: EventHandler) -> Subscription:
        channel = self._channel(topic)
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        logger.debug("bus.subscribed", extra={"topic": topic})
        return _RedisSubscription(topic, channel, pubsub, handler)

    async def close(self) -> None:
        await self._redis.aclose()


def build_event_bus(settings: Settings) -> EventBus:
    """Redis when REDIS_URL is configured, otherwise the in-process bus."""
    if settings.REDIS_URL:
        logger.info("bus.backend", extra={"backend": "redis"})
        return RedisEventBus.from_url(settings.REDIS_URL)
    logger.info("bus.backend", extra={"backend": "in_process"})
    return InProcessEventBus(queue_size=settings.EVENT_QUEUE_SIZE)
