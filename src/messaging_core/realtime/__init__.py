from .events import (
    MessageInserted,
    MessageDeleted,
    ParticipantAdded,
    conversation_topic,
    user_topic,
    parse_topic,
    parse_event,
)
from .bus import (
    BusEvent,
    EventBus,
    EventHandler,
    Subscription,
    InProcessEventBus,
    RedisEventBus,
    build_event_bus,
)

__all__ = [
    "MessageInserted",
    "MessageDeleted",
    "ParticipantAdded",
    "conversation_topic",
    "user_topic",
    "parse_topic",
    "parse_event",
    "BusEvent",
    "EventBus",
    "EventHandler",
    "Subscription",
    "InProcessEventBus",
    "RedisEventBus",
    "build_event_bus",
]
