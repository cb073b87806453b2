from .transcript import Pending, Confirmed, TranscriptEntry
from .aggregator import ConversationViewAggregator, Notification, FailedSend

__all__ = [
    "Pending",
    "Confirmed",
    "TranscriptEntry",
    "ConversationViewAggregator",
    "Notification",
    "FailedSend",
]
