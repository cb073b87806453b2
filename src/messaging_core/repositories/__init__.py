"""
Repository layer initialization module.

Usage:
    from messaging_core.repositories import ConversationRepository, MessageRepository
"""

from .base_repository import BaseRepository
from .conversation_repository import ConversationRepository, ConversationSummaryRow
from .message_repository import MessageRepository

__all__ = [
    "BaseRepository",
    "ConversationRepository",
    "ConversationSummaryRow",
    "MessageRepository",
]
