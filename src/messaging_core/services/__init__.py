from .conversation_directory import ConversationDirectory, ConversationHandle
from .message_store import MessageStore, DeletedMessage
from .messaging_service import MessagingService

__all__ = [
    "ConversationDirectory",
    "ConversationHandle",
    "MessageStore",
    "DeletedMessage",
    "MessagingService",
]
