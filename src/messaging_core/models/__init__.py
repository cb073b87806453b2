"""
Centralized access to all database models of the messaging core.

Importing this package registers every model with Base.metadata, so
`Base.metadata.create_all` and relationship string references resolve.

    from messaging_core.models import Conversation, ConversationParticipant, Message, MessageKind
"""

from .conversation import Conversation, make_pair_key
from .participant import ConversationParticipant
from .message import Message, MessageKind

__all__ = [
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageKind",
    "make_pair_key",
]
