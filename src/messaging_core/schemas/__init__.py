from .messaging import (
    MessageView,
    MessagePreview,
    ParticipantView,
    ConversationDetail,
    ConversationSummary,
    ReadReceipt,
    CreateConversationRequest,
    SendMessageRequest,
    ConversationRef,
)

__all__ = [
    "MessageView",
    "MessagePreview",
    "ParticipantView",
    "ConversationDetail",
    "ConversationSummary",
    "ReadReceipt",
    "CreateConversationRequest",
    "SendMessageRequest",
    "ConversationRef",
]
