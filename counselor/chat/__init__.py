# counselor/chat/__init__.py
from .schema import StoredConversationRecord, StoredMessage, RecordStatus, SettingFormData
from .state import ChatRole, TurnStatus, ChatTurn, MessageStore, AssistantReply

__all__ = [
    "StoredConversationRecord",
    "StoredMessage",
    "RecordStatus",
    "SettingFormData",
    "ChatRole",
    "TurnStatus",
    "ChatTurn",
    "MessageStore",
    "AssistantReply",
]
