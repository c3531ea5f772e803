from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from .chat_message import ChatMessage
from .chat_session import ChatSession
from .model_deployment import ModelDeployment

__all__ = [
    "Base",
    "ChatMessage",
    "ChatSession",
    "ModelDeployment",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
]
