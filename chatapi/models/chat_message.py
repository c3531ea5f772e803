from __future__ import annotations

import datetime as dt
from uuid import UUID as PyUUID

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, relationship

from .base import Base, UUIDPrimaryKeyMixin, utcnow

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
MESSAGE_ROLES = (ROLE_USER, ROLE_ASSISTANT)


class ChatMessage(UUIDPrimaryKeyMixin, Base):
    """会话中的一轮消息，role 只能是 user / assistant。"""

    __tablename__ = "chat_messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_chat_messages_role"),
    )

    session_id: Mapped[PyUUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = Column(Text, nullable=False)
    role: Mapped[str] = Column(String(20), nullable=False)
    timestamp: Mapped[dt.datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
    token_count: Mapped[int] = Column(Integer, nullable=False, default=0)
    user_id: Mapped[str | None] = Column(String(50), nullable=True, index=True)

    session = relationship("ChatSession", back_populates="messages")


__all__ = ["ChatMessage", "MESSAGE_ROLES", "ROLE_ASSISTANT", "ROLE_USER"]
