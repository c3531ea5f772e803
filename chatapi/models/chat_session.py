from __future__ import annotations

from uuid import UUID as PyUUID

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ChatSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """会话线程：标题 + 按时间排序的消息 + 可选绑定的模型部署。"""

    __tablename__ = "chat_sessions"
    __table_args__ = (Index("ix_chat_sessions_created_at", "created_at"),)

    title: Mapped[str] = Column(String(200), nullable=False)
    user_id: Mapped[str | None] = Column(String(50), nullable=True, index=True)
    model_deployment_id: Mapped[PyUUID | None] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("model_deployments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessage.timestamp",
    )
    model_deployment = relationship("ModelDeployment", lazy="joined")


__all__ = ["ChatSession"]
