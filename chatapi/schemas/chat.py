from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SessionCreateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200, description="会话标题")
    model_deployment_id: UUID | None = Field(
        default=None, description="绑定的模型部署；为空时使用当前默认部署"
    )


class SessionRenameRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)


class SendMessageRequest(BaseModel):
    session_id: UUID = Field(..., description="必须与路径中的会话 ID 一致")
    message: str | None = Field(default=None, description="用户输入的消息内容")


class ChatMessageResponse(BaseModel):
    id: UUID
    session_id: UUID
    content: str
    role: Literal["user", "assistant"]
    timestamp: datetime
    token_count: int

    model_config = ConfigDict(from_attributes=True)


class SessionSummaryResponse(BaseModel):
    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message: str | None = None
    model_deployment_id: UUID | None = None
    model_deployment_name: str | None = None


class SessionDetailResponse(SessionSummaryResponse):
    messages: list[ChatMessageResponse] = Field(default_factory=list)


__all__ = [
    "ChatMessageResponse",
    "SendMessageRequest",
    "SessionCreateRequest",
    "SessionDetailResponse",
    "SessionRenameRequest",
    "SessionSummaryResponse",
]
