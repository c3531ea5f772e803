from __future__ import annotations

import math
from typing import Iterable, List, Sequence
from uuid import UUID

import httpx
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from chatapi.logging_config import logger
from chatapi.models import ChatMessage, ChatSession, ModelDeployment
from chatapi.models.base import utcnow
from chatapi.models.chat_message import MESSAGE_ROLES, ROLE_ASSISTANT, ROLE_USER
from chatapi.provider import model_client
from chatapi.schemas import ChatMessageResponse, SessionDetailResponse, SessionSummaryResponse
from chatapi.services.deployment_service import (
    DeploymentNotFoundError,
    get_default_deployment,
    get_deployment,
)
from chatapi.settings import settings

NEW_CHAT_TITLE = "New Chat"
UNTITLED_CHAT_TITLE = "Untitled Chat"
FALLBACK_REPLY = "I apologize, but I couldn't generate a response."


class ChatServiceError(RuntimeError):
    """Base error for chat session operations."""


class ChatSessionNotFoundError(ChatServiceError):
    """Raised when a session does not exist or is not owned by the caller."""


class NoDeploymentAvailableError(ChatServiceError):
    """Raised when neither the session nor the registry provides a deployment."""


def estimate_token_count(text: str) -> int:
    """按 UTF-16 码元长度粗略估算 token：ceil(len / 4)，BMP 以外的字符计为 2。"""
    return math.ceil(len(text.encode("utf-16-le")) // 2 / 4)


def _session_stmt(session_id: UUID, user_id: str | None) -> Select[tuple[ChatSession]]:
    stmt: Select[tuple[ChatSession]] = select(ChatSession).where(ChatSession.id == session_id)
    if user_id is not None:
        stmt = stmt.where(ChatSession.user_id == user_id)
    return stmt


def _get_owned_session(
    db: Session,
    session_id: UUID,
    user_id: str | None,
    *,
    with_messages: bool = False,
) -> ChatSession:
    stmt = _session_stmt(session_id, user_id)
    if with_messages:
        stmt = stmt.options(selectinload(ChatSession.messages))
    chat_session = db.execute(stmt).scalars().first()
    if chat_session is None:
        raise ChatSessionNotFoundError(f"Session {session_id} not found")
    return chat_session


def _summary(
    chat_session: ChatSession,
    *,
    message_count: int,
    last_message: str | None,
) -> SessionSummaryResponse:
    deployment = chat_session.model_deployment
    return SessionSummaryResponse(
        id=chat_session.id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
        message_count=message_count,
        last_message=last_message,
        model_deployment_id=chat_session.model_deployment_id,
        model_deployment_name=deployment.name if deployment is not None else None,
    )


def _summary_from_loaded(chat_session: ChatSession) -> SessionSummaryResponse:
    messages = chat_session.messages
    return _summary(
        chat_session,
        message_count=len(messages),
        last_message=messages[-1].content if messages else None,
    )


def list_sessions(db: Session, user_id: str | None = None) -> List[SessionSummaryResponse]:
    counts = (
        select(ChatMessage.session_id, func.count(ChatMessage.id).label("message_count"))
        .group_by(ChatMessage.session_id)
        .subquery()
    )
    last_message = (
        select(ChatMessage.content)
        .where(ChatMessage.session_id == ChatSession.id)
        .order_by(ChatMessage.timestamp.desc())
        .limit(1)
        .correlate(ChatSession)
        .scalar_subquery()
    )
    stmt = (
        select(ChatSession, func.coalesce(counts.c.message_count, 0), last_message)
        .outerjoin(counts, counts.c.session_id == ChatSession.id)
        .order_by(ChatSession.updated_at.desc())
    )
    if user_id is not None:
        stmt = stmt.where(ChatSession.user_id == user_id)

    return [
        _summary(chat_session, message_count=int(count), last_message=last)
        for chat_session, count, last in db.execute(stmt).all()
    ]


def get_session_detail(
    db: Session,
    session_id: UUID,
    user_id: str | None = None,
) -> SessionDetailResponse:
    chat_session = _get_owned_session(db, session_id, user_id, with_messages=True)
    summary = _summary_from_loaded(chat_session)
    return SessionDetailResponse(
        **summary.model_dump(),
        messages=[ChatMessageResponse.model_validate(m) for m in chat_session.messages],
    )


def create_session(
    db: Session,
    title: str | None,
    deployment_id: UUID | None = None,
    user_id: str | None = None,
) -> SessionSummaryResponse:
    """
    创建会话。标题为空时使用 "New Chat"；未指定部署时绑定当前默认部署
    （没有默认部署则保持为空）。
    """
    if deployment_id is not None:
        # 不存在的部署直接报错，避免外键异常变成 500
        get_deployment(db, deployment_id)
    else:
        default = get_default_deployment(db)
        deployment_id = default.id if default is not None else None

    chat_session = ChatSession(
        title=(title or "").strip() or NEW_CHAT_TITLE,
        user_id=user_id,
        model_deployment_id=deployment_id,
    )
    db.add(chat_session)
    try:
        db.commit()
    except IntegrityError as exc:
        # 检查之后部署被并发删除时外键约束失败
        db.rollback()
        logger.warning(
            "Model deployment %s disappeared while creating a chat session: %s",
            deployment_id,
            exc,
        )
        raise DeploymentNotFoundError(f"Model deployment {deployment_id} not found") from exc
    db.refresh(chat_session)

    logger.info(
        "Created chat session %s (deployment=%s, user=%s)",
        chat_session.id,
        deployment_id,
        user_id,
    )
    return _summary(chat_session, message_count=0, last_message=None)


def rename_session(
    db: Session,
    session_id: UUID,
    title: str | None,
    user_id: str | None = None,
) -> SessionSummaryResponse:
    chat_session = _get_owned_session(db, session_id, user_id, with_messages=True)
    chat_session.title = (title or "").strip() or UNTITLED_CHAT_TITLE
    chat_session.updated_at = utcnow()
    db.commit()
    db.refresh(chat_session)
    return _summary_from_loaded(chat_session)


def delete_session(db: Session, session_id: UUID, user_id: str | None = None) -> bool:
    try:
        chat_session = _get_owned_session(db, session_id, user_id)
    except ChatSessionNotFoundError:
        return False
    db.delete(chat_session)
    db.commit()
    logger.info("Deleted chat session %s", session_id)
    return True


def resolve_deployment(db: Session, chat_session: ChatSession) -> ModelDeployment:
    """会话绑定的部署优先，否则回退到启用中的默认部署。"""
    deployment = chat_session.model_deployment
    if deployment is None:
        deployment = get_default_deployment(db)
    if deployment is None:
        raise NoDeploymentAvailableError("No model deployment available for this session")
    return deployment


def build_chat_context(
    history: Sequence[ChatMessage],
    new_message: str,
    *,
    system_prompt: str | None = None,
    window: int | None = None,
) -> list[dict[str, str]]:
    """
    构造发送给模型的上下文：系统提示 + 最近 window 条历史（按时间正序）+ 本次用户消息。
    history 需已按时间升序排列，且不包含本次消息。
    """
    if system_prompt is None:
        system_prompt = settings.chat_system_prompt
    if window is None:
        window = settings.chat_history_window

    recent: Iterable[ChatMessage] = history[-window:] if window > 0 else ()
    context = [{"role": "system", "content": system_prompt}]
    context.extend(
        {"role": m.role, "content": m.content} for m in recent if m.role in MESSAGE_ROLES
    )
    context.append({"role": ROLE_USER, "content": new_message})
    return context


async def send_message(
    db: Session,
    client: httpx.AsyncClient,
    session_id: UUID,
    text: str,
    user_id: str | None = None,
) -> ChatMessageResponse:
    """
    发送一条用户消息并保存模型回复。

    用户消息在解析部署、调用模型之前先提交，之后的失败都不回滚；
    任何异常记录日志后原样抛出。
    """
    try:
        chat_session = _get_owned_session(db, session_id, user_id, with_messages=True)
        # 提交前构造上下文，避免 commit 过期历史消息后逐条回查
        context = build_chat_context(list(chat_session.messages), text)

        user_message = ChatMessage(
            session_id=chat_session.id,
            content=text,
            role=ROLE_USER,
            token_count=estimate_token_count(text),
            user_id=user_id,
        )
        db.add(user_message)
        chat_session.updated_at = utcnow()
        db.commit()

        deployment = resolve_deployment(db, chat_session)
        reply = await model_client.invoke(
            client,
            deployment,
            context,
            model_client.GenerationParams.from_settings(),
        )
        if not reply or not reply.strip():
            reply = FALLBACK_REPLY

        assistant_message = ChatMessage(
            session_id=chat_session.id,
            content=reply,
            role=ROLE_ASSISTANT,
            token_count=estimate_token_count(reply),
            user_id=user_id,
        )
        db.add(assistant_message)
        chat_session.updated_at = utcnow()
        db.commit()
        db.refresh(assistant_message)
    except Exception:
        logger.exception("Error sending message in session %s", session_id)
        raise

    logger.info(
        "Session %s: reply from deployment %s (%d tokens est.)",
        session_id,
        deployment.name,
        assistant_message.token_count,
    )
    return ChatMessageResponse.model_validate(assistant_message)


__all__ = [
    "ChatServiceError",
    "ChatSessionNotFoundError",
    "FALLBACK_REPLY",
    "NEW_CHAT_TITLE",
    "NoDeploymentAvailableError",
    "UNTITLED_CHAT_TITLE",
    "build_chat_context",
    "create_session",
    "delete_session",
    "estimate_token_count",
    "get_session_detail",
    "list_sessions",
    "rename_session",
    "resolve_deployment",
    "send_message",
]
