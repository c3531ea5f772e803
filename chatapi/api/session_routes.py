from __future__ import annotations

from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatapi.deps import get_current_user_id, get_db, get_http_client
from chatapi.errors import bad_request, internal_error, not_found
from chatapi.schemas import (
    ChatMessageResponse,
    SendMessageRequest,
    SessionCreateRequest,
    SessionDetailResponse,
    SessionRenameRequest,
    SessionSummaryResponse,
)
from chatapi.services.chat_service import (
    ChatSessionNotFoundError,
    NoDeploymentAvailableError,
    create_session,
    delete_session,
    get_session_detail,
    list_sessions,
    rename_session,
    send_message,
)
from chatapi.services.deployment_service import DeploymentNotFoundError

router = APIRouter(prefix="/api/sessions", tags=["chat-sessions"])


@router.get("", response_model=list[SessionSummaryResponse])
def list_sessions_endpoint(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> list[SessionSummaryResponse]:
    return list_sessions(db, user_id)


@router.get("/{session_id}", response_model=SessionDetailResponse)
def get_session_endpoint(
    session_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> SessionDetailResponse:
    try:
        return get_session_detail(db, session_id, user_id)
    except ChatSessionNotFoundError as exc:
        raise not_found(str(exc))


@router.post(
    "",
    response_model=SessionSummaryResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_session_endpoint(
    payload: SessionCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> SessionSummaryResponse:
    if not (payload.title or "").strip():
        raise bad_request("Session title is required")
    try:
        return create_session(db, payload.title, payload.model_deployment_id, user_id)
    except DeploymentNotFoundError as exc:
        raise bad_request(str(exc))


@router.put("/{session_id}", response_model=SessionSummaryResponse)
def rename_session_endpoint(
    session_id: UUID,
    payload: SessionRenameRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> SessionSummaryResponse:
    try:
        return rename_session(db, session_id, payload.title, user_id)
    except ChatSessionNotFoundError as exc:
        raise not_found(str(exc))


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session_endpoint(
    session_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> None:
    if not delete_session(db, session_id, user_id):
        raise not_found(f"Session {session_id} not found")


@router.post("/{session_id}/messages", response_model=ChatMessageResponse)
async def send_message_endpoint(
    session_id: UUID,
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
    user_id: str = Depends(get_current_user_id),
) -> ChatMessageResponse:
    if payload.session_id != session_id:
        raise bad_request("Session ID mismatch")
    if not (payload.message or "").strip():
        raise bad_request("Message content is required")

    try:
        return await send_message(db, client, session_id, payload.message, user_id)
    except ChatSessionNotFoundError as exc:
        raise not_found(str(exc))
    except NoDeploymentAvailableError as exc:
        raise bad_request(str(exc))
    except Exception as exc:  # 已在 service 层记录详细日志
        raise internal_error("An error occurred while processing your message") from exc


__all__ = ["router"]
