from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import delete, event, func, select
from sqlalchemy.orm import Session

from chatapi.models import ChatMessage, ChatSession, ModelDeployment
from chatapi.provider.model_client import ModelInvocationError
from chatapi.services import chat_service
from chatapi.services.chat_service import (
    FALLBACK_REPLY,
    ChatSessionNotFoundError,
    NoDeploymentAvailableError,
    build_chat_context,
    estimate_token_count,
)
from chatapi.services.deployment_service import DeploymentNotFoundError
from chatapi.settings import settings
from tests.utils import FakeUpstream, make_session_factory, seed_deployment


def _add_history(session: Session, chat: ChatSession, count: int) -> None:
    base = dt.datetime(2025, 1, 1, tzinfo=dt.timezone.utc)
    for i in range(count):
        session.add(
            ChatMessage(
                session_id=chat.id,
                content=f"m{i}",
                role="user" if i % 2 == 0 else "assistant",
                timestamp=base + dt.timedelta(seconds=i),
                token_count=1,
            )
        )
    session.commit()


def _message_rows(session: Session, chat_id) -> list[ChatMessage]:
    session.expire_all()
    stmt = select(ChatMessage).where(ChatMessage.session_id == chat_id).order_by(ChatMessage.timestamp)
    return list(session.execute(stmt).scalars().all())


@pytest.mark.parametrize(
    ("text", "expected"),
    [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 401, 101), ("\U0001F600" * 3, 2)],
)
def test_estimate_token_count_rounds_up_quarter_length(text, expected):
    assert estimate_token_count(text) == expected


def test_create_session_binds_default_deployment(db_session: Session):
    default = seed_deployment(db_session, name="Default", is_default=True)

    created = chat_service.create_session(db_session, "Hello", user_id="demo-user")

    assert created.model_deployment_id == default.id
    assert created.model_deployment_name == "Default"
    assert created.message_count == 0
    assert created.last_message is None


def test_create_session_without_default_leaves_deployment_empty(db_session: Session):
    seed_deployment(db_session, name="Not default")

    created = chat_service.create_session(db_session, "Hello")

    assert created.model_deployment_id is None
    assert created.model_deployment_name is None


def test_blank_titles_get_placeholder_names(db_session: Session):
    created = chat_service.create_session(db_session, "   ")
    assert created.title == "New Chat"

    renamed = chat_service.rename_session(db_session, created.id, "")
    assert renamed.title == "Untitled Chat"
    assert renamed.updated_at >= created.updated_at


def test_session_lookup_respects_owner(db_session: Session):
    created = chat_service.create_session(db_session, "Mine", user_id="alice")

    with pytest.raises(ChatSessionNotFoundError):
        chat_service.get_session_detail(db_session, created.id, user_id="bob")
    with pytest.raises(ChatSessionNotFoundError):
        chat_service.rename_session(db_session, created.id, "x", user_id="bob")
    assert chat_service.delete_session(db_session, created.id, user_id="bob") is False
    assert chat_service.get_session_detail(db_session, created.id, user_id="alice").title == "Mine"


def test_list_sessions_filters_by_user_and_projects_last_message(db_session: Session):
    older = chat_service.create_session(db_session, "Older", user_id="alice")
    newer = chat_service.create_session(db_session, "Newer", user_id="alice")
    chat_service.create_session(db_session, "Other user", user_id="bob")

    chat = db_session.get(ChatSession, older.id)
    _add_history(db_session, chat, 3)
    chat.updated_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=5)
    db_session.commit()

    listed = chat_service.list_sessions(db_session, user_id="alice")

    assert [s.id for s in listed] == [older.id, newer.id]
    assert listed[0].message_count == 3
    assert listed[0].last_message == "m2"
    assert listed[1].message_count == 0
    assert listed[1].last_message is None


def test_build_chat_context_keeps_last_nineteen_messages(db_session: Session):
    chat = ChatSession(title="Long")
    db_session.add(chat)
    db_session.commit()
    _add_history(db_session, chat, 25)
    history = _message_rows(db_session, chat.id)

    context = build_chat_context(history, "new question")

    assert len(context) == 21
    assert context[0] == {"role": "system", "content": settings.chat_system_prompt}
    assert [m["content"] for m in context[1:20]] == [f"m{i}" for i in range(6, 25)]
    assert context[-1] == {"role": "user", "content": "new question"}


def test_build_chat_context_with_short_history():
    context = build_chat_context([], "hi", system_prompt="SYS", window=19)
    assert context == [
        {"role": "system", "content": "SYS"},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.asyncio
async def test_send_message_persists_user_and_assistant_messages(db_session: Session):
    seed_deployment(db_session, name="Default", is_default=True)
    created = chat_service.create_session(db_session, "Chat", user_id="demo-user")
    upstream = FakeUpstream(reply="Hi there!")

    async with upstream.client() as client:
        reply = await chat_service.send_message(
            db_session, client, created.id, "hello", user_id="demo-user"
        )

    assert reply.role == "assistant"
    assert reply.content == "Hi there!"
    assert reply.token_count == 3
    assert reply.session_id == created.id

    rows = _message_rows(db_session, created.id)
    assert [(m.role, m.content, m.token_count) for m in rows] == [
        ("user", "hello", 2),
        ("assistant", "Hi there!", 3),
    ]
    assert rows[0].timestamp < rows[1].timestamp

    sent = upstream.last_payload
    assert sent["model"] == "gpt-4o"
    assert sent["max_tokens"] == settings.model_max_tokens
    assert sent["temperature"] == settings.model_temperature
    assert sent["top_p"] == settings.model_top_p
    assert sent["messages"][-1] == {"role": "user", "content": "hello"}
    assert len(sent["messages"]) == 2


@pytest.mark.asyncio
async def test_send_message_substitutes_apology_for_empty_reply(db_session: Session):
    seed_deployment(db_session, name="Default", is_default=True)
    created = chat_service.create_session(db_session, "Chat")
    upstream = FakeUpstream(reply=None)

    async with upstream.client() as client:
        reply = await chat_service.send_message(db_session, client, created.id, "hello")

    assert reply.content == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_send_message_prefers_bound_deployment_over_default(db_session: Session):
    seed_deployment(db_session, name="Default", is_default=True, deployment_name="default-model")
    bound = seed_deployment(db_session, name="Bound", deployment_name="bound-model")
    created = chat_service.create_session(db_session, "Chat", deployment_id=bound.id)
    upstream = FakeUpstream()

    async with upstream.client() as client:
        await chat_service.send_message(db_session, client, created.id, "hello")

    assert upstream.last_payload["model"] == "bound-model"


@pytest.mark.asyncio
async def test_send_message_without_any_deployment_keeps_only_user_message(db_session: Session):
    deployment = seed_deployment(db_session, name="Bound")
    created = chat_service.create_session(db_session, "Chat", deployment_id=deployment.id)
    # 绕过删除保护，模拟部署被移除后外键置空
    db_session.execute(delete(ModelDeployment).where(ModelDeployment.id == deployment.id))
    db_session.commit()
    db_session.expire_all()
    assert db_session.get(ChatSession, created.id).model_deployment_id is None

    upstream = FakeUpstream()
    async with upstream.client() as client:
        with pytest.raises(NoDeploymentAvailableError):
            await chat_service.send_message(db_session, client, created.id, "hello")

    assert upstream.requests == []
    rows = _message_rows(db_session, created.id)
    assert [(m.role, m.content) for m in rows] == [("user", "hello")]


def test_create_session_maps_vanished_deployment_to_not_found(db_session: Session, monkeypatch):
    # 存在性检查通过后部署被删除，提交时外键失败
    monkeypatch.setattr(chat_service, "get_deployment", lambda db, deployment_id: None)

    with pytest.raises(DeploymentNotFoundError):
        chat_service.create_session(db_session, "Chat", deployment_id=uuid.uuid4())

    assert db_session.execute(select(func.count()).select_from(ChatSession)).scalar_one() == 0


@pytest.mark.asyncio
async def test_send_message_with_expiring_session_does_not_reload_history():
    factory, engine = make_session_factory(expire_on_commit=True)
    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    try:
        with factory() as session:
            seed_deployment(session, name="Default", is_default=True)
            created = chat_service.create_session(session, "Chat")
            _add_history(session, session.get(ChatSession, created.id), 6)
            session.expire_all()

            event.listen(engine, "before_cursor_execute", record)
            upstream = FakeUpstream()
            async with upstream.client() as client:
                reply = await chat_service.send_message(session, client, created.id, "next")
            event.remove(engine, "before_cursor_execute", record)

            assert reply.content == "Hello from the model"
            contents = [m["content"] for m in upstream.last_payload["messages"]]
            assert contents[1:] == ["m0", "m1", "m2", "m3", "m4", "m5", "next"]
            per_row_loads = [
                s for s in statements if "FROM chat_messages" in s and "chat_messages.id =" in s
            ]
            # 仅剩回复消息的 refresh
            assert len(per_row_loads) <= 1
    finally:
        engine.dispose()


@pytest.mark.asyncio
async def test_send_message_upstream_failure_keeps_user_message(db_session: Session):
    seed_deployment(db_session, name="Default", is_default=True)
    created = chat_service.create_session(db_session, "Chat")
    upstream = FakeUpstream()
    upstream.status_code = 502

    async with upstream.client() as client:
        with pytest.raises(ModelInvocationError):
            await chat_service.send_message(db_session, client, created.id, "hello")

    rows = _message_rows(db_session, created.id)
    assert [(m.role, m.content) for m in rows] == [("user", "hello")]


@pytest.mark.asyncio
async def test_send_message_unknown_session_raises_not_found(db_session: Session):
    upstream = FakeUpstream()
    async with upstream.client() as client:
        with pytest.raises(ChatSessionNotFoundError):
            await chat_service.send_message(db_session, client, uuid.uuid4(), "hello")


def test_delete_session_removes_messages(db_session: Session):
    created = chat_service.create_session(db_session, "Doomed")
    chat = db_session.get(ChatSession, created.id)
    _add_history(db_session, chat, 4)

    assert chat_service.delete_session(db_session, created.id) is True

    db_session.expire_all()
    remaining = db_session.execute(select(func.count()).select_from(ChatMessage)).scalar_one()
    assert remaining == 0
    assert chat_service.list_sessions(db_session) == []
    assert chat_service.delete_session(db_session, created.id) is False
