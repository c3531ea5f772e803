from __future__ import annotations

import json

import httpx
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import chatapi.db  # noqa: F401  registers the SQLite foreign key pragma listener
from chatapi.deps import get_db, get_http_client
from chatapi.models import Base, ModelDeployment
from chatapi.services.encryption import encrypt_secret


def make_session_factory(*, expire_on_commit: bool = False) -> tuple[sessionmaker[Session], Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=expire_on_commit,
    )
    return factory, engine


def install_inmemory_db(app) -> sessionmaker[Session]:
    """
    Attach an in-memory SQLite database to the FastAPI app.
    """
    SessionLocal, engine = make_session_factory()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.test_engine = engine
    return SessionLocal


class FakeUpstream:
    """
    Records chat completion requests and answers with a canned reply.
    Set `reply` to None to return a choice without content, or
    `status_code` to simulate upstream errors.
    """

    def __init__(self, reply: str | None = "Hello from the model") -> None:
        self.reply = reply
        self.status_code = 200
        self.requests: list[httpx.Request] = []

    @property
    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, json={"error": {"message": "upstream failure"}})
        return httpx.Response(
            200,
            json={"choices": [{"index": 0, "message": {"role": "assistant", "content": self.reply}}]},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def install_fake_upstream(app, upstream: FakeUpstream) -> None:
    async def override_get_http_client():
        async with upstream.client() as client:
            yield client

    app.dependency_overrides[get_http_client] = override_get_http_client


def seed_deployment(session: Session, **overrides) -> ModelDeployment:
    values = {
        "name": "Primary",
        "deployment_name": "gpt-4o",
        "endpoint": "https://api.example.test",
        "model_type": "gpt-4",
        "description": None,
        "is_active": True,
        "is_default": False,
    }
    api_key = overrides.pop("api_key", "sk-test")
    values.update(overrides)
    deployment = ModelDeployment(encrypted_api_key=encrypt_secret(api_key), **values)
    session.add(deployment)
    session.commit()
    session.refresh(deployment)
    return deployment


def deployment_payload(**overrides) -> dict:
    payload = {
        "name": "Primary",
        "deployment_name": "gpt-4o",
        "endpoint": "https://api.example.test",
        "api_key": "sk-test",
        "model_type": "gpt-4",
        "description": "main deployment",
        "is_active": True,
        "is_default": False,
    }
    payload.update(overrides)
    return payload


__all__ = [
    "FakeUpstream",
    "deployment_payload",
    "install_fake_upstream",
    "install_inmemory_db",
    "make_session_factory",
    "seed_deployment",
]
