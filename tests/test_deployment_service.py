from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chatapi.models import ChatSession, ModelDeployment
from chatapi.schemas import DeploymentCreateRequest, DeploymentUpdateRequest
from chatapi.services import deployment_service
from chatapi.services.deployment_service import (
    DeploymentInUseError,
    DeploymentNameExistsError,
    DeploymentNotFoundError,
)
from chatapi.services.encryption import decrypt_secret
from tests.utils import deployment_payload, seed_deployment


def _default_names(session: Session) -> list[str]:
    session.expire_all()
    stmt = select(ModelDeployment.name).where(ModelDeployment.is_default.is_(True))
    return list(session.execute(stmt).scalars().all())


def test_create_default_replaces_existing_default(db_session: Session):
    seed_deployment(db_session, name="Old", is_default=True)

    created = deployment_service.create_deployment(
        db_session,
        DeploymentCreateRequest(**deployment_payload(name="New", is_default=True)),
    )

    assert created.is_default is True
    assert created.is_referenced_by_chats is False
    assert _default_names(db_session) == ["New"]


def test_create_stores_api_key_encrypted(db_session: Session):
    created = deployment_service.create_deployment(
        db_session, DeploymentCreateRequest(**deployment_payload(api_key="sk-plain"))
    )

    row = db_session.get(ModelDeployment, created.id)
    assert row.encrypted_api_key != b"sk-plain"
    assert decrypt_secret(row.encrypted_api_key) == "sk-plain"
    assert "api_key" not in created.model_dump()


def test_create_rejects_duplicate_name(db_session: Session):
    seed_deployment(db_session, name="Primary")

    with pytest.raises(DeploymentNameExistsError):
        deployment_service.create_deployment(
            db_session, DeploymentCreateRequest(**deployment_payload(name="Primary"))
        )


def test_update_to_default_clears_previous_default(db_session: Session):
    a = seed_deployment(db_session, name="A", is_default=True)
    b = seed_deployment(db_session, name="B")

    payload = deployment_payload(name="B", is_default=True)
    payload.pop("api_key")
    deployment_service.update_deployment(db_session, b.id, DeploymentUpdateRequest(**payload))

    assert _default_names(db_session) == ["B"]
    assert db_session.get(ModelDeployment, a.id).is_default is False


def test_update_replaces_fields_and_keeps_key_when_blank(db_session: Session):
    deployment = seed_deployment(db_session, name="A", api_key="sk-original", description="old")

    payload = deployment_payload(
        name="A renamed",
        deployment_name="gpt-4o-mini",
        endpoint="https://other.example.test",
        api_key="   ",
        description=None,
        is_active=False,
    )
    updated = deployment_service.update_deployment(
        db_session, deployment.id, DeploymentUpdateRequest(**payload)
    )

    assert updated.name == "A renamed"
    assert updated.deployment_name == "gpt-4o-mini"
    assert updated.endpoint == "https://other.example.test"
    assert updated.description is None
    assert updated.is_active is False
    assert decrypt_secret(updated.encrypted_api_key) == "sk-original"


def test_update_overwrites_key_when_present(db_session: Session):
    deployment = seed_deployment(db_session, name="A", api_key="sk-original")

    updated = deployment_service.update_deployment(
        db_session,
        deployment.id,
        DeploymentUpdateRequest(**deployment_payload(name="A", api_key="sk-rotated")),
    )

    assert decrypt_secret(updated.encrypted_api_key) == "sk-rotated"


def test_update_missing_deployment_raises_not_found(db_session: Session):
    payload = deployment_payload()
    with pytest.raises(DeploymentNotFoundError):
        deployment_service.update_deployment(
            db_session, uuid.uuid4(), DeploymentUpdateRequest(**payload)
        )


def test_delete_referenced_deployment_is_blocked(db_session: Session):
    deployment = seed_deployment(db_session, name="Used")
    chat = ChatSession(title="Chat", model_deployment_id=deployment.id)
    db_session.add(chat)
    db_session.commit()

    with pytest.raises(DeploymentInUseError):
        deployment_service.delete_deployment(db_session, deployment.id)

    db_session.expire_all()
    assert db_session.get(ModelDeployment, deployment.id) is not None
    assert db_session.get(ChatSession, chat.id).model_deployment_id == deployment.id


def test_delete_unreferenced_deployment(db_session: Session):
    deployment = seed_deployment(db_session, name="Unused")

    deployment_service.delete_deployment(db_session, deployment.id)

    count = db_session.execute(select(func.count()).select_from(ModelDeployment)).scalar_one()
    assert count == 0
    with pytest.raises(DeploymentNotFoundError):
        deployment_service.delete_deployment(db_session, deployment.id)


def test_list_marks_referenced_deployments(db_session: Session):
    used = seed_deployment(db_session, name="B used")
    seed_deployment(db_session, name="A idle", is_active=False)
    db_session.add(ChatSession(title="Chat", model_deployment_id=used.id))
    db_session.commit()

    listed = deployment_service.list_deployments(db_session)

    assert [d.name for d in listed] == ["A idle", "B used"]
    assert [d.is_referenced_by_chats for d in listed] == [False, True]
    assert deployment_service.get_deployment_detail(db_session, used.id).is_referenced_by_chats


def test_active_listing_and_default_lookup_skip_inactive(db_session: Session):
    seed_deployment(db_session, name="Disabled default", is_default=True, is_active=False)
    seed_deployment(db_session, name="Enabled")

    assert [d.name for d in deployment_service.list_active_deployments(db_session)] == ["Enabled"]
    assert deployment_service.get_default_deployment(db_session) is None
