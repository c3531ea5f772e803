from __future__ import annotations

from typing import List
from uuid import UUID

import httpx
from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatapi.logging_config import logger
from chatapi.models import ChatSession, ModelDeployment
from chatapi.models.base import utcnow
from chatapi.provider.health import probe_deployment
from chatapi.schemas import (
    DeploymentCreateRequest,
    DeploymentResponse,
    DeploymentTestResponse,
    DeploymentUpdateRequest,
)
from chatapi.services.encryption import SecretDecryptionError, decrypt_secret, encrypt_secret


class DeploymentServiceError(RuntimeError):
    """Base error for model deployment operations."""


class DeploymentNotFoundError(DeploymentServiceError):
    """Raised when a deployment id cannot be found."""


class DeploymentNameExistsError(DeploymentServiceError):
    """Raised when another deployment already uses the name."""


class DeploymentInUseError(DeploymentServiceError):
    """Raised when deleting a deployment that chat sessions still reference."""


def _referenced_deployment_ids(session: Session) -> set[UUID]:
    stmt = (
        select(ChatSession.model_deployment_id)
        .where(ChatSession.model_deployment_id.is_not(None))
        .distinct()
    )
    return set(session.execute(stmt).scalars().all())


def count_sessions_using(session: Session, deployment_id: UUID) -> int:
    stmt = (
        select(func.count())
        .select_from(ChatSession)
        .where(ChatSession.model_deployment_id == deployment_id)
    )
    return int(session.execute(stmt).scalar_one())


def _to_response(deployment: ModelDeployment, *, referenced: bool) -> DeploymentResponse:
    response = DeploymentResponse.model_validate(deployment)
    response.is_referenced_by_chats = referenced
    return response


def list_deployments(session: Session) -> List[DeploymentResponse]:
    """全部部署（不按 is_active 过滤），附带是否被会话引用的标记。"""
    stmt: Select[tuple[ModelDeployment]] = select(ModelDeployment).order_by(ModelDeployment.name)
    deployments = session.execute(stmt).scalars().all()
    referenced = _referenced_deployment_ids(session)
    return [_to_response(d, referenced=d.id in referenced) for d in deployments]


def list_active_deployments(session: Session) -> List[ModelDeployment]:
    stmt: Select[tuple[ModelDeployment]] = (
        select(ModelDeployment)
        .where(ModelDeployment.is_active.is_(True))
        .order_by(ModelDeployment.name)
    )
    return list(session.execute(stmt).scalars().all())


def get_deployment(session: Session, deployment_id: UUID) -> ModelDeployment:
    deployment = session.get(ModelDeployment, deployment_id)
    if deployment is None:
        raise DeploymentNotFoundError(f"Model deployment {deployment_id} not found")
    return deployment


def get_deployment_detail(session: Session, deployment_id: UUID) -> DeploymentResponse:
    deployment = get_deployment(session, deployment_id)
    return _to_response(deployment, referenced=count_sessions_using(session, deployment_id) > 0)


def get_default_deployment(session: Session) -> ModelDeployment | None:
    stmt: Select[tuple[ModelDeployment]] = select(ModelDeployment).where(
        ModelDeployment.is_default.is_(True),
        ModelDeployment.is_active.is_(True),
    )
    return session.execute(stmt).scalars().first()


def _ensure_name_available(session: Session, name: str, *, exclude_id: UUID | None = None) -> None:
    stmt = select(ModelDeployment.id).where(ModelDeployment.name == name)
    if exclude_id is not None:
        stmt = stmt.where(ModelDeployment.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise DeploymentNameExistsError(f"Model deployment name '{name}' already exists")


def _clear_default_flags(session: Session, *, exclude_id: UUID | None = None) -> None:
    # 与随后的写入处于同一事务；部分唯一索引兜底并发设置默认的情况
    stmt = update(ModelDeployment).where(ModelDeployment.is_default.is_(True))
    if exclude_id is not None:
        stmt = stmt.where(ModelDeployment.id != exclude_id)
    session.execute(stmt.values(is_default=False, updated_at=utcnow()))


def _commit_or_raise(session: Session, action: str, name: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.error("Failed to %s model deployment %r: %s", action, name, exc)
        raise DeploymentServiceError(
            "部署名称重复或默认部署被并发修改，请刷新后重试"
        ) from exc


def create_deployment(session: Session, payload: DeploymentCreateRequest) -> DeploymentResponse:
    _ensure_name_available(session, payload.name)
    if payload.is_default:
        _clear_default_flags(session)

    deployment = ModelDeployment(
        name=payload.name,
        deployment_name=payload.deployment_name,
        endpoint=payload.endpoint,
        encrypted_api_key=encrypt_secret(payload.api_key),
        model_type=payload.model_type,
        description=payload.description,
        is_active=payload.is_active,
        is_default=payload.is_default,
    )
    session.add(deployment)
    _commit_or_raise(session, "create", payload.name)
    session.refresh(deployment)

    logger.info(
        "Created model deployment %s (%s), default=%s",
        deployment.id,
        deployment.name,
        deployment.is_default,
    )
    # 刚创建的部署不可能已被会话引用
    return _to_response(deployment, referenced=False)


def update_deployment(
    session: Session,
    deployment_id: UUID,
    payload: DeploymentUpdateRequest,
) -> ModelDeployment:
    """
    全量替换部署配置。

    api_key 省略或为空字符串时保留原密钥，否则覆盖。
    当该部署被设为默认且之前不是默认时，同一事务内清除其他部署的默认标记。
    """
    deployment = get_deployment(session, deployment_id)
    _ensure_name_available(session, payload.name, exclude_id=deployment.id)

    if payload.is_default and not deployment.is_default:
        _clear_default_flags(session, exclude_id=deployment.id)

    deployment.name = payload.name
    deployment.deployment_name = payload.deployment_name
    deployment.endpoint = payload.endpoint
    deployment.model_type = payload.model_type
    deployment.description = payload.description
    deployment.is_active = payload.is_active
    deployment.is_default = payload.is_default
    if payload.api_key and payload.api_key.strip():
        deployment.encrypted_api_key = encrypt_secret(payload.api_key.strip())
    deployment.updated_at = utcnow()

    session.add(deployment)
    _commit_or_raise(session, "update", payload.name)
    session.refresh(deployment)
    logger.info("Updated model deployment %s (%s)", deployment.id, deployment.name)
    return deployment


def delete_deployment(session: Session, deployment_id: UUID) -> None:
    # FOR UPDATE 行锁与会话插入外键时的 KEY SHARE 锁互斥，检查与删除之间不会有新会话挂上来
    stmt = select(ModelDeployment).where(ModelDeployment.id == deployment_id).with_for_update()
    deployment = session.execute(stmt).scalars().first()
    if deployment is None:
        raise DeploymentNotFoundError(f"Model deployment {deployment_id} not found")

    in_use = count_sessions_using(session, deployment_id)
    if in_use:
        session.rollback()
        logger.warning(
            "Refusing to delete model deployment %s: referenced by %d chat sessions",
            deployment_id,
            in_use,
        )
        raise DeploymentInUseError(
            "Cannot delete model deployment that is referenced by existing chat sessions."
        )

    session.delete(deployment)
    session.commit()
    logger.info("Deleted model deployment %s", deployment_id)


async def check_deployment_connection(
    session: Session,
    deployment_id: UUID,
    client: httpx.AsyncClient,
) -> DeploymentTestResponse:
    """
    对部署做一次轻量探测。除部署不存在外，任何失败都以 success=False 返回。
    """
    deployment = get_deployment(session, deployment_id)
    try:
        api_key = decrypt_secret(deployment.encrypted_api_key)
    except SecretDecryptionError as exc:
        return DeploymentTestResponse(success=False, message=str(exc), response_time_ms=None)

    result = await probe_deployment(client, deployment, api_key=api_key)
    logger.info(
        "Connection test for deployment %s: success=%s latency_ms=%s",
        deployment.id,
        result.success,
        result.response_time_ms,
    )
    return result


__all__ = [
    "DeploymentInUseError",
    "DeploymentNameExistsError",
    "DeploymentNotFoundError",
    "DeploymentServiceError",
    "count_sessions_using",
    "create_deployment",
    "delete_deployment",
    "get_default_deployment",
    "get_deployment",
    "get_deployment_detail",
    "list_active_deployments",
    "list_deployments",
    "check_deployment_connection",
    "update_deployment",
]
