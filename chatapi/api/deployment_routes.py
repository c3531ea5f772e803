from __future__ import annotations

from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatapi.deps import get_db, get_http_client
from chatapi.errors import bad_request, not_found
from chatapi.schemas import (
    ActiveDeploymentResponse,
    DeploymentCreateRequest,
    DeploymentResponse,
    DeploymentTestResponse,
    DeploymentUpdateRequest,
)
from chatapi.services.deployment_service import (
    DeploymentNotFoundError,
    DeploymentServiceError,
    check_deployment_connection,
    create_deployment,
    delete_deployment,
    get_deployment_detail,
    list_active_deployments,
    list_deployments,
    update_deployment,
)

router = APIRouter(tags=["model-deployments"])


@router.get("/api/model-deployments", response_model=list[ActiveDeploymentResponse])
def list_active_deployments_endpoint(
    db: Session = Depends(get_db),
) -> list[ActiveDeploymentResponse]:
    """聊天端使用的部署列表，仅包含启用中的部署，不暴露 endpoint / 凭证。"""
    return [ActiveDeploymentResponse.model_validate(d) for d in list_active_deployments(db)]


@router.get("/api/deployments", response_model=list[DeploymentResponse])
def list_deployments_endpoint(db: Session = Depends(get_db)) -> list[DeploymentResponse]:
    return list_deployments(db)


@router.get("/api/deployments/{deployment_id}", response_model=DeploymentResponse)
def get_deployment_endpoint(
    deployment_id: UUID,
    db: Session = Depends(get_db),
) -> DeploymentResponse:
    try:
        return get_deployment_detail(db, deployment_id)
    except DeploymentNotFoundError as exc:
        raise not_found(str(exc))


@router.post(
    "/api/deployments",
    response_model=DeploymentResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_deployment_endpoint(
    payload: DeploymentCreateRequest,
    db: Session = Depends(get_db),
) -> DeploymentResponse:
    try:
        return create_deployment(db, payload)
    except DeploymentServiceError as exc:
        raise bad_request(str(exc))


@router.put(
    "/api/deployments/{deployment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def update_deployment_endpoint(
    deployment_id: UUID,
    payload: DeploymentUpdateRequest,
    db: Session = Depends(get_db),
) -> None:
    try:
        update_deployment(db, deployment_id, payload)
    except DeploymentNotFoundError as exc:
        raise not_found(str(exc))
    except DeploymentServiceError as exc:
        raise bad_request(str(exc))


@router.delete(
    "/api/deployments/{deployment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_deployment_endpoint(
    deployment_id: UUID,
    db: Session = Depends(get_db),
) -> None:
    try:
        delete_deployment(db, deployment_id)
    except DeploymentNotFoundError as exc:
        raise not_found(str(exc))
    except DeploymentServiceError as exc:
        raise bad_request(str(exc))


@router.post(
    "/api/deployments/{deployment_id}/test",
    response_model=DeploymentTestResponse,
)
async def probe_deployment_endpoint(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> DeploymentTestResponse:
    try:
        return await check_deployment_connection(db, deployment_id, client)
    except DeploymentNotFoundError as exc:
        raise not_found(str(exc))


__all__ = ["router"]
