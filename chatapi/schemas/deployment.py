from __future__ import annotations

from datetime import datetime
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_endpoint(value: str) -> str:
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("endpoint 必须是 http(s) URL")
    return value


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("字段不能为空")
    return value


class DeploymentBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="部署的展示名称，全局唯一")
    deployment_name: str = Field(
        ..., min_length=1, max_length=100, description="上游模型/部署标识，例如 gpt-4o"
    )
    endpoint: str = Field(..., min_length=1, max_length=500, description="上游 API 的 base URL")
    model_type: str = Field(default="gpt-4", min_length=1, max_length=50, description="模型家族")
    description: str | None = Field(default=None, max_length=1000)
    is_active: bool = Field(default=True, description="是否对聊天端可见")
    is_default: bool = Field(default=False, description="是否为默认部署（全局唯一）")

    @field_validator("name", "deployment_name", "model_type")
    @classmethod
    def strip_required(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, value: str) -> str:
        return _validate_endpoint(value)


class DeploymentCreateRequest(DeploymentBase):
    api_key: str = Field(
        ..., min_length=1, max_length=500, description="上游 API Key，将以加密形式存储"
    )

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, value: str) -> str:
        return _strip_required(value)


class DeploymentUpdateRequest(DeploymentBase):
    """全量替换；api_key 省略或为空时沿用已存储的密钥。"""

    api_key: str | None = Field(default=None, max_length=500)


class DeploymentResponse(BaseModel):
    id: UUID
    name: str
    deployment_name: str
    endpoint: str
    model_type: str
    description: str | None = None
    is_active: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime
    is_referenced_by_chats: bool = False

    model_config = ConfigDict(from_attributes=True)


class ActiveDeploymentResponse(BaseModel):
    """聊天端可见的部署信息，不包含 endpoint / 凭证。"""

    id: UUID
    name: str
    model_type: str
    description: str | None = None
    is_active: bool
    is_default: bool

    model_config = ConfigDict(from_attributes=True)


class DeploymentTestResponse(BaseModel):
    success: bool = Field(..., description="连接测试是否成功")
    message: str = Field(..., description="测试结果说明")
    response_time_ms: float | None = Field(default=None, description="探测耗时（毫秒）")


__all__ = [
    "ActiveDeploymentResponse",
    "DeploymentCreateRequest",
    "DeploymentResponse",
    "DeploymentTestResponse",
    "DeploymentUpdateRequest",
]
