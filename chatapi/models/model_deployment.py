from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, LargeBinary, String, Text, text
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ModelDeployment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """一个可供会话使用的模型部署配置（endpoint + 凭证 + 模型标识）。"""

    __tablename__ = "model_deployments"
    __table_args__ = (
        # 全局至多一个默认部署
        Index(
            "uq_model_deployments_single_default",
            "is_default",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    name: Mapped[str] = Column(String(100), nullable=False, unique=True, index=True)
    deployment_name: Mapped[str] = Column(
        String(100),
        nullable=False,
        doc="Backend-specific model identifier, e.g. the Azure deployment name or 'gpt-4o'.",
    )
    endpoint: Mapped[str] = Column(String(500), nullable=False)
    encrypted_api_key: Mapped[bytes] = Column(
        LargeBinary,
        nullable=False,
        doc="Fernet token of the upstream API key; never returned to clients.",
    )
    model_type: Mapped[str] = Column(
        String(50), nullable=False, server_default=text("'gpt-4'"), default="gpt-4"
    )
    description: Mapped[str | None] = Column(Text, nullable=True)
    is_active: Mapped[bool] = Column(
        Boolean, nullable=False, server_default=text("true"), default=True
    )
    is_default: Mapped[bool] = Column(
        Boolean, nullable=False, server_default=text("false"), default=False
    )


__all__ = ["ModelDeployment"]
