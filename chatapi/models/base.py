from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Column, DateTime, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, declarative_base

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = Column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


class TimestampMixin:
    # 应用侧赋值保证微秒精度，server_default 兜底直接写库的场景
    created_at: Mapped[dt.datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[dt.datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )


__all__ = ["Base", "TimestampMixin", "UUIDPrimaryKeyMixin", "utcnow"]
