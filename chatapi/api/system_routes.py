from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatapi.deps import get_db
from chatapi.errors import service_unavailable
from chatapi.logging_config import logger
from chatapi.settings import settings

router = APIRouter(tags=["system"])


@router.get("/health")
def health_endpoint(db: Session = Depends(get_db)) -> dict[str, str]:
    """存活检查，顺带确认数据库可用。"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check: database unreachable: %s", exc)
        raise service_unavailable("Database is unreachable")
    return {"status": "Healthy", "database": "ok"}


@router.get("/api/status")
def status_endpoint() -> dict[str, str]:
    return {
        "status": "Healthy",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "version": settings.app_version,
    }


__all__ = ["router"]
