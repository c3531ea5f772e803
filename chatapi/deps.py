from collections.abc import AsyncIterator, Iterator

import httpx
from sqlalchemy.orm import Session

from .db import get_db_session
from .settings import settings


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """
    Provide an httpx client for upstream model calls.

    代理可通过环境变量 HTTP_PROXY/HTTPS_PROXY 配置（trust_env 默认开启）。
    """
    async with httpx.AsyncClient(timeout=settings.model_request_timeout_seconds) as client:
        yield client


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency that provides a SQLAlchemy session.
    """
    yield from get_db_session()


def get_current_user_id() -> str:
    """
    当前调用方标识。认证接入前固定返回占位用户，
    替换为真实身份解析时只需覆盖此依赖。
    """
    return settings.default_user_id


__all__ = ["get_current_user_id", "get_db", "get_http_client"]
