import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.deployment_routes import router as deployment_router
from .api.session_routes import router as session_router
from .api.system_routes import router as system_router
from .db import engine
from .errors import UnexpectedErrorResponse
from .logging_config import logger
from .settings import settings


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    全局异常处理器，统一返回结构化错误响应并打印日志。
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content=UnexpectedErrorResponse(error_id=error_id).model_dump(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理：
    - startup: Postgres 执行 Alembic 迁移；SQLite 直接按模型建表
    """
    from chatapi.db.migration_runner import auto_upgrade_database, ensure_schema

    auto_upgrade_database()
    ensure_schema(engine)
    logger.info("chatapi started (environment=%s)", settings.environment)

    yield


def _split_csv(value: str) -> list[str]:
    if value.strip() == "*":
        return ["*"]
    return [item.strip() for item in value.split(",") if item.strip()]


def create_app() -> FastAPI:
    docs_url = "/docs" if settings.enable_api_docs else None
    redoc_url = "/redoc" if settings.enable_api_docs else None
    openapi_url = "/openapi.json" if settings.enable_api_docs else None

    app = FastAPI(
        title="Chat API",
        version=settings.app_version,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )
    app.add_exception_handler(Exception, handle_unexpected_error)

    if not settings.enable_api_docs:
        logger.info(
            "API docs routes are disabled (environment=%s); set ENABLE_API_DOCS=true to enable.",
            settings.environment,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_split_csv(settings.cors_allow_origins),
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=_split_csv(settings.cors_allow_methods),
        allow_headers=_split_csv(settings.cors_allow_headers),
    )

    app.include_router(system_router)
    app.include_router(session_router)
    app.include_router(deployment_router)

    return app


__all__ = ["create_app", "handle_unexpected_error"]
