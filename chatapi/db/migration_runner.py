from __future__ import annotations

import threading
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Engine

from chatapi.logging_config import logger
from chatapi.settings import settings

_MIGRATION_LOCK = threading.Lock()
_MIGRATION_APPLIED = False


def _project_root() -> Path:
    # chatapi/db/migration_runner.py -> chatapi/db -> chatapi -> repo root
    return Path(__file__).resolve().parents[2]


def _is_sqlite(url: str) -> bool:
    return url.lower().startswith("sqlite")


def _should_auto_apply() -> bool:
    """
    仅在 Postgres 数据库上自动执行迁移；SQLite 由 ensure_schema() 直接建表。
    """
    if not settings.auto_apply_db_migrations:
        return False
    return settings.database_url.lower().startswith("postgres")


def _build_alembic_config(base_dir: Path) -> Config:
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    # Absolute path so that alembic works regardless of the current directory.
    cfg.set_main_option("version_locations", str(base_dir / "alembic" / "versions"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    # 保留 setup_logging() 安装的 handler，不让 env.py 重新加载 alembic.ini 的日志配置
    cfg.attributes["configure_logger"] = False
    return cfg


def auto_upgrade_database() -> None:
    """
    在进程启动时确保数据库 schema 升级到最新版本。
    该逻辑仅执行一次，并且只针对 Postgres 数据库运行。
    """
    global _MIGRATION_APPLIED
    if _MIGRATION_APPLIED or not _should_auto_apply():
        return

    with _MIGRATION_LOCK:
        if _MIGRATION_APPLIED:
            return

        base_dir = _project_root()
        alembic_ini = base_dir / "alembic.ini"
        if not alembic_ini.exists():
            logger.warning("Alembic config %s not found, skipping automatic migration", alembic_ini)
            _MIGRATION_APPLIED = True
            return

        logger.info("Applying Alembic migrations (upgrade head)...")
        try:
            command.upgrade(_build_alembic_config(base_dir), "head")
        except Exception:
            logger.exception("Automatic Alembic migration failed; run 'alembic upgrade head' manually")
            raise
        logger.info("Database migrations applied")
        _MIGRATION_APPLIED = True


def ensure_schema(bind: Engine) -> None:
    """SQLite 本地开发库不走 Alembic，直接按 ORM 元数据建表。"""
    if not _is_sqlite(str(bind.url)):
        return
    from chatapi.models import Base

    Base.metadata.create_all(bind=bind)
    logger.info("SQLite schema ensured at %s", bind.url)


__all__ = ["auto_upgrade_database", "ensure_schema"]
