import datetime
import logging
import shutil
from pathlib import Path
from typing import Callable, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

APP_LOGGER_NAME = "chatapi"

_LOGGING_CONFIGURED = False

# (path fragment, business bucket); first match wins.
_BUSINESS_PATHS: tuple[tuple[str, str], ...] = (
    ("/chatapi/api/session_routes.py", "chat"),
    ("/chatapi/services/chat_service.py", "chat"),
    ("/chatapi/api/deployment_routes.py", "deployments"),
    ("/chatapi/services/deployment_service.py", "deployments"),
    ("/chatapi/services/encryption.py", "deployments"),
    ("/chatapi/provider/", "provider"),
    ("/chatapi/db/", "db"),
    ("/chatapi/api/system_routes.py", "system"),
    ("/chatapi/routes.py", "system"),
)


def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    # Fallback to system local timezone
    return datetime.datetime.now().astimezone().tzinfo or datetime.UTC


class LocalTimezoneFormatter(logging.Formatter):
    """
    Logging formatter that forces timestamps into a configured timezone.
    Defaults to the system local timezone when LOG_TIMEZONE is not set
    or when the provided timezone is invalid.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = _resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


def _project_root() -> Path:
    # chatapi/logging_config.py -> chatapi -> repo root
    return Path(__file__).resolve().parents[1]


def _resolve_log_dir(value: str | Path) -> Path:
    p = value if isinstance(value, Path) else Path(value)
    if p.is_absolute():
        return p
    return _project_root() / p


def infer_log_business(record: logging.LogRecord) -> str:
    """
    根据日志调用点推断业务分类。

    大部分模块共享同一个 `logger`（名称固定为 "chatapi"），
    因此只能依靠 record.pathname 区分来源。
    """
    name = record.name or ""
    if name.startswith("uvicorn.access"):
        return "access"
    if name.startswith("uvicorn"):
        return "server"

    path = (record.pathname or "").replace("\\", "/")
    for fragment, biz in _BUSINESS_PATHS:
        if fragment in path:
            return biz
    return "app"


class _DailyFolderHandler(logging.Handler):
    """
    Base for handlers writing into <log_dir>/<YYYY-MM-DD>/ and keeping at
    most backup_days date folders.
    """

    def __init__(
        self,
        log_dir: Path,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.backup_days = backup_days
        self.encoding = encoding
        self.terminator = "\n"
        self._tzinfo = _resolve_tzinfo(timezone_name)
        # now_fn is mainly for tests.
        self._now_fn = now_fn
        self._current_date: datetime.date | None = None
        self._streams: dict[str, TextIO] = {}

    def _today(self) -> datetime.date:
        now = self._now_fn() if self._now_fn is not None else datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _cleanup_old_dirs(self) -> None:
        if self.backup_days <= 0:
            return
        try:
            dirs = [p for p in self.log_dir.iterdir() if p.is_dir()]
        except OSError:
            return

        dated: list[tuple[datetime.date, Path]] = []
        for p in dirs:
            try:
                dated.append((datetime.date.fromisoformat(p.name), p))
            except ValueError:
                continue

        dated.sort(key=lambda x: x[0])
        for _, old_dir in dated[: max(len(dated) - self.backup_days, 0)]:
            try:
                shutil.rmtree(old_dir)
            except OSError:
                pass

    def _close_all_streams(self) -> None:
        for stream in self._streams.values():
            try:
                stream.close()
            except OSError:
                pass
        self._streams.clear()

    def _roll_date(self) -> None:
        today = self._today()
        if self._current_date == today:
            return
        self._current_date = today
        self._close_all_streams()
        (self.log_dir / today.isoformat()).mkdir(parents=True, exist_ok=True)
        self._cleanup_old_dirs()

    def _stream_for(self, filename: str) -> TextIO:
        stream = self._streams.get(filename)
        if stream is None:
            assert self._current_date is not None
            file_path = self.log_dir / self._current_date.isoformat() / filename
            file_path.parent.mkdir(parents=True, exist_ok=True)
            stream = open(file_path, "a", encoding=self.encoding)
            self._streams[filename] = stream
        return stream

    def _filename_for(self, record: logging.LogRecord) -> str:
        raise NotImplementedError

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._roll_date()
            stream = self._stream_for(self._filename_for(record))
            stream.write(self.format(record) + self.terminator)
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._close_all_streams()
        finally:
            super().close()


class DailyFolderFileHandler(_DailyFolderHandler):
    """Writes logs to: <log_dir>/<YYYY-MM-DD>/<filename>."""

    def __init__(self, log_dir: Path, filename: str, **kwargs) -> None:
        super().__init__(log_dir, **kwargs)
        self.filename = filename

    def _filename_for(self, record: logging.LogRecord) -> str:
        return self.filename


class DailyFolderBusinessFileHandler(_DailyFolderHandler):
    """Routes logs into per-business files: <log_dir>/<YYYY-MM-DD>/<business>.log."""

    def _filename_for(self, record: logging.LogRecord) -> str:
        biz = infer_log_business(record)
        # Expose biz for formatters.
        setattr(record, "biz", biz)
        safe = "".join(c if (c.isalnum() or c in ("-", "_")) else "_" for c in biz)
        return f"{safe}.log"


class EnsureBizFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not hasattr(record, "biz"):
            setattr(record, "biz", infer_log_business(record))
        return True


class FixedBizFilter(logging.Filter):
    def __init__(self, biz: str) -> None:
        super().__init__()
        self._biz = biz

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        setattr(record, "biz", self._biz)
        return True


def setup_logging() -> None:
    """
    Configure application logging.
    Writes logs to a daily folder under LOG_DIR (default: ./logs/), with files
    split by business, e.g. logs/2025-12-12/chat.log, plus error.log,
    access.log and server.log.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = _resolve_log_dir(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level_value = getattr(logging, settings.log_level.upper(), logging.INFO)
    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] [%(biz)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )
    handler_kwargs = {
        "backup_days": settings.log_backup_days,
        "timezone_name": settings.log_timezone,
    }

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if settings.log_split_by_business:
        file_handler: logging.Handler = DailyFolderBusinessFileHandler(log_dir, **handler_kwargs)
    else:
        file_handler = DailyFolderFileHandler(log_dir, filename="app.log", **handler_kwargs)
    file_handler.setFormatter(formatter)
    file_handler.addFilter(EnsureBizFilter())
    app_logger.setLevel(level_value)
    app_logger.propagate = True  # console output goes through the root logger
    app_logger.addHandler(file_handler)

    # Errors from every business bucket are also collected in one file.
    error_handler = DailyFolderFileHandler(log_dir, filename="error.log", **handler_kwargs)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    error_handler.addFilter(EnsureBizFilter())
    app_logger.addHandler(error_handler)

    access_handler = DailyFolderFileHandler(log_dir, filename="access.log", **handler_kwargs)
    access_handler.setFormatter(formatter)
    access_handler.addFilter(FixedBizFilter("access"))
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.setLevel(level_value)
    access_logger.addHandler(access_handler)

    server_handler = DailyFolderFileHandler(log_dir, filename="server.log", **handler_kwargs)
    server_handler.setFormatter(formatter)
    server_handler.addFilter(FixedBizFilter("server"))
    # uvicorn.access propagates to "uvicorn"; keep it out of server.log.
    server_handler.addFilter(lambda record: not (record.name or "").startswith("uvicorn.access"))
    uvicorn_logger = logging.getLogger("uvicorn")
    uvicorn_logger.setLevel(level_value)
    uvicorn_logger.addHandler(server_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(EnsureBizFilter())
        root_logger.addHandler(console_handler)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(APP_LOGGER_NAME)
