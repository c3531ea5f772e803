from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide accurate, helpful, and engaging responses."
)


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # CORS 配置
    cors_allow_origins: str = Field(
        "http://localhost:3000",
        alias="CORS_ALLOW_ORIGINS",
        description="允许的跨域来源，多个来源用逗号分隔",
    )
    cors_allow_credentials: bool = Field(
        True,
        alias="CORS_ALLOW_CREDENTIALS",
        description="是否允许跨域请求携带凭证",
    )
    cors_allow_methods: str = Field(
        "*",
        alias="CORS_ALLOW_METHODS",
        description="允许的跨域请求方法，多个方法用逗号分隔，* 表示所有方法",
    )
    cors_allow_headers: str = Field(
        "*",
        alias="CORS_ALLOW_HEADERS",
        description="允许的跨域请求头，多个头用逗号分隔，* 表示所有头",
    )

    # Environment / mode
    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="当前运行环境，例如 development / production；默认 development",
    )
    api_docs_override: bool | None = Field(
        default=None,
        alias="ENABLE_API_DOCS",
        description="显式控制是否启用 /docs、/redoc、/openapi.json；默认在 APP_ENV=production 时关闭",
    )
    app_version: str = Field(
        "1.0.0",
        alias="APP_VERSION",
        description="Version reported by /api/status",
    )

    database_url: str = Field(
        f"sqlite:///{_project_root / 'chatapi.db'}",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL, e.g. 'postgresql+psycopg://user:pass@db:5432/chatapi'",
    )
    auto_apply_db_migrations: bool = Field(
        True,
        alias="AUTO_APPLY_DB_MIGRATIONS",
        description="启动时是否自动执行 alembic upgrade head（仅 Postgres 生效）",
    )

    # Application log level for our chatapi logger.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )
    log_dir: str = Field(
        "logs",
        alias="LOG_DIR",
        description="日志目录（相对路径以项目根目录为基准）；默认 logs",
    )
    log_backup_days: int = Field(
        7,
        alias="LOG_BACKUP_DAYS",
        description="保留最近 N 天的日志目录；0 表示不清理",
        ge=0,
    )
    log_split_by_business: bool = Field(
        True,
        alias="LOG_SPLIT_BY_BUSINESS",
        description="是否按业务/模块拆分日志文件（按调用文件路径推断）；默认开启",
    )

    # Secret key used to derive the Fernet key for deployment API keys.
    secret_key: str = Field(
        "please-change-me",
        alias="SECRET_KEY",
        description="Secret key used to encrypt stored deployment API keys; please override in production",
    )

    # 认证尚未接入，所有请求都归属该占位用户
    default_user_id: str = Field(
        "demo-user",
        alias="DEFAULT_USER_ID",
        description="Placeholder user id attached to sessions and messages",
        max_length=50,
    )

    # Chat behaviour
    chat_system_prompt: str = Field(
        DEFAULT_SYSTEM_PROMPT,
        alias="CHAT_SYSTEM_PROMPT",
        description="发送给模型的固定系统提示词",
    )
    chat_history_window: int = Field(
        19,
        alias="CHAT_HISTORY_WINDOW",
        description="构造上下文时回放的历史消息条数（不含系统提示与当前消息）",
        ge=0,
    )
    model_max_tokens: int = Field(
        1000,
        alias="MODEL_MAX_TOKENS",
        description="Max output tokens requested from the model",
        gt=0,
    )
    model_temperature: float = Field(
        0.7,
        alias="MODEL_TEMPERATURE",
        description="Sampling temperature",
        ge=0,
        le=2,
    )
    model_top_p: float = Field(
        0.9,
        alias="MODEL_TOP_P",
        description="Nucleus sampling threshold",
        gt=0,
        le=1,
    )
    model_request_timeout_seconds: float = Field(
        60.0,
        alias="MODEL_REQUEST_TIMEOUT_SECONDS",
        description="上游模型调用超时时间（秒）",
        gt=0,
    )
    azure_openai_api_version: str = Field(
        "2024-02-15-preview",
        alias="AZURE_OPENAI_API_VERSION",
        description="api-version query parameter used for Azure OpenAI endpoints",
    )

    # Connection test
    probe_timeout_seconds: float = Field(
        10.0,
        alias="PROBE_TIMEOUT_SECONDS",
        description="连接测试的超时时间（秒）",
        gt=0,
    )
    probe_prompt: str = Field(
        "ping",
        alias="PROBE_PROMPT",
        description="连接测试时发送的提示词",
    )

    @property
    def enable_api_docs(self) -> bool:
        """
        是否启用 FastAPI 内置文档相关路由（/docs、/redoc、/openapi.json）。
        默认仅在非生产环境开启，可通过 ENABLE_API_DOCS 显式覆盖。
        """
        if self.api_docs_override is not None:
            return self.api_docs_override
        return self.environment.lower() != "production"


settings = Settings()  # Reads from environment if available
