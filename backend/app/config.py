from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Parley API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=True, env="DEBUG", description="Enable debug mode")
    log_level: str = Field(default="INFO", env="LOG_LEVEL", description="Root logging level")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_dsn: str | None = Field(
        default=None,
        env="DATABASE_DSN",
        description="Full SQLAlchemy URL; takes precedence over the individual DB_* settings.",
    )
    database_user: str = Field(default="parley", env="DB_USER")
    database_password: str = Field(default="parley", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="parley", env="DB_NAME")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    direct_message_max_length: int = Field(
        default=1000,
        env="DIRECT_MESSAGE_MAX_LENGTH",
        description="Maximum number of characters in a direct message.",
    )
    group_message_max_length: int = Field(
        default=5000,
        env="GROUP_MESSAGE_MAX_LENGTH",
        description="Maximum number of characters in a group message.",
    )
    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_sessions_default_limit: int = Field(default=20, env="CHAT_SESSIONS_DEFAULT_LIMIT")
    chat_sessions_max_limit: int = Field(default=50, env="CHAT_SESSIONS_MAX_LIMIT")
    reply_thread_max_nodes: int = Field(
        default=500,
        env="REPLY_THREAD_MAX_NODES",
        description="Upper bound on the number of messages materialised for one reply thread.",
    )

    group_default_max_members: int = Field(default=1000, env="GROUP_DEFAULT_MAX_MEMBERS")
    group_max_per_user: int = Field(
        default=50,
        env="GROUP_MAX_PER_USER",
        description="Maximum number of groups a single user may belong to when creating a new one.",
    )
    group_invite_code_length: int = Field(default=6, env="GROUP_INVITE_CODE_LENGTH")
    group_invite_code_attempts: int = Field(default=10, env="GROUP_INVITE_CODE_ATTEMPTS")
    group_search_default_limit: int = Field(default=20, env="GROUP_SEARCH_DEFAULT_LIMIT")
    group_search_max_limit: int = Field(default=50, env="GROUP_SEARCH_MAX_LIMIT")
    frontend_url: str = Field(
        default="http://localhost:3000",
        env="FRONTEND_URL",
        description="Public URL of the web client, used to build group invite links.",
    )

    websocket_auth_timeout_seconds: float = Field(
        default=10.0,
        env="WEBSOCKET_AUTH_TIMEOUT_SECONDS",
        description="Time allowed for a client to complete the authentication handshake.",
    )
    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_dsn:
            return self.database_dsn
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("frontend_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
