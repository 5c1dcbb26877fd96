"""Application settings and configuration.

This module defines all configuration options for the webhook relay.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Webhook Relay", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./relay.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Outbound delivery
    delivery_timeout_seconds: float = Field(default=10.0, alias="DELIVERY_TIMEOUT_SECONDS")
    validation_timeout_seconds: float = Field(default=3.0, alias="VALIDATION_TIMEOUT_SECONDS")

    # Admin API authentication (HS256 bearer tokens)
    admin_api_secret: str | None = Field(default=None, alias="ADMIN_API_SECRET")
    admin_api_audience: str = Field(default="webhook-relay-admin", alias="ADMIN_API_AUDIENCE")

    # Snapshot backup and restore
    snapshot_dir: str = Field(default="./data", alias="SNAPSHOT_DIR")
    snapshot_retention: int = Field(default=24, alias="SNAPSHOT_RETENTION")
    snapshot_interval_seconds: float = Field(
        default=3600.0,
        alias="SNAPSHOT_INTERVAL_SECONDS",
    )
    snapshot_schedule_enabled: bool = Field(default=True, alias="SNAPSHOT_SCHEDULE_ENABLED")
    restore_on_startup: bool = Field(default=True, alias="RESTORE_ON_STARTUP")

    # Remote snapshot storage (GitHub contents API)
    github_token: str | None = Field(default=None, alias="GITHUB_TOKEN")
    github_repo: str | None = Field(default=None, alias="GITHUB_REPO")
    github_branch: str = Field(default="main", alias="GITHUB_BRANCH")
    github_api_url: str = Field(default="https://api.github.com", alias="GITHUB_API_URL")
    github_timeout_seconds: float = Field(default=15.0, alias="GITHUB_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+psycopg://", 1)
        return url

    @property
    def remote_snapshots_enabled(self) -> bool:
        """Return True when both GitHub credentials and repository are configured."""
        return bool(self.github_token and self.github_repo)


settings = Settings()
