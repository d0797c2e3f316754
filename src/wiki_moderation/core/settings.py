"""Application settings and configuration.

This module defines all configuration options for the moderation service.
Settings are loaded from environment variables with sensible defaults.
"""

from datetime import datetime, timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    List-valued settings (namespaces, proxies) are read as JSON arrays.
    """

    # Application metadata
    app_name: str = Field(default="Wiki Moderation", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./moderation.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis configuration for the pending-time notification cache
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    pending_time_cache_ttl_seconds: int = Field(
        default=86_400,
        alias="PENDING_TIME_CACHE_TTL_SECONDS",
    )

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Moderation switches
    moderation_enable: bool = Field(default=True, alias="MODERATION_ENABLE")
    # If non-empty, only these namespaces are moderated.
    moderation_only_in_namespaces: list[int] = Field(
        default_factory=list,
        alias="MODERATION_ONLY_IN_NAMESPACES",
    )
    # Namespaces which are never moderated, e.g. a sandbox namespace.
    moderation_ignored_in_namespaces: list[int] = Field(
        default_factory=list,
        alias="MODERATION_IGNORED_IN_NAMESPACES",
    )
    # Rejected entries older than this can no longer be approved.
    moderation_time_to_override_rejection: int = Field(
        default=2 * 7 * 86_400,
        alias="MODERATION_TIME_TO_OVERRIDE_REJECTION",
    )

    # Moderator notifications
    moderation_notification_enable: bool = Field(
        default=False,
        alias="MODERATION_NOTIFICATION_ENABLE",
    )
    moderation_notification_new_only: bool = Field(
        default=True,
        alias="MODERATION_NOTIFICATION_NEW_ONLY",
    )
    moderation_email: str | None = Field(default=None, alias="MODERATION_EMAIL")
    password_sender: str | None = Field(default=None, alias="PASSWORD_SENDER")

    # Attribution of approved edits
    put_ip_in_rc: bool = Field(default=True, alias="PUT_IP_IN_RC")
    trusted_proxies: list[str] = Field(default_factory=list, alias="TRUSTED_PROXIES")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    def earliest_reapprovable_timestamp(self, now: datetime) -> datetime:
        """Return the oldest submission time of a rejected entry that may still be approved."""
        return now - timedelta(seconds=self.moderation_time_to_override_rejection)


settings = Settings()
