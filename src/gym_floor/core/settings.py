"""Application settings and configuration.

This module defines all configuration options for the Gym Floor service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Gym Floor", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./gym_floor.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis backs the queue cache and the optional equipment lock
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Occupation and claim windows
    max_occupation_seconds: int = Field(default=3 * 60 * 60, alias="MAX_OCCUPATION_SECONDS")
    claim_window_seconds: int = Field(default=5 * 60, alias="CLAIM_WINDOW_SECONDS")
    expiry_warning_seconds: int = Field(default=10 * 60, alias="EXPIRY_WARNING_SECONDS")

    # Queue policy
    max_queue_length: int = Field(default=10, alias="MAX_QUEUE_LENGTH")
    queue_hold_enforced: bool = Field(default=True, alias="QUEUE_HOLD_ENFORCED")

    # Expiry sweeper
    sweeper_enabled: bool = Field(default=True, alias="SWEEPER_ENABLED")
    sweeper_interval_seconds: float = Field(default=30.0, alias="SWEEPER_INTERVAL_SECONDS")

    # Queue cache ("redis" or "memory")
    cache_backend: str = Field(default="redis", alias="CACHE_BACKEND")
    queue_cache_ttl_seconds: int = Field(default=120, alias="QUEUE_CACHE_TTL_SECONDS")

    # Distributed equipment lock
    equipment_lock_enabled: bool = Field(default=True, alias="EQUIPMENT_LOCK_ENABLED")
    equipment_lock_ttl_seconds: int = Field(default=30, alias="EQUIPMENT_LOCK_TTL_SECONDS")
    equipment_lock_retry_attempts: int = Field(
        default=3,
        alias="EQUIPMENT_LOCK_RETRY_ATTEMPTS",
    )
    equipment_lock_retry_delay_seconds: float = Field(
        default=0.1,
        alias="EQUIPMENT_LOCK_RETRY_DELAY_SECONDS",
    )

    # Notification fan-out
    push_enabled: bool = Field(default=False, alias="PUSH_ENABLED")
    push_api_url: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        alias="PUSH_API_URL",
    )
    push_http_timeout_seconds: float = Field(default=5.0, alias="PUSH_HTTP_TIMEOUT_SECONDS")
    notification_workers: int = Field(default=4, alias="NOTIFICATION_WORKERS")

    # Points/rewards collaborator; unset disables the hook
    rewards_base_url: str | None = Field(default=None, alias="REWARDS_BASE_URL")
    rewards_http_timeout_seconds: float = Field(
        default=5.0,
        alias="REWARDS_HTTP_TIMEOUT_SECONDS",
    )

    # Analytics estimator
    analytics_history_size: int = Field(default=100, alias="ANALYTICS_HISTORY_SIZE")
    analytics_default_duration_minutes: float = Field(
        default=30.0,
        alias="ANALYTICS_DEFAULT_DURATION_MINUTES",
    )
    analytics_wait_lookback_days: int = Field(default=7, alias="ANALYTICS_WAIT_LOOKBACK_DAYS")

    # CORS configuration for the admin dashboard and mobile client
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
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


settings = Settings()
