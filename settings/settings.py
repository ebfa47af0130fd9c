import logging

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from app.environment import EnvironmentName
from settings.log import LoggingSettings


class DatabaseSettings(BaseSettings):
    host: str = Field(alias="DATABASE_HOST", default="postgresql://localhost:5432")
    name: str = Field(alias="DATABASE_NAME", default="cloudsync")
    min_pool_size: int = Field(alias="DATABASE_MIN_POOL_SIZE", default=5)
    max_pool_size: int = Field(alias="DATABASE_MAX_POOL_SIZE", default=20)

    @property
    def async_host(self) -> str:
        """Return the host URL with async driver for SQLAlchemy async engine."""
        return self.host.replace("postgresql://", "postgresql+asyncpg://", 1)

    @property
    def url(self) -> str:
        return f"{self.async_host}/{self.name}"


class WorkerSettings(BaseSettings):
    refresh_batch_size: int = Field(alias="WORKER_REFRESH_BATCH_SIZE", default=50)
    recovery_interval_minutes: int = Field(alias="WORKER_RECOVERY_INTERVAL_MINUTES", default=5)
    shutdown_timeout: int = Field(alias="WORKER_SHUTDOWN_TIMEOUT", default=30)


class OAuthProviderSettings(BaseSettings):
    google_client_id: str = Field(alias="OAUTH_GOOGLE_CLIENT_ID", default="")
    google_client_secret: str = Field(alias="OAUTH_GOOGLE_CLIENT_SECRET", default="")
    google_token_url: str = Field(alias="OAUTH_GOOGLE_TOKEN_URL", default="https://oauth2.googleapis.com/token")
    google_api_base_url: str = Field(alias="OAUTH_GOOGLE_API_BASE_URL", default="https://www.googleapis.com/drive/v3")
    request_timeout: int = Field(alias="OAUTH_REQUEST_TIMEOUT", default=30)


class RefreshFeatureSettings(BaseSettings):
    proactive_refresh: bool = Field(alias="TOKEN_REFRESH_PROACTIVE_ENABLED", default=True)
    live_validation: bool = Field(alias="TOKEN_REFRESH_LIVE_VALIDATION_ENABLED", default=True)
    automatic_recovery: bool = Field(alias="TOKEN_REFRESH_AUTOMATIC_RECOVERY_ENABLED", default=True)


class RefreshTimingSettings(BaseSettings):
    proactive_refresh_minutes: int = Field(alias="TOKEN_REFRESH_PROACTIVE_MINUTES", default=15)
    background_refresh_minutes: int = Field(alias="TOKEN_REFRESH_BACKGROUND_MINUTES", default=30)
    retry_base_delay_seconds: int = Field(alias="TOKEN_REFRESH_RETRY_BASE_DELAY", default=1)
    max_retry_attempts: int = Field(alias="TOKEN_REFRESH_MAX_RETRY_ATTEMPTS", default=5)
    coordination_lock_ttl: int = Field(alias="TOKEN_REFRESH_LOCK_TTL", default=30)


class NotificationSettings(BaseSettings):
    enabled: bool = Field(alias="TOKEN_REFRESH_NOTIFICATIONS_ENABLED", default=True)
    throttle_hours: int = Field(alias="TOKEN_REFRESH_NOTIFICATION_THROTTLE_HOURS", default=24)
    escalate_to_admin: bool = Field(alias="TOKEN_REFRESH_ESCALATE_TO_ADMIN", default=True)
    max_notification_failures: int = Field(alias="TOKEN_REFRESH_MAX_NOTIFICATION_FAILURES", default=3)


class RateLimitSettings(BaseSettings):
    max_attempts_per_hour: int = Field(alias="TOKEN_REFRESH_MAX_ATTEMPTS_PER_HOUR", default=5)
    ip_based_limiting: bool = Field(alias="TOKEN_REFRESH_IP_BASED_LIMITING", default=True)


class ConfigAdminSettings(BaseSettings):
    allow_runtime_changes: bool = Field(alias="TOKEN_REFRESH_ALLOW_RUNTIME_CHANGES", default=True)
    cache_ttl_seconds: int = Field(alias="TOKEN_REFRESH_CONFIG_CACHE_TTL", default=60)


class TokenRefreshSettings(BaseSettings):
    features: RefreshFeatureSettings = Field(default_factory=RefreshFeatureSettings)
    timing: RefreshTimingSettings = Field(default_factory=RefreshTimingSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    rate_limiting: RateLimitSettings = Field(default_factory=RateLimitSettings)
    admin: ConfigAdminSettings = Field(default_factory=ConfigAdminSettings)


class HealthSettings(BaseSettings):
    freshness_hours: int = Field(alias="HEALTH_FRESHNESS_HOURS", default=24)
    auth_failure_threshold: int = Field(alias="HEALTH_AUTH_FAILURE_THRESHOLD", default=3)
    refresh_failure_threshold: int = Field(alias="HEALTH_REFRESH_FAILURE_THRESHOLD", default=3)
    manual_test_cooldown_seconds: int = Field(alias="HEALTH_MANUAL_TEST_COOLDOWN", default=30)
    manual_test_in_flight_seconds: int = Field(alias="HEALTH_MANUAL_TEST_IN_FLIGHT_SECONDS", default=120)
    write_retry_attempts: int = Field(alias="HEALTH_WRITE_RETRY_ATTEMPTS", default=3)


class UploadRecoverySettings(BaseSettings):
    stuck_threshold_minutes: int = Field(alias="UPLOAD_RECOVERY_STUCK_MINUTES", default=30)
    max_retry_attempts: int = Field(alias="UPLOAD_RECOVERY_MAX_RETRY_ATTEMPTS", default=3)
    max_recovery_attempts: int = Field(alias="UPLOAD_RECOVERY_MAX_RECOVERY_ATTEMPTS", default=5)
    batch_size: int = Field(alias="UPLOAD_RECOVERY_BATCH_SIZE", default=10)
    history_limit: int = Field(alias="UPLOAD_RECOVERY_HISTORY_LIMIT", default=10)


class MonitoringSettings(BaseSettings):
    failure_rate_threshold: int = Field(alias="MONITORING_FAILURE_RATE_THRESHOLD", default=10)
    avg_refresh_time_threshold: int = Field(alias="MONITORING_AVG_REFRESH_TIME_THRESHOLD", default=5)
    pending_uploads_threshold: int = Field(alias="MONITORING_PENDING_UPLOADS_THRESHOLD", default=100)
    expiring_soon_minutes: int = Field(alias="MONITORING_EXPIRING_SOON_MINUTES", default=60)
    recent_operations_limit: int = Field(alias="MONITORING_RECENT_OPERATIONS_LIMIT", default=50)


class SentrySettings(BaseSettings):
    dsn: str | None = Field(alias="SENTRY_DSN", default=None)

    @property
    def is_enabled(self) -> bool:
        return bool(self.dsn)


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "extra": "allow"}

    environment: EnvironmentName = Field(alias="ENVIRONMENT")
    token_encryption_key: str = Field(alias="TOKEN_ENCRYPTION_KEY")
    api_token: str | None = Field(alias="API_TOKEN", default=None)
    admin_api_token: str | None = Field(alias="ADMIN_API_TOKEN", default=None)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    oauth: OAuthProviderSettings = Field(default_factory=OAuthProviderSettings)
    token_refresh: TokenRefreshSettings = Field(default_factory=TokenRefreshSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    upload_recovery: UploadRecoverySettings = Field(default_factory=UploadRecoverySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @field_validator("environment", mode="before")
    def parse_environment(cls, value: str, info: ValidationInfo) -> EnvironmentName:
        if isinstance(value, EnvironmentName):
            return value
        try:
            return EnvironmentName(value)
        except ValueError:
            logging.getLogger(__name__).warning(f"Invalid environment: {value}")
            return EnvironmentName.DEVELOPMENT
