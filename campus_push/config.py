from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

# Hard cap imposed by the FCM multicast contract
GATEWAY_MAX_BATCH_SIZE = 500


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Directory database (users + device tokens)
    DATABASE_URL: str

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour
    DB_STATEMENT_TIMEOUT_SECONDS: int = 60

    # Push gateway settings
    PUSH_MODE: str = "fcm"  # "fcm" or "dry_run"
    FCM_PROJECT_ID: str | None = None
    FCM_SERVICE_ACCOUNT_JSON: str | None = None
    FCM_SERVICE_ACCOUNT_PATH: str | None = None
    FCM_REQUEST_TIMEOUT: float = 10.0
    FCM_MAX_CONCURRENT_REQUESTS: int = 50
    PUSH_BATCH_SIZE: int = GATEWAY_MAX_BATCH_SIZE

    # Notification jobs
    NOTIFICATION_JOBS_FILE: str | None = None
    NOTIFICATION_TEST_MODE: bool = False
    SCHEDULER_ENABLED: bool = True

    # Admin endpoints
    ADMIN_API_TOKEN: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def push_batch_size(self) -> int:
        """Configured batch size, never above the gateway limit."""
        return max(1, min(self.PUSH_BATCH_SIZE, GATEWAY_MAX_BATCH_SIZE))

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
