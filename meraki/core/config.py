from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "meraki"
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    ADMIN_TOKEN: str = "change-me-admin-token"
    AUTH_DISABLED: bool = False

    # Local replica on a device; the backend process points this at its own database.
    DATABASE_URL: str = "sqlite+pysqlite:///./meraki.db"

    SYNC_BACKEND_URL: str = "http://localhost:8000"
    SYNC_USER_ID: str = "local-user"
    SYNC_BATCH_SIZE: int = 50
    SYNC_MAX_ATTEMPTS: int = 4
    SYNC_BACKOFF_BASE_S: float = 0.5
    SYNC_BACKOFF_MAX_S: float = 8.0
    SYNC_HTTP_TIMEOUT_S: float = 15.0
    SYNC_INTERVAL_SECONDS: int = 300

    # Tombstones older than this are purged once every known device has pulled them.
    TOMBSTONE_RETENTION_DAYS: int = 30

    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
