from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "formsync"
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Create the outbox tables on API startup. Tests build their own stores.
    INIT_STORE_ON_STARTUP: bool = True

    # Local durable outbox. Must survive restarts, so the default is a file.
    DATABASE_URL: str = "sqlite+pysqlite:///./formsync_outbox.db"

    # Remote reporting API the forms save to.
    REMOTE_API_BASE: str = "http://localhost:8000"
    REMOTE_API_TIMEOUT_S: float = 10.0
    REMOTE_API_HEALTH_PATH: str = "/api/health"

    # In-flight records older than this were stranded by an aborted pass.
    OUTBOX_STALE_IN_FLIGHT_SECONDS: int = 300
    OUTBOX_PAGE_SIZE: int = 100

    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
