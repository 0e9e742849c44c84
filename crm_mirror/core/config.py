from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "crm_mirror"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str

    DATABASE_URL: str
    REDIS_URL: str

    CHATWOOT_API_URL: str = ""
    CHATWOOT_WEBHOOK_SECRET: str | None = None
    REMOTE_TIMEOUT_SECONDS: float = 20
    REMOTE_PAGE_SIZE: int = 25
    REMOTE_MAX_PAGES: int = 50

    SWEEP_ENABLED: bool = True
    SWEEP_INTERVAL_MINUTES: int = 10
    ASSIGNMENT_SWEEP_INTERVAL_MINUTES: int = 2
    SWEEP_LOCK_TTL_SECONDS: int = 600
    SWEEP_CONCURRENCY: int = 4

    PREVIEW_MAX_LENGTH: int = 100
    API_KEY_PREFIX: str = "crm_"

    WEBHOOK_HEALTH_WINDOW: int = 100
    WEBHOOK_HEALTH_FAILED_THRESHOLD: int = 10
    WEBHOOK_MAX_ATTEMPTS: int = 3

    RATE_LIMIT_CLEANUP_SECONDS: int = 60

settings = Settings()
