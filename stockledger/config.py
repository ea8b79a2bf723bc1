from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./stockledger.db"
    SQL_ECHO: bool = False

    # Storage calls are bounded by this unless the caller passes its own timeout
    STORAGE_TIMEOUT_SECONDS: float = 10.0

    # Application
    APP_NAME: str = "Stock Ledger"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Pagination defaults applied by the calling layer
    DEFAULT_PAGE: int = 1
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Audit
    AUDIT_RETENTION_DAYS: int = 365

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
