from functools import lru_cache
from pathlib import Path
from typing import Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Database
    DB_URL: str = "sqlite:///./tourbook.db"
    DB_ECHO: bool = False  # Set to True for SQL query logging in development

    # Connection Pool Settings (PostgreSQL only)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # Payments (Stripe)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENT_CURRENCY: str = "lkr"

    # Public URL of the web frontend, used for origin checks
    APP_URL: str = "http://localhost:3000"

    # Rate Limiting
    ENABLE_RATE_LIMITING: bool = True
    # memory:// keeps counters per process; use redis://host:6379 to share them
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_READ: str = "100 per 15 minutes"
    RATE_LIMIT_CREATE: str = "30 per 15 minutes"
    RATE_LIMIT_UPDATE: str = "20 per 15 minutes"
    RATE_LIMIT_DELETE: str = "10 per 15 minutes"
    RATE_LIMIT_LOGIN: str = "5 per 15 minutes"
    RATE_LIMIT_REGISTER: str = "3 per 60 minutes"
    RATE_LIMIT_BOOKING: str = "5 per 60 minutes"
    RATE_LIMIT_REVIEW: str = "3 per 60 minutes"
    RATE_LIMIT_PROVIDER: str = "1 per 60 minutes"

    # Request guards
    MAX_REQUEST_SIZE_MB: int = 10
    ENABLE_CSRF_CHECK: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "tourbook.log"

    # CORS
    ALLOWED_ORIGINS: Union[list, str] = ["http://localhost:3000", "http://localhost:3001"]

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse ALLOWED_ORIGINS from comma-separated string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    # Security
    JWT_SECRET: str = "change_me"
    JWT_REFRESH_SECRET: str = "refresh_change_me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    SESSION_COOKIE_NAME: str = "tourbook_session"
    SESSION_COOKIE_SECURE: bool = False

    # Password Security
    PASSWORD_MIN_LENGTH: int = 8

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parents[3] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
