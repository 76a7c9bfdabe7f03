"""Application Configuration"""

from pydantic_settings import BaseSettings
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "PHI Guard"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Credentials
    JWT_SECRET_KEY: str = "dev-secret-change-in-production"
    JWT_REFRESH_SECRET_KEY: str = "dev-refresh-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 8
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password policy
    PASSWORD_MIN_LENGTH: int = 12
    BCRYPT_ROUNDS: int = 12

    # Lockout: failures before lock, and how long the lock holds
    LOCKOUT_THRESHOLD: int = 5
    LOCKOUT_DURATION_MINUTES: int = 30

    # Audit capture
    # Path prefixes the request-level audit middleware ignores. Login and
    # refresh are recorded by the auth routes with richer detail instead.
    AUDIT_EXEMPT_PATHS: List[str] = [
        "/health",
        "/favicon.ico",
        "/auth/login",
        "/auth/refresh",
    ]
    AUDIT_QUEUE_MAX_SIZE: int = 10000
    AUDIT_WRITE_TIMEOUT_SECONDS: float = 5.0
    # Consecutive persistence failures before an operational alert is logged
    AUDIT_FAILURE_ALERT_THRESHOLD: int = 10
    AUDIT_PAGE_MAX_LIMIT: int = 100

    ID_GENERATION_MAX_ATTEMPTS: int = 5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
