"""Configuration management and validation using Pydantic."""

import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Forum configuration loaded from environment variables or .env files."""

    @staticmethod
    def get_env_file() -> str | None:
        """Determine which .env file to load based on environment variables.

        Returns:
            None if SKIP_ENV_FILE is set (Docker/direct env vars)
            .env.{APP_ENV} file path otherwise (defaults to .env.dev)
        """
        if os.getenv("SKIP_ENV_FILE"):
            return None
        env = os.getenv("APP_ENV", "dev")
        env_file = f".env.{env}"
        if not os.path.exists(env_file):
            raise FileNotFoundError(
                f"Environment file '{env_file}' not found. "
                f"Create it or set SKIP_ENV_FILE to read settings from the environment."
            )
        return env_file

    model_config = SettingsConfigDict(
        env_file=get_env_file.__func__(),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # ==================== Application Settings ====================
    APP_NAME: str = "Forum"
    APP_ENV: str = "dev"
    DB_URL: str  # Required, defined in .env files

    # ==================== Database Connection Pooling ====================
    DB_POOL_SIZE: int = 20  # Persistent connections in pool
    DB_MAX_OVERFLOW: int = 10  # Additional connections beyond pool size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for available connection
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # ==================== Database Resilience ====================
    DB_QUERY_TIMEOUT: int = 60  # Query execution / SQLite lock wait timeout (seconds)
    DB_CONNECT_TIMEOUT: int = 10  # Connection establishment timeout (seconds)

    # ==================== CORS Settings ====================
    CORS_ORIGINS: str = "http://localhost:3000"  # Comma-separated allowed origins

    # ==================== Field Validation ====================
    USER_NAME_MIN_LENGTH: int = 3
    USER_NAME_MAX_LENGTH: int = 30
    USER_EMAIL_MAX_LENGTH: int = 255
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_BYTES: int = 72  # bcrypt input limit, in UTF-8 bytes
    POST_TITLE_MAX_LENGTH: int = 100
    POST_CATEGORIES: str = "Technology,Travel,Health,Entertainment"
    COMMENT_MAX_CHARS: int = 300
    COMMENT_MAX_LINES: int = 15

    # ==================== Credentials ====================
    BCRYPT_ROUNDS: int = 12

    # ==================== Sessions ====================
    SESSION_COOKIE_NAME: str = "session_token"
    SESSION_COOKIE_SECURE: bool = False  # Send cookie over HTTPS only
    SESSION_TTL_HOURS: int = 24
    SESSION_SWEEP_INTERVAL_SECONDS: int = 0  # 0 disables the expired-session sweeper
    LOGIN_PATH: str = "/user/login"

    # ==================== Rate Limiting ====================
    RATE_LIMIT_AUTH: str = "20/minute"
    RATE_LIMIT_WRITE: str = "60/minute"
    RATE_LIMIT_READ: str = "100/minute"

    # ==================== Graceful Shutdown ====================
    GRACEFUL_SHUTDOWN_TIMEOUT: int = 30  # Max wait time for active requests (seconds)

    # ==================== Logging ====================
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_FILE: str | None = "forum.log"  # None or empty to disable file logging
    LOG_FORMAT: str = "console"  # "console" for dev, "json" for production

    # ==================== Redis Caching ====================
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TTL: int = 300  # Default TTL in seconds (5 minutes)
    CACHE_ENABLED: bool = True  # Global cache toggle

    @field_validator('DB_URL')
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        """Validate that DB_URL is provided and names a supported async driver."""
        if not v:
            raise ValueError("DB_URL is required but not provided in environment variables")
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DB_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v

    @field_validator('BCRYPT_ROUNDS')
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        """Refuse hashing costs below 12 rounds."""
        if v < 12:
            raise ValueError("BCRYPT_ROUNDS must be at least 12")
        return v

    @field_validator('SESSION_TTL_HOURS')
    @classmethod
    def validate_session_ttl(cls, v: int) -> int:
        if v < 1:
            raise ValueError("SESSION_TTL_HOURS must be a positive number of hours")
        return v

    def get_cors_origins(self) -> list[str]:
        """Parse CORS_ORIGINS into a list of allowed origins."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def get_post_categories(self) -> list[str]:
        """Parse POST_CATEGORIES into the ordered list of allowed categories."""
        return [c.strip() for c in self.POST_CATEGORIES.split(",") if c.strip()]

settings = Settings()
