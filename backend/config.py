"""
Household Core - Configuration

Settings come from the environment (and .env in development). Production
startup refuses a configuration without a database, a JWT secret, or with
wildcard CORS.
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)

# Frontend dev servers allowed outside production
LOCAL_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)

MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(default="development", description="development, staging or production")
    DEBUG: bool = False

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(default="", description="postgresql+asyncpg://... URL of the household store")
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "postgres"
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SSLMODE: str = "require"

    # ==================== AUTHENTICATION ====================
    JWT_SECRET_KEY: str = Field(default="", description="Shared secret that signs caller access tokens")
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = Field(default="authenticated", description="Expected 'aud' claim; empty disables the check")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ==================== CORS / OBSERVABILITY / API ====================
    CORS_ORIGINS: str = Field(default="", description="Comma-separated list of allowed origins")
    SENTRY_DSN: str = ""
    LOG_LEVEL: str = "INFO"
    API_TITLE: str = "Household Core API"
    API_VERSION: str = "1.0.0"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def debug_enabled(self) -> bool:
        """Debug output is on in development or when DEBUG is set"""
        return self.DEBUG or self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """Configured origins, plus the local dev servers outside production."""
        origins = set()
        if self.CORS_ORIGINS != "*":
            origins.update(o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip())
        if not self.is_production:
            origins.update(LOCAL_ORIGINS)
        return sorted(origins)

    def validate_production_config(self) -> List[str]:
        """
        Returns the list of problems that block a production start.
        """
        errors = []

        if not self.DATABASE_URL and not self.POSTGRES_HOST:
            errors.append("DATABASE_URL is required")

        if not self.JWT_SECRET_KEY:
            errors.append("JWT_SECRET_KEY is required")
        elif len(self.JWT_SECRET_KEY) < MIN_JWT_SECRET_LENGTH:
            errors.append(f"JWT_SECRET_KEY should be at least {MIN_JWT_SECRET_LENGTH} characters")

        if self.is_production:
            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")
            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")
            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors

    def get_database_url(self) -> str:
        """DATABASE_URL, or one assembled from the POSTGRES_* parts."""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            ssl = f"?ssl={self.POSTGRES_SSLMODE}" if self.POSTGRES_SSLMODE else ""
            return (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}{ssl}"
            )

        raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance. Raises in production when the configuration
    is invalid.
    """
    settings = Settings()
    logger.info(f"Environment: {settings.ENVIRONMENT}, debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def get_cors_config() -> dict:
    """Keyword arguments for CORSMiddleware."""
    return {
        "allow_origins": get_settings().cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", "apikey", "x-client-info", "X-Request-ID"],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


def validate_environment() -> dict:
    """
    Report configuration errors and warnings without raising.

    Returns:
        {"valid": bool, "environment": str, "errors": [...], "warnings": [...]}
    """
    settings = get_settings()
    errors = []
    warnings = []

    if not (settings.DATABASE_URL or settings.POSTGRES_HOST):
        errors.append("DATABASE_URL is not set")
    if not settings.JWT_SECRET_KEY:
        errors.append("JWT_SECRET_KEY is not set")
    if not settings.SENTRY_DSN:
        warnings.append("Error tracking disabled")

    if settings.is_production:
        errors.extend(e for e in settings.validate_production_config() if e not in errors)

    return {
        "valid": not errors,
        "environment": settings.ENVIRONMENT,
        "errors": errors,
        "warnings": warnings,
    }
