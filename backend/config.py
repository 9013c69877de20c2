"""
League Registration Core - Configuration Management

Centralized configuration for environment variables and engine defaults.
This module ensures:
- No hardcoded credentials
- Bounded network timeouts for every backend call
- Environment-specific settings (dev/staging/prod)
"""

from decimal import Decimal
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== REGISTRATION BACKEND ====================
    REGISTRATION_API_URL: str = Field(
        default="http://localhost:5001",
        description="Base URL of the registration backend"
    )
    REGISTRATION_API_TIMEOUT: float = Field(
        default=10.0,
        description="Per-request timeout in seconds for backend calls"
    )

    # ==================== ENGINE DEFAULTS ====================
    DEFAULT_ENTITY_FEE: Decimal = Field(
        default=Decimal("425"),
        description="Fee per team/player when the event configures none"
    )
    DEFAULT_DIVISIONS: str = Field(
        default="Gold,Silver",
        description="Comma-separated divisions when the event configures none"
    )
    RETRY_PAUSE_SECONDS: float = Field(
        default=0.3,
        description="Pause between per-item creation retries"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="League Registration Core API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.
        Development also allows the local frontend ports.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        if not self.is_production:
            for origin in ("http://localhost:3000", "http://localhost:5173"):
                if origin not in origins:
                    origins.append(origin)
        return origins

    @property
    def divisions_list(self) -> List[str]:
        return [d.strip() for d in self.DEFAULT_DIVISIONS.split(",") if d.strip()]

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.REGISTRATION_API_URL:
            errors.append("REGISTRATION_API_URL is required")

        if self.REGISTRATION_API_TIMEOUT <= 0:
            errors.append("REGISTRATION_API_TIMEOUT must be positive")

        if self.DEFAULT_ENTITY_FEE < 0:
            errors.append("DEFAULT_ENTITY_FEE cannot be negative")

        if not self.divisions_list:
            errors.append("DEFAULT_DIVISIONS must list at least one division")

        if self.is_production:
            if "localhost" in self.REGISTRATION_API_URL.lower():
                errors.append("REGISTRATION_API_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Registration backend: {settings.REGISTRATION_API_URL}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def validate_environment() -> dict:
    """
    Validate configuration.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
    }

    if not settings.SENTRY_DSN:
        status["warnings"].append("Error tracking disabled")

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Request-ID",
            "X-Session-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }
