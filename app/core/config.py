# python
# app/core/config.py
"""Configuration settings for the push fan-out service.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="RS Anime Push API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key for JWT verification",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    access_token_expire_minutes: int = Field(
        default=30, description="Lifetime of tokens issued for background broadcasts"
    )
    admin_user_ids: str = Field(
        default="", description="User IDs allowed to broadcast (comma-separated)"
    )

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Firebase Cloud Messaging =====
    firebase_service_account_key: str | None = Field(
        default=None, description="Firebase service account JSON"
    )
    fcm_api_base_url: str = Field(
        default="https://fcm.googleapis.com/v1", description="FCM HTTP v1 API base URL"
    )
    google_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token", description="OAuth2 token endpoint"
    )

    # ===== Push Fan-out =====
    push_dispatch_endpoint: str = Field(
        default="http://127.0.0.1:8000/api/push/send", description="Dispatch endpoint URL"
    )
    push_brand_icon_url: str = Field(
        default="https://i.ibb.co.com/gLc93Bc3/android-chrome-512x512.png",
        description="Icon and badge shown on every notification",
    )
    push_default_base_url: str = Field(
        default="https://rs-anime.lovable.app",
        description="Base URL for click links when the caller sends none",
    )
    push_max_tokens_per_user: int = Field(default=3, description="Device tokens kept per user")
    push_chunk_size: int = Field(default=180, description="Tokens per dispatch request")
    push_chunk_concurrency: int = Field(default=3, description="Chunk requests in flight")
    push_request_timeout: float = Field(
        default=30.0, description="Timeout for one dispatch request attempt in seconds"
    )
    push_request_max_retries: int = Field(default=2, description="Dispatch request retries")
    push_request_backoff_base: float = Field(
        default=0.35, description="Dispatch request backoff base in seconds"
    )
    push_send_concurrency: int = Field(default=30, description="Upstream sends in flight")
    push_send_max_retries: int = Field(default=2, description="Upstream send retries")
    push_send_backoff_base: float = Field(
        default=0.5, description="Upstream send backoff base in seconds"
    )

    # ===== Background Tasks (Celery) =====
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1", description="Celery broker URL"
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2", description="Celery result backend"
    )

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.simple, description="Log format")

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://localhost:8080",
        description="Allowed CORS origins (comma-separated)",
    )

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def admin_user_ids_list(self) -> list[str]:
        return [uid.strip() for uid in self.admin_user_ids.split(",") if uid.strip()]

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_push_enabled(self) -> bool:
        return bool(self.firebase_service_account_key)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
        return v

    @field_validator("push_chunk_size")
    @classmethod
    def validate_chunk_size(cls, v):
        if v < 1 or v > 500:
            raise ValueError("Push chunk size must be between 1 and 500")
        return v

    @field_validator("push_max_tokens_per_user", "push_chunk_concurrency", "push_send_concurrency")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @model_validator(mode="after")
    def set_computed_fields(self):
        if not self.test_database_url and self.database_url and "neondb" in self.database_url:
            self.test_database_url = self.database_url.replace("neondb", "neondb_test")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.is_production and not settings.firebase_service_account_key:
            errors.append("FIREBASE_SERVICE_ACCOUNT_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "push_enabled": settings.has_push_enabled,
            "background_tasks": bool(settings.celery_broker_url),
            "environment": settings.environment,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "database_configured": bool(settings.database_url),
        "push": {
            "max_tokens_per_user": settings.push_max_tokens_per_user,
            "chunk_size": settings.push_chunk_size,
            "chunk_concurrency": settings.push_chunk_concurrency,
            "send_concurrency": settings.push_send_concurrency,
        },
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
]
