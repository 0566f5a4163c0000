"""
Configuration management with environment variable validation.
Loads and validates all gateway configuration from environment variables.
"""
import json
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="profile-match-gateway")
    app_version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8001)
    workers: int = Field(default=4)
    reload: bool = Field(default=False)

    # Security
    api_key_salt: str = Field(...)  # Required
    admin_password: str = Field(...)  # Required
    api_key_prefix: str = Field(default="sk")
    trust_proxy_headers: bool = Field(default=False)

    # Database
    database_url: str = Field(default="sqlite:///./match_gateway.db")
    database_pool_size: int = Field(default=20)
    database_max_overflow: int = Field(default=10)
    database_echo: bool = Field(default=False)
    database_connect_timeout: int = Field(default=5)

    # Usage ledger
    usage_ledger_backend: str = Field(default="sql")
    redis_url: str = Field(default="redis://redis:6379/0")
    redis_socket_timeout: float = Field(default=2.0)
    ledger_sweep_interval_seconds: int = Field(default=300)

    # Quota
    default_rate_limit: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=3600, ge=1)
    rate_limit_retry_after: int = Field(default=3600, ge=0)

    # Downstream profile-matching service
    downstream_url: Optional[str] = Field(default=None)
    downstream_timeout: float = Field(default=30.0)

    # Logging
    log_format: str = Field(default="json")
    log_file_enabled: bool = Field(default=False)
    log_file_path: str = Field(default="/app/logs/gateway.log")
    log_file_max_size: int = Field(default=10485760)  # 10MB
    log_file_backup_count: int = Field(default=5)

    # CORS
    cors_enabled: bool = Field(default=True)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:8080"])
    cors_allow_credentials: bool = Field(default=True)

    @field_validator("api_key_salt", "admin_password")
    @classmethod
    def validate_secrets(cls, v: str, info) -> str:
        """Ensure security-critical values are not defaults."""
        if not v or v in ["CHANGE_ME", "changeme", "password", "secret"]:
            raise ValueError(
                f"{info.field_name} must be set to a secure value. "
                f"Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        if len(v) < 32:
            raise ValueError(f"{info.field_name} must be at least 32 characters long")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        allowed = ["json", "console"]
        if v not in allowed:
            raise ValueError(f"log_format must be one of: {allowed}")
        return v

    @field_validator("usage_ledger_backend")
    @classmethod
    def validate_ledger_backend(cls, v: str) -> str:
        allowed = ["sql", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"usage_ledger_backend must be one of: {allowed}")
        return v.lower()

    @field_validator("api_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if not v.isalnum():
            raise ValueError("api_key_prefix must be alphanumeric")
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from JSON string if needed."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return v.split(",")
        return v


def validate_environment() -> Settings:
    """
    Validate environment configuration on startup.
    Raises ValueError if required variables are missing or invalid.
    """
    try:
        settings = Settings()

        if settings.environment == "production":
            if settings.debug:
                raise ValueError("DEBUG must be False in production")
            if settings.reload:
                raise ValueError("RELOAD must be False in production")
            if settings.database_echo:
                raise ValueError("DATABASE_ECHO must be False in production")

        if not settings.database_url.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")

        if not settings.redis_url.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must be a Redis connection string")

        return settings

    except Exception as e:
        print("\nEnvironment Configuration Error:")
        print(f"   {str(e)}\n")
        print("Tip: Copy .env.example to .env and fill in your values")
        print("   Generate secrets with: python -c \"import secrets; print(secrets.token_hex(32))\"")
        raise


# Global settings instance
settings = validate_environment()
