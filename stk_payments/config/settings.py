"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PesaFlux Configuration
    pesaflux_api_key: str = Field(..., description="PesaFlux account API key")
    pesaflux_email: str = Field(..., description="Email address registered with PesaFlux")
    pesaflux_base_url: str = Field(
        default="https://api.pesaflux.co.ke/v1", description="PesaFlux API base URL"
    )
    pesaflux_timeout_seconds: float = Field(
        default=30.0, description="Timeout for PesaFlux HTTP calls (seconds)"
    )
    pesaflux_status_retries: int = Field(
        default=3, description="Attempts for status checks on transport errors"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL (async driver)")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="stk-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="*", description="CORS allowed origins (comma-separated)"
    )

    # Security
    admin_api_key: Optional[str] = Field(
        default=None, description="Key required by operational endpoints (unset = open)"
    )
    admin_key_header: str = Field(default="X-Admin-Key", description="Admin key header name")

    # Payment funnel
    payment_reference_prefix: str = Field(
        default="CRFF", description="Prefix of client-generated payment references"
    )
    poll_interval_seconds: float = Field(
        default=5.0, description="Delay between status polls (seconds)"
    )
    poll_max_attempts: int = Field(default=24, description="Poll attempts before timing out")
    poll_direct_check_after: int = Field(
        default=7, description="Attempts after which the provider is queried directly"
    )
    api_base_url: str = Field(
        default="http://localhost:8000", description="Base URL the polling client talks to"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("pesaflux_base_url", "api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("poll_max_attempts", "pesaflux_status_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def uses_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
