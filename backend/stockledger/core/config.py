"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

import warnings
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - SQLite for a single store / local dev, PostgreSQL for shared backends
    database_url: str = "sqlite:///./data/stockledger.db"
    sql_echo: bool = False

    # Connection pool (PostgreSQL); several POS terminals share one backend
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle: int = 3600  # seconds

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100  # requests per window
    rate_limit_window: int = 60  # window in seconds

    # ==========================================================================
    # Inventory deduction
    # ==========================================================================
    # Decimal places kept for stock quantities (matches the Numeric column scale)
    quantity_scale: int = 4
    # When True a cart line without an active recipe blocks the sale instead of
    # being sold untracked
    strict_recipe_tracking: bool = False
    low_stock_alerts_enabled: bool = True

    # Offline queue replay
    offline_replay_batch_size: int = 100
    offline_max_replay_attempts: int = 5

    @field_validator("quantity_scale")
    @classmethod
    def validate_quantity_scale(cls, v: int) -> int:
        if v < 0 or v > 8:
            raise ValueError(f"quantity_scale must be between 0 and 8, got {v}")
        return v

    @field_validator(
        "offline_replay_batch_size", "offline_max_replay_attempts", "db_pool_size", "db_pool_recycle"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_deployment_settings(self) -> "Settings":
        """Warn about combinations that are unsafe outside local development."""
        if self.debug and not self.database_url.startswith("sqlite"):
            warnings.warn(
                "DEBUG is enabled against a non-SQLite database. "
                "Set DEBUG=false for shared deployments.",
                UserWarning,
                stacklevel=2,
            )
        if not self.debug and self.cors_origins == "*":
            warnings.warn(
                "CORS_ORIGINS='*' in production mode. Restrict it to the POS front-end origins.",
                UserWarning,
                stacklevel=2,
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def default_rate_limit(self) -> str:
        return f"{self.rate_limit_requests}/{self.rate_limit_window} seconds"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
