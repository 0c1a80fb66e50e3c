"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # DATABASE
    # ===================
    database_url: str = Field(
        default="sqlite:///./paver_plant.db",
        description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    database_isolation_level: Optional[str] = Field(
        None,
        pattern="^(READ COMMITTED|REPEATABLE READ|SERIALIZABLE)$",
        description="Transaction isolation level (driver default when unset)"
    )

    # ===================
    # BUSINESS SETTINGS
    # ===================
    max_products_per_machine_day: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Distinct products a machine may run in one production day"
    )
    reservation_basis: str = Field(
        default="to_produce",
        pattern="^(to_produce|ordered)$",
        description="Which production order quantity counts as a claim on stock"
    )
    display_decimals: int = Field(
        default=1,
        ge=0,
        le=4,
        description="Decimals for derived pallet and m² figures"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def reserve_full_quantity(self) -> bool:
        """Production orders claim the whole ordered quantity instead of the shortfall."""
        return self.reservation_basis == "ordered"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
