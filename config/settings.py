"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional


DEFAULT_CODE_MAP_PATH = Path(__file__).parent / "erp_code_map.json"


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
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # CODE RESOLUTION
    # ===================
    erp_code_map_path: Path = Field(
        default=DEFAULT_CODE_MAP_PATH,
        description="JSON table of ERP classification code → Web taxonomy id"
    )

    # ===================
    # SYNC DEFAULTS
    # ===================
    default_sync_warehouses: list[str] = Field(
        default=["02", "06"],
        min_length=1,
        description="ERP warehouses aggregated into Web stock for new mappings"
    )
    default_price_priority: list[str] = Field(
        default=["out_price5", "out_price"],
        min_length=1,
        description="ERP price tiers tried in order for new mappings"
    )

    # ===================
    # CONFLICT DETECTION
    # ===================
    price_tolerance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Allowed absolute price difference (0 = exact match)"
    )
    stock_tolerance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Allowed absolute stock difference (0 = exact match)"
    )

    # ===================
    # WORKFLOW
    # ===================
    unlock_roles: list[str] = Field(
        default=["admin", "manager"],
        description="Operator roles allowed to unlock a confirmed mapping"
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


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
