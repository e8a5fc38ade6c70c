"""
Configuration module.

Exports:
    settings: Application settings instance
    get_settings: Function to get settings (for dependency injection)
    get_supabase_client: Cached Supabase client
    check_connection: Health check function
    get_code_map: Static ERP code → Web id table
"""

from config.settings import settings, get_settings, Settings
from config.database import (
    get_supabase_client,
    check_connection,
    reset_connection,
    RECONCILIATION_TABLE,
    CATEGORY_RULES_TABLE,
    DatabaseError,
    ConnectionError
)
from config.code_map import (
    get_code_map,
    load_code_map,
    build_code_map,
    normalize_code,
)

__all__ = [
    # Settings
    "settings",
    "get_settings",
    "Settings",

    # Database
    "get_supabase_client",
    "check_connection",
    "reset_connection",
    "RECONCILIATION_TABLE",
    "CATEGORY_RULES_TABLE",
    "DatabaseError",
    "ConnectionError",

    # Code map
    "get_code_map",
    "load_code_map",
    "build_code_map",
    "normalize_code",
]
