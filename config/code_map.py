"""
Static ERP code → Web taxonomy table.

The table is data, not code: it is loaded from a JSON file so it can be
edited without a release, and tests can pass their own fixture table.

File format:
    {
        "brands":     {"DE": "4", ...},
        "categories": {"MOR": "71", ...}
    }
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Optional
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)

# JSON section name for each taxonomy kind
SECTION_KEYS = {
    "BRAND": "brands",
    "CATEGORY": "categories",
}


def normalize_code(code: Optional[str]) -> str:
    """Uppercase and trim an ERP code. None becomes ''."""
    if code is None:
        return ""
    return str(code).strip().upper()


def build_code_map(raw: dict) -> dict[tuple[str, str], str]:
    """
    Flatten a {"brands": {...}, "categories": {...}} dict into a lookup table.

    Args:
        raw: Parsed JSON content

    Returns:
        Dict keyed by (kind, normalized ERP code) → Web id
    """
    table: dict[tuple[str, str], str] = {}

    for kind, section in SECTION_KEYS.items():
        for erp_code, web_id in (raw.get(section) or {}).items():
            key = normalize_code(erp_code)
            if not key or web_id in (None, ""):
                continue
            table[(kind, key)] = str(web_id)

    return table


def load_code_map(path: Optional[Path] = None) -> dict[tuple[str, str], str]:
    """
    Load the static code table from disk.

    Args:
        path: JSON file path (defaults to settings.erp_code_map_path)

    Returns:
        Lookup table keyed by (kind, code)
    """
    path = Path(path or settings.erp_code_map_path)

    with path.open(encoding="utf-8") as f:
        raw = json.load(f)

    table = build_code_map(raw)

    logger.info(
        "erp_code_map_loaded",
        path=str(path),
        entries=len(table)
    )

    return table


@lru_cache()
def get_code_map() -> dict[tuple[str, str], str]:
    """Cached code table from the configured path."""
    return load_code_map()
