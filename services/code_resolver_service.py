"""
ERP classification code → Web taxonomy id resolution.

Two steps, in order:
1. Static code table (authoritative, skips everything else)
2. Exact case-insensitive match on a Web taxonomy entry's code or name

There is no substring or similarity matching: a miss returns
None and the operator classifies the product by hand.
"""

from typing import Iterable, Optional
import structlog

from config import get_code_map, normalize_code
from models.taxonomy import TaxonomyEntry, TaxonomyKind

logger = structlog.get_logger(__name__)


class CodeResolver:
    """
    Resolves ERP brand/category codes to Web ids.

    Usage:
        resolver = CodeResolver()                      # configured table
        resolver = CodeResolver({("BRAND", "DE"): "4"})  # fixture table

        brand_id = resolver.resolve(TaxonomyKind.BRAND, "de", brands)
    """

    def __init__(self, code_map: Optional[dict[tuple[str, str], str]] = None):
        self.code_map = code_map if code_map is not None else get_code_map()

    def lookup_static(self, kind: TaxonomyKind, erp_code: str) -> Optional[str]:
        """Static table hit for an already-normalized code, or None."""
        return self.code_map.get((kind.value, erp_code))

    def resolve(
        self,
        kind: TaxonomyKind,
        erp_code: Optional[str],
        web_taxonomy: Iterable[TaxonomyEntry],
    ) -> Optional[str]:
        """
        Resolve one ERP code.

        Args:
            kind: BRAND or CATEGORY
            erp_code: Raw ERP classification code
            web_taxonomy: Web entries, scanned in the given order

        Returns:
            Web id, or None when nothing matches
        """
        code = normalize_code(erp_code)
        if not code:
            return None

        static_id = self.lookup_static(kind, code)
        if static_id is not None:
            logger.debug("code_resolved_static", kind=kind.value, erp_code=code, web_id=static_id)
            return static_id

        needle = code.lower()
        for entry in web_taxonomy:
            if (entry.code is not None and entry.code.lower() == needle) or \
               (entry.name is not None and entry.name.lower() == needle):
                logger.debug("code_resolved_taxonomy", kind=kind.value, erp_code=code, web_id=entry.id)
                return entry.id

        logger.debug("code_unresolved", kind=kind.value, erp_code=code)
        return None


# Singleton instance
_code_resolver: Optional[CodeResolver] = None


def get_code_resolver() -> CodeResolver:
    """Get or create CodeResolver instance."""
    global _code_resolver
    if _code_resolver is None:
        _code_resolver = CodeResolver()
    return _code_resolver


def resolve(
    kind: TaxonomyKind,
    erp_code: Optional[str],
    web_taxonomy: Iterable[TaxonomyEntry],
) -> Optional[str]:
    """Resolve with the configured static table."""
    return get_code_resolver().resolve(kind, erp_code, web_taxonomy)
