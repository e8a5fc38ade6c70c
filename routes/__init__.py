"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.reconciliation import router as reconciliation_router
from routes.category_rules import router as category_rules_router

__all__ = [
    "reconciliation_router",
    "category_rules_router",
]
