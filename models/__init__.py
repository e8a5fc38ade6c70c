"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, ListResponse, TimestampMixin
from models.reconciliation import (
    SourceSystem,
    ConflictField,
    MappingStatus,
    DisplayStatus,
    MappingType,
    SourceRecord,
    ConflictFlag,
    SyncConfig,
    ReconciliationRecord,
    Operator,
    LinkRequest,
    ConfirmRequest,
    UnlockRequest,
    NotesUpdate,
    PassSummary,
    ReconciliationListResponse,
)
from models.taxonomy import (
    TaxonomyKind,
    TaxonomyEntry,
    ResolutionMiss,
    WebProductDraft,
    ResolveRequest,
    ResolveResponse,
    DraftRequest,
)
from models.category_rule import (
    CategoryRule,
    CategoryRuleCreate,
    CategoryRuleUpdate,
    CategoryRuleListResponse,
    ClassifyResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    "ListResponse",

    # Reconciliation
    "SourceSystem",
    "ConflictField",
    "MappingStatus",
    "DisplayStatus",
    "MappingType",
    "SourceRecord",
    "ConflictFlag",
    "SyncConfig",
    "ReconciliationRecord",
    "Operator",
    "LinkRequest",
    "ConfirmRequest",
    "UnlockRequest",
    "NotesUpdate",
    "PassSummary",
    "ReconciliationListResponse",

    # Taxonomy
    "TaxonomyKind",
    "TaxonomyEntry",
    "ResolutionMiss",
    "WebProductDraft",
    "ResolveRequest",
    "ResolveResponse",
    "DraftRequest",

    # Category rules
    "CategoryRule",
    "CategoryRuleCreate",
    "CategoryRuleUpdate",
    "CategoryRuleListResponse",
    "ClassifyResponse",
]
