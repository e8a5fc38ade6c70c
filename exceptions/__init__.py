"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    PermissionDeniedError,
    DatabaseError,

    # Reconciliation records
    ReconciliationRecordNotFoundError,
    IncompleteMappingError,
    InvalidMappingTransitionError,
    SourceAlreadyLinkedError,
    StaleRecordError,
    ConcurrentConfirmConflictError,

    # Category rules
    AmbiguousRuleError,
    CategoryRuleNotFoundError,
    DuplicateCategoryRuleError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "PermissionDeniedError",
    "DatabaseError",

    # Reconciliation records
    "ReconciliationRecordNotFoundError",
    "IncompleteMappingError",
    "InvalidMappingTransitionError",
    "SourceAlreadyLinkedError",
    "StaleRecordError",
    "ConcurrentConfirmConflictError",

    # Category rules
    "AmbiguousRuleError",
    "CategoryRuleNotFoundError",
    "DuplicateCategoryRuleError",
]
