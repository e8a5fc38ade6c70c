"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and a details dict so the
operator surface can render it without string matching.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "RECORD_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class PermissionDeniedError(AppError):
    """Operator lacks the privilege for this action (403)."""

    def __init__(
        self,
        action: str,
        role: Optional[str] = None,
        allowed: Optional[list[str]] = None
    ):
        super().__init__(
            code="PERMISSION_DENIED",
            message=f"Not allowed to {action}",
            status_code=403,
            details={"action": action, "role": role, "allowed_roles": allowed or []}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# RECONCILIATION RECORD ERRORS
# ===================

class ReconciliationRecordNotFoundError(NotFoundError):
    """Reconciliation record not found."""

    def __init__(self, record_id: str):
        super().__init__(
            resource="Reconciliation record",
            identifier=record_id,
            code="RECONCILIATION_RECORD_NOT_FOUND"
        )


class IncompleteMappingError(ValidationError):
    """Confirm attempted without an ERP reference."""

    def __init__(self, record_id: str, missing: str = "erp_ref"):
        super().__init__(
            code="INCOMPLETE_MAPPING",
            message="Mapping cannot be confirmed without an ERP reference",
            details={"record_id": record_id, "missing": missing}
        )


class InvalidMappingTransitionError(ValidationError):
    """Workflow transition not allowed from the current status."""

    def __init__(self, record_id: str, current_status: str, action: str):
        super().__init__(
            code="INVALID_MAPPING_TRANSITION",
            message=f"Cannot {action} a record in status {current_status}",
            details={
                "record_id": record_id,
                "current_status": current_status,
                "action": action
            }
        )


class SourceAlreadyLinkedError(ConflictError):
    """Source code is held by another record whose mapping is confirmed."""

    def __init__(self, system: str, code: str, holder_id: str):
        super().__init__(
            code="SOURCE_ALREADY_LINKED",
            message=f"{system} {code} belongs to a confirmed mapping, unlock it first",
            details={"system": system, "code": code, "record_id": holder_id}
        )


class StaleRecordError(ConflictError):
    """Record changed between read and write; caller must re-fetch and retry."""

    def __init__(
        self,
        record_id: str,
        expected_version: int,
        actual_version: Optional[int] = None,
        code: str = "STALE_RECORD"
    ):
        super().__init__(
            code=code,
            message="Record was modified by another operator, reload and retry",
            details={
                "record_id": record_id,
                "expected_version": expected_version,
                "actual_version": actual_version
            }
        )


class ConcurrentConfirmConflictError(StaleRecordError):
    """Two confirms raced on one record; the first writer won."""

    def __init__(self, record_id: str, expected_version: int, actual_version: Optional[int] = None):
        super().__init__(
            record_id=record_id,
            expected_version=expected_version,
            actual_version=actual_version,
            code="CONCURRENT_CONFIRM_CONFLICT"
        )


# ===================
# CATEGORY RULE ERRORS
# ===================

class AmbiguousRuleError(ValidationError):
    """Two active category rules match the same ERP code pair."""

    def __init__(self, erp_code: str, erp_code2: Optional[str], rule_ids: list):
        super().__init__(
            code="AMBIGUOUS_CATEGORY_RULE",
            message=f"Multiple active rules match {erp_code}/{erp_code2 or '*'}",
            details={
                "erp_class_code": erp_code,
                "erp_class_code2": erp_code2,
                "rule_ids": rule_ids
            }
        )


class CategoryRuleNotFoundError(NotFoundError):
    """Category rule not found."""

    def __init__(self, rule_id: str):
        super().__init__(
            resource="Category rule",
            identifier=rule_id,
            code="CATEGORY_RULE_NOT_FOUND"
        )


class DuplicateCategoryRuleError(ConflictError):
    """An active rule already covers this ERP code pair."""

    def __init__(self, erp_code: str, erp_code2: Optional[str], existing_id: Optional[str] = None):
        super().__init__(
            code="CATEGORY_RULE_EXISTS",
            message="An active rule already exists for this ERP code pair",
            details={
                "erp_class_code": erp_code,
                "erp_class_code2": erp_code2,
                "existing_id": existing_id
            }
        )
