"""
Base schemas and mixins for all models.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Features:
        - Auto-trim whitespace from strings
        - Validate on attribute assignment
        - Allow ORM objects (from_attributes)

    Models holding external identifiers turn whitespace stripping off.
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


class TimestampMixin(BaseModel):
    """Database-managed timestamps; None until the row is stored."""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ListResponse(BaseSchema):
    """
    Unpaginated list wrapper. Subclasses declare the typed `data` field.

    Usage:
        return ReconciliationListResponse.of(records)
    """
    data: list
    total: int = 0

    @classmethod
    def of(cls, data: list, **extra):
        """Wrap a full result list, total taken from its length."""
        return cls(data=data, total=len(data), **extra)
