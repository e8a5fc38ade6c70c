"""
Category rule schemas.

A rule maps an ERP classification code pair to a Web category id.
"""

from pydantic import Field, field_validator
from typing import Optional

from models.base import BaseSchema, ListResponse, TimestampMixin


def _normalize_class_code(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip().upper()
    return v or None


def _normalize_category_id(v) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


class CategoryRule(BaseSchema, TimestampMixin):
    """
    One administrator-maintained categorization rule.

    erp_class_code2 = None matches any secondary code.
    web_category_id = None means "explicitly unmapped, do not suggest".
    """

    id: Optional[str] = Field(None, description="Rule UUID")
    erp_class_code: str = Field(..., min_length=1, description="Primary ERP class code")
    erp_class_code2: Optional[str] = Field(None, description="Secondary ERP class code")
    web_category_id: Optional[str] = Field(None, description="Target Web category id")
    is_active: bool = Field(True, description="Only active rules are applied")
    notes: Optional[str] = Field(None, description="Operator notes")

    @field_validator("erp_class_code", "erp_class_code2", mode="before")
    @classmethod
    def codes_uppercase(cls, v: Optional[str]) -> Optional[str]:
        """Codes are compared uppercase; blank secondary code means wildcard."""
        return _normalize_class_code(v)

    @field_validator("web_category_id", mode="before")
    @classmethod
    def category_as_string(cls, v) -> Optional[str]:
        return _normalize_category_id(v)

    @property
    def code_pair(self) -> tuple[str, Optional[str]]:
        return (self.erp_class_code, self.erp_class_code2)


class CategoryRuleCreate(BaseSchema):
    """
    Create a category rule.

    Required: erp_class_code
    """

    erp_class_code: str = Field(..., min_length=1, max_length=50)
    erp_class_code2: Optional[str] = Field(None, max_length=50)
    web_category_id: Optional[str] = None
    is_active: bool = True
    notes: Optional[str] = None

    @field_validator("erp_class_code", "erp_class_code2", mode="before")
    @classmethod
    def codes_uppercase(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_class_code(v)

    @field_validator("web_category_id", mode="before")
    @classmethod
    def category_as_string(cls, v) -> Optional[str]:
        return _normalize_category_id(v)


class CategoryRuleUpdate(BaseSchema):
    """
    Update an existing rule.

    All fields optional - only provided fields are updated.
    """

    erp_class_code: Optional[str] = Field(None, min_length=1, max_length=50)
    erp_class_code2: Optional[str] = Field(None, max_length=50)
    web_category_id: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("erp_class_code", "erp_class_code2", mode="before")
    @classmethod
    def codes_uppercase(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_class_code(v)

    @field_validator("web_category_id", mode="before")
    @classmethod
    def category_as_string(cls, v) -> Optional[str]:
        return _normalize_category_id(v)


class CategoryRuleListResponse(ListResponse):
    """All rules plus any active-pair collisions found among them."""

    data: list[CategoryRule]
    conflicting_pairs: list[list[str]] = Field(
        default_factory=list,
        description="Rule ids that violate the active-pair uniqueness"
    )


class ClassifyResponse(BaseSchema):
    """Result of classifying one ERP code pair."""

    erp_class_code: str
    erp_class_code2: Optional[str] = None
    web_category_id: Optional[str] = None
