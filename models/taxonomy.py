"""
Web taxonomy schemas and the Web product draft built from an ERP record.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from decimal import Decimal

from models.base import BaseSchema
from models.reconciliation import SourceRecord


class TaxonomyKind(str, Enum):
    """Which Web taxonomy an ERP classification code is resolved against."""
    BRAND = "BRAND"
    CATEGORY = "CATEGORY"


class TaxonomyEntry(BaseSchema):
    """One Web brand or category as exposed by the catalog."""

    id: str = Field(..., description="Web taxonomy id")
    code: Optional[str] = Field(None, description="Short code, if the catalog has one")
    name: Optional[str] = Field(None, description="Display name")

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v) -> str:
        """Catalog ids arrive as ints or strings."""
        return str(v) if v is not None else v


class ResolutionMiss(BaseSchema):
    """
    An ERP code that could not be resolved to a Web taxonomy id.

    Not an error: the draft is still created, the field is left empty and
    the miss is shown to the operator as "unclassified".
    """

    kind: TaxonomyKind
    erp_code: Optional[str] = None
    field: str = Field(..., description="Draft field left empty (brand_id, category_id)")


class WebProductDraft(BaseSchema):
    """
    New Web catalog entry pre-filled from an ERP record.

    Starts offline; an operator reviews it before publishing.
    """

    name: Optional[str] = None
    store_sku: str
    brand_id: Optional[str] = None
    category_ids: list[str] = Field(default_factory=list)

    price: Decimal = Decimal("0")
    market_price: Decimal = Decimal("0")
    purchase_price: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")

    is_online: bool = False
    condition: str = "New"
    is_new_arrival: bool = True
    ordering: int = 100
    unit: Optional[str] = None

    unresolved: list[ResolutionMiss] = Field(default_factory=list)

    @property
    def is_classified(self) -> bool:
        """True when every taxonomy field was resolved."""
        return not self.unresolved


# ===================
# REQUESTS
# ===================

class ResolveRequest(BaseSchema):
    """Resolve one ERP code against a Web taxonomy."""

    kind: TaxonomyKind
    erp_code: Optional[str] = None
    web_taxonomy: list[TaxonomyEntry] = Field(default_factory=list)


class ResolveResponse(BaseSchema):
    kind: TaxonomyKind
    erp_code: Optional[str] = None
    web_id: Optional[str] = None


class DraftRequest(BaseSchema):
    """Build a Web draft from an ERP product."""

    erp_record: SourceRecord
    brands: list[TaxonomyEntry] = Field(default_factory=list)
    categories: list[TaxonomyEntry] = Field(default_factory=list)
    use_rules: bool = Field(True, description="Apply stored category rules before the code table")
