"""
Reconciliation schemas.

One ReconciliationRecord links the same logical product across the Web
catalog, the ERP and the accounting ledger. Status is a closed enum; the
CONFLICTED state shown to operators is derived from LINKED + conflicts and
never stored.
"""

from pydantic import ConfigDict, Field, computed_field, field_validator, model_validator
from typing import Optional
from enum import Enum
from decimal import Decimal
from datetime import datetime

from models.base import BaseSchema, ListResponse


class SourceSystem(str, Enum):
    """External system a record was read from."""
    WEB = "WEB"
    ERP = "ERP"
    LEDGER = "LEDGER"


class ConflictField(str, Enum):
    """Field kinds compared across systems."""
    PRICE = "PRICE"
    STOCK = "STOCK"
    IDENTIFIER = "IDENTIFIER"


class MappingStatus(str, Enum):
    """Persisted workflow status."""
    UNLINKED = "UNLINKED"
    LINKED = "LINKED"
    CONFIRMED = "CONFIRMED"


class DisplayStatus(str, Enum):
    """Status as rendered to operators (LINKED + conflicts = CONFLICTED)."""
    UNLINKED = "UNLINKED"
    LINKED = "LINKED"
    CONFLICTED = "CONFLICTED"
    CONFIRMED = "CONFIRMED"


class MappingType(str, Enum):
    """What kind of correspondence the mapping asserts."""
    SKU = "SKU"


# ===================
# SOURCE RECORDS
# ===================

class SourceRecord(BaseSchema):
    """
    A product as reported by one external system.

    Supplied fresh on every reconciliation pass. Codes are kept exactly as
    received: identifier comparison must not trim or re-case them.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    system: SourceSystem
    code: str = Field(..., min_length=1, description="Identifier in the system's namespace")
    name: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[Decimal] = None
    classification_codes: list[str] = Field(
        default_factory=list,
        max_length=3,
        description="Raw ERP classification codes (brand, category, ...)"
    )

    # ERP detail used by SyncConfig
    warehouse_stock: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Stock per ERP warehouse code"
    )
    price_tiers: dict[str, Optional[Decimal]] = Field(
        default_factory=dict,
        description="ERP price per tier id (out_price, out_price1..5)"
    )
    purchase_price: Optional[Decimal] = None
    unit: Optional[str] = None

    @field_validator("code", mode="before")
    @classmethod
    def code_as_string(cls, v):
        """Web ids arrive as ints."""
        return str(v) if isinstance(v, int) else v


# ===================
# CONFLICTS
# ===================

class ConflictFlag(BaseSchema):
    """
    One divergence between two linked sources.

    Immutable and hashable so a pass yields a plain set. Values are kept as
    text so identifiers and amounts round-trip through JSON unchanged.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=False)

    field: ConflictField
    source_a: SourceSystem
    source_b: SourceSystem
    value_a: Optional[str] = None
    value_b: Optional[str] = None
    magnitude: Optional[Decimal] = Field(
        None,
        description="Absolute difference for PRICE/STOCK, None for IDENTIFIER"
    )


# ===================
# SYNC CONFIG
# ===================

class SyncConfig(BaseSchema):
    """
    How the ERP side of a mapping is computed.

    warehouses: ERP warehouses summed into the effective stock
    price_priority: tiers tried in order for the effective price
    """

    warehouses: list[str] = Field(..., description="ERP warehouse codes (set semantics)")
    price_priority: list[str] = Field(..., description="Ordered ERP price tier ids")

    @field_validator("warehouses")
    @classmethod
    def warehouses_unique(cls, v: list[str]) -> list[str]:
        """Deduplicate and sort; at least one warehouse is required."""
        cleaned = sorted({w.strip() for w in v if w and w.strip()})
        if not cleaned:
            raise ValueError("at least one warehouse is required")
        return cleaned

    @field_validator("price_priority")
    @classmethod
    def priority_unique(cls, v: list[str]) -> list[str]:
        """Drop duplicates keeping the first occurrence."""
        seen: list[str] = []
        for tier in v:
            tier = tier.strip() if tier else tier
            if tier and tier not in seen:
                seen.append(tier)
        if not seen:
            raise ValueError("at least one price tier is required")
        return seen


# ===================
# RECONCILIATION RECORD
# ===================

REF_SYSTEMS = {
    "web_ref": SourceSystem.WEB,
    "erp_ref": SourceSystem.ERP,
    "ledger_ref": SourceSystem.LEDGER,
}


class ReconciliationRecord(BaseSchema):
    """
    Cross-system linkage of one logical product.

    status is only changed by the mapping workflow. conflicts is replaced
    wholesale on every pass.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    id: str = Field(..., description="Stable identity of the logical product")
    web_ref: Optional[SourceRecord] = None
    erp_ref: Optional[SourceRecord] = None
    ledger_ref: Optional[SourceRecord] = None

    status: MappingStatus = MappingStatus.UNLINKED
    conflicts: set[ConflictFlag] = Field(default_factory=set)
    sync_config: Optional[SyncConfig] = None
    notes: Optional[str] = None

    mapping_type: MappingType = MappingType.SKU
    version: int = Field(0, ge=0, description="Optimistic concurrency counter")
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def refs_match_slots(self) -> "ReconciliationRecord":
        """Each ref slot holds a record from its own system; conflicts only between present refs."""
        for slot, system in REF_SYSTEMS.items():
            ref = getattr(self, slot)
            if ref is not None and ref.system != system:
                raise ValueError(f"{slot} must be a {system.value} record, got {ref.system.value}")

        present = self.linked_systems
        for flag in self.conflicts:
            if flag.source_a not in present or flag.source_b not in present:
                raise ValueError(
                    f"conflict {flag.field.value} references an unlinked source"
                )
        return self

    @property
    def linked_systems(self) -> set[SourceSystem]:
        """Systems with a reference on this record."""
        return {
            system for slot, system in REF_SYSTEMS.items()
            if getattr(self, slot) is not None
        }

    @computed_field
    @property
    def display_status(self) -> DisplayStatus:
        """CONFLICTED overlays LINKED; CONFIRMED keeps showing conflicts as badges."""
        if self.status == MappingStatus.LINKED and self.conflicts:
            return DisplayStatus.CONFLICTED
        return DisplayStatus(self.status.value)

    @computed_field
    @property
    def on_web(self) -> bool:
        return self.web_ref is not None

    @computed_field
    @property
    def needs_attention(self) -> bool:
        """Conflicts, or a Web product nobody has linked yet."""
        if self.conflicts:
            return True
        return self.status == MappingStatus.UNLINKED and self.on_web

    @property
    def conflict_fields(self) -> set[ConflictField]:
        return {flag.field for flag in self.conflicts}


# ===================
# OPERATOR REQUESTS
# ===================

class Operator(BaseSchema):
    """Who is performing a workflow action."""

    name: str = Field(..., min_length=1)
    role: str = Field("operator", description="Operator role, checked for unlock")


class LinkRequest(BaseSchema):
    """Link references to a record (new record when record_id is omitted)."""

    record_id: Optional[str] = None
    web_ref: Optional[SourceRecord] = None
    erp_ref: Optional[SourceRecord] = None
    ledger_ref: Optional[SourceRecord] = None


class ConfirmRequest(BaseSchema):
    """Commit mapping: lock the correspondence with its sync config."""

    sync_config: Optional[SyncConfig] = Field(
        None,
        description="Sync config to persist; the record's current one when omitted"
    )
    expected_version: Optional[int] = Field(
        None,
        description="Version the operator saw; rejected if the record moved on"
    )
    operator: Optional[Operator] = None


class UnlockRequest(BaseSchema):
    """Return a confirmed mapping to LINKED for editing."""

    operator: Operator


class NotesUpdate(BaseSchema):
    """Free-text operator annotation."""

    notes: Optional[str] = Field(None, max_length=2000)


class PassSummary(BaseSchema):
    """Outcome of one reconciliation pass over a batch of source records."""

    created: int = 0
    updated: int = 0
    conflicted: int = 0
    record_ids: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(
        default_factory=list,
        description="Records left as they were because they kept changing during the pass"
    )


class ReconciliationListResponse(ListResponse):
    """Filtered overview of reconciliation records."""

    data: list[ReconciliationRecord]
