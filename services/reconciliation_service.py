"""
Reconciliation pass and operator overview.

A pass takes a fresh batch of source records from the three systems,
creates UNLINKED records for codes never seen before, refreshes the
snapshots of records already holding a code and recomputes their
conflicts. Status is never changed by a pass.

Also builds the Web draft an operator publishes when a product exists in
the ERP but not yet on the Web.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import uuid4
import structlog

from config import settings
from models.category_rule import CategoryRule
from models.reconciliation import (
    ConflictField,
    DisplayStatus,
    MappingStatus,
    PassSummary,
    REF_SYSTEMS,
    ReconciliationRecord,
    SourceRecord,
    SourceSystem,
)
from models.taxonomy import ResolutionMiss, TaxonomyEntry, TaxonomyKind, WebProductDraft
from services.category_rule_service import match_rule
from services.code_resolver_service import CodeResolver, get_code_resolver
from services.conflict_service import refresh_conflicts
from services.reconciliation_record_service import get_reconciliation_record_service
from services.sync_config_service import price_by_priority, stock_for_warehouses
from exceptions import ReconciliationRecordNotFoundError, StaleRecordError, ValidationError

logger = structlog.get_logger(__name__)

REF_SLOTS = {system: slot for slot, system in REF_SYSTEMS.items()}

# Display filter → persisted status
DISPLAY_TO_STATUS = {
    DisplayStatus.UNLINKED: MappingStatus.UNLINKED,
    DisplayStatus.LINKED: MappingStatus.LINKED,
    DisplayStatus.CONFLICTED: MappingStatus.LINKED,
    DisplayStatus.CONFIRMED: MappingStatus.CONFIRMED,
}

# ERP tier shown as the Web "market" (list) price
MARKET_PRICE_TIER = "out_price"


def index_sources(sources: Iterable[SourceRecord]) -> dict[tuple[SourceSystem, str], SourceRecord]:
    """Key a batch by (system, code); a later duplicate replaces an earlier one."""
    return {(s.system, s.code): s for s in sources}


def reconcile_record(
    record: ReconciliationRecord,
    sources: dict[tuple[SourceSystem, str], SourceRecord],
) -> ReconciliationRecord:
    """
    Refresh a record's snapshots from a batch and recompute its conflicts.

    Refs whose code is missing from the batch keep their last snapshot.
    Status, sync config and notes are untouched.

    Args:
        record: Stored record
        sources: Batch indexed by index_sources()

    Returns:
        New record; the input is not modified
    """
    update = {}
    for system, slot in REF_SLOTS.items():
        ref = getattr(record, slot)
        if ref is None:
            continue
        fresh = sources.get((system, ref.code))
        if fresh is not None:
            update[slot] = fresh

    return refresh_conflicts(record.model_copy(update=update))


def _record_changed(before: ReconciliationRecord, after: ReconciliationRecord) -> bool:
    """A pass only touches snapshots and conflicts."""
    return any(
        getattr(before, slot) != getattr(after, slot) for slot in REF_SYSTEMS
    ) or before.conflicts != after.conflicts


# ===================
# WEB DRAFT
# ===================

def build_web_draft(
    erp_record: SourceRecord,
    brands: Iterable[TaxonomyEntry],
    categories: Iterable[TaxonomyEntry],
    rules: Optional[Iterable[CategoryRule]] = None,
    resolver: Optional[CodeResolver] = None,
) -> WebProductDraft:
    """
    Pre-fill a new Web catalog entry from an ERP product.

    Classification code 1 is the brand, code 2 the category. The category
    is taken from the rule engine first (when rules are given), then from
    the code resolver; a matching rule without a category leaves it empty.
    Anything unresolved is left empty and reported in draft.unresolved.

    Args:
        erp_record: ERP source record
        brands: Web brand taxonomy
        categories: Web category taxonomy
        rules: Category rules, optional
        resolver: Code resolver (configured one by default)

    Returns:
        WebProductDraft, offline

    Raises:
        ValidationError: Record is not from the ERP
        AmbiguousRuleError: Two active rules match the product's codes
    """
    if erp_record.system != SourceSystem.ERP:
        raise ValidationError(
            "Web drafts can only be built from ERP records",
            code="NOT_AN_ERP_RECORD",
            details={"system": erp_record.system.value, "code": erp_record.code}
        )

    resolver = resolver or get_code_resolver()
    codes = erp_record.classification_codes
    brand_code = codes[0] if len(codes) > 0 else None
    category_code = codes[1] if len(codes) > 1 else None

    unresolved: list[ResolutionMiss] = []

    brand_id = resolver.resolve(TaxonomyKind.BRAND, brand_code, brands)
    if brand_id is None:
        unresolved.append(ResolutionMiss(kind=TaxonomyKind.BRAND, erp_code=brand_code, field="brand_id"))

    # A matched rule decides, even when it maps to nothing
    rule = match_rule(brand_code, category_code, rules) if rules is not None else None
    if rule is not None:
        category_id = rule.web_category_id
    else:
        category_id = resolver.resolve(TaxonomyKind.CATEGORY, category_code, categories)
    if category_id is None:
        unresolved.append(ResolutionMiss(kind=TaxonomyKind.CATEGORY, erp_code=category_code, field="category_id"))

    price = price_by_priority(erp_record, settings.default_price_priority)
    if price is None:
        price = erp_record.price

    market_price = erp_record.price_tiers.get(MARKET_PRICE_TIER)
    if market_price is None:
        market_price = erp_record.price

    if erp_record.warehouse_stock:
        quantity = stock_for_warehouses(erp_record, settings.default_sync_warehouses)
    else:
        quantity = erp_record.stock

    draft = WebProductDraft(
        name=erp_record.name,
        store_sku=erp_record.code,
        brand_id=brand_id,
        category_ids=[category_id] if category_id else [],
        price=price or Decimal("0"),
        market_price=market_price or Decimal("0"),
        purchase_price=erp_record.purchase_price or Decimal("0"),
        quantity=quantity or Decimal("0"),
        unit=erp_record.unit,
        unresolved=unresolved,
    )

    logger.info(
        "web_draft_built",
        erp_code=erp_record.code,
        brand_id=brand_id,
        category_id=category_id,
        unresolved=[m.kind.value for m in unresolved]
    )

    return draft


# ===================
# SERVICE
# ===================

class ReconciliationService:
    """
    Runs reconciliation passes and serves the overview.

    Usage:
        service = ReconciliationService()
        summary = service.run_pass(web_products + erp_products + ledger_rows)
        conflicted = service.list_records(display_status=DisplayStatus.CONFLICTED)
    """

    def __init__(self):
        self.records = get_reconciliation_record_service()

    def _refresh(
        self,
        record: ReconciliationRecord,
        batch: dict[tuple[SourceSystem, str], SourceRecord],
    ) -> Optional[ReconciliationRecord]:
        """Save the refreshed record; one retry on a concurrent write. None if unchanged."""
        refreshed = reconcile_record(record, batch)
        if not _record_changed(record, refreshed):
            return None

        try:
            return self.records.save(refreshed, expected_version=record.version)
        except StaleRecordError:
            current = self.records.get_by_id(record.id)
            logger.info("reconcile_retry", record_id=record.id, version=current.version)
            refreshed = reconcile_record(current, batch)
            if not _record_changed(current, refreshed):
                return None
            return self.records.save(refreshed, expected_version=current.version)

    def run_pass(self, sources: Iterable[SourceRecord]) -> PassSummary:
        """
        Reconcile a batch of source records.

        Args:
            sources: Fresh records from any of the three systems

        Returns:
            PassSummary with created / updated / conflicted counts and the
            records skipped after a second concurrent write
        """
        batch = index_sources(sources)

        logger.info("reconciliation_pass_started", sources=len(batch))

        summary = PassSummary()
        seen: dict[str, ReconciliationRecord] = {}

        for (system, code), source in batch.items():
            holders = self.records.find_all_by_code(system, code)

            if not holders:
                record = ReconciliationRecord(id=str(uuid4()), **{REF_SLOTS[system]: source})
                created = self.records.create(record)
                summary.created += 1
                summary.record_ids.append(created.id)
                continue

            for holder in holders:
                seen.setdefault(holder.id, holder)

        for record in seen.values():
            try:
                saved = self._refresh(record, batch)
            except (StaleRecordError, ReconciliationRecordNotFoundError) as e:
                logger.warning("reconcile_record_skipped", record_id=record.id, reason=e.code)
                summary.skipped.append(record.id)
                continue

            if saved is None:
                continue

            summary.updated += 1
            summary.record_ids.append(saved.id)
            if saved.conflicts:
                summary.conflicted += 1

            if saved.status == MappingStatus.CONFIRMED and saved.conflicts:
                logger.warning(
                    "confirmed_mapping_diverged",
                    record_id=saved.id,
                    fields=sorted(f.value for f in saved.conflict_fields)
                )

        logger.info(
            "reconciliation_pass_completed",
            created=summary.created,
            updated=summary.updated,
            conflicted=summary.conflicted,
            skipped=len(summary.skipped)
        )

        return summary

    def list_records(
        self,
        display_status: Optional[DisplayStatus] = None,
        conflict_field: Optional[ConflictField] = None,
        needs_attention: Optional[bool] = None,
    ) -> list[ReconciliationRecord]:
        """
        Overview of records as the operator screen filters them.

        Args:
            display_status: UNLINKED ("unmapped"), LINKED, CONFLICTED, CONFIRMED
            conflict_field: Only records with a conflict of this kind
            needs_attention: Only records that do (or don't) need an operator

        Returns:
            Matching records ordered by id
        """
        status = DISPLAY_TO_STATUS[display_status] if display_status else None
        records = self.records.get_all(status=status, conflict_field=conflict_field)

        if display_status:
            records = [r for r in records if r.display_status == display_status]

        if needs_attention is not None:
            records = [r for r in records if r.needs_attention == needs_attention]

        logger.debug(
            "reconciliation_records_listed",
            display_status=display_status.value if display_status else None,
            conflict_field=conflict_field.value if conflict_field else None,
            count=len(records)
        )

        return records


# Singleton instance
_reconciliation_service: Optional[ReconciliationService] = None


def get_reconciliation_service() -> ReconciliationService:
    """Get or create ReconciliationService instance."""
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService()
    return _reconciliation_service
