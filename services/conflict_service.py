"""
Field conflict detection.

Compares the same logical product as recorded in each linked system and
flags every divergence. Pure: same record in, same set out.

Rules:
    IDENTIFIER  Web code != ERP code (copy-exact, no trimming)
    PRICE       Web price != effective ERP price (skipped when ERP price unknown)
    STOCK       Web stock != effective ERP stock
    LEDGER      Web vs LEDGER price/stock, only for values the ledger reports

A field is never compared against a source that is not linked.
"""

from decimal import Decimal
from typing import Optional
import structlog

from config import settings
from models.reconciliation import (
    ConflictField,
    ConflictFlag,
    ReconciliationRecord,
    SourceSystem,
)
from services.sync_config_service import effective_erp_price, effective_erp_stock

logger = structlog.get_logger(__name__)


def _amount_flag(
    field: ConflictField,
    source_a: SourceSystem,
    value_a: Optional[Decimal],
    source_b: SourceSystem,
    value_b: Optional[Decimal],
    tolerance: Decimal,
) -> Optional[ConflictFlag]:
    """Flag two amounts whose difference exceeds tolerance; None if either is missing."""
    if value_a is None or value_b is None:
        return None

    magnitude = abs(value_a - value_b)
    if magnitude <= tolerance:
        return None

    return ConflictFlag(
        field=field,
        source_a=source_a,
        source_b=source_b,
        value_a=str(value_a),
        value_b=str(value_b),
        magnitude=magnitude,
    )


def detect_conflicts(
    record: ReconciliationRecord,
    price_tolerance: Optional[Decimal] = None,
    stock_tolerance: Optional[Decimal] = None,
) -> set[ConflictFlag]:
    """
    Detect every divergence between the record's linked sources.

    Args:
        record: Record with fresh source snapshots
        price_tolerance: Allowed price difference (settings default, 0 = exact)
        stock_tolerance: Allowed stock difference (settings default, 0 = exact)

    Returns:
        Full conflict set; callers replace the record's conflicts with it
    """
    if price_tolerance is None:
        price_tolerance = settings.price_tolerance
    if stock_tolerance is None:
        stock_tolerance = settings.stock_tolerance

    web = record.web_ref
    erp = record.erp_ref
    ledger = record.ledger_ref

    conflicts: set[ConflictFlag] = set()

    if web is None:
        return conflicts

    if erp is not None:
        if web.code != erp.code:
            conflicts.add(ConflictFlag(
                field=ConflictField.IDENTIFIER,
                source_a=SourceSystem.WEB,
                source_b=SourceSystem.ERP,
                value_a=web.code,
                value_b=erp.code,
            ))

        flag = _amount_flag(
            ConflictField.PRICE,
            SourceSystem.WEB, web.price,
            SourceSystem.ERP, effective_erp_price(record),
            price_tolerance,
        )
        if flag:
            conflicts.add(flag)

        flag = _amount_flag(
            ConflictField.STOCK,
            SourceSystem.WEB, web.stock,
            SourceSystem.ERP, effective_erp_stock(record),
            stock_tolerance,
        )
        if flag:
            conflicts.add(flag)

    if ledger is not None:
        for field, web_value, ledger_value, tolerance in (
            (ConflictField.PRICE, web.price, ledger.price, price_tolerance),
            (ConflictField.STOCK, web.stock, ledger.stock, stock_tolerance),
        ):
            flag = _amount_flag(
                field,
                SourceSystem.WEB, web_value,
                SourceSystem.LEDGER, ledger_value,
                tolerance,
            )
            if flag:
                conflicts.add(flag)

    logger.debug(
        "conflicts_detected",
        record_id=record.id,
        count=len(conflicts),
        fields=sorted(f.field.value for f in conflicts)
    )

    return conflicts


def refresh_conflicts(record: ReconciliationRecord) -> ReconciliationRecord:
    """
    Copy of the record with conflicts recomputed from scratch.

    Status is left alone: a CONFIRMED record keeps its status and only
    shows the new conflicts.
    """
    return record.model_copy(update={"conflicts": detect_conflicts(record)})
