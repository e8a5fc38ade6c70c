"""
SyncConfig resolution.

Computes the single "ERP value" a Web figure is compared against when the
ERP reports several warehouses and several price tiers.
"""

from decimal import Decimal
from typing import Optional
import structlog

from config import settings
from models.reconciliation import ReconciliationRecord, SourceRecord, SyncConfig

logger = structlog.get_logger(__name__)


def default_sync_config() -> SyncConfig:
    """SyncConfig attached to a record when it is first linked."""
    return SyncConfig(
        warehouses=list(settings.default_sync_warehouses),
        price_priority=list(settings.default_price_priority),
    )


def stock_for_warehouses(erp: SourceRecord, warehouses: list[str]) -> Decimal:
    """
    Sum ERP stock over the given warehouses.

    Warehouses the ERP no longer reports contribute 0.
    """
    total = Decimal("0")
    for code in warehouses:
        total += erp.warehouse_stock.get(code, Decimal("0"))
    return total


def price_by_priority(erp: SourceRecord, priority: list[str]) -> Optional[Decimal]:
    """
    First non-null, non-zero tier price in priority order.

    Returns:
        Tier price, or None when every listed tier is null or zero
    """
    for tier in priority:
        value = erp.price_tiers.get(tier)
        if value is not None and value != 0:
            return value
    return None


def effective_erp_stock(record: ReconciliationRecord) -> Optional[Decimal]:
    """
    ERP stock figure the Web stock should equal.

    Returns:
        Sum over SyncConfig.warehouses, the ERP flat stock when the record
        has no SyncConfig, or None when there is no ERP reference
    """
    erp = record.erp_ref
    if erp is None:
        return None

    if record.sync_config is None:
        return erp.stock

    return stock_for_warehouses(erp, record.sync_config.warehouses)


def effective_erp_price(record: ReconciliationRecord) -> Optional[Decimal]:
    """
    ERP price the Web price should equal.

    Returns:
        First usable tier in SyncConfig.price_priority, the ERP flat price
        when the record has no SyncConfig, or None (no comparison possible)
    """
    erp = record.erp_ref
    if erp is None:
        return None

    if record.sync_config is None:
        if erp.price is None or erp.price == 0:
            return None
        return erp.price

    price = price_by_priority(erp, record.sync_config.price_priority)

    if price is None:
        logger.debug(
            "effective_price_unavailable",
            record_id=record.id,
            tiers=record.sync_config.price_priority
        )

    return price
