"""
Mapping workflow: state machine for reconciliation records.

    UNLINKED ──link──▶ LINKED ──confirm──▶ CONFIRMED
        ▲                 ▲                    │
        │                 └──────unlock────────┘
        └──────────── remove linkage (any state)

CONFLICTED is not a state: it is LINKED with a non-empty conflict set.

The apply_* functions are pure: they take a record and return a new one,
or raise without touching the input. MappingWorkflowService loads the
record, applies one transition and writes the result under the version
check.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
import structlog

from config import settings
from models.reconciliation import (
    MappingStatus,
    Operator,
    REF_SYSTEMS,
    ReconciliationRecord,
    SourceRecord,
    SourceSystem,
    SyncConfig,
)
from services.conflict_service import refresh_conflicts
from services.sync_config_service import default_sync_config
from services.reconciliation_record_service import get_reconciliation_record_service
from exceptions import (
    AppError,
    ConcurrentConfirmConflictError,
    IncompleteMappingError,
    InvalidMappingTransitionError,
    PermissionDeniedError,
    SourceAlreadyLinkedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Record slot holding each system's reference
REF_SLOTS = {system: slot for slot, system in REF_SYSTEMS.items()}


# ===================
# PURE TRANSITIONS
# ===================

def apply_link(
    record: ReconciliationRecord,
    web_ref: Optional[SourceRecord] = None,
    erp_ref: Optional[SourceRecord] = None,
    ledger_ref: Optional[SourceRecord] = None,
) -> ReconciliationRecord:
    """
    Attach references; refs not given are kept.

    The record becomes LINKED once it has an ERP or LEDGER reference. A
    record with only a Web reference stays UNLINKED. Linking an ERP
    reference for the first time attaches the default SyncConfig.

    Raises:
        InvalidMappingTransitionError: Record is CONFIRMED (unlock first)
    """
    if record.status == MappingStatus.CONFIRMED:
        raise InvalidMappingTransitionError(record.id, record.status.value, "link")

    update = {}
    if web_ref is not None:
        update["web_ref"] = web_ref
    if erp_ref is not None:
        update["erp_ref"] = erp_ref
    if ledger_ref is not None:
        update["ledger_ref"] = ledger_ref

    linked = record.model_copy(update=update)

    has_partner = linked.erp_ref is not None or linked.ledger_ref is not None
    sync_config = linked.sync_config
    if sync_config is None and linked.erp_ref is not None:
        sync_config = default_sync_config()

    linked = linked.model_copy(update={
        "status": MappingStatus.LINKED if has_partner else MappingStatus.UNLINKED,
        "sync_config": sync_config,
    })

    return refresh_conflicts(linked)


def apply_confirm(
    record: ReconciliationRecord,
    sync_config: Optional[SyncConfig] = None,
    confirmed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReconciliationRecord:
    """
    Commit mapping: lock the correspondence with its SyncConfig.

    Conflicts do not block confirmation; they stay visible on the record.

    Args:
        record: LINKED record with an ERP reference
        sync_config: Config to lock in (current or default when omitted)
        confirmed_by: Operator name for the audit fields
        now: Confirmation timestamp (defaults to current UTC time)

    Raises:
        IncompleteMappingError: No ERP reference
        InvalidMappingTransitionError: Record is not LINKED
    """
    if record.erp_ref is None:
        raise IncompleteMappingError(record.id)

    if record.status != MappingStatus.LINKED:
        raise InvalidMappingTransitionError(record.id, record.status.value, "confirm")

    confirmed = record.model_copy(update={
        "status": MappingStatus.CONFIRMED,
        "sync_config": sync_config or record.sync_config or default_sync_config(),
        "confirmed_by": confirmed_by,
        "confirmed_at": now or datetime.now(timezone.utc),
    })

    # Effective ERP figures depend on the config just locked in
    return refresh_conflicts(confirmed)


def apply_unlock(record: ReconciliationRecord) -> ReconciliationRecord:
    """
    CONFIRMED → LINKED so the mapping can be edited.

    Raises:
        InvalidMappingTransitionError: Record is not CONFIRMED
    """
    if record.status != MappingStatus.CONFIRMED:
        raise InvalidMappingTransitionError(record.id, record.status.value, "unlock")

    return record.model_copy(update={
        "status": MappingStatus.LINKED,
        "confirmed_by": None,
        "confirmed_at": None,
    })


def apply_remove_linkage(record: ReconciliationRecord) -> ReconciliationRecord:
    """
    Sever ERP and LEDGER references from any state.

    The Web reference is kept; conflicts and SyncConfig go with the linkage.
    """
    return record.model_copy(update={
        "erp_ref": None,
        "ledger_ref": None,
        "sync_config": None,
        "conflicts": set(),
        "status": MappingStatus.UNLINKED,
        "confirmed_by": None,
        "confirmed_at": None,
    })


def apply_detach(record: ReconciliationRecord, system: SourceSystem) -> ReconciliationRecord:
    """
    Drop one reference so it can move to another record.

    Raises:
        SourceAlreadyLinkedError: Record is CONFIRMED
    """
    slot = REF_SLOTS[system]
    ref = getattr(record, slot)

    if record.status == MappingStatus.CONFIRMED:
        raise SourceAlreadyLinkedError(system.value, ref.code if ref else "", record.id)

    detached = record.model_copy(update={slot: None, "conflicts": set()})
    has_partner = detached.erp_ref is not None or detached.ledger_ref is not None

    detached = detached.model_copy(update={
        "status": MappingStatus.LINKED if has_partner else MappingStatus.UNLINKED,
        "sync_config": detached.sync_config if detached.erp_ref is not None else None,
    })

    return refresh_conflicts(detached)


def ensure_can_unlock(operator: Operator) -> None:
    """
    Raises:
        PermissionDeniedError: Operator role not in settings.unlock_roles
    """
    if operator.role not in settings.unlock_roles:
        raise PermissionDeniedError(
            "unlock mapping",
            role=operator.role,
            allowed=list(settings.unlock_roles)
        )


# ===================
# SERVICE
# ===================

class MappingWorkflowService:
    """
    Operator-triggered workflow actions on stored records.

    Each action is read → transition → conditional write, so a failed
    precondition never leaves a partial update behind. link_record also
    writes the holders it detaches and undoes its own writes if one fails.
    """

    def __init__(self):
        self.records = get_reconciliation_record_service()

    def _find_for_refs(
        self,
        web_ref: Optional[SourceRecord],
        erp_ref: Optional[SourceRecord],
        ledger_ref: Optional[SourceRecord],
    ) -> Optional[ReconciliationRecord]:
        for ref in (web_ref, erp_ref, ledger_ref):
            if ref is None:
                continue
            existing = self.records.find_by_code(ref.system, ref.code)
            if existing is not None:
                return existing
        return None

    def _undo_link(
        self,
        record: ReconciliationRecord,
        saved: ReconciliationRecord,
        is_new: bool,
        detached_saved: list[tuple[ReconciliationRecord, ReconciliationRecord]],
    ) -> None:
        """Put back the target and every holder already written by a failed link."""
        for original, stored in detached_saved:
            self.records.save(original, expected_version=stored.version)

        if is_new:
            self.records.delete(saved.id, expected_version=saved.version)
        else:
            self.records.save(record, expected_version=saved.version)

    def link_record(
        self,
        web_ref: Optional[SourceRecord] = None,
        erp_ref: Optional[SourceRecord] = None,
        ledger_ref: Optional[SourceRecord] = None,
        record_id: Optional[str] = None,
    ) -> ReconciliationRecord:
        """
        Link source references into one record.

        Uses record_id when given, otherwise the record already holding one
        of the codes, otherwise a new record. A source code belongs to one
        record: other records holding a linked code give it up.

        Raises:
            ReconciliationRecordNotFoundError: record_id doesn't exist
            InvalidMappingTransitionError: Record is CONFIRMED
            SourceAlreadyLinkedError: A code is held by a confirmed record
            StaleRecordError: Record changed concurrently
        """
        logger.info(
            "linking_record",
            record_id=record_id,
            web_code=web_ref.code if web_ref else None,
            erp_code=erp_ref.code if erp_ref else None,
            ledger_code=ledger_ref.code if ledger_ref else None
        )

        if web_ref is None and erp_ref is None and ledger_ref is None:
            raise ValidationError("At least one source reference is required", code="EMPTY_LINK")

        if record_id:
            record = self.records.get_by_id(record_id)
        else:
            record = self._find_for_refs(web_ref, erp_ref, ledger_ref)

        is_new = record is None
        if is_new:
            record = ReconciliationRecord(id=str(uuid4()))

        linked = apply_link(record, web_ref=web_ref, erp_ref=erp_ref, ledger_ref=ledger_ref)

        # Every precondition is checked before the first write
        holders: dict[str, tuple[ReconciliationRecord, ReconciliationRecord]] = {}
        for ref in (web_ref, erp_ref, ledger_ref):
            if ref is None:
                continue
            for holder in self.records.find_all_by_code(ref.system, ref.code):
                if holder.id == record.id:
                    continue
                original, current = holders.get(holder.id, (holder, holder))
                holders[holder.id] = (original, apply_detach(current, ref.system))

        # Target first: a stale target fails before any holder is touched
        if is_new:
            saved = self.records.create(linked)
        else:
            saved = self.records.save(linked, expected_version=record.version)

        detached_saved: list[tuple[ReconciliationRecord, ReconciliationRecord]] = []
        try:
            for original, detached in holders.values():
                stored = self.records.save(detached, expected_version=original.version)
                detached_saved.append((original, stored))
                logger.info(
                    "source_detached",
                    record_id=original.id,
                    moved_to=record.id,
                    to_status=detached.status.value
                )
        except AppError as e:
            logger.warning("link_rolled_back", record_id=record.id, error=str(e))
            self._undo_link(record, saved, is_new, detached_saved)
            raise

        logger.info(
            "record_linked",
            record_id=saved.id,
            from_status=record.status.value,
            to_status=saved.status.value,
            conflict_count=len(saved.conflicts)
        )

        return saved

    def confirm_mapping(
        self,
        record_id: str,
        sync_config: Optional[SyncConfig] = None,
        operator: Optional[Operator] = None,
        expected_version: Optional[int] = None,
    ) -> ReconciliationRecord:
        """
        Commit mapping for a record.

        Args:
            record_id: Record UUID
            sync_config: Config to lock in
            operator: Who confirms (audit)
            expected_version: Version the operator was looking at

        Raises:
            IncompleteMappingError: No ERP reference; record unchanged
            InvalidMappingTransitionError: Record is not LINKED
            ConcurrentConfirmConflictError: Another write got there first
        """
        logger.info("confirming_mapping", record_id=record_id, expected_version=expected_version)

        record = self.records.get_by_id(record_id)

        if expected_version is not None and expected_version != record.version:
            raise ConcurrentConfirmConflictError(record_id, expected_version, record.version)

        try:
            confirmed = apply_confirm(
                record,
                sync_config=sync_config,
                confirmed_by=operator.name if operator else None,
            )
        except (IncompleteMappingError, InvalidMappingTransitionError) as e:
            logger.warning(
                "confirm_mapping_rejected",
                record_id=record_id,
                status=record.status.value,
                reason=e.code
            )
            raise

        saved = self.records.save(
            confirmed,
            expected_version=record.version,
            stale_error=ConcurrentConfirmConflictError,
        )

        logger.info(
            "mapping_confirmed",
            record_id=record_id,
            confirmed_by=saved.confirmed_by,
            warehouses=saved.sync_config.warehouses,
            price_priority=saved.sync_config.price_priority,
            conflict_count=len(saved.conflicts)
        )

        return saved

    def unlock_mapping(self, record_id: str, operator: Operator) -> ReconciliationRecord:
        """
        Return a CONFIRMED record to LINKED.

        Raises:
            PermissionDeniedError: Operator may not unlock
            InvalidMappingTransitionError: Record is not CONFIRMED
        """
        logger.info("unlocking_mapping", record_id=record_id, operator=operator.name)

        ensure_can_unlock(operator)

        record = self.records.get_by_id(record_id)
        saved = self.records.save(apply_unlock(record), expected_version=record.version)

        logger.info("mapping_unlocked", record_id=record_id, operator=operator.name)

        return saved

    def remove_linkage(self, record_id: str, operator: Optional[Operator] = None) -> ReconciliationRecord:
        """Clear ERP/LEDGER references and SyncConfig; record becomes UNLINKED."""
        logger.info(
            "removing_linkage",
            record_id=record_id,
            operator=operator.name if operator else None
        )

        record = self.records.get_by_id(record_id)
        saved = self.records.save(apply_remove_linkage(record), expected_version=record.version)

        logger.info(
            "linkage_removed",
            record_id=record_id,
            from_status=record.status.value
        )

        return saved

    def update_notes(self, record_id: str, notes: Optional[str]) -> ReconciliationRecord:
        """Set the operator annotation; status is untouched."""
        record = self.records.get_by_id(record_id)
        saved = self.records.save(
            record.model_copy(update={"notes": notes}),
            expected_version=record.version,
        )

        logger.info("record_notes_updated", record_id=record_id)

        return saved


# Singleton instance
_workflow_service: Optional[MappingWorkflowService] = None


def get_mapping_workflow_service() -> MappingWorkflowService:
    """Get or create MappingWorkflowService instance."""
    global _workflow_service
    if _workflow_service is None:
        _workflow_service = MappingWorkflowService()
    return _workflow_service
