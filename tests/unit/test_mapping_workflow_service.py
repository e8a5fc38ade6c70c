"""
Unit tests for the mapping workflow.

Run: pytest tests/unit/test_mapping_workflow_service.py -v
"""

import pytest
from datetime import datetime, timezone

from services.mapping_workflow_service import (
    MappingWorkflowService,
    apply_confirm,
    apply_link,
    apply_remove_linkage,
    apply_unlock,
    ensure_can_unlock,
)
from models.reconciliation import (
    ConflictField,
    DisplayStatus,
    MappingStatus,
    Operator,
    SourceSystem,
    SyncConfig,
)
from exceptions import (
    ConcurrentConfirmConflictError,
    IncompleteMappingError,
    InvalidMappingTransitionError,
    PermissionDeniedError,
    ReconciliationRecordNotFoundError,
    SourceAlreadyLinkedError,
    StaleRecordError,
    ValidationError,
)
from tests.factories import ReconciliationRecordFactory, SourceRecordFactory

TABLE = "reconciliation_records"


def _store(mock_supabase, *records):
    mock_supabase.set_table_data(TABLE, [ReconciliationRecordFactory.as_row(r) for r in records])


# ===================
# PURE TRANSITIONS
# ===================

class TestApplyLink:
    """Tests for apply_link()"""

    def test_web_only_stays_unlinked(self):
        record = ReconciliationRecordFactory.create()

        linked = apply_link(record, web_ref=SourceRecordFactory.create_web())

        assert linked.status == MappingStatus.UNLINKED
        assert linked.sync_config is None

    def test_erp_ref_links_and_attaches_default_config(self):
        record = ReconciliationRecordFactory.create_web_only(code="K-1")

        linked = apply_link(record, erp_ref=SourceRecordFactory.create_erp(code="K-1"))

        assert linked.status == MappingStatus.LINKED
        assert linked.sync_config.warehouses == ["02", "06"]
        assert linked.sync_config.price_priority == ["out_price5", "out_price"]

    def test_ledger_ref_alone_links(self):
        record = ReconciliationRecordFactory.create_web_only()

        linked = apply_link(record, ledger_ref=SourceRecordFactory.create_ledger())

        assert linked.status == MappingStatus.LINKED
        assert linked.sync_config is None

    def test_link_computes_conflicts(self):
        """Linking diverging products shows CONFLICTED."""
        record = ReconciliationRecordFactory.create(
            web_ref=SourceRecordFactory.create_web(code="K-1", price=100, stock=1)
        )

        linked = apply_link(record, erp_ref=SourceRecordFactory.create_erp(
            code="K-2", warehouse_stock={"02": 1}, price_tiers={"out_price": 100}
        ))

        assert linked.display_status == DisplayStatus.CONFLICTED
        assert linked.conflict_fields == {ConflictField.IDENTIFIER}

    def test_link_keeps_existing_sync_config(self):
        custom = SyncConfig(warehouses=["01"], price_priority=["out_price"])
        record = ReconciliationRecordFactory.create_linked(sync_config=custom)

        linked = apply_link(record, ledger_ref=SourceRecordFactory.create_ledger())

        assert linked.sync_config == custom

    def test_link_confirmed_rejected(self):
        record = ReconciliationRecordFactory.create_linked(status=MappingStatus.CONFIRMED)

        with pytest.raises(InvalidMappingTransitionError):
            apply_link(record, ledger_ref=SourceRecordFactory.create_ledger())


class TestApplyConfirm:
    """Tests for apply_confirm()"""

    def test_missing_erp_ref_raises_and_leaves_record(self):
        """Confirm precondition: no ERP ref → IncompleteMapping, status unchanged."""
        # Arrange
        record = apply_link(
            ReconciliationRecordFactory.create_web_only(),
            ledger_ref=SourceRecordFactory.create_ledger(),
        )

        # Act
        with pytest.raises(IncompleteMappingError) as exc_info:
            apply_confirm(record)

        # Assert
        assert exc_info.value.code == "INCOMPLETE_MAPPING"
        assert record.status == MappingStatus.LINKED

    def test_confirm_sets_status_and_audit(self):
        record = ReconciliationRecordFactory.create_linked()
        now = datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc)

        confirmed = apply_confirm(record, confirmed_by="lan", now=now)

        assert confirmed.status == MappingStatus.CONFIRMED
        assert confirmed.confirmed_by == "lan"
        assert confirmed.confirmed_at == now

    def test_conflicts_do_not_block(self):
        record = apply_link(
            ReconciliationRecordFactory.create(web_ref=SourceRecordFactory.create_web(code="K-1", price=5)),
            erp_ref=SourceRecordFactory.create_erp(code="K-1", price_tiers={"out_price": 9}),
        )
        assert record.display_status == DisplayStatus.CONFLICTED

        confirmed = apply_confirm(record)

        assert confirmed.status == MappingStatus.CONFIRMED
        assert confirmed.conflict_fields == {ConflictField.PRICE}

    def test_new_sync_config_changes_effective_values(self):
        """Confirming with warehouse 01 only re-evaluates stock against it."""
        record = ReconciliationRecordFactory.create_linked()

        confirmed = apply_confirm(
            record,
            sync_config=SyncConfig(warehouses=["01"], price_priority=["out_price5"]),
        )

        assert confirmed.sync_config.warehouses == ["01"]
        assert confirmed.conflict_fields == {ConflictField.STOCK}

    def test_confirm_twice_rejected(self):
        record = ReconciliationRecordFactory.create_linked(status=MappingStatus.CONFIRMED)

        with pytest.raises(InvalidMappingTransitionError):
            apply_confirm(record)


class TestApplyUnlockAndRemove:
    """Tests for apply_unlock() / apply_remove_linkage()"""

    def test_unlock_returns_to_linked(self):
        confirmed = apply_confirm(ReconciliationRecordFactory.create_linked(), confirmed_by="lan")

        unlocked = apply_unlock(confirmed)

        assert unlocked.status == MappingStatus.LINKED
        assert unlocked.confirmed_by is None
        assert unlocked.sync_config == confirmed.sync_config

    def test_unlock_requires_confirmed(self):
        with pytest.raises(InvalidMappingTransitionError):
            apply_unlock(ReconciliationRecordFactory.create_linked())

    def test_remove_linkage_from_confirmed(self):
        record = ReconciliationRecordFactory.create_linked(
            status=MappingStatus.CONFIRMED,
            ledger_ref=SourceRecordFactory.create_ledger(),
        )

        removed = apply_remove_linkage(record)

        assert removed.status == MappingStatus.UNLINKED
        assert removed.erp_ref is None
        assert removed.ledger_ref is None
        assert removed.sync_config is None
        assert removed.conflicts == set()
        assert removed.web_ref == record.web_ref


class TestEnsureCanUnlock:
    """Tests for ensure_can_unlock()"""

    def test_admin_allowed(self):
        ensure_can_unlock(Operator(name="minh", role="admin"))

    def test_operator_denied(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ensure_can_unlock(Operator(name="lan", role="operator"))

        assert exc_info.value.status_code == 403


# ===================
# SERVICE
# ===================

class TestLinkRecord:
    """Tests for MappingWorkflowService.link_record()"""

    def test_creates_record_for_new_codes(self, mock_db, mock_supabase):
        service = MappingWorkflowService()

        record = service.link_record(
            web_ref=SourceRecordFactory.create_web(code="K-1"),
            erp_ref=SourceRecordFactory.create_erp(code="K-1"),
        )

        assert record.status == MappingStatus.LINKED
        assert len(mock_supabase.rows(TABLE)) == 1

    def test_links_into_record_holding_web_code(self, mock_db, mock_supabase):
        existing = ReconciliationRecordFactory.create_web_only(id="rec-1", code="K-1")
        _store(mock_supabase, existing)
        service = MappingWorkflowService()

        record = service.link_record(
            web_ref=SourceRecordFactory.create_web(code="K-1"),
            erp_ref=SourceRecordFactory.create_erp(code="K-1"),
        )

        assert record.id == "rec-1"
        assert record.version == 1
        assert len(mock_supabase.rows(TABLE)) == 1

    def test_moves_erp_ref_from_other_record(self, mock_db, mock_supabase):
        """An ERP-only record gives up its code when it is linked elsewhere."""
        # Arrange
        web_only = ReconciliationRecordFactory.create_web_only(id="rec-web", code="K-1")
        erp_only = ReconciliationRecordFactory.create(
            id="rec-erp",
            erp_ref=SourceRecordFactory.create_erp(code="K-1"),
            status=MappingStatus.LINKED,
        )
        _store(mock_supabase, web_only, erp_only)
        service = MappingWorkflowService()

        # Act
        record = service.link_record(record_id="rec-web", erp_ref=SourceRecordFactory.create_erp(code="K-1"))

        # Assert
        assert record.status == MappingStatus.LINKED
        orphan = service.records.get_by_id("rec-erp")
        assert orphan.erp_ref is None
        assert orphan.status == MappingStatus.UNLINKED
        assert service.records.find_by_code(SourceSystem.ERP, "K-1").id == "rec-web"

    def test_code_held_by_confirmed_record_rejected(self, mock_db, mock_supabase):
        confirmed = ReconciliationRecordFactory.create_linked(
            id="rec-confirmed", code="K-1", status=MappingStatus.CONFIRMED
        )
        other = ReconciliationRecordFactory.create_web_only(id="rec-other", code="K-2")
        _store(mock_supabase, confirmed, other)
        service = MappingWorkflowService()

        with pytest.raises(SourceAlreadyLinkedError):
            service.link_record(record_id="rec-other", erp_ref=SourceRecordFactory.create_erp(code="K-1"))

        assert service.records.get_by_id("rec-other").version == 0

    def test_stale_target_leaves_holders_untouched(self, mock_db, mock_supabase, monkeypatch):
        """Target moved on after it was read: the link fails and no holder gives up its code."""
        # Arrange
        holder = ReconciliationRecordFactory.create(
            id="rec-holder",
            erp_ref=SourceRecordFactory.create_erp(code="E1"),
            status=MappingStatus.LINKED,
        )
        target = ReconciliationRecordFactory.create_web_only(id="rec-target", code="W1", version=2)
        _store(mock_supabase, holder, target)
        service = MappingWorkflowService()
        stored_get = service.records.get_by_id
        monkeypatch.setattr(
            service.records,
            "get_by_id",
            lambda record_id: stored_get(record_id).model_copy(update={"version": 1})
            if record_id == "rec-target" else stored_get(record_id),
        )

        # Act
        with pytest.raises(StaleRecordError):
            service.link_record(record_id="rec-target", erp_ref=SourceRecordFactory.create_erp(code="E1"))

        # Assert
        stored_holder = stored_get("rec-holder")
        assert stored_holder.erp_ref.code == "E1"
        assert stored_holder.status == MappingStatus.LINKED
        assert stored_holder.version == 0
        assert stored_get("rec-target").erp_ref is None

    def test_failed_detach_restores_target(self, mock_db, mock_supabase, monkeypatch):
        """Holder changed after it was read: the target write is undone."""
        # Arrange
        holder = ReconciliationRecordFactory.create(
            id="rec-holder",
            erp_ref=SourceRecordFactory.create_erp(code="E1"),
            status=MappingStatus.LINKED,
            version=1,
        )
        target = ReconciliationRecordFactory.create_web_only(id="rec-target", code="W1")
        _store(mock_supabase, holder, target)
        service = MappingWorkflowService()
        stored_find = service.records.find_all_by_code
        monkeypatch.setattr(
            service.records,
            "find_all_by_code",
            lambda system, code: [
                r.model_copy(update={"version": r.version - 1}) if r.id == "rec-holder" else r
                for r in stored_find(system, code)
            ],
        )

        # Act
        with pytest.raises(StaleRecordError):
            service.link_record(record_id="rec-target", erp_ref=SourceRecordFactory.create_erp(code="E1"))

        # Assert
        restored = service.records.get_by_id("rec-target")
        assert restored.erp_ref is None
        assert restored.status == MappingStatus.UNLINKED
        assert restored.sync_config is None
        stored_holder = service.records.get_by_id("rec-holder")
        assert stored_holder.erp_ref.code == "E1"
        assert stored_holder.version == 1

    def test_empty_link_rejected(self, mock_db, mock_supabase):
        service = MappingWorkflowService()

        with pytest.raises(ValidationError):
            service.link_record()

    def test_unknown_record_id(self, mock_db, mock_supabase):
        service = MappingWorkflowService()

        with pytest.raises(ReconciliationRecordNotFoundError):
            service.link_record(record_id="missing", erp_ref=SourceRecordFactory.create_erp())


class TestConfirmMapping:
    """Tests for MappingWorkflowService.confirm_mapping()"""

    def test_confirm_persists_config(self, mock_db, mock_supabase):
        # Arrange
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1"))
        service = MappingWorkflowService()
        config = SyncConfig(warehouses=["02", "06", "03"], price_priority=["out_price5"])

        # Act
        record = service.confirm_mapping("rec-1", sync_config=config, operator=Operator(name="lan"))

        # Assert
        assert record.status == MappingStatus.CONFIRMED
        assert record.confirmed_by == "lan"
        stored = service.records.get_by_id("rec-1")
        assert stored.sync_config.warehouses == ["02", "03", "06"]
        assert stored.status == MappingStatus.CONFIRMED

    def test_incomplete_mapping_leaves_stored_record(self, mock_db, mock_supabase):
        record = apply_link(
            ReconciliationRecordFactory.create_web_only(id="rec-1"),
            ledger_ref=SourceRecordFactory.create_ledger(),
        )
        _store(mock_supabase, record)
        service = MappingWorkflowService()

        with pytest.raises(IncompleteMappingError):
            service.confirm_mapping("rec-1")

        stored = service.records.get_by_id("rec-1")
        assert stored.status == MappingStatus.LINKED
        assert stored.version == 0

    def test_expected_version_mismatch(self, mock_db, mock_supabase):
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1", version=2))
        service = MappingWorkflowService()

        with pytest.raises(ConcurrentConfirmConflictError) as exc_info:
            service.confirm_mapping("rec-1", expected_version=1)

        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "CONCURRENT_CONFIRM_CONFLICT"

    def test_second_confirm_loses(self, mock_db, mock_supabase):
        """Two operators confirm from the same version: the first wins."""
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1"))
        service = MappingWorkflowService()

        service.confirm_mapping("rec-1", expected_version=0, operator=Operator(name="lan"))

        with pytest.raises(ConcurrentConfirmConflictError):
            service.confirm_mapping("rec-1", expected_version=0, operator=Operator(name="minh"))

        assert service.records.get_by_id("rec-1").confirmed_by == "lan"


class TestUnlockRemoveNotes:
    """Tests for unlock_mapping / remove_linkage / update_notes"""

    def test_unlock_by_manager(self, mock_db, mock_supabase):
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1", status=MappingStatus.CONFIRMED))
        service = MappingWorkflowService()

        record = service.unlock_mapping("rec-1", Operator(name="minh", role="manager"))

        assert record.status == MappingStatus.LINKED

    def test_unlock_denied_leaves_record(self, mock_db, mock_supabase):
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1", status=MappingStatus.CONFIRMED))
        service = MappingWorkflowService()

        with pytest.raises(PermissionDeniedError):
            service.unlock_mapping("rec-1", Operator(name="lan"))

        assert service.records.get_by_id("rec-1").status == MappingStatus.CONFIRMED

    def test_remove_linkage(self, mock_db, mock_supabase):
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1"))
        service = MappingWorkflowService()

        record = service.remove_linkage("rec-1")

        assert record.status == MappingStatus.UNLINKED
        assert record.erp_ref is None
        assert record.needs_attention is True
        assert service.records.find_by_code(SourceSystem.ERP, "LCD-DE-P2422H") is None

    def test_update_notes_keeps_status(self, mock_db, mock_supabase):
        _store(mock_supabase, ReconciliationRecordFactory.create_linked(id="rec-1", status=MappingStatus.CONFIRMED))
        service = MappingWorkflowService()

        record = service.update_notes("rec-1", "Giá web đang khuyến mãi")

        assert record.notes == "Giá web đang khuyến mãi"
        assert record.status == MappingStatus.CONFIRMED
