"""
Reconciliation record persistence.

Every write is a compare-and-swap on the version column: the row is only
updated when its version still matches what the caller read, and the
version is bumped by one. Lookups by source code go through the flat
web_code / erp_code / ledger_code columns kept next to the JSON snapshots.
"""

from typing import Optional
from uuid import uuid4
import structlog

from config import get_supabase_client, RECONCILIATION_TABLE
from models.reconciliation import (
    ConflictField,
    MappingStatus,
    ReconciliationRecord,
    SourceSystem,
)
from exceptions import (
    ReconciliationRecordNotFoundError,
    StaleRecordError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)

# Derived fields never written to the table
COMPUTED_FIELDS = {"display_status", "on_web", "needs_attention"}

CODE_COLUMNS = {
    SourceSystem.WEB: "web_code",
    SourceSystem.ERP: "erp_code",
    SourceSystem.LEDGER: "ledger_code",
}


def record_to_row(record: ReconciliationRecord) -> dict:
    """Serialize a record for the reconciliation_records table."""
    row = record.model_dump(
        mode="json",
        exclude=COMPUTED_FIELDS | {"created_at", "updated_at"},
    )
    row["conflicts"] = sorted(
        row["conflicts"],
        key=lambda c: (c["field"], c["source_a"], c["source_b"])
    )
    row["web_code"] = record.web_ref.code if record.web_ref else None
    row["erp_code"] = record.erp_ref.code if record.erp_ref else None
    row["ledger_code"] = record.ledger_ref.code if record.ledger_ref else None
    return row


def row_to_record(row: dict) -> ReconciliationRecord:
    """Build a record from a table row (extra columns are ignored)."""
    return ReconciliationRecord(**row)


class ReconciliationRecordService:
    """
    Table access for reconciliation records.

    Workflow and pass services build the new record state; this class only
    reads and writes it.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = RECONCILIATION_TABLE

    # ===================
    # READ OPERATIONS
    # ===================

    def get_by_id(self, record_id: str) -> ReconciliationRecord:
        """
        Get a single record.

        Raises:
            ReconciliationRecordNotFoundError: If record doesn't exist
        """
        logger.debug("getting_reconciliation_record", record_id=record_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", record_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_reconciliation_record_failed", record_id=record_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ReconciliationRecordNotFoundError(record_id)

        return row_to_record(result.data[0])

    def find_all_by_code(self, system: SourceSystem, code: str) -> list[ReconciliationRecord]:
        """Every record referencing a source code, oldest id first."""
        column = CODE_COLUMNS[system]

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq(column, code)
                .order("id")
                .execute()
            )
        except Exception as e:
            logger.error("find_reconciliation_record_failed", system=system.value, code=code, error=str(e))
            raise DatabaseError("select", str(e))

        return [row_to_record(row) for row in result.data]

    def find_by_code(self, system: SourceSystem, code: str) -> Optional[ReconciliationRecord]:
        """
        Record currently referencing a source code.

        Returns:
            ReconciliationRecord or None if the code has never been seen
        """
        records = self.find_all_by_code(system, code)
        return records[0] if records else None

    def get_all(
        self,
        status: Optional[MappingStatus] = None,
        conflict_field: Optional[ConflictField] = None,
    ) -> list[ReconciliationRecord]:
        """
        Get records, optionally by persisted status and conflict kind.

        Args:
            status: Persisted status filter
            conflict_field: Only records with a conflict of this kind

        Returns:
            Records ordered by id
        """
        try:
            query = self.db.table(self.table).select("*")
            if status:
                query = query.eq("status", status.value)
            result = query.order("id").execute()
        except Exception as e:
            logger.error("get_reconciliation_records_failed", error=str(e))
            raise DatabaseError("select", str(e))

        records = [row_to_record(row) for row in result.data]

        if conflict_field:
            records = [r for r in records if conflict_field in r.conflict_fields]

        return records

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, record: Optional[ReconciliationRecord] = None) -> ReconciliationRecord:
        """
        Insert a new record at version 0.

        Args:
            record: Initial state (an empty UNLINKED record when omitted)
        """
        if record is None:
            record = ReconciliationRecord(id=str(uuid4()))

        row = record_to_row(record)
        row["version"] = 0

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_reconciliation_record_failed", record_id=record.id, error=str(e))
            raise DatabaseError("insert", str(e))

        logger.info(
            "reconciliation_record_created",
            record_id=record.id,
            status=record.status.value
        )

        return row_to_record(result.data[0])

    def save(
        self,
        record: ReconciliationRecord,
        expected_version: int,
        stale_error: type[StaleRecordError] = StaleRecordError,
    ) -> ReconciliationRecord:
        """
        Write a record if nobody else has written it since expected_version.

        Args:
            record: New state
            expected_version: Version the new state was derived from
            stale_error: Error raised when the version check fails

        Returns:
            Stored record with the bumped version

        Raises:
            stale_error: Row version moved on, or the row vanished
                (actual_version None)
        """
        row = record_to_row(record)
        row["version"] = expected_version + 1

        try:
            result = (
                self.db.table(self.table)
                .update(row)
                .eq("id", record.id)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as e:
            logger.error("save_reconciliation_record_failed", record_id=record.id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            try:
                actual_version = self.get_by_id(record.id).version
            except ReconciliationRecordNotFoundError:
                actual_version = None
            logger.warning(
                "reconciliation_record_stale",
                record_id=record.id,
                expected_version=expected_version,
                actual_version=actual_version
            )
            raise stale_error(record.id, expected_version, actual_version)

        return row_to_record(result.data[0])

    def delete(self, record_id: str, expected_version: int) -> None:
        """
        Remove a record, only at the version the caller last wrote.

        Used to undo a record created by an operation that failed later on.

        Raises:
            StaleRecordError: Row changed or is already gone
        """
        try:
            result = (
                self.db.table(self.table)
                .delete()
                .eq("id", record_id)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as e:
            logger.error("delete_reconciliation_record_failed", record_id=record_id, error=str(e))
            raise DatabaseError("delete", str(e))

        if not result.data:
            raise StaleRecordError(record_id, expected_version)

        logger.info("reconciliation_record_deleted", record_id=record_id)


# Singleton instance
_record_service: Optional[ReconciliationRecordService] = None


def get_reconciliation_record_service() -> ReconciliationRecordService:
    """Get or create ReconciliationRecordService instance."""
    global _record_service
    if _record_service is None:
        _record_service = ReconciliationRecordService()
    return _record_service
