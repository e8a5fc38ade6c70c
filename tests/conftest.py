"""
Shared test fixtures.

The mock Supabase client keeps one in-memory list of rows per table and
honours eq / order / limit, so version-checked updates behave like the
real table.
"""

import os
import sys
from pathlib import Path

# Settings require Supabase credentials at import time
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-key")

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

import pytest
from unittest.mock import patch
from datetime import datetime
from typing import Generator
from uuid import uuid4


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, rows: list, fail_with: Exception = None):
        self._rows = rows
        self._fail_with = fail_with
        self._operation = "select"
        self._payload = None
        self._filters: list[tuple[str, object]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit = None

    def select(self, *args, **kwargs):
        self._operation = "select"
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(row.get(column) == value for column, value in self._filters)

    def execute(self) -> MockSupabaseResponse:
        if self._fail_with is not None:
            raise self._fail_with

        now = datetime.utcnow().isoformat() + "Z"

        if self._operation == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in items:
                row = dict(item)
                row.setdefault("id", str(uuid4()))
                row["created_at"] = now
                row["updated_at"] = now
                self._rows.append(row)
                inserted.append(dict(row))
            return MockSupabaseResponse(data=inserted)

        matched = [row for row in self._rows if self._matches(row)]

        if self._operation == "update":
            for row in matched:
                row.update(self._payload)
                row["updated_at"] = now
            return MockSupabaseResponse(data=[dict(row) for row in matched])

        if self._operation == "delete":
            for row in matched:
                self._rows.remove(row)
            return MockSupabaseResponse(data=[dict(row) for row in matched])

        for column, desc in reversed(self._order):
            matched = sorted(matched, key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]

        return MockSupabaseResponse(data=[dict(row) for row in matched])


class MockSupabaseTable:
    """Mock Supabase table backed by a shared list of rows."""

    def __init__(self, rows: list, fail_with: Exception = None):
        self._rows = rows
        self._fail_with = fail_with

    def _query(self) -> MockSupabaseQuery:
        return MockSupabaseQuery(self._rows, self._fail_with)

    def select(self, *args, **kwargs):
        return self._query().select(*args, **kwargs)

    def insert(self, data):
        return self._query().insert(data)

    def update(self, data):
        return self._query().update(data)

    def delete(self):
        return self._query().delete()


class MockSupabaseClient:
    """Mock Supabase client with persistent in-memory tables."""

    def __init__(self):
        self._tables: dict[str, list] = {}
        self._failures: dict[str, Exception] = {}

    def set_table_data(self, table_name: str, data: list):
        """Replace a table's rows."""
        self._tables[table_name] = [dict(row) for row in data]

    def fail_table(self, table_name: str, error: Exception):
        """Make every query on a table raise."""
        self._failures[table_name] = error

    def rows(self, table_name: str) -> list:
        """Current rows of a table (for assertions)."""
        return self._tables.get(table_name, [])

    def table(self, name: str) -> MockSupabaseTable:
        rows = self._tables.setdefault(name, [])
        return MockSupabaseTable(rows, self._failures.get(name))


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("category_rules", [
                {"id": "1", "erp_class_code": "DE", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase, monkeypatch) -> Generator:
    """
    Patch the database client with mock and reset service singletons.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("reconciliation_records", [...])
            # Any service created now talks to the mock
    """
    import services.category_rule_service as category_rule_module
    import services.mapping_workflow_service as workflow_module
    import services.reconciliation_record_service as record_module
    import services.reconciliation_service as reconciliation_module

    monkeypatch.setattr(category_rule_module, "_category_rule_service", None)
    monkeypatch.setattr(workflow_module, "_workflow_service", None)
    monkeypatch.setattr(record_module, "_record_service", None)
    monkeypatch.setattr(reconciliation_module, "_reconciliation_service", None)

    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.reconciliation_record_service.get_supabase_client", return_value=mock_supabase):
            with patch("services.category_rule_service.get_supabase_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def code_map() -> dict:
    """Small static code table."""
    return {
        ("BRAND", "DE"): "4",
        ("BRAND", "HP"): "5",
        ("CATEGORY", "MOR"): "71",
        ("CATEGORY", "HP"): "159",
    }


@pytest.fixture
def web_brands() -> list:
    """Web brand taxonomy as the catalog exposes it."""
    from models.taxonomy import TaxonomyEntry

    return [
        TaxonomyEntry(id=4, code="dell", name="Dell"),
        TaxonomyEntry(id=12, code="lg", name="LG"),
        TaxonomyEntry(id=30, code=None, name="Asus"),
    ]


@pytest.fixture
def web_categories() -> list:
    """Web category taxonomy as the catalog exposes it."""
    from models.taxonomy import TaxonomyEntry

    return [
        TaxonomyEntry(id=71, code="MOR", name="Monitors"),
        TaxonomyEntry(id=90, code="KB", name="Keyboards"),
    ]


@pytest.fixture
def sample_erp_record():
    """ERP product with several warehouses and price tiers."""
    from tests.factories import SourceRecordFactory

    return SourceRecordFactory.create_erp(
        code="LCD-DE-P2422H",
        name="Dell P2422H 24in",
        classification_codes=["DE", "MOR"],
        warehouse_stock={"01": "10", "02": "5", "06": "3"},
        price_tiers={"out_price": "4200000", "out_price5": "3990000"},
        purchase_price="3500000",
        unit="PCS",
    )


@pytest.fixture
def client(mock_db):
    """FastAPI test client backed by the mock database."""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
