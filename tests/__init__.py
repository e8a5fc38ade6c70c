"""
Test suite for Product Reconciliation.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_mapping_workflow_service.py -v
"""
