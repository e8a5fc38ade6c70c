"""
Business logic services.

Each service handles one domain area.
"""

from services.code_resolver_service import CodeResolver, get_code_resolver, resolve
from services.conflict_service import detect_conflicts, refresh_conflicts
from services.sync_config_service import (
    default_sync_config,
    effective_erp_price,
    effective_erp_stock,
)
from services.category_rule_service import (
    CategoryRuleService,
    get_category_rule_service,
    classify,
    match_rule,
    find_rule_conflicts,
)
from services.reconciliation_record_service import (
    ReconciliationRecordService,
    get_reconciliation_record_service,
)
from services.mapping_workflow_service import (
    MappingWorkflowService,
    get_mapping_workflow_service,
)
from services.reconciliation_service import (
    ReconciliationService,
    get_reconciliation_service,
    reconcile_record,
    build_web_draft,
)

__all__ = [
    "CodeResolver",
    "get_code_resolver",
    "resolve",
    "detect_conflicts",
    "refresh_conflicts",
    "default_sync_config",
    "effective_erp_price",
    "effective_erp_stock",
    "CategoryRuleService",
    "get_category_rule_service",
    "classify",
    "match_rule",
    "find_rule_conflicts",
    "ReconciliationRecordService",
    "get_reconciliation_record_service",
    "MappingWorkflowService",
    "get_mapping_workflow_service",
    "ReconciliationService",
    "get_reconciliation_service",
    "reconcile_record",
    "build_web_draft",
]
