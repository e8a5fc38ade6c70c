"""
Reconciliation API routes.

Operator surface over the reconciliation engine: overview, mapping
workflow actions, reconciliation pass and the pure preview queries.
"""

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.reconciliation import (
    ConfirmRequest,
    ConflictField,
    ConflictFlag,
    DisplayStatus,
    LinkRequest,
    NotesUpdate,
    Operator,
    PassSummary,
    ReconciliationListResponse,
    ReconciliationRecord,
    SourceRecord,
    UnlockRequest,
)
from models.taxonomy import DraftRequest, ResolveRequest, ResolveResponse, WebProductDraft
from services.category_rule_service import get_category_rule_service
from services.code_resolver_service import get_code_resolver
from services.conflict_service import detect_conflicts
from services.mapping_workflow_service import get_mapping_workflow_service
from services.reconciliation_record_service import get_reconciliation_record_service
from services.reconciliation_service import build_web_draft, get_reconciliation_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# OVERVIEW
# ===================

@router.get("", response_model=ReconciliationListResponse)
async def list_records(
    display_status: Optional[DisplayStatus] = Query(None, description="UNLINKED, LINKED, CONFLICTED, CONFIRMED"),
    conflict_field: Optional[ConflictField] = Query(None, description="Only records with this conflict kind"),
    needs_attention: Optional[bool] = Query(None, description="Only records needing an operator")
):
    """
    List reconciliation records with the overview filters.
    """
    try:
        service = get_reconciliation_service()
        records = service.list_records(
            display_status=display_status,
            conflict_field=conflict_field,
            needs_attention=needs_attention
        )
        return ReconciliationListResponse.of(records)

    except Exception as e:
        return handle_error(e)


@router.post("/pass", response_model=PassSummary)
async def run_pass(sources: list[SourceRecord]):
    """
    Reconcile a batch of fresh source records.

    Creates records for unseen codes and refreshes conflicts on the rest.
    """
    try:
        return get_reconciliation_service().run_pass(sources)

    except Exception as e:
        return handle_error(e)


# ===================
# PURE QUERIES
# ===================

@router.post("/detect", response_model=list[ConflictFlag])
async def detect(record: ReconciliationRecord):
    """
    Conflicts the given record would have; nothing is stored.
    """
    try:
        conflicts = detect_conflicts(record)
        return sorted(conflicts, key=lambda c: (c.field.value, c.source_a.value, c.source_b.value))

    except Exception as e:
        return handle_error(e)


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_code(data: ResolveRequest):
    """
    Resolve an ERP classification code to a Web taxonomy id.
    """
    try:
        web_id = get_code_resolver().resolve(data.kind, data.erp_code, data.web_taxonomy)
        return ResolveResponse(kind=data.kind, erp_code=data.erp_code, web_id=web_id)

    except Exception as e:
        return handle_error(e)


@router.post("/draft", response_model=WebProductDraft)
async def draft_web_product(data: DraftRequest):
    """
    Pre-fill a Web catalog entry from an ERP product.

    Unresolved brand/category are listed in `unresolved`.

    Raises:
        422: Not an ERP record, or ambiguous category rules
    """
    try:
        rules = get_category_rule_service().get_all(active_only=True) if data.use_rules else None
        return build_web_draft(data.erp_record, data.brands, data.categories, rules=rules)

    except Exception as e:
        return handle_error(e)


# ===================
# WORKFLOW
# ===================

@router.post("/link", response_model=ReconciliationRecord)
async def link_record(data: LinkRequest):
    """
    Link Web / ERP / LEDGER references into one record.

    Raises:
        404: record_id not found
        409: Code held by a confirmed record, or concurrent write
        422: No references, or record is CONFIRMED
    """
    try:
        return get_mapping_workflow_service().link_record(
            web_ref=data.web_ref,
            erp_ref=data.erp_ref,
            ledger_ref=data.ledger_ref,
            record_id=data.record_id
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{record_id}", response_model=ReconciliationRecord)
async def get_record(record_id: str):
    """
    Get a single reconciliation record.

    Raises:
        404: Record not found
    """
    try:
        return get_reconciliation_record_service().get_by_id(record_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{record_id}/confirm", response_model=ReconciliationRecord)
async def confirm_mapping(record_id: str, data: Optional[ConfirmRequest] = None):
    """
    Commit mapping.

    Raises:
        404: Record not found
        409: Record changed since expected_version
        422: No ERP reference, or record not LINKED
    """
    try:
        data = data or ConfirmRequest()
        return get_mapping_workflow_service().confirm_mapping(
            record_id,
            sync_config=data.sync_config,
            operator=data.operator,
            expected_version=data.expected_version
        )

    except Exception as e:
        return handle_error(e)


@router.post("/{record_id}/unlock", response_model=ReconciliationRecord)
async def unlock_mapping(record_id: str, data: UnlockRequest):
    """
    Return a confirmed mapping to LINKED.

    Raises:
        403: Operator role may not unlock
        404: Record not found
        422: Record not CONFIRMED
    """
    try:
        return get_mapping_workflow_service().unlock_mapping(record_id, data.operator)

    except Exception as e:
        return handle_error(e)


@router.post("/{record_id}/remove-linkage", response_model=ReconciliationRecord)
async def remove_linkage(record_id: str, operator: Optional[Operator] = Body(None, embed=True)):
    """
    Clear ERP/LEDGER references; the record becomes UNLINKED.
    """
    try:
        return get_mapping_workflow_service().remove_linkage(record_id, operator=operator)

    except Exception as e:
        return handle_error(e)


@router.patch("/{record_id}/notes", response_model=ReconciliationRecord)
async def update_notes(record_id: str, data: NotesUpdate):
    """Set the operator note on a record."""
    try:
        return get_mapping_workflow_service().update_notes(record_id, data.notes)

    except Exception as e:
        return handle_error(e)
