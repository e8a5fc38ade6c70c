"""
Category rule API routes.

Administration of the ERP class code → Web category rules.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.category_rule import (
    CategoryRule,
    CategoryRuleCreate,
    CategoryRuleUpdate,
    CategoryRuleListResponse,
    ClassifyResponse,
)
from services.category_rule_service import get_category_rule_service, find_rule_conflicts
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
# ROUTES
# ===================

@router.get("", response_model=CategoryRuleListResponse)
async def list_rules(
    active_only: bool = Query(False, description="Only active rules")
):
    """
    List rules, with any active rules that collide on the same code pair.
    """
    try:
        rules = get_category_rule_service().get_all(active_only=active_only)
        return CategoryRuleListResponse.of(rules, conflicting_pairs=find_rule_conflicts(rules))

    except Exception as e:
        return handle_error(e)


@router.get("/classify", response_model=ClassifyResponse)
async def classify_codes(
    erp_class_code: str = Query(..., min_length=1, description="Primary ERP class code"),
    erp_class_code2: Optional[str] = Query(None, description="Secondary ERP class code")
):
    """
    Web category for an ERP code pair under the active rules.

    Raises:
        422: Ambiguous rules
    """
    try:
        web_category_id = get_category_rule_service().classify(erp_class_code, erp_class_code2)
        return ClassifyResponse(
            erp_class_code=erp_class_code,
            erp_class_code2=erp_class_code2,
            web_category_id=web_category_id
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{rule_id}", response_model=CategoryRule)
async def get_rule(rule_id: str):
    """
    Get a single rule.

    Raises:
        404: Rule not found
    """
    try:
        return get_category_rule_service().get_by_id(rule_id)

    except Exception as e:
        return handle_error(e)


@router.post("", response_model=CategoryRule, status_code=201)
async def create_rule(data: CategoryRuleCreate):
    """
    Create a rule.

    Raises:
        409: An active rule already covers this code pair
    """
    try:
        return get_category_rule_service().create(data)

    except Exception as e:
        return handle_error(e)


@router.patch("/{rule_id}", response_model=CategoryRule)
async def update_rule(rule_id: str, data: CategoryRuleUpdate):
    """
    Update a rule. Only provided fields change.

    Raises:
        404: Rule not found
        409: Update would collide with another active rule
    """
    try:
        return get_category_rule_service().update(rule_id, data)

    except Exception as e:
        return handle_error(e)


@router.post("/{rule_id}/deactivate", response_model=CategoryRule)
async def deactivate_rule(rule_id: str):
    """Pause a rule without deleting it."""
    try:
        return get_category_rule_service().deactivate(rule_id)

    except Exception as e:
        return handle_error(e)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: str):
    """
    Delete a rule permanently.

    Raises:
        404: Rule not found
    """
    try:
        get_category_rule_service().delete(rule_id)
        return None

    except Exception as e:
        return handle_error(e)
