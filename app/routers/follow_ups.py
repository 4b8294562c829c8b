"""Follow-ups router - rule administration and execution dashboards."""

import math
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_clinic_id, get_db
from app.db.enums import ExecutionStatus
from app.db.models import FollowUpExecution, FollowUpRule
from app.schemas.follow_up import (
    FollowUpExecutionListResponse,
    FollowUpExecutionRead,
    FollowUpRuleCreate,
    FollowUpRuleRead,
    FollowUpRuleUpdate,
    MessagePreviewRequest,
    MessagePreviewResponse,
    Pagination,
    RuleDeactivateResponse,
    RuleStatsRead,
)
from app.services import follow_up_service
from app.services.follow_up_adapters import RuleNotFoundError
from app.services.follow_up_service import RuleStats
from app.services.message_template import STANDARD_VARIABLES, extract_variables

router = APIRouter()

MAX_PER_PAGE = 100


# =============================================================================
# Helper Functions
# =============================================================================

def _rule_to_read(rule: FollowUpRule, stats: RuleStats | None = None) -> FollowUpRuleRead:
    read = FollowUpRuleRead.model_validate(rule)
    if stats:
        read.stats = RuleStatsRead(
            total=stats.total, pending=stats.pending, sent=stats.sent, failed=stats.failed
        )
    return read


def _execution_to_read(execution: FollowUpExecution) -> FollowUpExecutionRead:
    rule = execution.rule
    return FollowUpExecutionRead(
        id=execution.id,
        rule_id=execution.rule_id,
        rule_name=rule.name if rule else None,
        trigger=rule.trigger if rule else None,
        target_id=execution.target_id,
        target_type=execution.target_type,
        scheduled_for=execution.scheduled_for,
        message=execution.message,
        status=execution.status,
        error=execution.error,
        executed_at=execution.executed_at,
        created_at=execution.created_at,
    )


# =============================================================================
# Executions (declared before /{rule_id} routes)
# =============================================================================

@router.get("/executions", response_model=FollowUpExecutionListResponse)
def list_executions(
    status: ExecutionStatus | None = Query(None),
    rule_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=MAX_PER_PAGE),
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """List executions with status filter and pagination."""
    items, total = follow_up_service.list_executions(
        db, clinic_id, status=status, rule_id=rule_id, page=page, per_page=per_page
    )
    return FollowUpExecutionListResponse(
        executions=[_execution_to_read(e) for e in items],
        pagination=Pagination(
            page=page,
            per_page=per_page,
            total=total,
            pages=math.ceil(total / per_page) if total else 0,
        ),
    )


@router.post("/preview", response_model=MessagePreviewResponse)
def preview_message(data: MessagePreviewRequest):
    """Render a template with sample variables."""
    variables = extract_variables(data.message_template)
    return MessagePreviewResponse(
        message=follow_up_service.preview_rule_message(data.message_template, data.variables),
        variables=variables,
        unknown_variables=[v for v in variables if v not in STANDARD_VARIABLES],
    )


# =============================================================================
# Rules
# =============================================================================

@router.get("", response_model=list[FollowUpRuleRead])
def list_rules(
    active: bool | None = Query(None),
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """List rules with per-rule pending/sent/failed counts."""
    rules = follow_up_service.list_rules(db, clinic_id, active=active)
    stats = follow_up_service.get_rule_stats(db, clinic_id, [r.id for r in rules])
    return [_rule_to_read(rule, stats.get(rule.id)) for rule in rules]


@router.post("", response_model=FollowUpRuleRead, status_code=201)
def create_rule(
    data: FollowUpRuleCreate,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Create a follow-up rule."""
    rule = follow_up_service.create_rule(db, clinic_id, data)
    return _rule_to_read(rule)


@router.get("/{rule_id}", response_model=FollowUpRuleRead)
def get_rule(
    rule_id: UUID,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    rule = follow_up_service.get_rule(db, clinic_id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Follow-up not found")
    stats = follow_up_service.get_rule_stats(db, clinic_id, [rule.id])
    return _rule_to_read(rule, stats.get(rule.id))


@router.patch("/{rule_id}", response_model=FollowUpRuleRead)
def update_rule(
    rule_id: UUID,
    data: FollowUpRuleUpdate,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Update a rule. Already-scheduled executions keep their frozen message."""
    try:
        rule = follow_up_service.update_rule(db, clinic_id, rule_id, data)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Follow-up not found")
    stats = follow_up_service.get_rule_stats(db, clinic_id, [rule.id])
    return _rule_to_read(rule, stats.get(rule.id))


@router.delete("/{rule_id}", response_model=RuleDeactivateResponse)
def deactivate_rule(
    rule_id: UUID,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Deactivate a rule (soft delete) and fail its pending executions."""
    try:
        cancelled = follow_up_service.deactivate_rule(db, clinic_id, rule_id)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Follow-up not found")
    return RuleDeactivateResponse(
        message="Follow-up deactivated successfully",
        cancelled_executions=cancelled,
    )
