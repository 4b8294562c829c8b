"""Follow-up service - rule administration and execution queries.

Rules are never hard-deleted once used: deactivation keeps history and
fails every still-pending execution of the rule.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.db.enums import ExecutionStatus
from app.db.models import FollowUpExecution, FollowUpRule
from app.schemas.follow_up import FollowUpRuleCreate, FollowUpRuleUpdate
from app.services.follow_up_adapters import DEACTIVATED_RULE_ERROR, RuleNotFoundError
from app.services.message_template import render_template


@dataclass
class RuleStats:
    total: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0


# =============================================================================
# Rule CRUD
# =============================================================================

def create_rule(db: Session, clinic_id: UUID, data: FollowUpRuleCreate) -> FollowUpRule:
    """Create a follow-up rule for a clinic."""
    rule = FollowUpRule(
        clinic_id=clinic_id,
        name=data.name,
        description=data.description,
        trigger=data.trigger.value,
        target_type=data.target_type.value,
        delay_days=data.delay_days,
        message_template=data.message_template,
        active=data.active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def get_rule(db: Session, clinic_id: UUID, rule_id: UUID) -> FollowUpRule | None:
    """Get a rule by ID, scoped to the clinic."""
    return (
        db.query(FollowUpRule)
        .filter(FollowUpRule.id == rule_id, FollowUpRule.clinic_id == clinic_id)
        .first()
    )


def _get_rule_or_raise(db: Session, clinic_id: UUID, rule_id: UUID) -> FollowUpRule:
    rule = get_rule(db, clinic_id, rule_id)
    if not rule:
        raise RuleNotFoundError(f"Follow-up rule {rule_id} not found")
    return rule


def list_rules(
    db: Session,
    clinic_id: UUID,
    active: bool | None = None,
) -> list[FollowUpRule]:
    """List a clinic's rules, newest first."""
    query = db.query(FollowUpRule).filter(FollowUpRule.clinic_id == clinic_id)
    if active is not None:
        query = query.filter(FollowUpRule.active.is_(active))
    return query.order_by(FollowUpRule.created_at.desc()).all()


def update_rule(
    db: Session,
    clinic_id: UUID,
    rule_id: UUID,
    data: FollowUpRuleUpdate,
) -> FollowUpRule:
    """
    Partially update a rule.

    Edits never touch executions that were already scheduled: their message
    and time are frozen. Turning ``active`` off goes through deactivation so
    pending executions are failed too.
    """
    rule = _get_rule_or_raise(db, clinic_id, rule_id)
    updates = data.model_dump(exclude_unset=True)
    deactivate = updates.pop("active", None) is False and rule.active

    for field, value in updates.items():
        if value is None and field != "description":
            continue
        if isinstance(value, Enum):
            value = value.value
        setattr(rule, field, value)
    if data.active is True:
        rule.active = True

    db.commit()
    if deactivate:
        deactivate_rule(db, clinic_id, rule_id)
    db.refresh(rule)
    return rule


def deactivate_rule(db: Session, clinic_id: UUID, rule_id: UUID) -> int:
    """
    Soft-delete a rule and cancel its future deliveries.

    Sets ``active = False`` and moves every PENDING execution of the rule to
    FAILED with DEACTIVATED_RULE_ERROR. SENT, FAILED and in-flight
    (PROCESSING) executions are left alone.

    Returns the number of executions cancelled.
    """
    rule = _get_rule_or_raise(db, clinic_id, rule_id)
    rule.active = False
    result = db.execute(
        update(FollowUpExecution)
        .where(
            FollowUpExecution.rule_id == rule.id,
            FollowUpExecution.clinic_id == clinic_id,
            FollowUpExecution.status == ExecutionStatus.PENDING.value,
        )
        .values(
            status=ExecutionStatus.FAILED.value,
            error=DEACTIVATED_RULE_ERROR,
            executed_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def preview_rule_message(template: str, variables: dict[str, str | None]) -> str:
    """Render a template the way the scheduler would."""
    return render_template(template, variables)


# =============================================================================
# Execution queries
# =============================================================================

def get_rule_stats(
    db: Session,
    clinic_id: UUID,
    rule_ids: list[UUID] | None = None,
) -> dict[UUID, RuleStats]:
    """
    Aggregate execution counts per rule for operator dashboards.

    In-flight (PROCESSING) executions count as pending.
    """
    query = (
        db.query(
            FollowUpExecution.rule_id,
            FollowUpExecution.status,
            func.count(FollowUpExecution.id),
        )
        .filter(FollowUpExecution.clinic_id == clinic_id)
    )
    if rule_ids is not None:
        if not rule_ids:
            return {}
        query = query.filter(FollowUpExecution.rule_id.in_(rule_ids))
    rows = query.group_by(FollowUpExecution.rule_id, FollowUpExecution.status).all()

    stats: dict[UUID, RuleStats] = {rule_id: RuleStats() for rule_id in rule_ids or []}
    for rule_id, status, count in rows:
        entry = stats.setdefault(rule_id, RuleStats())
        entry.total += count
        if status in (ExecutionStatus.PENDING.value, ExecutionStatus.PROCESSING.value):
            entry.pending += count
        elif status == ExecutionStatus.SENT.value:
            entry.sent += count
        elif status == ExecutionStatus.FAILED.value:
            entry.failed += count
    return stats


def list_executions(
    db: Session,
    clinic_id: UUID,
    status: ExecutionStatus | None = None,
    rule_id: UUID | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[FollowUpExecution], int]:
    """List a clinic's executions, latest scheduled first. Returns (items, total)."""
    query = db.query(FollowUpExecution).filter(FollowUpExecution.clinic_id == clinic_id)
    if status:
        query = query.filter(FollowUpExecution.status == ExecutionStatus(status).value)
    if rule_id:
        query = query.filter(FollowUpExecution.rule_id == rule_id)

    total = query.count()
    items = (
        query.order_by(FollowUpExecution.scheduled_for.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total
