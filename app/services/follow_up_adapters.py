"""Storage and target-lookup adapters for follow-up automation.

The scheduler and dispatcher only talk to the Protocols below; the
SQLAlchemy implementations are what the API, worker, and CLI wire in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.enums import (
    ExecutionStatus,
    FollowUpTrigger,
    LeadSource,
    MessageChannel,
    TargetType,
)
from app.db.models import Clinic, FollowUpExecution, FollowUpRule, Lead, Patient

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEACTIVATED_RULE_ERROR = "Follow-up rule deactivated"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Errors
# =============================================================================

class FollowUpError(Exception):
    """Base exception for follow-up automation errors."""

    pass


class RuleNotFoundError(FollowUpError):
    """Follow-up rule not found in the clinic."""

    pass


class TargetNotFoundError(FollowUpError):
    """Lead or patient not found in the clinic."""

    pass


class SchedulingError(FollowUpError):
    """Durable write of a follow-up execution failed."""

    pass


# =============================================================================
# Target resolution
# =============================================================================

@dataclass(frozen=True)
class TargetContact:
    """What the automation core needs to know about a lead or patient."""
    target_id: UUID
    target_type: TargetType
    name: str
    address: str | None
    channel: MessageChannel


class TargetResolver(Protocol):
    def resolve(
        self, clinic_id: UUID, target_type: TargetType, target_id: UUID
    ) -> TargetContact | None: ...

    def clinic_name(self, clinic_id: UUID) -> str | None: ...


class SqlAlchemyTargetResolver:
    """Resolves leads and patients, always scoped to the owning clinic."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(
        self, clinic_id: UUID, target_type: TargetType, target_id: UUID
    ) -> TargetContact | None:
        target_type = TargetType(target_type)
        if target_type == TargetType.LEAD:
            lead = (
                self.db.query(Lead)
                .filter(Lead.id == target_id, Lead.clinic_id == clinic_id)
                .first()
            )
            if not lead:
                return None
            channel = (
                MessageChannel.INSTAGRAM
                if lead.source == LeadSource.INSTAGRAM.value
                else MessageChannel.WHATSAPP
            )
            return TargetContact(
                target_id=lead.id,
                target_type=target_type,
                name=lead.name,
                address=lead.phone or None,
                channel=channel,
            )

        patient = (
            self.db.query(Patient)
            .filter(Patient.id == target_id, Patient.clinic_id == clinic_id)
            .first()
        )
        if not patient:
            return None
        return TargetContact(
            target_id=patient.id,
            target_type=target_type,
            name=patient.name,
            address=patient.phone or None,
            channel=MessageChannel.WHATSAPP,
        )

    def clinic_name(self, clinic_id: UUID) -> str | None:
        clinic = self.db.query(Clinic).filter(Clinic.id == clinic_id).first()
        return clinic.name if clinic else None


# =============================================================================
# Rule / execution storage
# =============================================================================

class FollowUpStore(Protocol):
    def find_active_rules(
        self, clinic_id: UUID, trigger: FollowUpTrigger, target_type: TargetType
    ) -> list[FollowUpRule]: ...

    def add_execution(self, execution: FollowUpExecution) -> FollowUpExecution: ...

    def claim_due(
        self, now: datetime, limit: int, claim_token: UUID
    ) -> list[FollowUpExecution]: ...

    def reclaim_stale(self, older_than: datetime, now: datetime | None = None) -> int: ...

    def mark_sent(
        self, execution: FollowUpExecution, claim_token: UUID, executed_at: datetime
    ) -> bool: ...

    def mark_failed(
        self,
        execution: FollowUpExecution,
        claim_token: UUID,
        error: str,
        executed_at: datetime,
    ) -> bool: ...


class SqlAlchemyFollowUpStore:
    """
    FollowUpStore backed by the ORM session.

    Claiming is a compare-and-set on status: rows are moved from PENDING to
    PROCESSING only if still PENDING, tagged with the caller's claim token,
    and then re-read by token. On PostgreSQL the candidate select also takes
    FOR UPDATE SKIP LOCKED so concurrent dispatchers split the batch instead
    of blocking on each other.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_active_rules(
        self, clinic_id: UUID, trigger: FollowUpTrigger, target_type: TargetType
    ) -> list[FollowUpRule]:
        return (
            self.db.query(FollowUpRule)
            .filter(
                FollowUpRule.clinic_id == clinic_id,
                FollowUpRule.trigger == FollowUpTrigger(trigger).value,
                FollowUpRule.target_type == TargetType(target_type).value,
                FollowUpRule.active.is_(True),
            )
            .all()
        )

    def add_execution(self, execution: FollowUpExecution) -> FollowUpExecution:
        try:
            self.db.add(execution)
            self.db.commit()
            self.db.refresh(execution)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise SchedulingError(f"Failed to persist follow-up execution: {exc}") from exc
        return execution

    def _due_candidates(self, now: datetime, limit: int) -> list[UUID]:
        candidates = (
            select(FollowUpExecution.id)
            .where(
                FollowUpExecution.status == ExecutionStatus.PENDING.value,
                FollowUpExecution.scheduled_for <= now,
            )
            .order_by(FollowUpExecution.scheduled_for)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.db.execute(candidates).scalars().all())

    def claim_due(
        self, now: datetime, limit: int, claim_token: UUID
    ) -> list[FollowUpExecution]:
        ids = self._due_candidates(now, limit)
        if not ids:
            self.db.rollback()
            return []

        self.db.execute(
            update(FollowUpExecution)
            .where(
                FollowUpExecution.id.in_(ids),
                FollowUpExecution.status == ExecutionStatus.PENDING.value,
            )
            .values(
                status=ExecutionStatus.PROCESSING.value,
                claim_token=claim_token,
                claimed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        return (
            self.db.query(FollowUpExecution)
            .filter(
                FollowUpExecution.claim_token == claim_token,
                FollowUpExecution.status == ExecutionStatus.PROCESSING.value,
            )
            .order_by(FollowUpExecution.scheduled_for)
            .all()
        )

    def reclaim_stale(self, older_than: datetime, now: datetime | None = None) -> int:
        """
        Return PROCESSING rows whose claim expired to PENDING.

        Rows of a rule deactivated while they were in flight go straight to
        FAILED instead, so a crashed worker cannot revive them. Returns the
        number of rows put back to PENDING.
        """
        stale = (
            FollowUpExecution.status == ExecutionStatus.PROCESSING.value,
            FollowUpExecution.claimed_at < older_than,
        )
        inactive_rules = select(FollowUpRule.id).where(FollowUpRule.active.is_(False))

        cancelled = self.db.execute(
            update(FollowUpExecution)
            .where(*stale, FollowUpExecution.rule_id.in_(inactive_rules))
            .values(
                status=ExecutionStatus.FAILED.value,
                error=DEACTIVATED_RULE_ERROR,
                executed_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if cancelled.rowcount:
            logger.info(
                "Cancelled %s stale follow-up executions of deactivated rules",
                cancelled.rowcount,
            )

        result = self.db.execute(
            update(FollowUpExecution)
            .where(*stale)
            .values(
                status=ExecutionStatus.PENDING.value,
                claim_token=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount or 0

    def _finish(
        self,
        execution: FollowUpExecution,
        claim_token: UUID,
        status: ExecutionStatus,
        error: str | None,
        executed_at: datetime,
    ) -> bool:
        result = self.db.execute(
            update(FollowUpExecution)
            .where(
                FollowUpExecution.id == execution.id,
                FollowUpExecution.status == ExecutionStatus.PROCESSING.value,
                FollowUpExecution.claim_token == claim_token,
            )
            .values(status=status.value, error=error, executed_at=executed_at)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            logger.warning(
                "Follow-up execution %s was not in PROCESSING under this claim; "
                "skipping %s transition",
                execution.id,
                status.value,
            )
            return False
        return True

    def mark_sent(
        self, execution: FollowUpExecution, claim_token: UUID, executed_at: datetime
    ) -> bool:
        return self._finish(execution, claim_token, ExecutionStatus.SENT, None, executed_at)

    def mark_failed(
        self,
        execution: FollowUpExecution,
        claim_token: UUID,
        error: str,
        executed_at: datetime,
    ) -> bool:
        return self._finish(execution, claim_token, ExecutionStatus.FAILED, error, executed_at)
