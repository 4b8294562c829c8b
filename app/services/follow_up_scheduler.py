"""Follow-up scheduler - turns domain events into pending executions.

Flow: event -> matching active rules -> one PENDING execution per rule,
with the message rendered up front and ``scheduled_for`` computed from an
explicit reference instant.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping
from uuid import UUID

from app.core.structured_logging import build_log_context
from app.db.enums import ExecutionStatus, FollowUpTrigger, TargetType
from app.db.models import FollowUpExecution, FollowUpRule
from app.services.follow_up_adapters import (
    Clock,
    FollowUpStore,
    TargetContact,
    TargetNotFoundError,
    TargetResolver,
    utcnow,
)
from app.services.message_template import build_message_variables, render_template

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ReferenceInstant:
    """
    The instant a rule's delay is counted from.

    ``ReferenceInstant.now()`` resolves to the scheduler clock at scheduling
    time; ``ReferenceInstant.at(dt)`` pins it to a domain timestamp such as
    an appointment's start.
    """
    instant: datetime | None = None

    @classmethod
    def now(cls) -> "ReferenceInstant":
        return cls(None)

    @classmethod
    def at(cls, instant: datetime) -> "ReferenceInstant":
        return cls(_as_utc(instant))

    def resolve(self, clock: Clock) -> datetime:
        return self.instant if self.instant is not None else _as_utc(clock())


def compute_scheduled_for(reference: datetime, delay_days: int) -> datetime:
    """reference + delay_days calendar days (negative means before)."""
    return reference + timedelta(days=delay_days)


@dataclass
class FollowUpEvent:
    """A domain event raised by the CRUD layer."""
    clinic_id: UUID
    trigger: FollowUpTrigger
    target_id: UUID
    target_type: TargetType
    reference: ReferenceInstant = field(default_factory=ReferenceInstant.now)
    variables: Mapping[str, str | None] = field(default_factory=dict)


@dataclass
class ScheduleOutcome:
    """
    Result of processing one event.

    Scheduling problems are reported here instead of raised, so the CRUD
    operation that raised the event is never failed by them.
    """
    event: FollowUpEvent
    scheduled: list[FollowUpExecution] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


class FollowUpScheduler:
    """Matches rules and records pending executions."""

    def __init__(
        self,
        store: FollowUpStore,
        resolver: TargetResolver,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.clock = clock

    def match_rules(
        self, clinic_id: UUID, trigger: FollowUpTrigger, target_type: TargetType
    ) -> list[FollowUpRule]:
        """Active rules of the clinic for exactly this trigger and target type."""
        return self.store.find_active_rules(
            clinic_id, FollowUpTrigger(trigger), TargetType(target_type)
        )

    def schedule(
        self,
        rule: FollowUpRule,
        target_id: UUID,
        clinic_id: UUID,
        reference: ReferenceInstant | None = None,
        variables: Mapping[str, str | None] | None = None,
        target: TargetContact | None = None,
        clinic_name: str | None = None,
    ) -> FollowUpExecution:
        """
        Persist one PENDING execution of ``rule`` for ``target_id``.

        Raises TargetNotFoundError if the target cannot be resolved in the
        clinic and SchedulingError if the write fails.
        """
        target_type = TargetType(rule.target_type)
        if target is None:
            target = self.resolver.resolve(clinic_id, target_type, target_id)
            if target is None:
                raise TargetNotFoundError(
                    f"{target_type.value} {target_id} not found in clinic {clinic_id}"
                )
        if clinic_name is None:
            clinic_name = self.resolver.clinic_name(clinic_id)

        reference_at = (reference or ReferenceInstant.now()).resolve(self.clock)
        message = render_template(
            rule.message_template,
            build_message_variables(target.name, clinic_name, variables),
        )
        execution = FollowUpExecution(
            clinic_id=clinic_id,
            rule_id=rule.id,
            target_id=target_id,
            target_type=target_type.value,
            scheduled_for=compute_scheduled_for(reference_at, rule.delay_days or 0),
            message=message,
            status=ExecutionStatus.PENDING.value,
        )
        return self.store.add_execution(execution)

    def schedule_for_event(self, event: FollowUpEvent) -> ScheduleOutcome:
        """Schedule every matching rule for an event. Never raises."""
        outcome = ScheduleOutcome(event=event)
        log_extra = build_log_context(org_id=str(event.clinic_id), route="follow_up_scheduler")
        trigger = FollowUpTrigger(event.trigger)

        try:
            rules = self.match_rules(event.clinic_id, trigger, event.target_type)
        except Exception as e:
            logger.error(
                "Failed to load follow-up rules for %s: %s",
                trigger.value,
                type(e).__name__,
                extra=log_extra,
            )
            outcome.errors.append(f"rule lookup failed: {e}")
            return outcome

        if not rules:
            logger.debug("No active follow-up rules for trigger %s", trigger.value)
            outcome.skipped_reason = "no_matching_rules"
            return outcome

        try:
            target = self.resolver.resolve(
                event.clinic_id, TargetType(event.target_type), event.target_id
            )
            clinic_name = self.resolver.clinic_name(event.clinic_id) if target else None
        except Exception as e:
            logger.error(
                "Failed to resolve follow-up target for %s: %s",
                trigger.value,
                type(e).__name__,
                extra=log_extra,
            )
            outcome.errors.append(f"target lookup failed: {e}")
            return outcome

        if target is None:
            logger.warning(
                "Follow-up target %s %s not found; skipping %s",
                TargetType(event.target_type).value,
                event.target_id,
                trigger.value,
                extra=log_extra,
            )
            outcome.skipped_reason = "target_not_found"
            return outcome

        for rule in rules:
            try:
                execution = self.schedule(
                    rule,
                    event.target_id,
                    event.clinic_id,
                    reference=event.reference,
                    variables=event.variables,
                    target=target,
                    clinic_name=clinic_name,
                )
            except Exception as e:
                logger.error(
                    "Failed to schedule follow-up rule %s: %s",
                    rule.id,
                    type(e.__cause__ or e).__name__,
                    extra=log_extra,
                )
                outcome.errors.append(str(e))
                continue
            outcome.scheduled.append(execution)
            logger.info(
                "Scheduled follow-up rule %s for %s %s at %s",
                rule.id,
                execution.target_type,
                execution.target_id,
                execution.scheduled_for.isoformat(),
                extra=log_extra,
            )

        return outcome
