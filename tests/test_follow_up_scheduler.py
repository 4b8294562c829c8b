"""Tests for the follow-up scheduler (rule matching and execution creation)."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.db.enums import ExecutionStatus, FollowUpTrigger, MessageChannel, TargetType
from app.db.models import FollowUpExecution
from app.services.follow_up_adapters import (
    SchedulingError,
    SqlAlchemyFollowUpStore,
    SqlAlchemyTargetResolver,
    TargetContact,
    TargetNotFoundError,
)
from app.services.follow_up_scheduler import (
    FollowUpEvent,
    FollowUpScheduler,
    ReferenceInstant,
    compute_scheduled_for,
)


NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(db):
    return FollowUpScheduler(
        store=SqlAlchemyFollowUpStore(db),
        resolver=SqlAlchemyTargetResolver(db),
        clock=lambda: NOW,
    )


def _patient_event(clinic_id, patient_id, **kwargs) -> FollowUpEvent:
    return FollowUpEvent(
        clinic_id=clinic_id,
        trigger=kwargs.pop("trigger", FollowUpTrigger.PATIENT_CREATED),
        target_id=patient_id,
        target_type=TargetType.PATIENT,
        **kwargs,
    )


# =============================================================================
# Scheduled time
# =============================================================================

def test_compute_scheduled_for_negative_delay():
    start = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
    assert compute_scheduled_for(start, -1) == datetime(2024, 5, 31, 15, 0, tzinfo=timezone.utc)


def test_reference_now_resolves_to_clock():
    assert ReferenceInstant.now().resolve(lambda: NOW) == NOW


def test_reference_at_ignores_clock():
    pinned = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
    assert ReferenceInstant.at(pinned).resolve(lambda: NOW) == pinned


def test_reference_at_treats_naive_as_utc():
    naive = datetime(2024, 6, 1, 15, 0)
    assert ReferenceInstant.at(naive).instant == naive.replace(tzinfo=timezone.utc)


def test_delay_zero_schedules_at_reference(scheduler, test_clinic, test_patient, make_rule):
    make_rule(delay_days=0)

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))

    assert outcome.ok
    assert len(outcome.scheduled) == 1
    execution = outcome.scheduled[0]
    assert execution.scheduled_for == NOW
    assert execution.status == ExecutionStatus.PENDING.value
    assert execution.message == "Olá Maria, bem-vindo à Clínica Sorriso!"


def test_reminder_one_day_before_appointment(scheduler, test_clinic, test_patient, make_rule):
    make_rule(
        trigger=FollowUpTrigger.APPOINTMENT_REMINDER,
        delay_days=-1,
        message_template="Lembrete: {nome}, amanhã às {hora}.",
    )
    start = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)

    outcome = scheduler.schedule_for_event(
        _patient_event(
            test_clinic.id,
            test_patient.id,
            trigger=FollowUpTrigger.APPOINTMENT_REMINDER,
            reference=ReferenceInstant.at(start),
            variables={"hora": "12:00"},
        )
    )

    execution = outcome.scheduled[0]
    assert execution.scheduled_for == datetime(2024, 5, 31, 15, 0, tzinfo=timezone.utc)
    assert execution.message == "Lembrete: Maria, amanhã às 12:00."


# =============================================================================
# Rule matching
# =============================================================================

def test_only_active_matching_rules_fire(
    db, scheduler, test_clinic, other_clinic, test_patient, make_rule
):
    wanted = make_rule()
    make_rule(active=False)
    make_rule(trigger=FollowUpTrigger.APPOINTMENT_COMPLETED)
    make_rule(trigger=FollowUpTrigger.PATIENT_CREATED, target_type=TargetType.LEAD)
    make_rule(clinic_id=other_clinic.id)

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))

    assert [e.rule_id for e in outcome.scheduled] == [wanted.id]
    assert db.query(FollowUpExecution).count() == 1


def test_each_matching_rule_gets_one_execution(db, scheduler, test_clinic, test_patient, make_rule):
    make_rule(name="Primeira", delay_days=0)
    make_rule(name="Segunda", delay_days=7)

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))

    assert sorted(e.scheduled_for for e in outcome.scheduled) == [NOW, NOW + timedelta(days=7)]


def test_no_matching_rules(scheduler, test_clinic, test_patient):
    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))
    assert outcome.scheduled == []
    assert outcome.skipped_reason == "no_matching_rules"
    assert outcome.ok


def test_missing_target_is_skipped_not_raised(db, scheduler, test_clinic, make_rule):
    make_rule()

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, uuid4()))

    assert outcome.skipped_reason == "target_not_found"
    assert db.query(FollowUpExecution).count() == 0


def test_target_of_other_clinic_is_not_found(db, scheduler, other_clinic, test_patient, make_rule):
    make_rule(clinic_id=other_clinic.id)

    outcome = scheduler.schedule_for_event(_patient_event(other_clinic.id, test_patient.id))

    assert outcome.skipped_reason == "target_not_found"


def test_schedule_raises_for_missing_target(scheduler, test_clinic, make_rule):
    rule = make_rule()
    with pytest.raises(TargetNotFoundError):
        scheduler.schedule(rule, uuid4(), test_clinic.id)


# =============================================================================
# Frozen message and write failures
# =============================================================================

def test_rule_edit_does_not_change_scheduled_message(
    db, scheduler, test_clinic, test_patient, make_rule
):
    rule = make_rule(delay_days=3)
    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))
    execution_id = outcome.scheduled[0].id

    rule.message_template = "Mensagem nova para {nome}"
    rule.delay_days = 10
    test_patient.name = "Mariana"
    db.commit()

    execution = db.get(FollowUpExecution, execution_id)
    assert execution.message == "Olá Maria, bem-vindo à Clínica Sorriso!"
    assert execution.scheduled_for == NOW + timedelta(days=3)


class _FailingStore(SqlAlchemyFollowUpStore):
    def add_execution(self, execution):
        raise SchedulingError("database unavailable")


def test_write_failure_is_reported_not_raised(db, test_clinic, test_patient, make_rule):
    make_rule()
    scheduler = FollowUpScheduler(
        store=_FailingStore(db),
        resolver=SqlAlchemyTargetResolver(db),
        clock=lambda: NOW,
    )

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))

    assert not outcome.ok
    assert outcome.errors == ["database unavailable"]
    assert outcome.scheduled == []


class _BrokenResolver:
    def __init__(self, fail_on: str):
        self.fail_on = fail_on

    def resolve(self, clinic_id, target_type, target_id):
        if self.fail_on == "resolve":
            raise ConnectionError("db gone")
        return TargetContact(
            target_id=target_id,
            target_type=TargetType(target_type),
            name="Maria",
            address="+5511999990000",
            channel=MessageChannel.WHATSAPP,
        )

    def clinic_name(self, clinic_id):
        raise ConnectionError("db gone")


@pytest.mark.parametrize("fail_on", ["resolve", "clinic_name"])
def test_resolver_failure_is_reported_not_raised(db, test_clinic, test_patient, make_rule, fail_on):
    make_rule()
    scheduler = FollowUpScheduler(
        store=SqlAlchemyFollowUpStore(db),
        resolver=_BrokenResolver(fail_on),
        clock=lambda: NOW,
    )

    outcome = scheduler.schedule_for_event(_patient_event(test_clinic.id, test_patient.id))

    assert not outcome.ok
    assert outcome.errors == ["target lookup failed: db gone"]
    assert outcome.scheduled == []
    assert db.query(FollowUpExecution).count() == 0
