"""Follow-up triggers - hooks called by core services after a committed write.

Every hook is best-effort: it returns the scheduling outcomes and logs
problems, but never raises into the caller's request.
"""

import logging
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import FollowUpTrigger, LeadStatus, TargetType
from app.db.models import Appointment, Lead, Patient
from app.services.follow_up_adapters import SqlAlchemyFollowUpStore, SqlAlchemyTargetResolver
from app.services.follow_up_scheduler import (
    FollowUpEvent,
    FollowUpScheduler,
    ReferenceInstant,
    ScheduleOutcome,
)

logger = logging.getLogger(__name__)

# Lead status -> trigger fired when a lead moves into that status
LEAD_STATUS_TRIGGERS = {
    LeadStatus.CONTACTED.value: FollowUpTrigger.LEAD_CONTACTED,
    LeadStatus.QUALIFIED.value: FollowUpTrigger.LEAD_QUALIFIED,
}


def build_scheduler(db: Session) -> FollowUpScheduler:
    """Scheduler wired to the request's session."""
    return FollowUpScheduler(
        store=SqlAlchemyFollowUpStore(db),
        resolver=SqlAlchemyTargetResolver(db),
    )


def _fire(
    db: Session,
    event: FollowUpEvent,
    scheduler: FollowUpScheduler | None = None,
) -> ScheduleOutcome:
    scheduler = scheduler or build_scheduler(db)
    try:
        return scheduler.schedule_for_event(event)
    except Exception as e:
        db.rollback()
        logger.error(
            "Error scheduling follow-up for %s: %s",
            FollowUpTrigger(event.trigger).value,
            type(e).__name__,
            extra=build_log_context(org_id=str(event.clinic_id), route="follow_up_triggers"),
        )
        return ScheduleOutcome(event=event, errors=[str(e)])


# =============================================================================
# Lead Triggers
# =============================================================================

def trigger_lead_created(
    db: Session, lead: Lead, scheduler: FollowUpScheduler | None = None
) -> list[ScheduleOutcome]:
    """Schedule LEAD_CREATED follow-ups."""
    event = FollowUpEvent(
        clinic_id=lead.clinic_id,
        trigger=FollowUpTrigger.LEAD_CREATED,
        target_id=lead.id,
        target_type=TargetType.LEAD,
    )
    return [_fire(db, event, scheduler)]


def trigger_lead_status_changed(
    db: Session,
    lead: Lead,
    old_status: str | None,
    scheduler: FollowUpScheduler | None = None,
) -> list[ScheduleOutcome]:
    """Schedule follow-ups when a lead moves into CONTACTED or QUALIFIED."""
    if old_status == lead.status:
        return []
    trigger = LEAD_STATUS_TRIGGERS.get(lead.status)
    if not trigger:
        return []
    event = FollowUpEvent(
        clinic_id=lead.clinic_id,
        trigger=trigger,
        target_id=lead.id,
        target_type=TargetType.LEAD,
    )
    return [_fire(db, event, scheduler)]


# =============================================================================
# Patient Triggers
# =============================================================================

def trigger_patient_created(
    db: Session, patient: Patient, scheduler: FollowUpScheduler | None = None
) -> list[ScheduleOutcome]:
    """Schedule PATIENT_CREATED follow-ups."""
    event = FollowUpEvent(
        clinic_id=patient.clinic_id,
        trigger=FollowUpTrigger.PATIENT_CREATED,
        target_id=patient.id,
        target_type=TargetType.PATIENT,
    )
    return [_fire(db, event, scheduler)]


# =============================================================================
# Appointment Triggers (called from appointment_service.py)
# =============================================================================

def appointment_message_variables(appointment: Appointment) -> dict[str, str | None]:
    """{data}, {hora} in the clinic's timezone and {profissional}."""
    local_start = appointment.start_time.astimezone(ZoneInfo(settings.CLINIC_TIMEZONE))
    professional = appointment.professional
    return {
        "data": local_start.strftime("%d/%m/%Y"),
        "hora": local_start.strftime("%H:%M"),
        "profissional": professional.name if professional else None,
    }


def _fire_appointment_events(
    db: Session,
    appointment: Appointment,
    events: list[FollowUpEvent],
    scheduler: FollowUpScheduler | None = None,
) -> list[ScheduleOutcome]:
    try:
        variables = appointment_message_variables(appointment)
    except Exception as e:
        logger.error(
            "Error building message variables for appointment %s: %s",
            appointment.id,
            type(e).__name__,
            extra=build_log_context(org_id=str(appointment.clinic_id), route="follow_up_triggers"),
        )
        return [ScheduleOutcome(event=event, errors=[str(e)]) for event in events]

    for event in events:
        event.variables = variables
    return [_fire(db, event, scheduler) for event in events]


def trigger_appointment_scheduled(
    db: Session, appointment: Appointment, scheduler: FollowUpScheduler | None = None
) -> list[ScheduleOutcome]:
    """
    Schedule APPOINTMENT_SCHEDULED (counted from now) and
    APPOINTMENT_REMINDER (counted from the appointment start) follow-ups.
    """
    scheduled = FollowUpEvent(
        clinic_id=appointment.clinic_id,
        trigger=FollowUpTrigger.APPOINTMENT_SCHEDULED,
        target_id=appointment.patient_id,
        target_type=TargetType.PATIENT,
        reference=ReferenceInstant.now(),
    )
    reminder = FollowUpEvent(
        clinic_id=appointment.clinic_id,
        trigger=FollowUpTrigger.APPOINTMENT_REMINDER,
        target_id=appointment.patient_id,
        target_type=TargetType.PATIENT,
        reference=ReferenceInstant.at(appointment.start_time),
    )
    return _fire_appointment_events(db, appointment, [scheduled, reminder], scheduler)


def trigger_appointment_completed(
    db: Session, appointment: Appointment, scheduler: FollowUpScheduler | None = None
) -> list[ScheduleOutcome]:
    """Schedule APPOINTMENT_COMPLETED follow-ups (post-visit)."""
    event = FollowUpEvent(
        clinic_id=appointment.clinic_id,
        trigger=FollowUpTrigger.APPOINTMENT_COMPLETED,
        target_id=appointment.patient_id,
        target_type=TargetType.PATIENT,
    )
    return _fire_appointment_events(db, appointment, [event], scheduler)
