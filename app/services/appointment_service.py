"""Appointment service - booking with conflict detection.

Handles:
- Booking and editing appointments under a per-professional lock
- Conflict detection (half-open intervals, cancelled slots ignored)
- Firing appointment follow-up triggers after commit
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import AppointmentStatus
from app.db.models import Appointment, Patient, Professional
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate
from app.services import follow_up_triggers
from app.services.appointment_conflicts import (
    AppointmentConflictError,
    AppointmentInterval,
    find_conflicts,
    validate_interval,
)
from app.services.follow_up_scheduler import FollowUpScheduler

DEFAULT_TITLE = "Consulta"


class ProfessionalNotFoundError(ValueError):
    """Professional not found in the clinic."""

    pass


class PatientNotFoundError(ValueError):
    """Patient not found in the clinic."""

    pass


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_interval(appointment: Appointment) -> AppointmentInterval:
    """Project an appointment onto the fields conflict detection needs."""
    return AppointmentInterval(
        resource_id=appointment.professional_id,
        start=appointment.start_time,
        end=appointment.end_time,
        cancelled=appointment.status == AppointmentStatus.CANCELLED.value,
        interval_id=appointment.id,
    )


# =============================================================================
# Conflict check (critical section)
# =============================================================================

def _lock_professional(db: Session, clinic_id: UUID, professional_id: UUID) -> Professional:
    """
    Lock the professional row for the rest of the transaction.

    Concurrent bookings for the same professional serialize here, so the
    read of existing appointments and the write below are atomic relative
    to each other.
    """
    professional = (
        db.query(Professional)
        .filter(Professional.id == professional_id, Professional.clinic_id == clinic_id)
        .with_for_update()
        .first()
    )
    if not professional:
        raise ProfessionalNotFoundError(f"Professional {professional_id} not found")
    return professional


def _get_existing_intervals(
    db: Session,
    clinic_id: UUID,
    professional_id: UUID,
    start: datetime,
    end: datetime,
) -> list[AppointmentInterval]:
    """Non-cancelled appointments of the professional touching [start, end)."""
    appointments = (
        db.query(Appointment)
        .filter(
            Appointment.clinic_id == clinic_id,
            Appointment.professional_id == professional_id,
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        .all()
    )
    return [to_interval(a) for a in appointments]


def _check_slot(
    db: Session,
    clinic_id: UUID,
    candidate: AppointmentInterval,
) -> None:
    """Raise AppointmentConflictError (and release the lock) on overlap."""
    existing = _get_existing_intervals(
        db, clinic_id, candidate.resource_id, candidate.start, candidate.end
    )
    conflicts = find_conflicts(candidate, existing)
    if conflicts:
        db.rollback()
        raise AppointmentConflictError(conflicts)


def _require_patient(db: Session, clinic_id: UUID, patient_id: UUID) -> Patient:
    patient = (
        db.query(Patient)
        .filter(Patient.id == patient_id, Patient.clinic_id == clinic_id)
        .first()
    )
    if not patient:
        raise PatientNotFoundError(f"Patient {patient_id} not found")
    return patient


# =============================================================================
# Booking
# =============================================================================

def create_appointment(
    db: Session,
    clinic_id: UUID,
    data: AppointmentCreate,
    scheduler: FollowUpScheduler | None = None,
) -> Appointment:
    """
    Book an appointment.

    Raises InvalidIntervalError for zero/negative durations and
    AppointmentConflictError if the professional is already booked; in
    both cases nothing is written. Follow-up scheduling runs after commit
    and cannot fail the booking.
    """
    candidate = AppointmentInterval(
        resource_id=data.professional_id,
        start=_as_utc(data.start_time),
        end=_as_utc(data.end_time),
        cancelled=data.status == AppointmentStatus.CANCELLED,
    )
    validate_interval(candidate)

    _require_patient(db, clinic_id, data.patient_id)
    _lock_professional(db, clinic_id, data.professional_id)
    if not candidate.cancelled:
        _check_slot(db, clinic_id, candidate)

    appointment = Appointment(
        clinic_id=clinic_id,
        professional_id=data.professional_id,
        patient_id=data.patient_id,
        title=data.title or DEFAULT_TITLE,
        start_time=candidate.start,
        end_time=candidate.end,
        status=data.status.value,
        notes=data.notes,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    if not candidate.cancelled:
        follow_up_triggers.trigger_appointment_scheduled(db, appointment, scheduler=scheduler)
    return appointment


def update_appointment(
    db: Session,
    clinic_id: UUID,
    appointment: Appointment,
    data: AppointmentUpdate,
) -> Appointment:
    """
    Move or edit an appointment.

    The appointment being edited is excluded from its own conflict check.
    """
    updates = data.model_dump(exclude_unset=True)
    start = _as_utc(updates.get("start_time") or appointment.start_time)
    end = _as_utc(updates.get("end_time") or appointment.end_time)
    professional_id = updates.get("professional_id") or appointment.professional_id

    candidate = AppointmentInterval(
        resource_id=professional_id,
        start=start,
        end=end,
        cancelled=appointment.status == AppointmentStatus.CANCELLED.value,
        interval_id=appointment.id,
    )
    validate_interval(candidate)

    if updates.get("patient_id"):
        _require_patient(db, clinic_id, updates["patient_id"])
    _lock_professional(db, clinic_id, professional_id)
    if not candidate.cancelled:
        _check_slot(db, clinic_id, candidate)

    appointment.professional_id = professional_id
    appointment.start_time = start
    appointment.end_time = end
    if updates.get("patient_id"):
        appointment.patient_id = updates["patient_id"]
    if "title" in updates:
        appointment.title = updates["title"] or DEFAULT_TITLE
    if "notes" in updates:
        appointment.notes = updates["notes"]
    db.commit()
    db.refresh(appointment)
    return appointment


def update_appointment_status(
    db: Session,
    clinic_id: UUID,
    appointment: Appointment,
    status: AppointmentStatus,
    scheduler: FollowUpScheduler | None = None,
) -> Appointment:
    """
    Change an appointment's status.

    Reviving a cancelled appointment re-checks its slot. Moving into
    COMPLETED fires APPOINTMENT_COMPLETED follow-ups.
    """
    old_status = appointment.status
    status = AppointmentStatus(status)

    if old_status == AppointmentStatus.CANCELLED.value and status != AppointmentStatus.CANCELLED:
        _lock_professional(db, clinic_id, appointment.professional_id)
        _check_slot(db, clinic_id, to_interval(appointment)._replace(cancelled=False))

    appointment.status = status.value
    db.commit()
    db.refresh(appointment)

    if status == AppointmentStatus.COMPLETED and old_status != AppointmentStatus.COMPLETED.value:
        follow_up_triggers.trigger_appointment_completed(db, appointment, scheduler=scheduler)
    return appointment


# =============================================================================
# Queries
# =============================================================================

def get_appointment(db: Session, clinic_id: UUID, appointment_id: UUID) -> Appointment | None:
    """Get appointment by ID, scoped to the clinic."""
    return (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.clinic_id == clinic_id)
        .first()
    )


def list_appointments(
    db: Session,
    clinic_id: UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    professional_id: UUID | None = None,
) -> list[Appointment]:
    """List a clinic's appointments ordered by start time."""
    query = db.query(Appointment).filter(Appointment.clinic_id == clinic_id)
    if start and end:
        query = query.filter(
            Appointment.start_time >= _as_utc(start),
            Appointment.start_time <= _as_utc(end),
        )
    if professional_id:
        query = query.filter(Appointment.professional_id == professional_id)
    return query.order_by(Appointment.start_time).all()
