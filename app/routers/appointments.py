"""Appointments router - booking endpoints guarded by conflict detection."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_clinic_id, get_db
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentStatusUpdate,
    AppointmentUpdate,
)
from app.services import appointment_service
from app.services.appointment_conflicts import AppointmentConflictError, InvalidIntervalError
from app.services.appointment_service import PatientNotFoundError, ProfessionalNotFoundError

router = APIRouter()


def _raise_booking_error(e: ValueError) -> None:
    if isinstance(e, AppointmentConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidIntervalError):
        raise HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (PatientNotFoundError, ProfessionalNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


def _get_or_404(db: Session, clinic_id: UUID, appointment_id: UUID):
    appointment = appointment_service.get_appointment(db, clinic_id, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@router.get("", response_model=list[AppointmentRead])
def list_appointments(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    professional_id: UUID | None = Query(None),
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """List appointments, optionally within [start, end]."""
    return appointment_service.list_appointments(
        db, clinic_id, start=start, end=end, professional_id=professional_id
    )


@router.post("", response_model=AppointmentRead, status_code=201)
def create_appointment(
    data: AppointmentCreate,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Book an appointment. 409 if the professional is already booked."""
    try:
        return appointment_service.create_appointment(db, clinic_id, data)
    except ValueError as e:
        _raise_booking_error(e)


@router.patch("/{appointment_id}", response_model=AppointmentRead)
def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Move or edit an appointment."""
    appointment = _get_or_404(db, clinic_id, appointment_id)
    try:
        return appointment_service.update_appointment(db, clinic_id, appointment, data)
    except ValueError as e:
        _raise_booking_error(e)


@router.post("/{appointment_id}/status", response_model=AppointmentRead)
def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    clinic_id: UUID = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    """Change status; completing an appointment fires post-visit follow-ups."""
    appointment = _get_or_404(db, clinic_id, appointment_id)
    try:
        return appointment_service.update_appointment_status(
            db, clinic_id, appointment, data.status
        )
    except ValueError as e:
        _raise_booking_error(e)
