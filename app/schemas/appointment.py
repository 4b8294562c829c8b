"""Appointment schemas - Pydantic models for appointments API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import AppointmentStatus


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""
    patient_id: UUID
    professional_id: UUID
    start_time: datetime
    end_time: datetime
    title: str | None = Field(None, max_length=255)
    notes: str | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED


class AppointmentUpdate(BaseModel):
    """Schema for moving or editing an appointment. Unset fields are kept."""
    patient_id: UUID | None = None
    professional_id: UUID | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    title: str | None = Field(None, max_length=255)
    notes: str | None = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentRead(BaseModel):
    """Schema for reading an appointment."""
    id: UUID
    patient_id: UUID
    professional_id: UUID
    title: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
