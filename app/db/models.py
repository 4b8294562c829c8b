"""SQLAlchemy ORM models for clinics, scheduling and follow-up automation."""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, String, Text,
    Uuid, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import (
    DEFAULT_APPOINTMENT_STATUS, DEFAULT_EXECUTION_STATUS,
    DEFAULT_LEAD_SOURCE, DEFAULT_LEAD_STATUS,
)


# =============================================================================
# Tenant Models
# =============================================================================

class Clinic(Base):
    """
    A tenant in the multi-tenant system.

    All follow-up rules, executions, and clinical records belong to a clinic.
    """
    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    settings: Mapped["ClinicSettings | None"] = relationship(
        back_populates="clinic", uselist=False, cascade="all, delete-orphan"
    )


class ClinicSettings(Base):
    """Per-clinic messaging credentials used by the Meta transport."""
    __tablename__ = "clinic_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    whatsapp_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    whatsapp_phone_number_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    instagram_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    clinic: Mapped["Clinic"] = relationship(back_populates="settings")


# =============================================================================
# Clinical Records (thin: only what the automation core reads)
# =============================================================================

class Professional(Base):
    """
    A professional whose calendar is guarded by conflict detection.

    The row doubles as the per-professional lock taken before an
    appointment write (SELECT ... FOR UPDATE).
    """
    __tablename__ = "professionals"
    __table_args__ = (
        Index("idx_professionals_clinic", "clinic_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patients_clinic", "clinic_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        Index("idx_leads_clinic_status", "clinic_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(
        String(30), default=DEFAULT_LEAD_SOURCE.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(30), default=DEFAULT_LEAD_STATUS.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class Appointment(Base):
    """
    A booked slot on a professional's calendar.

    Slots are half-open [start_time, end_time): back-to-back appointments
    do not conflict. Cancelled appointments never block a slot.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_professional_time", "professional_id", "start_time", "end_time"),
        Index("idx_appointments_clinic_time", "clinic_id", "start_time"),
        CheckConstraint("end_time > start_time", name="ck_appointment_positive_duration"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), default="Consulta", nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    professional: Mapped["Professional"] = relationship()
    patient: Mapped["Patient"] = relationship()


# =============================================================================
# Follow-up Automation
# =============================================================================

class FollowUpRule(Base):
    """
    Automation rule: when `trigger` fires for a `target_type`, schedule
    `message_template` to be sent `delay_days` after the reference instant.

    Negative delays mean "before" (e.g. a reminder one day before the
    appointment). Rules with executions are deactivated, never deleted.
    """
    __tablename__ = "follow_up_rules"
    __table_args__ = (
        Index("idx_follow_up_rules_match", "clinic_id", "trigger", "target_type", "active"),
        CheckConstraint("delay_days BETWEEN -365 AND 365", name="ck_follow_up_delay_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger: Mapped[str] = mapped_column(String(40), nullable=False)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    delay_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    executions: Mapped[list["FollowUpExecution"]] = relationship(
        back_populates="rule", passive_deletes=True
    )


class FollowUpExecution(Base):
    """
    One firing of a rule for one target.

    `message` is rendered once at scheduling time and never re-rendered.
    The dispatcher claims due rows (PENDING -> PROCESSING with a claim token)
    and performs exactly one terminal transition to SENT or FAILED.
    """
    __tablename__ = "follow_up_executions"
    __table_args__ = (
        Index(
            "idx_follow_up_executions_due",
            "status",
            "scheduled_for",
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index("idx_follow_up_executions_rule_status", "rule_id", "status"),
        Index("idx_follow_up_executions_clinic", "clinic_id", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("follow_up_rules.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_EXECUTION_STATUS.value, nullable=False
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Claim bookkeeping (dispatcher)
    claim_token: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    rule: Mapped["FollowUpRule"] = relationship(back_populates="executions")
