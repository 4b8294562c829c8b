"""Enum definitions for application constants."""

from enum import Enum


# =============================================================================
# Follow-up automation
# =============================================================================

class FollowUpTrigger(str, Enum):
    """Domain events that can fire follow-up rules."""

    LEAD_CREATED = "LEAD_CREATED"
    LEAD_CONTACTED = "LEAD_CONTACTED"
    LEAD_QUALIFIED = "LEAD_QUALIFIED"
    PATIENT_CREATED = "PATIENT_CREATED"
    APPOINTMENT_SCHEDULED = "APPOINTMENT_SCHEDULED"
    APPOINTMENT_COMPLETED = "APPOINTMENT_COMPLETED"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    BIRTHDAY = "BIRTHDAY"


class TargetType(str, Enum):
    """Entity a follow-up message is about."""

    LEAD = "LEAD"
    PATIENT = "PATIENT"


class ExecutionStatus(str, Enum):
    """
    Follow-up execution lifecycle.

    PENDING -> PROCESSING (claimed by a dispatcher) -> SENT | FAILED.
    PENDING -> FAILED when the rule is deactivated.
    SENT and FAILED are terminal.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


class MessageChannel(str, Enum):
    """Outbound messaging channels."""

    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"


# =============================================================================
# Clinic entities
# =============================================================================

class AppointmentStatus(str, Enum):
    """Appointment lifecycle. Only CANCELLED frees the professional's slot."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class LeadSource(str, Enum):
    OMNICHANNEL = "OMNICHANNEL"
    WEBSITE = "WEBSITE"
    REFERRAL = "REFERRAL"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    INSTAGRAM = "INSTAGRAM"
    OTHER = "OTHER"


class LeadStatus(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
DEFAULT_EXECUTION_STATUS = ExecutionStatus.PENDING
DEFAULT_LEAD_SOURCE = LeadSource.OMNICHANNEL
DEFAULT_LEAD_STATUS = LeadStatus.NEW
