"""Appointment conflict detection.

Pure functions over half-open intervals ``[start, end)``: an appointment
ending at 10:00 and another starting at 10:00 do not conflict.
"""

from datetime import datetime
from typing import Iterable, NamedTuple
from uuid import UUID


class InvalidIntervalError(ValueError):
    """Interval has zero or negative duration."""

    pass


class AppointmentConflictError(ValueError):
    """Candidate interval overlaps an existing appointment."""

    def __init__(self, conflicts: list["AppointmentInterval"] | None = None) -> None:
        self.conflicts = conflicts or []
        super().__init__("Time conflict detected")


class AppointmentInterval(NamedTuple):
    """The slice of an appointment that matters for overlap checks."""
    resource_id: UUID
    start: datetime
    end: datetime
    cancelled: bool = False
    interval_id: UUID | None = None


def validate_interval(interval: AppointmentInterval) -> None:
    """Reject zero or negative duration intervals."""
    if interval.start >= interval.end:
        raise InvalidIntervalError(
            "Appointment end time must be after its start time"
        )


def intervals_overlap(a: AppointmentInterval, b: AppointmentInterval) -> bool:
    """Half-open overlap test; symmetric in a and b."""
    return a.start < b.end and b.start < a.end


def find_conflicts(
    candidate: AppointmentInterval,
    existing: Iterable[AppointmentInterval],
    exclude_id: UUID | None = None,
) -> list[AppointmentInterval]:
    """
    Return existing intervals that conflict with the candidate.

    Cancelled intervals, intervals of other resources, and the interval being
    edited (``exclude_id``, defaulting to the candidate's own id) are ignored.
    Raises InvalidIntervalError before any comparison.
    """
    validate_interval(candidate)
    if exclude_id is None:
        exclude_id = candidate.interval_id

    conflicts = []
    for other in existing:
        if other.cancelled:
            continue
        if other.resource_id != candidate.resource_id:
            continue
        if exclude_id is not None and other.interval_id == exclude_id:
            continue
        if intervals_overlap(candidate, other):
            conflicts.append(other)
    return conflicts


def has_conflict(
    candidate: AppointmentInterval,
    existing: Iterable[AppointmentInterval],
    exclude_id: UUID | None = None,
) -> bool:
    """True if the candidate overlaps any live interval on the same resource."""
    return bool(find_conflicts(candidate, existing, exclude_id=exclude_id))
