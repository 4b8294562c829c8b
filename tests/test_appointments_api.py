"""API tests for appointment booking with conflict detection."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.core.deps import CLINIC_HEADER
from app.db.enums import FollowUpTrigger
from app.db.models import Appointment, FollowUpExecution


def _payload(professional, patient, start: str, end: str, **extra) -> dict:
    return {
        "professional_id": str(professional.id),
        "patient_id": str(patient.id),
        "start_time": start,
        "end_time": end,
        **extra,
    }


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# =============================================================================
# Tenant resolution
# =============================================================================

@pytest.mark.asyncio
async def test_missing_clinic_header_is_unauthorized(client):
    response = await client.get("/appointments")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_clinic_is_forbidden(client):
    response = await client.get("/appointments", headers={CLINIC_HEADER: str(uuid4())})
    assert response.status_code == 403


# =============================================================================
# Booking
# =============================================================================

@pytest.mark.asyncio
async def test_create_appointment(clinic_client, test_professional, test_patient):
    response = await clinic_client.post(
        "/appointments",
        json=_payload(
            test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"
        ),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Consulta"
    assert data["status"] == "SCHEDULED"
    assert _parse(data["start_time"]) == datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_overlapping_booking_is_rejected(db, clinic_client, test_professional, test_patient):
    first = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )
    assert first.status_code == 201

    response = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:30:00Z", "2024-06-01T16:30:00Z"),
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Time conflict detected"
    assert db.query(Appointment).count() == 1


@pytest.mark.asyncio
async def test_back_to_back_booking_is_allowed(clinic_client, test_professional, test_patient):
    for start, end in (
        ("2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
        ("2024-06-01T16:00:00Z", "2024-06-01T17:00:00Z"),
    ):
        response = await clinic_client.post(
            "/appointments", json=_payload(test_professional, test_patient, start, end)
        )
        assert response.status_code == 201


@pytest.mark.asyncio
async def test_other_professional_same_slot_is_allowed(
    db, clinic_client, test_clinic, test_professional, test_patient
):
    from app.db.models import Professional

    colleague = Professional(clinic_id=test_clinic.id, name="Dr. Paulo")
    db.add(colleague)
    db.commit()

    for professional in (test_professional, colleague):
        response = await clinic_client.post(
            "/appointments",
            json=_payload(professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
        )
        assert response.status_code == 201


@pytest.mark.asyncio
async def test_zero_length_booking_is_invalid(db, clinic_client, test_professional, test_patient):
    response = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T15:00:00Z"),
    )

    assert response.status_code == 422
    assert db.query(Appointment).count() == 0


@pytest.mark.asyncio
async def test_unknown_professional_is_not_found(clinic_client, test_patient):
    response = await clinic_client.post(
        "/appointments",
        json={
            "professional_id": str(uuid4()),
            "patient_id": str(test_patient.id),
            "start_time": "2024-06-01T15:00:00Z",
            "end_time": "2024-06-01T16:00:00Z",
        },
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(clinic_client, test_professional, test_patient):
    first = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )
    cancel = await clinic_client.post(
        f"/appointments/{first.json()['id']}/status", json={"status": "CANCELLED"}
    )
    assert cancel.status_code == 200

    response = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )
    assert response.status_code == 201

    # The old appointment cannot come back into an occupied slot
    revive = await clinic_client.post(
        f"/appointments/{first.json()['id']}/status", json={"status": "SCHEDULED"}
    )
    assert revive.status_code == 409


# =============================================================================
# Editing
# =============================================================================

@pytest.mark.asyncio
async def test_moving_appointment_excludes_itself(clinic_client, test_professional, test_patient):
    created = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )

    response = await clinic_client.patch(
        f"/appointments/{created.json()['id']}",
        json={"start_time": "2024-06-01T15:30:00Z", "end_time": "2024-06-01T16:30:00Z"},
    )

    assert response.status_code == 200
    assert _parse(response.json()["start_time"]) == datetime(2024, 6, 1, 15, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_moving_into_occupied_slot_conflicts(clinic_client, test_professional, test_patient):
    await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )
    second = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T17:00:00Z", "2024-06-01T18:00:00Z"),
    )

    response = await clinic_client.patch(
        f"/appointments/{second.json()['id']}",
        json={"start_time": "2024-06-01T15:45:00Z", "end_time": "2024-06-01T16:45:00Z"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_appointment_is_not_found(clinic_client):
    response = await clinic_client.patch(
        f"/appointments/{uuid4()}", json={"notes": "x"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_appointments_in_range(clinic_client, test_professional, test_patient):
    for start, end in (
        ("2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
        ("2024-06-03T15:00:00Z", "2024-06-03T16:00:00Z"),
    ):
        await clinic_client.post(
            "/appointments", json=_payload(test_professional, test_patient, start, end)
        )

    response = await clinic_client.get(
        "/appointments",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-02T00:00:00Z"},
    )

    assert response.status_code == 200
    assert len(response.json()) == 1


# =============================================================================
# Follow-up hooks
# =============================================================================

@pytest.mark.asyncio
async def test_booking_schedules_follow_ups(db, clinic_client, test_professional, test_patient, make_rule):
    make_rule(
        trigger=FollowUpTrigger.APPOINTMENT_REMINDER,
        delay_days=-1,
        message_template="Lembrete: {nome}, amanhã às {hora}.",
    )

    response = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )

    assert response.status_code == 201
    execution = db.query(FollowUpExecution).one()
    assert execution.scheduled_for == datetime(2024, 5, 31, 15, 0, tzinfo=timezone.utc)
    assert execution.message == "Lembrete: Maria, amanhã às 12:00."


@pytest.mark.asyncio
async def test_completing_schedules_post_visit(db, clinic_client, test_professional, test_patient, make_rule):
    make_rule(
        trigger=FollowUpTrigger.APPOINTMENT_COMPLETED,
        delay_days=1,
        message_template="Como foi sua consulta com {profissional}?",
    )
    created = await clinic_client.post(
        "/appointments",
        json=_payload(test_professional, test_patient, "2024-06-01T15:00:00Z", "2024-06-01T16:00:00Z"),
    )

    response = await clinic_client.post(
        f"/appointments/{created.json()['id']}/status", json={"status": "COMPLETED"}
    )

    assert response.status_code == 200
    execution = db.query(FollowUpExecution).one()
    assert execution.message == "Como foi sua consulta com Dra. Ana?"
