"""Tests for appointment admission endpoints."""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient

from admission.config import settings
from admission.core.clock import ClinicClock
from admission.core.security import create_access_token
from admission.schemas.appointments import AppointmentStatus


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_detailed_health_reports_redis_disabled(client: AsyncClient) -> None:
    response = await client.get("/api/v1/health/detailed")
    assert response.status_code == 200
    data = response.json()
    assert data["redis"] == "disabled"
    assert data["lock_backend"] == "local"
    assert data["clinic_timezone"] == "America/Mexico_City"


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    response = await client.get("/api/v1/ping")
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_check_in_accepted(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
    actor_id: str,
) -> None:
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "check_in", "now": "2025-03-10T13:31:00-06:00"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["kind"] == "accepted"
    assert data["status"] == "checked_in"
    assert data["audit_entry"]["actor_id"] == actor_id
    assert data["audit_entry"]["from_status"] == "scheduled"


@pytest.mark.asyncio
async def test_check_in_too_early_is_422(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        # Naive times are clinic-local
        json={"action": "check_in", "now": "2025-03-10T13:29:00"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    data = response.json()
    assert data["kind"] == "guard_rejected"
    assert data["reason"] == "too_early"
    assert data["details"]["minutes_remaining"] == 1
    assert "1 minute" in data["message"]


@pytest.mark.asyncio
async def test_illegal_transition_is_422(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment(status=AppointmentStatus.COMPLETED)

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "cancel", "reason": "Duplicate booking"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["kind"] == "illegal_transition"


@pytest.mark.asyncio
async def test_reschedule_action_requires_target(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "reschedule"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_unknown_action_is_validation_error(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment()
    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "teleport"},
        headers=auth_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_appointment_is_404(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.post(
        f"/api/v1/appointments/{uuid4()}/transitions",
        json={"action": "confirm"},
        headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client: AsyncClient, make_appointment) -> None:
    appointment_id = await make_appointment()
    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "confirm"},
    )
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_expired_token_is_401(client: AsyncClient, make_appointment) -> None:
    appointment_id = await make_appointment()
    token = create_access_token("staff-1", expires_delta=timedelta(minutes=-1))
    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "confirm"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_reschedule_endpoint_and_history(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/reschedule",
        json={
            "new_scheduled_at": "2025-03-12T10:30:00-06:00",
            "reason": "Doctor unavailable",
            "now": "2025-03-10T09:00:00-06:00",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["kind"] == "accepted"
    assert data["status"] == "scheduled"
    assert len(data["audit_entries"]) == 2

    history = await client.get(
        f"/api/v1/appointments/{appointment_id}/history",
        headers=auth_headers,
    )
    assert history.status_code == 200
    entries = history.json()
    assert [e["action"] for e in entries] == ["reschedule", "complete_reschedule"]
    assert [e["to_status"] for e in entries] == ["rescheduled", "scheduled"]


@pytest.mark.asyncio
async def test_reschedule_into_dst_gap_is_422(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
    service,
) -> None:
    """A naive time that does not exist on the clinic clock is rejected."""
    service.clock = ClinicClock("America/New_York")
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/reschedule",
        json={"new_scheduled_at": "2025-03-09T02:30:00", "now": "2025-03-08T09:00:00"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "NonexistentLocalTime"


@pytest.mark.asyncio
async def test_guards_endpoint(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
) -> None:
    appointment_id = await make_appointment()

    response = await client.get(
        f"/api/v1/appointments/{appointment_id}/guards",
        params={"now": "2025-03-10T14:20:00-06:00"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "scheduled"
    assert data["check_in"]["allowed"] is False
    assert data["check_in"]["reason"] == "expired"
    assert data["check_in"]["details"]["minutes_elapsed"] == 5
    assert data["mark_no_show"]["allowed"] is True
    assert data["suggested_action"] is None


@pytest.mark.asyncio
async def test_clock_override_can_be_disabled(
    client: AsyncClient,
    auth_headers: dict,
    make_appointment,
    monkeypatch,
) -> None:
    monkeypatch.setattr(settings, "allow_clock_override", False)
    appointment_id = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/transitions",
        json={"action": "check_in", "now": "2025-03-10T13:31:00-06:00"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "BadRequestException"


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient) -> None:
    response = await client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Process-Time" in response.headers
