"""
E2E Smoke Tests for the Session Booking API.

These tests exercise a running deployment over HTTP: provider setup,
availability, reservation, double-booking rejection, moderation and
release.

Scenarios:
1. Health check - verify service and database are up
2. Schedule setup - register a provider with a weekly template
3. Availability - published slots are listed
4. Reservation - first requester wins, second gets 409
5. Moderation - approve, then illegal transition after cancel
6. Release - idempotent, slot becomes bookable again

Usage:
    pytest tests/e2e/smoke_test_e2e.py -v
    pytest tests/e2e/smoke_test_e2e.py -v -k "reservation"

Prerequisites:
    - Session Booking API running at http://localhost:8000
    - PostgreSQL reachable by the API (Redis optional)
"""

import os
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

# Configuration from environment
BOOKING_URL = os.getenv("BOOKING_URL", "http://localhost:8000")
MODERATOR_ROLE = os.getenv("E2E_MODERATOR_ROLE", "admin")
TIMEOUT = float(os.getenv("E2E_TIMEOUT", "10"))


def _server_up() -> bool:
    try:
        return httpx.get(f"{BOOKING_URL}/health", timeout=2.0).status_code == 200
    except httpx.HTTPError:
        return False


pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(not _server_up(), reason=f"Booking API not reachable at {BOOKING_URL}"),
]


class BookingClient:
    """Simple HTTP client acting as one requester."""

    def __init__(self, requester_id: Optional[str] = None, role: Optional[str] = None):
        self.headers = {}
        if requester_id:
            self.headers["X-Requester-ID"] = requester_id
        if role:
            self.headers["X-Requester-Role"] = role

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        with httpx.Client(base_url=BOOKING_URL, timeout=TIMEOUT, headers=self.headers) as client:
            return client.request(method, path, **kwargs)


def _run_id() -> str:
    return uuid.uuid4().hex[:8]


@pytest.fixture
def moderator():
    return BookingClient(f"e2e-moderator-{_run_id()}", MODERATOR_ROLE)


@pytest.fixture
def student():
    return BookingClient(f"e2e-student-{_run_id()}", "student")


@pytest.fixture
def other_student():
    return BookingClient(f"e2e-student-{_run_id()}", "student")


@pytest.fixture
def provider(moderator):
    """Fresh provider with one published slot on a date well in the future."""
    response = moderator.request("POST", "/providers", json={"name": f"E2E Provider {_run_id()}"})
    assert response.status_code == 201
    provider_id = response.json()["id"]

    day = (datetime.now(timezone.utc) + timedelta(days=30)).date()
    response = moderator.request(
        "PUT",
        f"/providers/{provider_id}/overrides/{day.isoformat()}",
        json={"slots": ["14:00-14:30"]},
    )
    assert response.status_code == 200
    return provider_id, day


def _first_slot(client: BookingClient, provider_id: str, day: date) -> dict:
    response = client.request(
        "GET",
        f"/providers/{provider_id}/availability",
        params={"start": day.isoformat(), "end": day.isoformat()},
    )
    assert response.status_code == 200
    days = response.json()["data"]
    assert days, "expected a published slot"
    return days[0]["slots"][0]


def _reserve(client: BookingClient, provider_id: str, slot: dict) -> httpx.Response:
    return client.request(
        "POST",
        "/bookings",
        json={"provider_id": provider_id, "slot_start": slot["slot_start"], "slot_end": slot["slot_end"]},
    )


# =============================================================================
# Test 1: Health Check
# =============================================================================


class TestHealthCheck:
    """Verify the service is up and responding."""

    def test_health_endpoint(self):
        response = BookingClient().request("GET", "/health")
        assert response.status_code == 200
        assert response.json().get("status") == "healthy"

    def test_ready_endpoint(self):
        response = BookingClient().request("GET", "/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "ok"


# =============================================================================
# Tests 2-4: Schedule, Availability, Reservation
# =============================================================================


class TestReservation:
    """Test the reservation path end to end."""

    def test_published_slot_listed(self, student, provider):
        provider_id, day = provider
        slot = _first_slot(student, provider_id, day)

        assert slot["start_time"] == "14:00"
        assert slot["end_time"] == "14:30"

    def test_second_requester_conflicts(self, student, other_student, provider):
        provider_id, day = provider
        slot = _first_slot(student, provider_id, day)

        first = _reserve(student, provider_id, slot)
        second = _reserve(other_student, provider_id, slot)

        assert first.status_code == 201
        assert second.status_code == 409

        response = student.request(
            "GET",
            f"/providers/{provider_id}/availability",
            params={"start": day.isoformat(), "end": day.isoformat()},
        )
        assert response.json()["data"] == []


# =============================================================================
# Tests 5-6: Moderation and Release
# =============================================================================


class TestLifecycle:
    """Test moderation and release."""

    def test_cancelled_cannot_be_approved(self, moderator, student, provider):
        provider_id, day = provider
        booking_id = _reserve(student, provider_id, _first_slot(student, provider_id, day)).json()["id"]

        cancel = moderator.request("POST", f"/bookings/{booking_id}/transitions", json={"action": "cancel"})
        approve = moderator.request("POST", f"/bookings/{booking_id}/transitions", json={"action": "approve"})

        assert cancel.status_code == 200
        assert approve.status_code == 409

    def test_release_is_idempotent(self, student, other_student, provider):
        provider_id, day = provider
        slot = _first_slot(student, provider_id, day)
        booking_id = _reserve(student, provider_id, slot).json()["id"]

        first = student.request("POST", f"/bookings/{booking_id}/release")
        second = student.request("POST", f"/bookings/{booking_id}/release")

        assert first.status_code == 200
        assert second.status_code == 200
        assert _reserve(other_student, provider_id, slot).status_code == 201
