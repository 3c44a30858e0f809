# Booking API test suite: request/approve/pay flow, conflict rules, disapproval and cancellation,
# authorization checks, and the dashboards.
from __future__ import annotations

from fastapi.testclient import TestClient

from flatrent.db import SessionLocal
from flatrent import models

from helpers import API, active_booking, auth_headers, create_flat, flat_status, register, request_booking


def _payments(booking_id: int) -> list:
    db = SessionLocal()
    try:
        return [
            p.status
            for p in db.query(models.Payment)
            .filter(models.Payment.booking_id == booking_id)
            .order_by(models.Payment.id.asc())
        ]
    finally:
        db.close()


# Request -> approve -> pay: booking active, payment completed, flat booked
def test_booking_round_trip_marks_flat_booked(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, tenant = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token, rent_cents=2500000)

    r = request_booking(client, tenant_token, flat["id"], "2024-01-01", "2024-01-31")
    assert r.status_code == 201, r.text
    booking = r.json()
    assert booking["status"] == "pending"
    assert booking["user_id"] == tenant["id"]
    assert flat_status(client, flat["id"]) == "pending"
    assert _payments(booking["id"]) == ["pending"]

    r = client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "approved"
    assert r.json()["approved_at"] is not None
    assert _payments(booking["id"]) == ["awaiting_tenant_payment"]

    r = client.post(f"{API}/bookings/{booking['id']}/confirm-payment", headers=auth_headers(tenant_token))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["booking"]["status"] == "active"
    assert data["payment"]["status"] == "completed"
    assert data["payment"]["amount_cents"] == 2500000
    assert data["payment"]["date_paid"] is not None

    assert flat_status(client, flat["id"]) == "booked"


# Conflicts: overlap with an active booking is rejected, a disjoint range is accepted
def test_conflicting_dates_rejected_and_disjoint_accepted(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    active_booking(client, owner_token, tenant_token, flat["id"], "2024-01-01", "2024-01-31")

    r = request_booking(client, other_token, flat["id"], "2024-01-15", "2024-02-15")
    assert r.status_code == 409, r.text
    assert r.json() == {
        "detail": "Booking dates conflict with an existing active reservation.",
        "error": "conflict",
    }

    r = request_booking(client, other_token, flat["id"], "2024-02-01", "2024-02-28")
    assert r.status_code == 201, r.text


# Bounds are inclusive: a request starting on another booking's last day conflicts
def test_shared_boundary_day_conflicts(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)

    assert request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").status_code == 201
    r = request_booking(client, other_token, flat["id"], "2024-03-31", "2024-04-30")
    assert r.status_code == 409


# Pending bookings hold their dates too
def test_pending_booking_blocks_overlap(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)

    assert request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").status_code == 201
    assert request_booking(client, other_token, flat["id"], "2024-03-10", "2024-03-20").status_code == 409


def test_end_before_start_is_invalid_input(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)

    r = request_booking(client, tenant_token, flat["id"], "2024-03-10", "2024-03-10")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_input"


def test_unknown_flat_is_not_found(client: TestClient):
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    r = request_booking(client, tenant_token, 999, "2024-03-01", "2024-03-31")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_unavailable_flat_rejects_bookings(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token, status="unavailable")

    r = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_state"


# Owners cannot book at all; the tenant-only route rejects them before the lifecycle runs
def test_owner_cannot_book_flat(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    flat = create_flat(client, owner_token)

    r = request_booking(client, owner_token, flat["id"], "2024-03-01", "2024-03-31")
    assert r.status_code == 403

    db = SessionLocal()
    try:
        assert db.query(models.Booking).count() == 0
    finally:
        db.close()


# Disapproving a pending booking frees the flat and fails its payments
def test_disapprove_pending_booking(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()

    r = client.post(f"{API}/bookings/{booking['id']}/disapprove", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "disapproved"
    assert flat_status(client, flat["id"]) == "available"
    assert _payments(booking["id"]) == ["failed"]


# Disapproving one booking leaves the flat held by an unrelated active booking
def test_disapprove_keeps_flat_booked_by_other_active_booking(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    active_booking(client, owner_token, tenant_token, flat["id"], "2024-01-01", "2024-01-31")
    pending = request_booking(client, other_token, flat["id"], "2024-02-01", "2024-02-28").json()
    assert flat_status(client, flat["id"]) == "booked"

    r = client.post(f"{API}/bookings/{pending['id']}/disapprove", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    assert flat_status(client, flat["id"]) == "booked"


def test_disapprove_active_booking_is_invalid_state(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = active_booking(client, owner_token, tenant_token, flat["id"])

    r = client.post(f"{API}/bookings/{booking['id']}/disapprove", headers=auth_headers(owner_token))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_state"


def test_approve_twice_is_invalid_state(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()

    assert client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(owner_token)).status_code == 200
    r = client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(owner_token))
    assert r.status_code == 400
    assert r.json()["detail"] == 'Booking is not in "pending" status for approval.'


# Another owner cannot approve; nothing changes
def test_foreign_owner_cannot_approve(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    intruder_token, _ = register(client, "intruder@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()

    r = client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(intruder_token))
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"

    r = client.get(f"{API}/bookings/{booking['id']}", headers=auth_headers(tenant_token))
    assert r.json()["status"] == "pending"
    assert _payments(booking["id"]) == ["pending"]


def test_confirm_payment_before_approval_is_invalid_state(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()

    r = client.post(f"{API}/bookings/{booking['id']}/confirm-payment", headers=auth_headers(tenant_token))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_state"


def test_other_tenant_cannot_confirm_payment(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()
    client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(owner_token))

    r = client.post(f"{API}/bookings/{booking['id']}/confirm-payment", headers=auth_headers(other_token))
    assert r.status_code == 403
    assert _payments(booking["id"]) == ["awaiting_tenant_payment"]


# Tenant cancels an approved booking; the dates free up for others
def test_cancel_approved_booking_releases_dates(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()
    client.post(f"{API}/bookings/{booking['id']}/approve", headers=auth_headers(owner_token))

    r = client.post(f"{API}/bookings/{booking['id']}/cancel", headers=auth_headers(tenant_token))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "cancelled"
    assert r.json()["cancelled_at"] is not None
    assert _payments(booking["id"]) == ["failed"]
    assert flat_status(client, flat["id"]) == "available"

    assert request_booking(client, other_token, flat["id"], "2024-03-10", "2024-03-20").status_code == 201


def test_cancel_active_booking_is_invalid_state(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = active_booking(client, owner_token, tenant_token, flat["id"])

    r = client.post(f"{API}/bookings/{booking['id']}/cancel", headers=auth_headers(tenant_token))
    assert r.status_code == 400
    assert r.json()["detail"] == "Only pending or approved (awaiting payment) bookings can be cancelled by tenant."


def test_dashboards_list_bookings_with_payments(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    first = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()
    second = request_booking(client, other_token, flat["id"], "2024-04-01", "2024-04-30").json()

    r = client.get(f"{API}/bookings/owner", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    items = r.json()
    assert [b["id"] for b in items] == [second["id"], first["id"]]
    assert items[0]["payments"][0]["status"] == "pending"
    assert items[0]["extensions"] == []

    r = client.get(f"{API}/bookings/tenant", headers=auth_headers(tenant_token))
    assert [b["id"] for b in r.json()] == [first["id"]]

    # Role-specific dashboards
    assert client.get(f"{API}/bookings/owner", headers=auth_headers(tenant_token)).status_code == 403
    assert client.get(f"{API}/bookings/tenant", headers=auth_headers(owner_token)).status_code == 403


def test_get_booking_visible_to_parties_only(client: TestClient):
    owner_token, _ = register(client, "owner@example.com", "owner")
    tenant_token, _ = register(client, "tenant@example.com", "tenant")
    other_token, _ = register(client, "other@example.com", "tenant")
    flat = create_flat(client, owner_token)
    booking = request_booking(client, tenant_token, flat["id"], "2024-03-01", "2024-03-31").json()

    assert client.get(f"{API}/bookings/{booking['id']}", headers=auth_headers(tenant_token)).status_code == 200
    assert client.get(f"{API}/bookings/{booking['id']}", headers=auth_headers(owner_token)).status_code == 200
    assert client.get(f"{API}/bookings/{booking['id']}", headers=auth_headers(other_token)).status_code == 403
    assert client.get(f"{API}/bookings/999", headers=auth_headers(tenant_token)).status_code == 404


def test_booking_requires_auth(client: TestClient):
    r = client.post(f"{API}/bookings", json={"flat_id": 1, "start_date": "2024-03-01", "end_date": "2024-03-31"})
    assert r.status_code == 401
