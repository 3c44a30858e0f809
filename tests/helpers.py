# Shared HTTP helpers for the API test modules.
from __future__ import annotations

from datetime import date
from typing import Dict, Optional, Tuple

from fastapi.testclient import TestClient

from flatrent.db import SessionLocal
from flatrent import models

API = "/api/v1"


# Convenience header for authenticated requests
def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# Helper: register a user and return (access_token, user JSON)
def register(client: TestClient, email: str, role: str = "tenant", password: str = "changeme123") -> Tuple[str, dict]:
    r = client.post(
        "/auth/register",
        json={
            "first_name": email.split("@")[0].title(),
            "last_name": "Tester",
            "email": email,
            "password": password,
            "phone": "01700000000",
            "nid": "1234567890",
            "role": role,
        },
    )
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


# Helper: create a flat owned by the authenticated owner
def create_flat(client: TestClient, token: str, rent_cents: int = 2500000, **fields) -> dict:
    body = {
        "address": "12 Lake Road",
        "district": "Dhaka",
        "monthly_rent_cents": rent_cents,
        "flat_number": "4B",
        "floor": 4,
        "house_number": "12",
        "utility_cost_cents": 300000,
    }
    body.update(fields)
    r = client.post(f"{API}/flats", headers=auth_headers(token), json=body)
    assert r.status_code == 201, r.text
    return r.json()


def request_booking(client: TestClient, token: str, flat_id: int, start_date: str, end_date: str):
    return client.post(
        f"{API}/bookings",
        headers=auth_headers(token),
        json={"flat_id": flat_id, "start_date": start_date, "end_date": end_date},
    )


def flat_status(client: TestClient, flat_id: int) -> str:
    r = client.get(f"{API}/flats/{flat_id}")
    assert r.status_code == 200, r.text
    return r.json()["status"]


def active_booking(
    client: TestClient,
    owner_token: str,
    tenant_token: str,
    flat_id: int,
    start_date: str = "2024-01-01",
    end_date: str = "2024-01-31",
) -> dict:
    """Walk a booking through request -> approve -> confirm payment and return it."""
    r = request_booking(client, tenant_token, flat_id, start_date, end_date)
    assert r.status_code == 201, r.text
    booking_id = r.json()["id"]
    r = client.post(f"{API}/bookings/{booking_id}/approve", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    r = client.post(f"{API}/bookings/{booking_id}/confirm-payment", headers=auth_headers(tenant_token))
    assert r.status_code == 200, r.text
    return r.json()["booking"]


def set_booking_status(booking_id: int, status: str, end_date: Optional[str] = None) -> None:
    """Force a booking row into a state directly, bypassing the lifecycle."""
    db = SessionLocal()
    try:
        obj = db.get(models.Booking, booking_id)
        obj.status = status
        if end_date is not None:
            obj.end_date = date.fromisoformat(end_date)
        db.add(obj)
        db.commit()
    finally:
        db.close()
