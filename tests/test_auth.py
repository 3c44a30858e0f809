# Account test suite: registration, login, email verification and password reset with mailed codes.
from __future__ import annotations

from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from flatrent import mailer
from flatrent.clock import FixedClock

from helpers import auth_headers, register


@pytest.fixture()
def outbox(monkeypatch) -> List[Tuple[str, str]]:
    """Capture (email, code) pairs instead of sending mail."""
    sent: List[Tuple[str, str]] = []

    def _capture(to, first_name, code, minutes):
        sent.append((to, code))
        return True

    monkeypatch.setattr(mailer, "send_verification_code", _capture)
    monkeypatch.setattr(mailer, "send_password_reset_code", _capture)
    return sent


def test_register_login_and_me(client: TestClient, outbox):
    token, user = register(client, "  Alice@Example.com ", "owner")
    assert user["email"] == "alice@example.com"
    assert user["role"] == "owner"
    assert user["verified"] is False
    assert outbox[0][0] == "alice@example.com"

    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "changeme123"})
    assert r.status_code == 200, r.text
    assert r.json()["token_type"] == "bearer"

    r = client.get("/auth/me", headers=auth_headers(token))
    assert r.status_code == 200
    assert r.json()["id"] == user["id"]


def test_duplicate_email_rejected(client: TestClient, outbox):
    register(client, "bob@example.com")
    r = client.post(
        "/auth/register",
        json={
            "first_name": "Bob",
            "last_name": "Again",
            "email": "BOB@example.com",
            "password": "changeme123",
            "phone": "1",
            "nid": "1",
        },
    )
    assert r.status_code == 409


def test_wrong_password_is_unauthorized(client: TestClient, outbox):
    register(client, "carol@example.com")
    r = client.post("/auth/login", json={"email": "carol@example.com", "password": "nope"})
    assert r.status_code == 401


def test_invalid_token_is_unauthorized(client: TestClient):
    r = client.get("/auth/me", headers=auth_headers("not-a-jwt"))
    assert r.status_code == 401


def test_verify_email_with_code(client: TestClient, outbox):
    register(client, "dave@example.com")
    code = outbox[-1][1]

    r = client.post("/auth/verify-email", json={"email": "dave@example.com", "code": "000000"})
    assert r.status_code == 400

    r = client.post("/auth/verify-email", json={"email": "dave@example.com", "code": code})
    assert r.status_code == 200, r.text
    assert r.json()["verified"] is True

    r = client.post("/auth/resend-verification", json={"email": "dave@example.com"})
    assert r.status_code == 400


def test_verification_code_expires(client: TestClient, outbox, clock: FixedClock):
    register(client, "erin@example.com")
    code = outbox[-1][1]

    clock.advance(minutes=16)
    r = client.post("/auth/verify-email", json={"email": "erin@example.com", "code": code})
    assert r.status_code == 400

    r = client.post("/auth/resend-verification", json={"email": "erin@example.com"})
    assert r.status_code == 200
    r = client.post("/auth/verify-email", json={"email": "erin@example.com", "code": outbox[-1][1]})
    assert r.status_code == 200


def test_password_reset(client: TestClient, outbox):
    register(client, "frank@example.com")

    # Unknown accounts get the same answer and no mail
    sent_before = len(outbox)
    r = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert r.status_code == 200
    assert len(outbox) == sent_before

    r = client.post("/auth/forgot-password", json={"email": "frank@example.com"})
    assert r.status_code == 200
    code = outbox[-1][1]

    r = client.post(
        "/auth/reset-password",
        json={"email": "frank@example.com", "code": code, "new_password": "brand-new-pass"},
    )
    assert r.status_code == 200, r.text

    assert client.post("/auth/login", json={"email": "frank@example.com", "password": "changeme123"}).status_code == 401
    assert client.post("/auth/login", json={"email": "frank@example.com", "password": "brand-new-pass"}).status_code == 200

    # Codes are single-use
    r = client.post(
        "/auth/reset-password",
        json={"email": "frank@example.com", "code": code, "new_password": "another-pass"},
    )
    assert r.status_code == 400


def test_mail_is_logged_when_smtp_not_configured():
    assert mailer.mail_enabled() is False
    assert mailer.send_email("x@example.com", "Subject", "Body") is False
    assert len(mailer.generate_code()) == 6
