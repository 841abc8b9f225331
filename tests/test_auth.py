from __future__ import annotations

from datetime import timedelta

from constituency_desk.models.user import UserRole
from constituency_desk.security import ADMIN_ROLES, WRITE_ROLES, authorize, create_access_token


def test_authorize_is_a_role_check():
    assert authorize(UserRole.STAFF, WRITE_ROLES)
    assert not authorize(UserRole.VIEWER, WRITE_ROLES)
    assert not authorize(UserRole.POLITICIAN, ADMIN_ROLES)
    assert authorize(UserRole.VIEWER, ())
    assert not authorize(None, ())


def test_missing_and_bad_tokens(client):
    res = client.get("/visitors")
    assert res.status_code == 401
    assert res.json() == {"error": "Authorization token required"}

    res = client.get("/visitors", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["error"] == "Invalid or expired token"


def test_expired_token(client, users):
    token = create_access_token(users["staff"].id, UserRole.STAFF, expires_delta=timedelta(minutes=-1))
    res = client.get("/visitors", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_viewer_reads_but_cannot_write(client, auth):
    assert client.get("/visitors", headers=auth("viewer")).status_code == 200
    res = client.post(
        "/visitors",
        json={"name": "Test", "phone": "9899999999", "village": "A", "district": "B"},
        headers=auth("viewer"),
    )
    assert res.status_code == 403
    assert res.json() == {"error": "Insufficient permissions"}


def test_only_admin_creates_users(client, auth):
    body = {"email": "new@example.com", "name": "New Staff"}
    assert client.post("/users", json=body, headers=auth("politician")).status_code == 403

    created = client.post("/users", json=body, headers=auth("admin"))
    assert created.status_code == 201
    assert created.json()["user"]["role"] == "STAFF"

    again = client.post("/users", json=body, headers=auth("admin"))
    assert again.status_code == 409


def test_whoami(client, auth, users):
    me = client.get("/users/me", headers=auth("politician")).json()["user"]
    assert me["id"] == users["politician"].id


def test_health_is_public(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["ok"] is True
