"""
tests/test_end_to_end.py -- First-run walkthrough over HTTP.

Fresh stores -> lifespan bootstraps admin/admin123 -> admin logs in -> token
resolves to the admin -> admin creates editor ed -> ed logs in -> ed is
refused admin routes -> admin deletes ed -> ed's still-signed token stops
working on the next request.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.context import AuthContext


def test_first_run_walkthrough(api_client: tuple[TestClient, str, AuthContext]) -> None:
    client, _token, auth = api_client

    # Lifespan bootstrap produced exactly one admin.
    users = auth.directory.list_all()
    assert [(u.username, u.role) for u in users] == [("admin", "admin")]

    resp = client.post("/api/v1/auth/login", json={"username": "admin", "password": "admin123"})
    assert resp.status_code == 200
    admin_token = resp.json()["access_token"]
    client.cookies.clear()
    admin_headers = {"Authorization": f"Bearer {admin_token}"}

    me = client.get("/api/v1/auth/me", headers=admin_headers).json()
    assert me["username"] == "admin"
    assert auth.authenticator.verify(admin_token).id == me["id"]

    body = {"username": "ed", "email": "ed@x.com", "password": "pw123456", "role": "editor"}
    resp = client.post("/api/v1/auth/users", json=body, headers=admin_headers)
    assert resp.status_code == 201
    ed_id = resp.json()["id"]

    resp = client.post("/api/v1/auth/login", json={"username": "ed", "password": "pw123456"})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "editor"
    ed_token = resp.json()["access_token"]
    client.cookies.clear()
    ed_headers = {"Authorization": f"Bearer {ed_token}"}

    assert client.get("/api/v1/auth/me", headers=ed_headers).json()["id"] == ed_id
    assert client.get("/api/v1/auth/users", headers=ed_headers).status_code == 403

    assert client.delete(f"/api/v1/auth/users/{ed_id}", headers=admin_headers).status_code == 204
    assert client.get("/api/v1/auth/me", headers=ed_headers).status_code == 401
    assert auth.credentials.get(ed_id) is None
