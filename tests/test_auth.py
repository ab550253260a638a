from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, update

import storage
from config import Settings
from conftest import bearer, signup
from models import Session as LoginSession


def test_root_and_database_check(client):
    assert client.get("/").json()["status"] == "ok"
    resp = client.get("/test").json()
    assert resp["connection_status"] == "Connected"
    assert "orders" in resp["tables"]


def test_signup_creates_customer_session(client):
    resp = client.post("/auth/signup", json={"username": "bob", "password": "hunter22", "name": "Bob"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["user"]["role"] == "customer"
    assert "password_hash" not in body["user"]
    assert resp.cookies.get("session_id") == body["token"]

    me = client.get("/auth/me", headers=bearer(body["token"]))
    assert me.status_code == 200
    assert me.json()["username"] == "bob"


def test_session_cookie_authenticates(client):
    client.post("/auth/signup", json={"username": "carol", "password": "hunter22", "name": "Carol"})
    assert client.get("/auth/me").json()["username"] == "carol"


def test_duplicate_username_rejected(client):
    signup(client, "dave")
    resp = client.post("/auth/signup", json={"username": "dave", "password": "other123", "name": "Dave"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Username already registered"


def test_signup_rejects_unknown_fields(client):
    resp = client.post("/auth/signup", json={
        "username": "eve", "password": "hunter22", "name": "Eve", "role": "admin",
    })
    assert resp.status_code == 422


def test_signin_with_bad_password(client):
    signup(client, "frank", password="right-one")
    resp = client.post("/auth/signin", json={"username": "frank", "password": "wrong-one"})
    assert resp.status_code == 401


def test_signin_unknown_user(client):
    resp = client.post("/auth/signin", json={"username": "nobody", "password": "whatever"})
    assert resp.status_code == 401


def test_signout_ends_session(client, customer_headers):
    assert client.post("/auth/signout", headers=customer_headers).status_code == 204
    assert client.get("/auth/me", headers=customer_headers).status_code == 401


def test_unauthenticated_requests(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/cart").status_code == 401
    assert client.get("/orders").status_code == 401
    assert client.get("/stats").status_code == 401
    assert client.get("/auth/me", headers=bearer("not-a-token")).status_code == 401


def test_admin_gate(client, customer_headers, admin_headers):
    assert client.get("/stats", headers=customer_headers).status_code == 403
    resp = client.post("/categories", headers=customer_headers, json={"name": "X", "slug": "x"})
    assert resp.status_code == 403
    assert client.get("/stats", headers=admin_headers).status_code == 200


def test_expired_session_is_rejected(client, db, customer_headers):
    token = customer_headers["Authorization"].split()[1]
    db.execute(update(LoginSession).where(LoginSession.token == token)
               .values(expires_at=datetime(2000, 1, 1, tzinfo=timezone.utc)))
    db.commit()

    assert client.get("/auth/me", headers=customer_headers).status_code == 401
    remaining = db.scalar(select(func.count()).select_from(LoginSession).where(LoginSession.token == token))
    assert remaining == 0


def test_signout_with_cookie(client):
    client.post("/auth/signup", json={"username": "lena", "password": "hunter22", "name": "Lena"})
    assert client.get("/auth/me").status_code == 200

    assert client.post("/auth/signout").status_code == 204
    assert client.get("/auth/me").status_code == 401


def test_username_taken_past_the_precheck(client, monkeypatch):
    signup(client, "mike")
    # a concurrent signup claimed the name after the lookup
    monkeypatch.setattr(storage, "get_user_by_username", lambda db, username: None)
    resp = client.post("/auth/signup", json={"username": "mike", "password": "hunter22", "name": "Mike"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Username already registered"


def test_default_admin_password_refused_in_production():
    with pytest.raises(ValueError):
        Settings(environment="production")
    settings = Settings(environment="production", admin_password="s3cret-admin")
    assert settings.admin_password == "s3cret-admin"
