from datetime import timedelta

import pyotp
import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, make_settings, register
from jojo.main import create_app
from jojo.models import Users
from jojo.routers.auth import create_access_token


def test_register_then_duplicate(client):
    resp = register(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "User registered"
    assert isinstance(body["userId"], int)
    assert "secret" not in body

    again = register(client)
    assert again.status_code == 400
    assert again.json() == {"error": "Email already registered"}


def test_register_email_is_case_insensitive(client):
    assert register(client, email="A@B.com").status_code == 200
    assert register(client, email="a@b.COM").status_code == 400


@pytest.mark.parametrize("missing", ["first_name", "last_name", "email", "password"])
def test_register_requires_every_field(client, missing):
    payload = {"first_name": "A", "last_name": "B", "email": "a@b.com", "password": "pw"}
    payload[missing] = ""
    resp = client.post("/api/register", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": "All fields are required"}


def test_register_rejects_malformed_email(client):
    resp = client.post(
        "/api/register", json={"first_name": "A", "last_name": "B", "email": "not-an-email", "password": "pw"}
    )
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_login(client):
    register(client)

    bad = client.post("/api/login", json={"email": "a@b.com", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json() == {"error": "Invalid credentials"}

    unknown = client.post("/api/login", json={"email": "nobody@b.com", "password": "pw"})
    assert unknown.status_code == 401

    good = client.post("/api/login", json={"email": "a@b.com", "password": "pw"})
    assert good.status_code == 200
    token = good.json()["token"]

    history = client.get("/api/history", headers={"Authorization": f"Bearer {token}"})
    assert history.status_code == 200
    assert history.json() == []


def test_protected_routes_reject_missing_and_bad_tokens(client):
    assert client.get("/api/history").status_code == 401
    assert client.get("/api/history", headers={"Authorization": "Bearer garbage"}).status_code == 403
    assert client.post("/api/chat", json={"message": "hi"}).status_code == 401


def test_expired_token_is_rejected(client, settings):
    user_id = register(client).json()["userId"]
    expired = create_access_token(settings, email="a@b.com", user_id=user_id, expires_delta=timedelta(minutes=-5))
    resp = client.get("/api/history", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 403


def test_token_for_deleted_user_is_rejected(client, settings):
    token = create_access_token(settings, email="ghost@b.com", user_id=999)
    resp = client.get("/api/history", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403


def test_two_factor_routes_absent_in_password_mode(client):
    assert client.post("/api/2fa/verify", json={"userId": 1, "token": "123456"}).status_code == 404


@pytest.fixture()
def totp_client():
    app = create_app(make_settings(auth_mode="totp"), provider=FakeProvider())
    with TestClient(app) as test_client:
        yield test_client


def test_two_factor_flow(totp_client):
    registered = register(totp_client).json()
    secret = registered["secret"]
    user_id = registered["userId"]

    setup = totp_client.post("/api/2fa/setup", json={"email": "a@b.com", "secret": secret})
    assert setup.status_code == 200
    assert setup.json()["imageUrl"].startswith("data:image/png;base64,")

    login = totp_client.post("/api/login", json={"email": "a@b.com", "password": "pw"})
    assert login.status_code == 200
    assert login.json() == {"message": "2FA required", "userId": user_id}

    wrong = totp_client.post("/api/2fa/verify", json={"userId": user_id, "token": "000000"})
    if pyotp.TOTP(secret).verify("000000", valid_window=1):
        pytest.skip("random code happened to be valid")
    assert wrong.status_code == 401

    verified = totp_client.post("/api/2fa/verify", json={"userId": user_id, "token": pyotp.TOTP(secret).now()})
    assert verified.status_code == 200
    token = verified.json()["token"]
    assert totp_client.get("/api/history", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_two_factor_setup_rejects_a_different_secret(totp_client):
    register(totp_client)
    resp = totp_client.post("/api/2fa/setup", json={"email": "a@b.com", "secret": pyotp.random_base32()})
    assert resp.status_code == 400


def test_two_factor_setup_needs_the_issued_secret(totp_client):
    register(totp_client)

    resp = totp_client.post("/api/2fa/setup", json={"email": "a@b.com"})
    assert resp.status_code == 400
    assert "imageUrl" not in resp.json()


def test_two_factor_setup_unknown_email_looks_like_wrong_secret(totp_client):
    register(totp_client)
    unknown = totp_client.post("/api/2fa/setup", json={"email": "nobody@mail.com", "secret": pyotp.random_base32()})
    wrong = totp_client.post("/api/2fa/setup", json={"email": "a@b.com", "secret": pyotp.random_base32()})
    assert unknown.status_code == wrong.status_code == 400
    assert unknown.json() == wrong.json()


def test_two_factor_setup_refuses_accounts_without_a_secret(totp_client):
    register(totp_client)
    with totp_client.app.state.session_factory() as db:
        db.query(Users).update({Users.secret_2fa: None})
        db.commit()

    resp = totp_client.post("/api/2fa/setup", json={"email": "a@b.com", "secret": pyotp.random_base32()})
    assert resp.status_code == 400
    with totp_client.app.state.session_factory() as db:
        assert db.query(Users).one().secret_2fa is None


def test_two_factor_verify_requires_fields(totp_client):
    assert totp_client.post("/api/2fa/verify", json={}).status_code == 400
    assert totp_client.post("/api/2fa/setup", json={}).status_code == 400
