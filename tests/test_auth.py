"""Tests for signup, login, session tokens and account management."""

import datetime

import jwt
import pytest
from werkzeug.security import check_password_hash

import pinboard
from conftest import auth_header


# =============================================================================
# Signup
# =============================================================================


def test_signup_returns_201_token_and_user(client):
    resp = client.post("/api/auth/signup", json={"email": "a@x.com", "username": "a", "password": "secret123"})

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["message"] == "User created successfully"
    assert body["token"]
    assert body["user"]["email"] == "a@x.com"
    assert body["user"]["username"] == "a"
    assert "password_hash" not in body["user"]
    assert body["user"]["first_name"] == ""
    assert body["user"]["last_name"] == ""
    assert "name=a" in body["user"]["avatar_url"]


def test_signup_accepts_camel_case_names_and_builds_avatar(client):
    resp = client.post("/api/auth/signup", json={
        "email": "Ada@X.com",
        "username": "ada",
        "password": "secret123",
        "firstName": "Ada",
        "lastName": "Lovelace",
    })

    user = resp.get_json()["user"]
    assert user["email"] == "ada@x.com"
    assert user["first_name"] == "Ada"
    assert user["last_name"] == "Lovelace"
    assert "name=Ada+Lovelace" in user["avatar_url"]


def test_signup_never_persists_plaintext_password(client, db):
    client.post("/api/auth/signup", json={"email": "a@x.com", "username": "a", "password": "secret123"})

    row = db.execute("SELECT password_hash FROM users WHERE email = ?", ("a@x.com",)).fetchone()
    assert row["password_hash"] != "secret123"
    assert check_password_hash(row["password_hash"], "secret123")


@pytest.mark.parametrize(
    "second, message",
    [
        ({"email": "a@x.com", "username": "other"}, "Email already exists"),
        ({"email": "other@x.com", "username": "a"}, "Username already exists"),
    ],
)
def test_signup_conflicts_on_taken_email_or_username(client, second, message):
    client.post("/api/auth/signup", json={"email": "a@x.com", "username": "a", "password": "secret123"})

    resp = client.post("/api/auth/signup", json={**second, "password": "secret123"})

    assert resp.status_code == 409
    assert resp.get_json() == {"error": "conflict", "message": message}


@pytest.mark.parametrize(
    "payload",
    [
        {"username": "a", "password": "secret123"},
        {"email": "not-an-email", "username": "a", "password": "secret123"},
        {"email": "a@x.com", "password": "secret123"},
        {"email": "a@x.com", "username": "a", "password": "123"},
        {"email": "a@x.com", "username": "has space", "password": "secret123"},
    ],
)
def test_signup_rejects_invalid_payloads(client, payload):
    resp = client.post("/api/auth/signup", json=payload)

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation"


def test_signup_without_json_body_is_a_validation_error(client):
    resp = client.post("/api/auth/signup", data="nope", content_type="text/plain")

    assert resp.status_code == 400


# =============================================================================
# Login
# =============================================================================


def test_login_returns_same_user_id(client):
    signup = client.post("/api/auth/signup", json={"email": "a@x.com", "username": "a", "password": "secret123"})

    resp = client.post("/api/auth/login", json={"email": "a@x.com", "password": "secret123"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user"]["id"] == signup.get_json()["user"]["id"]
    assert body["token"]
    assert "password_hash" not in body["user"]


def test_login_email_is_case_insensitive(client, make_user):
    make_user("bob")

    resp = client.post("/api/auth/login", json={"email": "BOB@x.com", "password": "secret123"})

    assert resp.status_code == 200


def test_login_wrong_password_and_unknown_email_share_generic_message(client, make_user):
    make_user("bob")

    wrong_pw = client.post("/api/auth/login", json={"email": "bob@x.com", "password": "wrong-password"})
    unknown = client.post("/api/auth/login", json={"email": "nobody@x.com", "password": "secret123"})

    assert wrong_pw.status_code == unknown.status_code == 401
    assert wrong_pw.get_json() == unknown.get_json() == {"error": "unauthorized", "message": "Invalid credentials"}


def test_login_requires_both_fields(client):
    resp = client.post("/api/auth/login", json={"email": "a@x.com"})

    assert resp.status_code == 400


# =============================================================================
# Tokens and /me
# =============================================================================


def test_token_is_valid_for_seven_days(make_user):
    user = make_user()

    payload = jwt.decode(user["token"], pinboard.app.config["SECRET_KEY"], algorithms=[pinboard.JWT_ALGORITHM])

    assert payload["sub"] == str(user["id"])
    assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60


def test_me_returns_identity_without_password_hash(client, make_user):
    user = make_user("carol")

    resp = client.get("/api/auth/me", headers=user["headers"])

    assert resp.status_code == 200
    me = resp.get_json()["user"]
    assert me["id"] == user["id"]
    assert me["username"] == "carol"
    assert "password_hash" not in me


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")

    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_me_rejects_tampered_token(client, make_user):
    victim = make_user()
    attacker = make_user()
    header, _, signature = attacker["token"].split(".")
    forged_payload = jwt.encode({"sub": str(victim["id"])}, "x", algorithm="HS256").split(".")[1]

    resp = client.get("/api/auth/me", headers=auth_header(f"{header}.{forged_payload}.{signature}"))

    assert resp.status_code == 401


def test_me_rejects_expired_token(client, make_user):
    user = make_user()
    past = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=8)
    token = jwt.encode(
        {"sub": str(user["id"]), "iat": past, "exp": past + datetime.timedelta(days=7)},
        pinboard.app.config["SECRET_KEY"],
        algorithm=pinboard.JWT_ALGORITHM,
    )

    resp = client.get("/api/auth/me", headers=auth_header(token))

    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Invalid or expired token"


def test_me_rejects_token_signed_with_another_secret(client, make_user):
    user = make_user()
    token = jwt.encode({"sub": str(user["id"])}, "some-other-secret", algorithm="HS256")

    resp = client.get("/api/auth/me", headers=auth_header(token))

    assert resp.status_code == 401


# =============================================================================
# Profile edit and account deletion
# =============================================================================


def test_update_profile_changes_fields(client, make_user):
    user = make_user()

    resp = client.put("/api/auth/me", json={"bio": "I pin things", "firstName": "Grace"}, headers=user["headers"])

    assert resp.status_code == 200
    updated = resp.get_json()["user"]
    assert updated["bio"] == "I pin things"
    assert updated["first_name"] == "Grace"
    assert updated["updated_at"] >= updated["created_at"]


def test_update_profile_with_nothing_is_rejected(client, make_user):
    user = make_user()

    resp = client.put("/api/auth/me", json={}, headers=user["headers"])

    assert resp.status_code == 400


def test_delete_account_invalidates_token(client, make_user):
    user = make_user()

    resp = client.delete("/api/auth/me", headers=user["headers"])

    assert resp.status_code == 200
    assert client.get("/api/auth/me", headers=user["headers"]).status_code == 401
    assert client.get(f"/api/users/{user['id']}").status_code == 404
