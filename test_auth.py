"""
Tests for registration, login, tokens, health and metrics.

Tests cover:
- POST /auth/register (201, duplicate 409, validation 422)
- POST /auth/login (valid, wrong password, unknown user)
- Token minting and verification
- Health probes and the /metrics exposition
"""

from datetime import datetime

import jwt

from messagely.config import get_settings
from messagely.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)


REGISTER_BODY = {
    "username": "alice",
    "password": "wonderland",
    "first_name": "Alice",
    "last_name": "Liddell",
    "phone": "+14155550100",
}


class TestRegisterRoute:
    """Test POST /auth/register."""

    def test_register_returns_token(self, client):
        response = client.post("/auth/register", json=REGISTER_BODY)

        assert response.status_code == 201
        token = response.json()["token"]
        assert decode_access_token(token) == "alice"

    def test_register_duplicate_conflict(self, client):
        client.post("/auth/register", json=REGISTER_BODY)

        response = client.post("/auth/register", json=REGISTER_BODY)

        assert response.status_code == 409
        assert response.json()["code"] == "E_USERNAME_TAKEN"

    def test_register_missing_field(self, client):
        body = {k: v for k, v in REGISTER_BODY.items() if k != "phone"}

        response = client.post("/auth/register", json=body)

        assert response.status_code == 422

    def test_register_empty_username(self, client):
        response = client.post("/auth/register", json={**REGISTER_BODY, "username": ""})
        assert response.status_code == 422

    def test_register_overlong_password(self, client):
        response = client.post("/auth/register", json={**REGISTER_BODY, "password": "x" * 100})

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"


class TestLoginRoute:
    """Test POST /auth/login."""

    def test_login_success(self, client):
        client.post("/auth/register", json=REGISTER_BODY)

        response = client.post(
            "/auth/login",
            json={"username": "alice", "password": "wonderland"},
        )

        assert response.status_code == 200
        assert decode_access_token(response.json()["token"]) == "alice"

    def test_login_updates_last_login(self, client):
        register_token = client.post("/auth/register", json=REGISTER_BODY).json()["token"]
        headers = {"Authorization": f"Bearer {register_token}"}
        before = client.get("/users/alice", headers=headers).json()["user"]["last_login_at"]

        client.post("/auth/login", json={"username": "alice", "password": "wonderland"})

        after = client.get("/users/alice", headers=headers).json()["user"]["last_login_at"]
        assert datetime.fromisoformat(after) >= datetime.fromisoformat(before)

    def test_login_wrong_password(self, client):
        client.post("/auth/register", json=REGISTER_BODY)

        response = client.post(
            "/auth/login",
            json={"username": "alice", "password": "looking-glass"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "E_INVALID_CREDENTIALS"

    def test_login_unknown_user_same_as_wrong_password(self, client):
        response = client.post(
            "/auth/login",
            json={"username": "nobody", "password": "anything"},
        )

        assert response.status_code == 401
        assert response.json() == {
            "detail": "Invalid username/password",
            "code": "E_INVALID_CREDENTIALS",
        }


class TestSecurity:
    """Test password hashing and tokens."""

    def test_hash_and_verify(self):
        hashed = hash_password("wonderland")

        assert hashed != "wonderland"
        assert verify_password("wonderland", hashed) is True
        assert verify_password("looking-glass", hashed) is False

    def test_hash_is_salted(self):
        assert hash_password("wonderland") != hash_password("wonderland")

    def test_token_round_trip(self):
        assert decode_access_token(create_access_token("alice")) == "alice"

    def test_token_with_wrong_key_rejected(self):
        token = jwt.encode({"username": "alice"}, "some-other-key-that-is-32-bytes!!", algorithm="HS256")
        assert decode_access_token(token) is None

    def test_token_without_username_rejected(self):
        token = jwt.encode({"sub": "alice"}, get_settings().SECRET_KEY, algorithm="HS256")
        assert decode_access_token(token) is None

    def test_garbage_token_rejected(self):
        assert decode_access_token("not-a-token") is None


class TestHealthAndMetrics:
    """Test health probes and /metrics."""

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_request_id_header(self, client):
        response = client.get("/health/live")
        assert "X-Request-ID" in response.headers

    def test_metrics_exposition(self, client):
        client.post("/auth/register", json=REGISTER_BODY)
        client.post("/auth/login", json={"username": "alice", "password": "nope"})

        response = client.get("/metrics")

        assert response.status_code == 200
        text = response.text
        assert 'auth_attempts_total{result="registered"}' in text
        assert 'auth_attempts_total{result="invalid_credentials"}' in text
        assert "http_requests_total" in text
