"""Tests for the public check-in and server-share routes.

Tests cover:
- POST /api/check-in: flat success body, every error code the public page
  distinguishes
- GET /api/check-in: info body
- GET /api/secrets/{id}/server-share: grace window, 403/404/410 mapping
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from deadswitch.db.models import SecretStatus
from tests.factories import create_secret, create_token, load_secret, load_token
from tests.helpers import SERVER_SHARE_PLAINTEXT


@pytest.fixture
def real_now() -> datetime:
    """Routes read the wall clock, so arranged data is relative to it."""
    return datetime.now(UTC)


class TestPostCheckIn:
    """Tests for POST /api/check-in"""

    def test_success_body(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(
            db_session,
            now=real_now,
            remaining=timedelta(hours=1),
            check_in_days=7,
            title="Bank details",
        )
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))

        response = client.post("/api/check-in", params={"token": token})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["secretTitle"] == "Bank details"
        assert body["message"] == 'Your secret "Bank details" timer has been reset.'
        next_check_in = datetime.fromisoformat(body["nextCheckIn"].replace("Z", "+00:00"))
        assert next_check_in > real_now + timedelta(days=6, hours=23)
        assert load_secret(db_session, secret_id).next_check_in == next_check_in

    def test_missing_token(self, client: TestClient):
        response = client.post("/api/check-in")

        assert response.status_code == 400
        assert response.json()["code"] == "E_TOKEN_MISSING"

    def test_unknown_token(self, client: TestClient):
        response = client.post("/api/check-in", params={"token": "0" * 64})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "E_TOKEN_INVALID"
        assert body["error"] == "Invalid or expired token"

    def test_reused_token(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))

        first = client.post("/api/check-in", params={"token": token})
        second = client.post("/api/check-in", params={"token": token})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "E_TOKEN_ALREADY_USED"

    def test_expired_token(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)
        token = create_token(db_session, secret_id, expires_at=real_now - timedelta(hours=1))

        response = client.post("/api/check-in", params={"token": token})

        assert response.status_code == 400
        assert response.json()["code"] == "E_TOKEN_EXPIRED"

    def test_triggered_secret(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(
            db_session, now=real_now, remaining=timedelta(days=-1), status=SecretStatus.triggered
        )
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))

        response = client.post("/api/check-in", params={"token": token})

        assert response.status_code == 400
        assert response.json()["code"] == "E_SECRET_TRIGGERED"
        assert load_token(db_session, token).used_at is None


class TestGetCheckIn:
    """Tests for GET /api/check-in"""

    def test_info_body(self, client: TestClient):
        response = client.get("/api/check-in", params={"token": "abc"})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Check-in endpoint is active. Use POST method to check in."
        assert body["hasToken"] is True
        assert body["method"] == "GET"
        assert "timestamp" in body

    def test_info_without_token(self, client: TestClient):
        assert client.get("/api/check-in").json()["hasToken"] is False

    def test_get_never_consumes(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))

        client.get("/api/check-in", params={"token": token})

        assert load_token(db_session, token).used_at is None


class TestServerShare:
    """Tests for GET /api/secrets/{secret_id}/server-share"""

    def _url(self, secret_id) -> str:
        return f"/api/secrets/{secret_id}/server-share"

    def test_read_after_check_in(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))
        client.post("/api/check-in", params={"token": token})

        response = client.get(self._url(secret_id), params={"token": token})

        assert response.status_code == 200
        assert response.json() == {"serverShare": SERVER_SHARE_PLAINTEXT}

    def test_grace_window_expired(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)
        token = create_token(
            db_session,
            secret_id,
            expires_at=real_now + timedelta(days=1),
            used_at=real_now - timedelta(hours=25),
        )

        response = client.get(self._url(secret_id), params={"token": token})

        assert response.status_code == 403
        assert response.json()["code"] == "E_SHARE_ACCESS_DENIED"

    def test_unknown_token(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now)

        response = client.get(self._url(secret_id), params={"token": "1" * 64})

        assert response.status_code == 403

    def test_missing_token(self, client: TestClient):
        response = client.get(self._url(uuid4()))

        assert response.status_code == 400
        assert response.json()["code"] == "E_TOKEN_MISSING"

    def test_disabled_secret(self, client: TestClient, db_session, real_now):
        secret_id = create_secret(db_session, now=real_now, server_share=None)
        token = create_token(db_session, secret_id, expires_at=real_now + timedelta(days=1))

        response = client.get(self._url(secret_id), params={"token": token})

        assert response.status_code == 410
        assert response.json()["code"] == "E_SECRET_DISABLED"
