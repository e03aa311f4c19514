"""
Tests for FastAPI endpoints: migrations, batched exports, auth and
structured error responses.
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from src.core.config import settings
from src.entities.submission import Submission
from src.services.csv_format import UTF8_BOM

MANAGER = {"X-User-Id": "1", "X-User-Roles": "administrator"}
SUBSCRIBER = {"X-User-Id": "5", "X-User-Roles": "subscriber"}


def _action_token(client, action, headers=MANAGER):
    r = client.post("/api/v1/exports/tokens", json={"action": action}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["token"]


# ---------------------------------------------------------------------------
# Health (public, no auth)
# ---------------------------------------------------------------------------


class TestPublicEndpoints:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"
        assert "X-Request-ID" in r.headers


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    def test_missing_identity(self, client):
        r = client.get("/api/v1/migrations")
        assert r.status_code == 403
        body = r.json()
        assert body["error"] == "unauthorized"
        assert body["detail"]["phase"] == "identity"
        assert body["request_id"]

    def test_non_manager_forbidden(self, client):
        r = client.get("/api/v1/migrations", headers=SUBSCRIBER)
        assert r.status_code == 403

    def test_wrong_api_key(self, client):
        with patch("src.core.security.settings") as mock_settings:
            mock_settings.API_KEY = "secret"
            mock_settings.MANAGER_ROLES = ["administrator"]
            r = client.get("/api/v1/migrations", headers={**MANAGER, "X-API-Key": "wrong"})
        assert r.status_code == 403
        assert r.json()["error"] == "http_error"

    def test_correct_api_key(self, client):
        with patch("src.core.security.settings") as mock_settings:
            mock_settings.API_KEY = "secret"
            mock_settings.MANAGER_ROLES = ["administrator"]
            r = client.get("/api/v1/migrations", headers={**MANAGER, "X-API-Key": "secret"})
        assert r.status_code == 200

    def test_unknown_token_action(self, client):
        r = client.post("/api/v1/exports/tokens", json={"action": "drop_tables"}, headers=MANAGER)
        assert r.status_code == 400

    def test_token_requires_manager(self, client):
        r = client.post("/api/v1/exports/tokens", json={"action": "csv_export"}, headers=SUBSCRIBER)
        assert r.status_code == 403


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


class TestMigrationEndpoints:
    def test_list(self, client):
        r = client.get("/api/v1/migrations", headers=MANAGER)
        assert r.status_code == 200
        assert [m["key"] for m in r.json()] == ["split_cpf_rf", "encrypt_sensitive_data"]

    def test_get_one_and_unknown(self, client):
        assert client.get("/api/v1/migrations/split_cpf_rf", headers=MANAGER).json()["batch_size"] == 50

        r = client.get("/api/v1/migrations/nope", headers=MANAGER)
        assert r.status_code == 404

    def test_status(self, client, db_session):
        db_session.add(Submission(form_id=1, submission_date=datetime(2026, 1, 1), email="a@b.c"))
        db_session.commit()

        r = client.get("/api/v1/migrations/encrypt_sensitive_data/status", headers=MANAGER)

        assert r.status_code == 200
        assert r.json() == {
            "total": 1,
            "migrated": 0,
            "pending": 1,
            "percent": 0.0,
            "is_complete": False,
        }

    def test_unknown_status_is_structured_404(self, client):
        r = client.get("/api/v1/migrations/nope/status", headers=MANAGER)
        assert r.status_code == 404
        body = r.json()
        assert body["error"] == "not_found"
        assert body["detail"] == {"phase": "status", "key": "nope"}

    def test_can_run_without_encryption_key(self, client):
        r = client.get("/api/v1/migrations/encrypt_sensitive_data/can-run", headers=MANAGER)
        assert r.status_code == 412
        assert r.json()["detail"]["reason"] == "encryption_not_configured"

    def test_run_requires_action_token(self, client):
        r = client.post("/api/v1/migrations/encrypt_sensitive_data/run", headers=MANAGER)
        assert r.status_code == 403

    def test_run_batch(self, client, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode())
        db_session.add_all(
            [
                Submission(form_id=1, submission_date=datetime(2026, 1, 1), email=f"u{i}@b.c")
                for i in range(3)
            ]
        )
        db_session.commit()
        token = _action_token(client, "run_migration")

        r = client.post(
            "/api/v1/migrations/encrypt_sensitive_data/run?batch_number=0",
            headers={**MANAGER, "X-Action-Token": token},
        )

        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["processed"] == 3
        assert body["has_more"] is False


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


class TestExportEndpoints:
    def test_full_export_flow(self, client, make_submissions):
        make_submissions(250, form_id=1)
        token = _action_token(client, "csv_export")
        headers = {**MANAGER, "X-Action-Token": token}

        r = client.post("/api/v1/exports", json={"form_ids": [1]}, headers=headers)
        assert r.status_code == 201
        job_id = r.json()["job_id"]
        assert r.json()["total"] == 250

        progress = []
        while True:
            r = client.post(f"/api/v1/exports/{job_id}/batch", headers=headers)
            assert r.status_code == 200
            body = r.json()
            progress.append(body["processed"])
            if body["done"]:
                break
        assert progress == [100, 200, 250]

        r = client.get(
            f"/api/v1/exports/{job_id}/download",
            params={"token": body["download_token"]},
            headers=MANAGER,
        )
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "form-1-" in r.headers["content-disposition"]
        assert r.content.startswith(UTF8_BOM)
        assert len(r.content[len(UTF8_BOM):].decode("utf-8").splitlines()) == 251

        r = client.get(
            f"/api/v1/exports/{job_id}/download",
            params={"token": body["download_token"]},
            headers=MANAGER,
        )
        assert r.status_code == 404

    def test_empty_export(self, client):
        token = _action_token(client, "csv_export")
        r = client.post(
            "/api/v1/exports", json={"form_ids": [9]}, headers={**MANAGER, "X-Action-Token": token}
        )
        assert r.status_code == 422
        assert r.json()["error"] == "empty_result"

    def test_batch_of_other_users_job(self, client, make_submissions):
        make_submissions(3)
        token = _action_token(client, "csv_export")
        r = client.post("/api/v1/exports", json={}, headers={**MANAGER, "X-Action-Token": token})
        job_id = r.json()["job_id"]

        other = {"X-User-Id": "2", "X-User-Roles": "administrator"}
        other_token = _action_token(client, "csv_export", headers=other)
        r = client.post(f"/api/v1/exports/{job_id}/batch", headers={**other, "X-Action-Token": other_token})

        assert r.status_code == 404
        assert r.json()["detail"]["key"] == job_id

    @pytest.mark.parametrize("token", [None, "garbage"])
    def test_export_requires_valid_token(self, client, make_submissions, token):
        make_submissions(1)
        headers = dict(MANAGER)
        if token:
            headers["X-Action-Token"] = token
        r = client.post("/api/v1/exports", json={}, headers=headers)
        assert r.status_code == 403
