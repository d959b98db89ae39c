"""Tests for sync.py: bulk upload, date normalisation and export."""

from __future__ import annotations

import pytest

from spanish_conjugator import db
from spanish_conjugator.errors import InvalidRecordError
from spanish_conjugator.sync import bulk_upsert, export_progress, normalize_date, record_fields

NOW = "2024-08-01T09:00:00+00:00"


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    db_path = tmp_path / "sync-test.db"
    db.DB_PATH = db_path
    db.init_db()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from spanish_conjugator.app import app
    return TestClient(app)


HEADERS = {"X-User-Id": "u1"}


class TestNormalizeDate:
    def test_iso_string(self):
        assert normalize_date("2024-01-02T03:04:05Z", "createdAt", "a1", NOW) == "2024-01-02T03:04:05+00:00"

    def test_epoch_millis(self):
        assert normalize_date(0, "createdAt", "a1", NOW) == "1970-01-01T00:00:00+00:00"

    def test_invalid_uses_now(self, caplog):
        assert normalize_date("yesterday-ish", "createdAt", "a1", NOW) == NOW
        assert "Invalid createdAt" in caplog.text

    def test_missing(self):
        assert normalize_date(None, "lastReview", "s1", NOW) is None
        assert normalize_date("", "nextDue", "s1", NOW, use_now_when_missing=True) == NOW


class TestRecordFields:
    def test_attempt_columns(self):
        fields = record_fields(
            "attempts",
            {"id": "a1", "lemma": "ser", "correct": 1, "errorTags": ["accent"], "createdAt": "bad"},
            "a1",
            NOW,
        )
        assert fields["lemma"] == "ser"
        assert fields["correct"] == 1
        assert fields["error_tags"] == '["accent"]'
        assert fields["created_at"] == NOW

    def test_session_started_falls_back_to_updated(self):
        fields = record_fields("sessions", {"sessionId": "s1", "updatedAt": "2024-07-01T00:00:00Z"}, "s1", NOW)
        assert fields["started_at"] == fields["updated_at"] == "2024-07-01T00:00:00+00:00"

    def test_object_in_scalar_column_is_rejected(self):
        with pytest.raises(InvalidRecordError) as excinfo:
            record_fields("attempts", {"id": "a1", "lemma": {"x": 1}}, "a1", NOW)
        assert excinfo.value.field == "lemma"


class TestBulkUpsert:
    def test_counts_new_and_updated(self):
        records = [{"id": "a1", "lemma": "ser"}, {"id": "a2", "lemma": "ir"}]
        assert bulk_upsert("attempts", "u1", records) == {"success": True, "uploaded": 2, "updated": 0}
        again = bulk_upsert("attempts", "u1", [{"id": "a1", "lemma": "estar"}, {"id": "a3"}])
        assert again == {"success": True, "uploaded": 1, "updated": 1}

    def test_same_id_for_two_users_stays_separate(self):
        assert bulk_upsert("attempts", "alice", [{"id": "1", "lemma": "ser"}])["uploaded"] == 1
        assert bulk_upsert("attempts", "bob", [{"id": "1", "lemma": "ir"}]) == {
            "success": True,
            "uploaded": 1,
            "updated": 0,
        }

        assert export_progress("alice")["attempts"] == [{"id": "1", "lemma": "ser", "userId": "alice"}]
        assert export_progress("bob")["attempts"] == [{"id": "1", "lemma": "ir", "userId": "bob"}]

    def test_records_without_id_are_skipped(self):
        result = bulk_upsert("mastery", "u1", [{"mood": "indicative"}, "junk", {"id": "m1", "score": 70}])
        assert result["uploaded"] == 1

    def test_sessions_accept_session_id(self):
        assert bulk_upsert("sessions", "u1", [{"sessionId": "s1"}])["uploaded"] == 1

    def test_export_returns_payload_with_user(self):
        bulk_upsert("attempts", "u1", [{"id": "a1", "lemma": "ser", "custom": "kept", "userId": "spoofed"}])
        exported = export_progress("u1")
        assert exported["attempts"] == [{"id": "a1", "lemma": "ser", "custom": "kept", "userId": "u1"}]
        assert export_progress("u2")["attempts"] == []

    def test_export_rebuilds_engine_rows(self):
        from spanish_conjugator.models import MasteryRecord

        db.upsert_mastery([MasteryRecord("u1", "indicative", "pres", 82.5, 4, 3.2, NOW)])
        record = export_progress("u1")["mastery"][0]
        assert record["id"] == "u1|indicative|pres"
        assert record["score"] == 82.5
        assert record["weightedN"] == 3.2
        assert record["updatedAt"] == NOW


class TestRoutes:
    def test_missing_user_is_401(self, client):
        response = client.post("/api/progress/attempts/bulk", json={"records": []})
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing X-User-Id header"

    def test_unknown_collection_is_404(self, client):
        response = client.post("/api/progress/lessons/bulk", json={"records": []}, headers=HEADERS)
        assert response.status_code == 404

    def test_non_json_body_is_400(self, client):
        response = client.post(
            "/api/progress/attempts/bulk",
            content=b"not json",
            headers={**HEADERS, "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_non_scalar_value_is_400_and_nothing_is_written(self, client):
        records = [{"id": "a0", "lemma": "ser"}, {"id": "a1", "lemma": {"x": 1}}]
        response = client.post("/api/progress/attempts/bulk", json={"records": records}, headers=HEADERS)
        assert response.status_code == 400
        assert "lemma" in response.json()["detail"]
        assert export_progress("u1")["attempts"] == []

    def test_records_must_be_list(self, client):
        response = client.post("/api/progress/attempts/bulk", json={"records": {"id": "a1"}}, headers=HEADERS)
        assert response.status_code == 400

    def test_empty_upload(self, client):
        response = client.post("/api/progress/schedules/bulk", json={"records": []}, headers=HEADERS)
        assert response.json() == {"success": True, "uploaded": 0, "updated": 0}

    def test_upload_then_export(self, client):
        records = [{"id": "s1", "mood": "indicative", "tense": "pres", "person": "1s", "nextDue": "garbage"}]
        upload = client.post("/api/progress/schedules/bulk", json={"records": records}, headers=HEADERS)
        assert upload.json()["uploaded"] == 1

        exported = client.get("/api/progress/export", headers=HEADERS).json()
        assert exported["userId"] == "u1"
        assert exported["schedules"][0]["id"] == "s1"
        assert set(exported) == {"userId", "attempts", "mastery", "schedules", "sessions"}
