"""Tests for the FastAPI application.

Requests go through TestClient so routing, body parsing, response formatting
and error handlers are exercised together with the real service layer.
"""

import csv
import io
import time
from datetime import UTC, datetime, timedelta

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from formpipe.utils.cache import clear_all_caches, get_form_analytics_cache
from formpipe.utils.constants import NO_MATCHING_SUBMISSIONS, UTF8_BOM

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear all API caches before and after each test."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture(autouse=True)
def _no_export_destinations(monkeypatch):
    for name in ("EXPORT_BUCKET", "EXPORT_LOCAL_DIR", "EXPORT_HISTORY_TABLE", "MAX_EXPORT_RECORDS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def client():
    """TestClient with services reset; the context keeps one event loop for queued jobs."""
    from formpipe.handlers.api_handler import app, reset_services

    reset_services()
    with TestClient(app) as test_client:
        yield test_client
    reset_services()


FIELDS = [
    {"id": "name", "label": "Full Name", "type": "text", "required": True},
    {"id": "email", "label": "Email", "type": "email", "required": True},
    {"id": "plan", "label": "Plan", "type": "select", "options": ["Free", "Pro"]},
]


def _submission(submission_id, data, hours_ago=1, status="submitted"):
    return {
        "id": submission_id,
        "formId": "signup",
        "formTitle": "Signup",
        "data": data,
        "submittedAt": (datetime.now(UTC) - timedelta(hours=hours_ago)).isoformat(),
        "status": status,
    }


SUBMISSIONS = [
    _submission("s1", {"name": "Ada", "email": "ada@example.com", "plan": "Pro"}, hours_ago=1),
    _submission("s2", {"name": "Grace, R.", "email": "grace@example.com", "plan": "Free"}, hours_ago=5),
    _submission("s3", {"name": "Alan", "email": "", "plan": "Pro"}, hours_ago=30, status="reviewed"),
]


def _wait_for_job(client, job_id, attempts=100):
    for _ in range(attempts):
        job = client.get(f"/api/v1/exports/jobs/{job_id}").json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == "1.0.0"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidationEndpoints:
    def test_valid_submission(self, client):
        response = client.post(
            "/api/v1/validate",
            json={"data": {"name": "Ada", "email": "ada@example.com"}, "fields": FIELDS},
        )
        assert response.status_code == 200
        assert response.json() == {"isValid": True, "errors": {}}

    def test_invalid_submission(self, client):
        response = client.post(
            "/api/v1/validate",
            json={"data": {"email": "not-an-email", "plan": "Enterprise"}, "fields": FIELDS},
        )
        body = response.json()
        assert body["isValid"] is False
        assert set(body["errors"]) == {"name", "email", "plan"}
        assert body["errors"]["name"] == ["Full Name is required"]

    def test_single_field(self, client):
        response = client.post(
            "/api/v1/validate/field",
            json={"value": "x", "field": {"id": "age", "label": "Age", "type": "number"}},
        )
        assert response.json() == {
            "fieldId": "age",
            "isValid": False,
            "errors": ["Age must be a valid number"],
        }

    def test_missing_fields_is_422(self, client):
        response = client.post("/api/v1/validate", json={"data": {}})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TestAnalyticsEndpoint:
    def test_aggregates(self, client):
        response = client.post(
            "/api/v1/analytics",
            json={
                "submissions": SUBMISSIONS,
                "form": {"id": "signup", "title": "Signup", "fields": FIELDS},
                "windowDays": 7,
            },
        )
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "private, no-cache"
        body = response.json()
        assert body["totalSubmissions"] == 3
        assert len(body["submissionTrend"]) == 7
        assert body["statusBreakdown"] == {"submitted": 2, "reviewed": 1}
        assert body["fieldAnalytics"]["plan"]["analytics"]["mostPopular"] == "Pro"

    def test_cached(self, client):
        payload = {"submissions": SUBMISSIONS}
        first = client.post("/api/v1/analytics", json=payload).json()
        second = client.post("/api/v1/analytics", json=payload).json()
        assert first == second
        assert len(get_form_analytics_cache()) == 1


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class TestFilterEndpoint:
    def test_filter_sort_paginate(self, client):
        response = client.post(
            "/api/v1/submissions/filter",
            json={
                "submissions": SUBMISSIONS,
                "criteria": {"status": "submitted"},
                "sortBy": "oldest",
                "pageSize": 1,
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["id"] for item in body["items"]] == ["s2"]
        assert body["pagination"]["totalItems"] == 2
        assert body["pagination"]["hasNextPage"] is True

    def test_page_size_limit(self, client):
        response = client.post(
            "/api/v1/submissions/filter", json={"submissions": [], "pageSize": 500}
        )
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


class TestExportEndpoints:
    def test_csv_export(self, client):
        response = client.post(
            "/api/v1/exports",
            json={
                "submissions": SUBMISSIONS,
                "fieldSchema": FIELDS,
                "format": "csv",
                "options": {"filename": "signups"},
            },
        )
        assert response.status_code == 200
        assert response.headers["Content-Disposition"] == 'attachment; filename="signups.csv"'
        assert response.headers["X-Record-Count"] == "3"
        assert response.headers["X-Field-Source"] == "fallback"
        assert "X-Export-Location" not in response.headers

        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == ["Submission ID", "Submitted At", "Full Name", "Email", "Plan"]
        assert rows[2][2] == "Grace, R."

    def test_excel_export_has_bom(self, client):
        response = client.post(
            "/api/v1/exports",
            json={"submissions": SUBMISSIONS, "fieldSchema": FIELDS, "format": "excel-csv"},
        )
        assert response.content.decode("utf-8").startswith(UTF8_BOM)

    def test_filtered_export(self, client):
        response = client.post(
            "/api/v1/exports",
            json={
                "submissions": SUBMISSIONS,
                "format": "json",
                "criteria": {"status": "reviewed"},
            },
        )
        assert response.status_code == 200
        assert [record["id"] for record in response.json()] == ["s3"]

    def test_filtered_export_without_matches(self, client):
        response = client.post(
            "/api/v1/exports",
            json={"submissions": SUBMISSIONS, "criteria": {"status": "archived"}},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == NO_MATCHING_SUBMISSIONS

    def test_selected_export(self, client):
        response = client.post(
            "/api/v1/exports",
            json={"submissions": SUBMISSIONS, "submissionIds": ["s1"], "format": "json"},
        )
        assert [record["id"] for record in response.json()] == ["s1"]

    def test_empty_export_rejected(self, client):
        response = client.post("/api/v1/exports", json={"submissions": []})
        assert response.status_code == 400
        assert response.json()["detail"] == "Export failed: No submissions to export"

    def test_unknown_format_is_422(self, client):
        response = client.post(
            "/api/v1/exports", json={"submissions": SUBMISSIONS, "format": "xml"}
        )
        assert response.status_code == 422

    def test_local_delivery_location(self, client, tmp_path, monkeypatch):
        from formpipe.handlers.api_handler import reset_services

        monkeypatch.setenv("EXPORT_LOCAL_DIR", str(tmp_path))
        reset_services()

        response = client.post(
            "/api/v1/exports",
            json={"submissions": SUBMISSIONS, "options": {"filename": "out"}},
        )
        assert response.headers["X-Export-Location"] == str(tmp_path / "out.csv")
        assert (tmp_path / "out.csv").read_bytes() == response.content

    def test_history_and_statistics(self, client):
        client.post("/api/v1/exports", json={"submissions": SUBMISSIONS, "format": "json"})
        client.post("/api/v1/exports", json={"submissions": SUBMISSIONS[:1]})

        exports = client.get("/api/v1/exports/history").json()["exports"]
        assert [entry["recordCount"] for entry in exports] == [1, 3]

        stats = client.get("/api/v1/exports/statistics").json()
        assert stats["totalExports"] == 2
        assert stats["totalRecords"] == 4
        assert stats["formatBreakdown"] == {"json": 1, "csv": 1}
        assert stats["averageRecordsPerExport"] == 2

    def test_summary_report(self, client):
        response = client.post(
            "/api/v1/exports/report",
            json={
                "submissions": SUBMISSIONS,
                "fieldSchema": FIELDS,
                "options": {"filename": "report"},
            },
        )
        assert response.status_code == 200
        assert response.headers["Content-Disposition"] == 'attachment; filename="report.json"'
        report = response.json()
        assert report["totalSubmissions"] == 3
        assert report["forms"]["signup"]["count"] == 3
        assert report["fieldAnalysis"]["fieldUsage"]["email"]["responseRate"] == 67

    def test_summary_report_rejects_csv(self, client):
        response = client.post(
            "/api/v1/exports/report", json={"submissions": SUBMISSIONS, "format": "csv"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Unsupported report format: csv"

    def test_multi_form_export(self, client):
        other = {**_submission("o1", {"rating": 5}), "formId": "nps", "formTitle": "NPS"}
        response = client.post(
            "/api/v1/exports/forms",
            json={
                "submissions": SUBMISSIONS + [other],
                "forms": [{"id": "signup", "title": "Signup", "fields": FIELDS}],
                "format": "json",
                "options": {"includeTimestamp": False},
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["totalForms"] == 2
        assert [e["export"]["filename"] for e in body["exports"]] == [
            "Signup_submissions.json",
            "NPS_submissions.json",
        ]
        assert body["exports"][1]["export"]["stats"]["recordCount"] == 1

    def test_data_quality(self, client):
        response = client.post(
            "/api/v1/exports/quality", json={"submissions": SUBMISSIONS, "fieldSchema": FIELDS}
        )
        body = response.json()
        assert body["enhancementRate"] == 0
        assert body["dataCompleteness"]["partialSubmissions"] == 1

    def test_estimate(self, client):
        response = client.post(
            "/api/v1/exports/estimate", json={"submissions": SUBMISSIONS, "format": "csv"}
        )
        assert response.json()["bytes"] == 180


class TestExportJobEndpoints:
    def test_job_lifecycle(self, client):
        response = client.post(
            "/api/v1/exports/jobs",
            json={"submissions": SUBMISSIONS, "fieldSchema": FIELDS, "format": "json"},
        )
        assert response.status_code == 202
        job_id = response.json()["jobId"]

        job = _wait_for_job(client, job_id)
        assert job["status"] == "completed"
        assert job["format"] == "json"
        assert job["recordCount"] == 3
        assert job["result"]["recordCount"] == 3

        status = client.get("/api/v1/exports/queue").json()
        assert status["completed"] == 1
        assert status["total"] == 1

        assert client.delete("/api/v1/exports/queue/completed").json() == {"removed": 1}
        assert client.get(f"/api/v1/exports/jobs/{job_id}").status_code == 404

    def test_failed_job(self, client):
        job_id = client.post("/api/v1/exports/jobs", json={"submissions": []}).json()["jobId"]
        job = _wait_for_job(client, job_id)
        assert job["status"] == "failed"
        assert job["error"] == "Export failed: No submissions to export"

    def test_unknown_job(self, client):
        response = client.get("/api/v1/exports/jobs/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Export job does-not-exist not found"


class TestPersistedHistory:
    def test_history_survives_service_reset(self, monkeypatch):
        from formpipe.handlers.api_handler import app, reset_services

        with mock_aws():
            boto3.resource("dynamodb", region_name="us-west-2").create_table(
                TableName="export-history",
                KeySchema=[{"AttributeName": "history_id", "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": "history_id", "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )
            monkeypatch.setenv("EXPORT_HISTORY_TABLE", "export-history")

            reset_services()
            with TestClient(app) as client:
                client.post("/api/v1/exports", json={"submissions": SUBMISSIONS})

            reset_services()
            with TestClient(app) as client:
                exports = client.get("/api/v1/exports/history").json()["exports"]

            reset_services()

        assert len(exports) == 1
        assert exports[0]["recordCount"] == 3
