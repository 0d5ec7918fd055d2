"""Tests for the HTTP API."""

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from spendscope import main
from spendscope.config import settings
from spendscope.db.sqlite import Database
from spendscope.extractors.ocr import ocr_jobs

JANUARY = b"Statement Date: 01/31/2024\n2024-01-01 Coffee -50.00\n2024-01-02 Payroll 1,000.00\n"
FEBRUARY = b"2024-02-03 Rent (800.00)\n2024-02-04 Coffee 4.50 DR\n"


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client backed by a throwaway database."""
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(main, "db", Database(tmp_path / "api.db"))
    monkeypatch.setattr(ocr_jobs, "recognizer", lambda band: ("2024-01-05 Lunch -12.00", [91.0]))
    return TestClient(main.app)


def create_bank(client: TestClient, name: str = "Chase") -> str:
    response = client.post("/banks", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def create_png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (80, 40), "white").save(buffer, format="PNG")
    return buffer.getvalue()


class TestBanks:
    """Test bank account endpoints."""

    def test_create_and_list(self, client):
        """Should create banks and list them."""
        bank_id = create_bank(client)
        banks = client.get("/banks").json()
        assert [b["id"] for b in banks] == [bank_id]
        assert banks[0]["name"] == "Chase"

    def test_name_length_limit(self, client):
        """Should reject names longer than 25 characters."""
        assert client.post("/banks", json={"name": "x" * 26}).status_code == 422
        assert client.post("/banks", json={"name": ""}).status_code == 422

    def test_rename(self, client):
        """Should rename a bank."""
        bank_id = create_bank(client)
        response = client.patch(f"/banks/{bank_id}", json={"name": "Chase Sapphire"})
        assert response.status_code == 200
        assert response.json()["name"] == "Chase Sapphire"

    def test_rename_missing(self, client):
        """Should return 404 for an unknown bank."""
        response = client.patch("/banks/00000000-0000-0000-0000-000000000000", json={"name": "X"})
        assert response.status_code == 404

    def test_delete_removes_statements(self, client):
        """Should delete the bank with its statements."""
        bank_id = create_bank(client)
        client.post(f"/banks/{bank_id}/statements", files={"file": ("jan.txt", JANUARY, "text/plain")})

        response = client.delete(f"/banks/{bank_id}")
        assert response.json() == {"status": "deleted", "statements_removed": 1}
        assert client.get("/banks").json() == []
        assert client.get("/health").json()["statement_count"] == 0


class TestStatements:
    """Test statement upload and processing."""

    def test_upload_and_process(self, client):
        """Should store and parse an uploaded statement."""
        bank_id = create_bank(client)
        response = client.post(f"/banks/{bank_id}/statements", files={"file": ("jan.txt", JANUARY, "text/plain")})

        assert response.status_code == 201
        body = response.json()
        assert body["processing"]["status"] == "ok"
        assert body["processing"]["entries"] == 2
        assert body["statement"]["processed"] is True

    def test_upload_without_processing(self, client):
        """Should leave the statement unprocessed when asked."""
        bank_id = create_bank(client)
        response = client.post(
            f"/banks/{bank_id}/statements",
            params={"process": "false"},
            files={"file": ("jan.txt", JANUARY, "text/plain")},
        )
        statement_id = response.json()["statement"]["id"]

        parsed = client.get(f"/statements/{statement_id}/parsed").json()
        assert parsed["outcome"] == "not_run"
        assert parsed["parsed"] is None

        outcomes = client.post("/statements/process").json()
        assert [o["statement_id"] for o in outcomes] == [statement_id]
        assert client.get(f"/statements/{statement_id}/parsed").json()["outcome"] == "populated"

    def test_upload_unsupported_type(self, client):
        """Should reject files that are neither text-bearing nor images."""
        bank_id = create_bank(client)
        response = client.post(
            f"/banks/{bank_id}/statements", files={"file": ("a.zip", b"PK\x03\x04", "application/zip")}
        )
        assert response.status_code == 415

    def test_upload_to_missing_bank(self, client):
        """Should return 404 for an unknown bank."""
        response = client.post(
            "/banks/00000000-0000-0000-0000-000000000000/statements",
            files={"file": ("jan.txt", JANUARY, "text/plain")},
        )
        assert response.status_code == 404

    def test_failed_processing_is_reported(self, client):
        """Should keep the upload and report a failed parse."""
        bank_id = create_bank(client)
        response = client.post(
            f"/banks/{bank_id}/statements", files={"file": ("broken.pdf", b"%PDF-garbage", "application/pdf")}
        )
        body = response.json()
        assert response.status_code == 201
        assert body["processing"]["status"] == "failed"
        assert body["processing"]["retryable"] is True
        assert len(client.get(f"/banks/{bank_id}/statements").json()) == 1

    def test_reprocess(self, client):
        """Should reprocess a single statement."""
        bank_id = create_bank(client)
        statement_id = client.post(
            f"/banks/{bank_id}/statements", files={"file": ("jan.txt", JANUARY, "text/plain")}
        ).json()["statement"]["id"]

        response = client.post(f"/statements/{statement_id}/process", params={"reextract": "true"})
        assert response.json()["entries"] == 2

    def test_delete_statement(self, client):
        """Should delete a statement and its file."""
        bank_id = create_bank(client)
        statement_id = client.post(
            f"/banks/{bank_id}/statements", files={"file": ("jan.txt", JANUARY, "text/plain")}
        ).json()["statement"]["id"]

        assert client.delete(f"/statements/{statement_id}").status_code == 200
        assert client.delete(f"/statements/{statement_id}").status_code == 404


class TestDashboard:
    """Test the dashboard endpoint."""

    def test_empty(self, client):
        """Should return zeroed metrics with no statements."""
        body = client.get("/dashboard").json()
        assert body["snapshot"]["total_signed"] == 0
        assert body["snapshot"]["running_balance"] == []
        assert body["sparkline"] == ""
        assert body["entries"] == []

    def test_metrics_across_statements(self, client):
        """Should aggregate every parsed statement in date order."""
        bank_id = create_bank(client)
        client.post(f"/banks/{bank_id}/statements", files={"file": ("feb.txt", FEBRUARY, "text/plain")})
        client.post(f"/banks/{bank_id}/statements", files={"file": ("jan.txt", JANUARY, "text/plain")})

        body = client.get("/dashboard").json()
        snapshot = body["snapshot"]
        assert snapshot["total_income"] == 1000
        assert snapshot["total_expenses"] == 854.5
        assert snapshot["total_signed"] == 145.5
        assert snapshot["biggest_expense"] == 800
        assert snapshot["running_balance"] == [-50, 950, 150, 145.5]
        assert [t["desc"] for t in snapshot["top_expenses"]] == ["Rent", "Coffee"]
        assert body["entry_count"] == 4
        assert [e["description"] for e in body["entries"]] == ["Coffee", "Payroll", "Rent", "Coffee"]
        assert body["income_expense_bar"] == {"income_pct": 54, "expense_pct": 46}

    def test_unparsed_statement_listed(self, client):
        """Should list statements that were never parsed."""
        bank_id = create_bank(client)
        client.post(
            f"/banks/{bank_id}/statements",
            params={"process": "false"},
            files={"file": ("jan.txt", JANUARY, "text/plain")},
        )
        statements = client.get("/dashboard").json()["statements"]
        assert statements[0]["label"] == "No parsed data"


class TestOcrJobs:
    """Test the OCR job endpoints."""

    def test_job_lifecycle(self, client):
        """Should run a job, expose its preview and discard it."""
        response = client.post("/ocr/jobs", files={"file": ("scan.png", create_png(), "image/png")})
        assert response.status_code == 202
        job_id = response.json()["job_id"]
        ocr_jobs.get(job_id).wait(5)

        body = client.get(f"/ocr/jobs/{job_id}").json()
        assert body["state"] == "done"
        assert body["text"] == "2024-01-05 Lunch -12.00"
        assert body["progress"] == 100

        preview = client.get(f"/ocr/jobs/{job_id}/preview")
        assert preview.status_code == 200
        assert preview.headers["content-type"] == "image/png"

        assert client.delete(f"/ocr/jobs/{job_id}", params={"discard": "true"}).status_code == 200
        assert client.get(f"/ocr/jobs/{job_id}").status_code == 404

    def test_rejects_non_image(self, client):
        """Should only accept images."""
        response = client.post("/ocr/jobs", files={"file": ("jan.txt", JANUARY, "text/plain")})
        assert response.status_code == 415

    def test_unknown_job(self, client):
        """Should return 404 for an unknown job."""
        assert client.get("/ocr/jobs/nope").status_code == 404
        assert client.delete("/ocr/jobs/nope").status_code == 404


class TestFunctionsMount:
    """Test that the extraction function is served under /functions."""

    def test_preflight_through_app(self, client):
        """Should answer preflight from the function, not the API middleware."""
        response = client.options("/functions/parse-pdf")
        assert response.status_code == 204
        assert response.content == b""
