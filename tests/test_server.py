"""
Test Suite for the HTTP Service
===============================
Exercises the Flask endpoints with the test client.
"""

from __future__ import annotations

import io
import time
import zipfile

import fitz  # PyMuPDF
import pytest

from conftest import LETTER
from pdfraster import server
from pdfraster.engine import ConversionPipeline
from pdfraster.server import create_app

TERMINAL = {"done", "errored", "cancelled"}


@pytest.fixture
def client():
    app = create_app({"TESTING": True, "DEFAULT_SCALE": 0.5, "LOG_LEVEL": "WARNING"})
    with server.jobs_lock:
        server.jobs.clear()
    with app.test_client() as client:
        yield client


def _upload(pdf: bytes, filename: str = "roster.pdf", **form):
    data = {"file": (io.BytesIO(pdf), filename, "application/pdf")}
    data.update(form)
    return data


def _wait_for(client, job_id: str, timeout: float = 30.0) -> dict:
    """Poll until the job reaches a terminal state."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get(f"/api/status/{job_id}").get_json()
        if status["state"] in TERMINAL:
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish in {timeout}s")


# ═══════════════════════════════════════════════════════════════════════════════
# INFO ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestInfoEndpoints:

    def test_health(self, client):
        data = client.get("/api/health").get_json()
        assert data["status"] == "healthy"
        assert data["total_jobs"] == 0

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert data["modes"] == ["extract_images", "compress"]
        assert data["quality_presets"] == {"low": 0.5, "medium": 0.75, "high": 0.92}
        assert data["scale"]["default"] == 0.5


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC CONVERSION
# ═══════════════════════════════════════════════════════════════════════════════


class TestSyncConvert:

    def test_compress_returns_pdf(self, client, letter_pdf):
        resp = client.post(
            "/api/convert/sync",
            data=_upload(letter_pdf, mode="compress", quality="low"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert "roster-compressed.pdf" in resp.headers["Content-Disposition"]
        doc = fitz.open(stream=resp.data, filetype="pdf")
        assert doc.page_count == 3
        assert (doc[0].rect.width, doc[0].rect.height) == LETTER
        doc.close()

    def test_extract_returns_zip(self, client, letter_pdf):
        resp = client.post(
            "/api/convert/sync",
            data=_upload(letter_pdf, mode="extract_images"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert "roster_images.zip" in resp.headers["Content-Disposition"]
        with zipfile.ZipFile(io.BytesIO(resp.data)) as zf:
            assert zf.namelist() == ["roster_1.jpg", "roster_2.jpg", "roster_3.jpg"]

    def test_corrupt_pdf(self, client):
        resp = client.post(
            "/api/convert/sync",
            data=_upload(b"%PD"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422
        assert resp.get_json()["kind"] == "DecodeError"

    def test_missing_file(self, client):
        resp = client.post("/api/convert/sync", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_rejects_non_pdf_upload(self, client):
        resp = client.post(
            "/api/convert/sync",
            data={"file": (io.BytesIO(b"abc"), "photo.png", "image/png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    @pytest.mark.parametrize("form", [
        {"quality": "1.7"},
        {"quality": "ultra"},
        {"mode": "merge"},
        {"scale": "0"},
    ])
    def test_rejects_bad_options(self, client, letter_pdf, form):
        resp = client.post(
            "/api/convert/sync",
            data=_upload(letter_pdf, **form),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert "Invalid options" in resp.get_json()["error"]


# ═══════════════════════════════════════════════════════════════════════════════
# BACKGROUND JOBS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBackgroundJobs:

    def test_extract_job_lifecycle(self, client, letter_pdf):
        resp = client.post(
            "/api/convert",
            data=_upload(letter_pdf, mode="extract_images"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 202
        job_id = resp.get_json()["job_id"]

        status = _wait_for(client, job_id)
        assert status["state"] == "done"
        assert status["progress"] == 100.0
        assert status["page_count"] == 3
        assert status["filename"] == "roster.pdf"

        page = client.get(f"/api/result/{job_id}/pages/2")
        assert page.status_code == 200
        assert page.mimetype == "image/jpeg"
        assert "roster_2.jpg" in page.headers["Content-Disposition"]

        missing = client.get(f"/api/result/{job_id}/pages/9")
        assert missing.status_code == 404

        archive = client.get(f"/api/result/{job_id}")
        assert archive.status_code == 200
        with zipfile.ZipFile(io.BytesIO(archive.data)) as zf:
            assert len(zf.namelist()) == 3

    def test_compress_job(self, client, letter_pdf):
        resp = client.post(
            "/api/convert",
            data=_upload(letter_pdf, mode="compress", quality="high"),
            content_type="multipart/form-data",
        )
        job_id = resp.get_json()["job_id"]
        status = _wait_for(client, job_id)
        assert status["state"] == "done"
        assert status["quality"] == 0.92
        assert "reduction_percent" in status

        result = client.get(f"/api/result/{job_id}")
        assert result.mimetype == "application/pdf"
        assert "roster-compressed.pdf" in result.headers["Content-Disposition"]

        pages = client.get(f"/api/result/{job_id}/pages/1")
        assert pages.status_code == 400

    def test_failed_job_reports_kind(self, client):
        resp = client.post(
            "/api/convert",
            data=_upload(b"not a pdf at all"),
            content_type="multipart/form-data",
        )
        job_id = resp.get_json()["job_id"]
        status = _wait_for(client, job_id)
        assert status["state"] == "errored"
        assert status["error_kind"] == "DecodeError"
        assert status["progress"] == 0.0

        result = client.get(f"/api/result/{job_id}")
        assert result.status_code == 409

    def test_cancel_and_delete(self, client, letter_pdf):
        job_id = client.post(
            "/api/convert",
            data=_upload(letter_pdf),
            content_type="multipart/form-data",
        ).get_json()["job_id"]

        resp = client.post(f"/api/cancel/{job_id}")
        assert resp.status_code == 200
        assert resp.get_json()["cancel_requested"] is True

        status = _wait_for(client, job_id)
        # The job may already have finished before the cancel landed.
        assert status["state"] in {"cancelled", "done"}

        assert client.delete(f"/api/jobs/{job_id}").status_code == 200
        assert client.get(f"/api/status/{job_id}").status_code == 404

    def test_done_job_always_has_result(self, client, letter_pdf, monkeypatch):
        original_run = ConversionPipeline.run

        def slow_run(self, *args, **kwargs):
            result = original_run(self, *args, **kwargs)
            time.sleep(0.5)
            return result

        monkeypatch.setattr(ConversionPipeline, "run", slow_run)
        job_id = client.post(
            "/api/convert",
            data=_upload(letter_pdf, mode="compress"),
            content_type="multipart/form-data",
        ).get_json()["job_id"]

        status = _wait_for(client, job_id)
        assert status["state"] == "done"
        assert status["progress"] == 100.0
        assert "output_size_bytes" in status
        result = client.get(f"/api/result/{job_id}")
        assert result.status_code == 200
        assert result.mimetype == "application/pdf"

    def test_list_jobs(self, client, letter_pdf):
        job_id = client.post(
            "/api/convert",
            data=_upload(letter_pdf),
            content_type="multipart/form-data",
        ).get_json()["job_id"]
        _wait_for(client, job_id)
        jobs = client.get("/api/jobs").get_json()["jobs"]
        assert [j["job_id"] for j in jobs] == [job_id]

    def test_unknown_job(self, client):
        assert client.get("/api/status/nope").status_code == 404
        assert client.get("/api/result/nope").status_code == 404
        assert client.post("/api/cancel/nope").status_code == 404
        assert client.delete("/api/jobs/nope").status_code == 404
