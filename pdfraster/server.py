"""
HTTP Microservice
=================
Flask-based HTTP API for the conversion pipeline.

Uploads are converted in a background thread per job; clients poll for
progress and download the result when the job is done.

Endpoints:
    POST   /api/convert                 → Start a conversion job
    POST   /api/convert/sync            → Convert and return the file directly
    GET    /api/status/<id>             → Job state and progress
    GET    /api/result/<id>             → Compressed PDF or ZIP of page images
    GET    /api/result/<id>/pages/<n>   → Single page JPEG (1-indexed)
    POST   /api/cancel/<id>             → Request cancellation
    DELETE /api/jobs/<id>               → Forget a finished job
    GET    /api/jobs                    → List jobs
    GET    /api/health                  → Health check
    GET    /api/info                    → Version and capabilities
"""

from __future__ import annotations

import io
import logging
import threading
import time

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS
from pydantic import ValidationError

from . import __version__
from .archive import build_page_archive
from .engine import ConversionPipeline, ConverterConfig
from .errors import ArchiveError, ConversionCancelled, ConversionError, DecodeError
from .models import (
    DEFAULT_QUALITY,
    DEFAULT_SCALE,
    MAX_SCALE,
    MIN_SCALE,
    QUALITY_PRESETS,
    ConversionJob,
    ConversionMode,
    ConversionOptions,
    ConversionResult,
    PipelineState,
)
from .state_machine import TERMINAL_STATES
from .storage import archive_name, base_name, compressed_pdf_name, page_image_name

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

# ─── In-memory job store ──────────────────────────────────────────────────────

jobs: dict[str, dict] = {}
jobs_lock = threading.Lock()


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 100 * 1024 * 1024)  # 100MB
    app.config.setdefault("DEFAULT_SCALE", DEFAULT_SCALE)
    app.config.setdefault("DEFAULT_QUALITY", DEFAULT_QUALITY)
    app.config.setdefault("LOG_LEVEL", "INFO")

    return app


def _converter_config() -> ConverterConfig:
    return ConverterConfig(
        scale=app.config.get("DEFAULT_SCALE", DEFAULT_SCALE),
        quality=app.config.get("DEFAULT_QUALITY", DEFAULT_QUALITY),
        log_level=app.config.get("LOG_LEVEL", "INFO"),
    )


def _error(message: str, status: int, kind: str = None):
    body = {"error": message}
    if kind:
        body["kind"] = kind
    return jsonify(body), status


def _read_upload():
    """
    Pull the PDF upload and conversion options from the request.
    Returns (buffer, filename, options) or raises ValueError.
    """
    if "file" not in request.files:
        raise ValueError("Provide a PDF upload in the 'file' field")

    file = request.files["file"]
    if not file.filename:
        raise ValueError("No file selected")

    is_pdf = (file.mimetype == "application/pdf"
              or file.filename.lower().endswith(".pdf"))
    if not is_pdf:
        raise ValueError("Please select a PDF file")

    params = request.form
    try:
        options = ConversionOptions(
            mode=params.get("mode", ConversionMode.EXTRACT_IMAGES.value),
            quality=params.get("quality") or app.config.get("DEFAULT_QUALITY", DEFAULT_QUALITY),
            scale=params.get("scale") or app.config.get("DEFAULT_SCALE", DEFAULT_SCALE),
            error_policy=params.get("error_policy", "fail_fast"),
            password=params.get("password") or None,
        )
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ValueError(f"Invalid options: {details}") from None

    return file.read(), file.filename, options


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    with jobs_lock:
        active = sum(1 for j in jobs.values()
                     if j["job"].state not in TERMINAL_STATES)
        total = len(jobs)
    return jsonify({
        "status": "healthy",
        "service": "pdfraster",
        "version": __version__,
        "active_jobs": active,
        "total_jobs": total,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Version and capability info."""
    return jsonify({
        "version": __version__,
        "engine": "PyMuPDF",
        "encoder": "Pillow",
        "modes": [m.value for m in ConversionMode],
        "quality_presets": QUALITY_PRESETS,
        "scale": {
            "default": app.config.get("DEFAULT_SCALE", DEFAULT_SCALE),
            "min": MIN_SCALE,
            "max": MAX_SCALE,
        },
        "supported_formats": ["pdf"],
    })


# ─── Convert Endpoints ────────────────────────────────────────────────────────


@app.route("/api/convert", methods=["POST"])
def convert():
    """
    Start converting an uploaded PDF.

    Form fields: mode, quality (preset or 0-1), scale, error_policy,
    password. Returns a job ID for status polling.
    """
    try:
        buffer, filename, options = _read_upload()
    except ValueError as e:
        return _error(str(e), 400)

    job = ConversionJob.from_options(options)
    cancel_event = threading.Event()

    with jobs_lock:
        jobs[job.job_id] = {
            "job": job,
            "filename": filename,
            "base_name": base_name(filename),
            "created_at": time.time(),
            "cancel": cancel_event,
            "result": None,
            "archive": None,
        }

    thread = threading.Thread(
        target=_run_conversion_job,
        args=(job, buffer, options, cancel_event),
        daemon=True,
        name=f"pdfraster-job-{job.job_id}",
    )
    thread.start()

    return jsonify({
        "job_id": job.job_id,
        "status": "queued",
        "message": "Conversion job started",
    }), 202


@app.route("/api/convert/sync", methods=["POST"])
def convert_sync():
    """
    Convert synchronously and return the file.
    For small PDFs or when the caller wants to wait.
    """
    try:
        buffer, filename, options = _read_upload()
    except ValueError as e:
        return _error(str(e), 400)

    base = base_name(filename)
    try:
        result = ConversionPipeline(_converter_config()).run(buffer, options)
    except DecodeError as e:
        return _error(e.message, 422, e.kind)
    except ConversionError as e:
        return _error(e.message, 500, e.kind)

    if result.mode == ConversionMode.COMPRESS:
        return send_file(
            io.BytesIO(result.pdf.data),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=compressed_pdf_name(base),
        )

    try:
        archive = build_page_archive(result.images, base)
    except ArchiveError as e:
        return _error(e.message, 500, e.kind)
    return send_file(
        io.BytesIO(archive),
        mimetype="application/zip",
        as_attachment=True,
        download_name=archive_name(base),
    )


# ─── Job Status & Results ─────────────────────────────────────────────────────


def _job_status(entry: dict) -> dict:
    job: ConversionJob = entry["job"]
    data = job.model_dump(mode="json")
    data["progress"] = round(job.progress * 100, 1)
    data["filename"] = entry["filename"]
    data["created_at"] = entry["created_at"]
    result = entry["result"]
    if result is not None:
        data["source_size_bytes"] = result.source_size_bytes
        data["output_size_bytes"] = result.output_size_bytes
        data["reduction_percent"] = result.reduction_percent
    return data


@app.route("/api/status/<job_id>", methods=["GET"])
def get_status(job_id: str):
    """Get the status of a conversion job."""
    with jobs_lock:
        entry = jobs.get(job_id)
        if not entry:
            return _error("Job not found", 404)
        return jsonify(_job_status(entry))


@app.route("/api/jobs", methods=["GET"])
def list_jobs():
    """List all known jobs, newest first."""
    with jobs_lock:
        entries = sorted(jobs.values(), key=lambda e: e["created_at"], reverse=True)
        return jsonify({"jobs": [_job_status(e) for e in entries]})


def _finished_entry(job_id: str):
    """Return (entry, None) for a done job or (None, error response)."""
    with jobs_lock:
        entry = jobs.get(job_id)
    if not entry:
        return None, _error("Job not found", 404)
    job: ConversionJob = entry["job"]
    if job.state != PipelineState.DONE or entry["result"] is None:
        return None, _error(
            f"Job is {job.state.value}, no result available", 409,
            job.error_kind,
        )
    return entry, None


@app.route("/api/result/<job_id>", methods=["GET"])
def get_result(job_id: str):
    """Download the compressed PDF, or all page images as one ZIP."""
    entry, error = _finished_entry(job_id)
    if error:
        return error

    result = entry["result"]
    base = entry["base_name"]

    if result.mode == ConversionMode.COMPRESS:
        return send_file(
            io.BytesIO(result.pdf.data),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=compressed_pdf_name(base),
        )

    # Page images stay available even if archiving fails.
    archive = entry["archive"]
    if archive is None:
        try:
            archive = build_page_archive(result.images, base)
        except ArchiveError as e:
            logger.error(f"Job {job_id}: archive failed: {e}")
            return _error(e.message, 500, e.kind)
        with jobs_lock:
            entry["archive"] = archive

    return send_file(
        io.BytesIO(archive),
        mimetype="application/zip",
        as_attachment=True,
        download_name=archive_name(base),
    )


@app.route("/api/result/<job_id>/pages/<int:number>", methods=["GET"])
def get_page_image(job_id: str, number: int):
    """Download one page image (1-indexed) of an extract job."""
    entry, error = _finished_entry(job_id)
    if error:
        return error

    result = entry["result"]
    if result.mode != ConversionMode.EXTRACT_IMAGES:
        return _error("Page images are only kept for extract_images jobs", 400)

    image = next((img for img in result.images if img.page_index == number - 1), None)
    if image is None:
        return _error(f"No image for page {number}", 404)

    return send_file(
        io.BytesIO(image.data),
        mimetype=image.mime_type,
        as_attachment=True,
        download_name=page_image_name(entry["base_name"], image.page_index),
    )


@app.route("/api/cancel/<job_id>", methods=["POST"])
def cancel_job(job_id: str):
    """Ask a running job to stop at the next page boundary."""
    with jobs_lock:
        entry = jobs.get(job_id)
        if not entry:
            return _error("Job not found", 404)
        entry["cancel"].set()
        state = entry["job"].state
    return jsonify({"job_id": job_id, "status": state.value, "cancel_requested": True})


@app.route("/api/jobs/<job_id>", methods=["DELETE"])
def delete_job(job_id: str):
    """Forget a finished job and release its buffers."""
    with jobs_lock:
        entry = jobs.get(job_id)
        if not entry:
            return _error("Job not found", 404)
        if entry["job"].state not in TERMINAL_STATES:
            return _error("Job still running; cancel it first", 409)
        del jobs[job_id]
    return jsonify({"success": True})


# ─── Background Worker ───────────────────────────────────────────────────────


def _run_conversion_job(
    job: ConversionJob,
    buffer: bytes,
    options: ConversionOptions,
    cancel_event: threading.Event,
):
    """Run one conversion in a background thread."""
    logger.info(f"Job {job.job_id}: starting {options.mode.value}")

    def store_result(result: ConversionResult):
        # Stored before the job turns done, so a done job always has a result.
        with jobs_lock:
            entry = jobs.get(job.job_id)
            if entry is not None:
                entry["result"] = result

    try:
        pipeline = ConversionPipeline(_converter_config())
        result = pipeline.run(
            buffer, options, cancel_event=cancel_event, job=job,
            result_callback=store_result,
        )
    except ConversionCancelled:
        logger.info(f"Job {job.job_id}: cancelled")
        return
    except ConversionError as e:
        logger.warning(f"Job {job.job_id} failed: {e.kind}: {e.message}")
        return
    except Exception as e:
        logger.error(f"Job {job.job_id} crashed: {e}", exc_info=True)
        return

    logger.info(f"Job {job.job_id} completed: {result.page_count} pages")


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
