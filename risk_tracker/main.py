"""FastAPI main application for Student Risk Tracker."""

import csv
import logging
import traceback
import uuid
from contextlib import asynccontextmanager
from io import StringIO
from typing import Dict, List, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from risk_tracker.config import (
    ALERT_DISPLAY_SECONDS,
    ALLOW_ORIGINS,
    DEBUG,
    LIVE_ALERTS_ENABLED,
    MAX_PENDING_BATCHES,
    MAX_UPLOAD_SIZE,
    MAX_UPLOAD_SIZE_MB,
    MENTOR_EMAIL,
    PREVIEW_LIMIT,
)
from risk_tracker.email_templates import generate_daily_summary, generate_email_draft
from risk_tracker.exceptions import CommitError, DeleteError, IngestionError, IdentityResolutionError
from risk_tracker.models import (
    CommitResponse,
    CurrentAlertResponse,
    EmailDraftRequest,
    EmailDraftResponse,
    IngestionResult,
    RiskTier,
    StudentRecord,
    UploadResponse,
)
from risk_tracker.parsers import ingest_file
from risk_tracker.risk import summarize_tiers
from risk_tracker.store import InMemoryRecordStore, RecordStore
from risk_tracker.watcher import WatchSession

logging.basicConfig(level=logging.DEBUG if DEBUG else logging.INFO)
logger = logging.getLogger("risk_tracker.main")

ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")

# Parsed uploads awaiting commit, keyed by batch id
pending_batches: Dict[str, IngestionResult] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    session = WatchSession(app.state.store, display_seconds=ALERT_DISPLAY_SECONDS)
    app.state.watch_session = session
    if LIVE_ALERTS_ENABLED:
        await session.start()
    try:
        yield
    finally:
        await session.stop()
        app.state.watch_session = None


app = FastAPI(title="Student Risk Tracker", version="1.0.0", lifespan=lifespan)
app.state.store = InMemoryRecordStore()
app.state.watch_session = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Override default exception handlers to return JSON (register specific handlers first)
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    error_detail = str(exc)
    if DEBUG:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"
    logger.error("Unhandled error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def get_store() -> RecordStore:
    return app.state.store


def get_watch_session() -> Optional[WatchSession]:
    return app.state.watch_session


def remember_batch(batch_id: str, result: IngestionResult) -> None:
    """Cache a parsed upload for commit, evicting the oldest beyond the cap."""
    pending_batches[batch_id] = result
    while len(pending_batches) > MAX_PENDING_BATCHES:
        evicted = next(iter(pending_batches))
        del pending_batches[evicted]
        logger.info("Evicted uncommitted batch %s", evicted)


def find_record(identity: str) -> StudentRecord:
    record = get_store().get(identity)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No student with id '{identity}'")
    return record


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    session = get_watch_session()
    return JSONResponse(content={
        "status": "ok",
        "message": "Server is running",
        "live_alerts": bool(session and session.live),
    })


@app.post("/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """Parse an uploaded CSV/Excel file and return a classified preview."""
    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE_MB}MB"
        )

    filename = file.filename or "upload.csv"
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload a CSV file (.csv) or an Excel file (.xlsx)"
        )

    try:
        result = ingest_file(file_bytes, filename)
    except IngestionError as e:
        logger.warning("Upload %s rejected: %s", filename, e.message)
        raise HTTPException(status_code=400, detail=e.message)
    except IdentityResolutionError as e:
        logger.error("Identity resolution failed for %s: %s", filename, e)
        raise HTTPException(status_code=500, detail=str(e))

    if not result.records:
        raise HTTPException(status_code=400, detail="No student records found in the uploaded file.")

    batch_id = uuid.uuid4().hex
    remember_batch(batch_id, result)
    summary = summarize_tiers(result.records)

    logger.info(
        "Parsed %s: %d students (%d Red, %d Yellow, %d Green), %d duplicates collapsed",
        filename, summary['Total'], summary['Red'], summary['Yellow'], summary['Green'],
        result.duplicates_collapsed,
    )

    return UploadResponse(
        success=True,
        message=f"Successfully processed {len(result.records)} students",
        batch_id=batch_id,
        preview=result.preview(PREVIEW_LIMIT),
        total=len(result.records),
        duplicates_collapsed=result.duplicates_collapsed,
        summary=summary,
    )


@app.post("/commit", response_model=CommitResponse)
async def commit_batch(batch_id: Optional[str] = None):
    """Write a previously uploaded batch to the store (latest batch by default)."""
    if not pending_batches:
        raise HTTPException(status_code=404, detail="Nothing to upload. Please upload and preview a file first.")

    if batch_id is None:
        batch_id = list(pending_batches.keys())[-1]
    result = pending_batches.get(batch_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Unknown batch '{batch_id}'")

    try:
        report = get_store().commit_batch(result.records)
    except CommitError as e:
        # Batch stays cached so the whole upload can be retried
        logger.error("Commit of batch %s failed: %s", batch_id, e)
        raise HTTPException(status_code=502, detail=f"Failed to upload data: {e}")

    del pending_batches[batch_id]
    return CommitResponse(
        success=True,
        message=f"{report.written} students uploaded.",
        written=report.written,
        created=report.created,
        updated=report.updated,
    )


@app.get("/students")
async def list_students(risk: Optional[RiskTier] = None, search: Optional[str] = None):
    """One-shot read of stored students, newest first."""
    records = get_store().read_all()
    summary = summarize_tiers(records)

    if search and search.strip():
        needle = search.strip().lower()
        records = [r for r in records if needle in r.display_name.lower()]
    if risk is not None:
        records = [r for r in records if r.risk_tier == risk]

    records.sort(key=lambda r: r.created_at.timestamp() if r.created_at else 0.0, reverse=True)

    return {
        'results': [r.model_dump(mode='json') for r in records],
        'summary': summary,
    }


@app.delete("/students/{identity}")
async def delete_student(identity: str):
    """Delete one student. Reported as removed only after the store confirms."""
    try:
        get_store().delete(identity)
    except DeleteError as e:
        status_code = 404 if e.not_found else 502
        raise HTTPException(status_code=status_code, detail=f"Error deleting student: {e}")
    return {"success": True, "identity": identity}


@app.get("/alerts/current", response_model=CurrentAlertResponse)
async def current_alert():
    """The alert currently visible on the live screen."""
    session = get_watch_session()
    if session is None:
        return CurrentAlertResponse(display_seconds=ALERT_DISPLAY_SECONDS)
    scheduler = session.scheduler
    return CurrentAlertResponse(
        alert=scheduler.current,
        pending=scheduler.pending,
        remaining_seconds=round(scheduler.remaining_seconds, 3),
        display_seconds=scheduler.display_seconds,
    )


@app.post("/email-draft", response_model=EmailDraftResponse)
async def generate_email_draft_endpoint(request: EmailDraftRequest):
    """Generate an email draft for a stored student."""
    record = find_record(request.identity)
    email = generate_email_draft(record)
    to = MENTOR_EMAIL if record.risk_tier == RiskTier.RED else None
    return EmailDraftResponse(to=to, **email)


@app.get("/summary-draft")
async def summary_draft():
    """Daily risk summary draft; empty when no student is Red."""
    email = generate_daily_summary(get_store().read_all())
    if email is None:
        return {"draft": None}
    return {"draft": EmailDraftResponse(to=MENTOR_EMAIL, **email).model_dump()}


@app.get("/download.csv")
async def download_csv():
    """Download stored students as CSV."""
    records: List[StudentRecord] = get_store().read_all()
    if not records:
        raise HTTPException(status_code=404, detail="No results available")

    output = StringIO()
    writer = csv.writer(output)

    writer.writerow([
        'Student ID',
        'Enroll ID',
        'Name',
        'Attendance %',
        'Score',
        'Fee',
        'Risk',
    ])

    for record in records:
        writer.writerow([
            record.identity,
            record.enroll_id,
            record.display_name,
            f"{record.attendance_pct:.2f}",
            f"{record.score:.2f}",
            record.fee_status,
            RiskTier(record.risk_tier).value,
        ])

    output.seek(0)

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=student_risk_records.csv"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
