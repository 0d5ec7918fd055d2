"""FastAPI application for Spendscope."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from spendscope.config import configure_logging, settings
from spendscope.db.sqlite import db
from spendscope.extract_function import functions_app
from spendscope.extractors.errors import ExtractionError, OcrBusyError
from spendscope.extractors.ocr import ocr_jobs
from spendscope.extractors.router import is_image, is_structured, resolve_media_type
from spendscope.models import (
    Bank,
    BankCreate,
    BankUpdate,
    ProcessingOutcome,
    RawDocument,
    StatementRecord,
    StatementUploadResponse,
)
from spendscope.services.aggregation import build_snapshot, flatten_entries, summarize_groups
from spendscope.services.ingestion import process_statement, process_statements, remove_stored_file, store_upload
from spendscope.services.presentation import percent_bar, sparkline_points, top_expense_bars
from spendscope.services.progress import get_progress


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Prepare directories on startup; stop OCR workers on shutdown."""
    configure_logging()
    settings.ensure_directories()
    yield
    ocr_jobs.shutdown()


api = FastAPI(
    title="Spendscope",
    description="Statement ingestion and spending insights",
    version="0.1.0",
)

# CORS for the web frontend
api.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origin_list,
    allow_credentials="*" not in settings.origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)


@api.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "statement_count": db.get_statement_count()}


# ==================== BANKS ====================


@api.post("/banks", response_model=Bank, status_code=201)
async def create_bank(request: BankCreate):
    """Add a bank account."""
    bank = Bank(name=request.name.strip(), logo=request.logo, created_at=datetime.now().isoformat())
    db.add_bank(bank)
    return bank


@api.get("/banks", response_model=list[Bank])
async def list_banks():
    """List bank accounts, newest first."""
    return db.get_banks()


@api.patch("/banks/{bank_id}", response_model=Bank)
async def rename_bank(bank_id: UUID, update: BankUpdate):
    """Rename a bank account."""
    if not db.rename_bank(bank_id, update.name.strip()):
        raise HTTPException(status_code=404, detail="Bank account not found")
    return db.get_bank(bank_id)


@api.delete("/banks/{bank_id}")
async def delete_bank(bank_id: UUID):
    """Delete a bank account together with its statements and stored files."""
    if db.get_bank(bank_id) is None:
        raise HTTPException(status_code=404, detail="Bank account not found")
    removed = db.delete_bank(bank_id)
    for statement in removed:
        remove_stored_file(statement)
    return {"status": "deleted", "statements_removed": len(removed)}


# ==================== STATEMENTS ====================


@api.post("/banks/{bank_id}/statements", response_model=StatementUploadResponse, status_code=201)
async def upload_statement(bank_id: UUID, file: UploadFile = File(...), process: bool = True):
    """Upload a statement (PDF, text or image) and optionally process it right away."""
    if db.get_bank(bank_id) is None:
        raise HTTPException(status_code=404, detail="Bank account not found")
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    media_type = resolve_media_type(
        RawDocument(content=contents, media_type=file.content_type or "", filename=file.filename)
    )
    if not (is_structured(media_type) or is_image(media_type)):
        raise HTTPException(status_code=415, detail="Only PDF, text and image statements are supported")

    statement = store_upload(bank_id, file.filename, contents, media_type=media_type, database=db)

    if not process:
        return StatementUploadResponse(statement=statement, message="Statement uploaded")

    outcome = await asyncio.to_thread(process_statement, statement, db)
    message = (
        f"Statement processed: {outcome.entries} entries found"
        if outcome.status == "ok"
        else f"Statement uploaded but processing failed: {outcome.error}"
    )
    return StatementUploadResponse(statement=db.get_statement(statement.id), processing=outcome, message=message)


@api.get("/banks/{bank_id}/statements", response_model=list[StatementRecord])
async def list_statements(bank_id: UUID):
    """List a bank account's statements."""
    if db.get_bank(bank_id) is None:
        raise HTTPException(status_code=404, detail="Bank account not found")
    return db.get_statements(bank_id=bank_id)


@api.delete("/statements/{statement_id}")
async def delete_statement(statement_id: UUID):
    """Delete a statement and its stored file."""
    statement = db.delete_statement(statement_id)
    if statement is None:
        raise HTTPException(status_code=404, detail="Statement not found")
    remove_stored_file(statement)
    return {"status": "deleted"}


@api.post("/statements/process", response_model=list[ProcessingOutcome])
async def process_pending_statements():
    """Process every statement that has no parsed entries yet."""
    return await process_statements(db.get_statements(unprocessed_only=True), database=db)


@api.post("/statements/{statement_id}/process", response_model=ProcessingOutcome)
async def process_single_statement(statement_id: UUID, reextract: bool = False):
    """(Re)process a statement. ``reextract`` ignores stored raw text."""
    statement = db.get_statement(statement_id)
    if statement is None:
        raise HTTPException(status_code=404, detail="Statement not found")
    if reextract:
        statement = statement.model_copy(update={"raw_text": None})
    return await asyncio.to_thread(process_statement, statement, db)


@api.get("/statements/{statement_id}/parsed")
async def get_parsed_statement(statement_id: UUID):
    """Parsed entries for one statement."""
    statement = db.get_statement(statement_id)
    if statement is None:
        raise HTTPException(status_code=404, detail="Statement not found")
    group = statement.to_group()
    return {
        "statement_id": group.statement_id,
        "statement_name": group.statement_name,
        "outcome": group.outcome.value,
        "parsed": [entry.model_dump() for entry in group.parsed] if group.parsed is not None else None,
        "error": statement.last_error,
    }


# ==================== DASHBOARD ====================


@api.get("/dashboard")
async def get_dashboard():
    """Aggregate metrics over every parsed statement, plus chart primitives."""
    groups = db.get_parsed_groups()
    snapshot = build_snapshot(groups)
    income_pct, expense_pct = percent_bar(snapshot.total_income, snapshot.total_expenses)

    return {
        "snapshot": snapshot.model_dump(),
        "entry_count": len(snapshot.running_balance),
        "sparkline": sparkline_points(snapshot.running_balance),
        "income_expense_bar": {"income_pct": income_pct, "expense_pct": expense_pct},
        "top_expense_bars": top_expense_bars(snapshot.top_expenses),
        "statements": [
            {
                "statement_id": summary.statement_id,
                "statement_name": summary.statement_name,
                "outcome": summary.outcome.value,
                "label": summary.label,
            }
            for summary in summarize_groups(groups)
        ],
        "entries": [
            {
                "date": e.date,
                "description": e.description,
                "value": round(e.value, 2),
                "is_expense": e.is_expense,
                "statement_name": e.statement_name,
            }
            for e in flatten_entries(groups)
        ],
    }


# ==================== OCR JOBS ====================


@api.post("/ocr/jobs", status_code=202)
async def start_ocr_job(file: UploadFile = File(...), document_id: str | None = Form(None)):
    """Start OCR on an image. Progress and result are polled via GET."""
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    media_type = resolve_media_type(
        RawDocument(content=contents, media_type=file.content_type or "", filename=file.filename)
    )
    if not is_image(media_type):
        raise HTTPException(status_code=415, detail="OCR accepts images only")

    try:
        job = ocr_jobs.submit(contents, document_id=document_id)
    except OcrBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return job.to_dict()


@api.get("/ocr/jobs/{job_id}")
async def get_ocr_job(job_id: str):
    """Current state, progress and (when done) text of an OCR job."""
    job = ocr_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="OCR job not found")
    return {**job.to_dict(), "progress_detail": get_progress(job_id)}


@api.get("/ocr/jobs/{job_id}/preview")
async def get_ocr_preview(job_id: str):
    """PNG thumbnail of the job's image. Removed when the job is discarded."""
    job = ocr_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="OCR job not found")
    try:
        path = await asyncio.to_thread(job.create_preview)
    except ExtractionError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return FileResponse(path, media_type="image/png")


@api.delete("/ocr/jobs/{job_id}")
async def cancel_ocr_job(job_id: str, discard: bool = False):
    """Cancel an OCR job; ``discard`` also tears it down and forgets it."""
    job = ocr_jobs.cancel(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="OCR job not found")
    if discard:
        await asyncio.to_thread(ocr_jobs.discard, job_id)
    return job.to_dict()


app = FastAPI(title="Spendscope", version="0.1.0", lifespan=lifespan, docs_url=None, redoc_url=None)
app.mount("/functions", functions_app)
app.mount("/", api)


if __name__ == "__main__":
    import uvicorn

    settings.log_config()
    uvicorn.run(
        "spendscope.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.dev_mode,
    )
