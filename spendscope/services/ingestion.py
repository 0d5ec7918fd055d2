"""Statement ingestion: store uploads, extract text, parse entries."""

import asyncio
import hashlib
import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from uuid import UUID

from spendscope.config import settings
from spendscope.db.sqlite import Database, db
from spendscope.extractors.errors import CancellationError, ExtractionError, ExtractionErrorKind, OcrBusyError
from spendscope.extractors.ocr import Recognizer
from spendscope.extractors.router import extract_document
from spendscope.models import ParseOutcome, ProcessingOutcome, RawDocument, StatementRecord
from spendscope.parsers.transactions import ParseError, parse_transactions

logger = logging.getLogger(__name__)


def compute_file_hash(contents: bytes) -> str:
    """Compute SHA256 hash of file contents."""
    return hashlib.sha256(contents).hexdigest()


def store_upload(
    bank_id: UUID,
    filename: str,
    contents: bytes,
    media_type: str = "",
    database: Database | None = None,
) -> StatementRecord:
    """Write an uploaded file under the uploads directory and record it."""
    database = database or db
    settings.ensure_directories()

    suffix = Path(filename).suffix.lower()
    if not suffix and media_type:
        suffix = mimetypes.guess_extension(media_type) or ""

    target_dir = settings.uploads_path / str(bank_id)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{compute_file_hash(contents)}{suffix}"
    target.write_bytes(contents)

    statement = StatementRecord(
        bank_id=bank_id,
        name=filename,
        file_path=str(target),
        media_type=media_type,
        upload_date=datetime.now().isoformat(),
    )
    database.add_statement(statement)
    logger.info(f"Stored statement {statement.name} ({len(contents)} bytes) at {target}")
    return statement


def remove_stored_file(statement: StatementRecord) -> None:
    """Delete a statement's file, ignoring files that are already gone."""
    try:
        Path(statement.file_path).unlink()
    except FileNotFoundError:
        logger.debug(f"Stored file already missing: {statement.file_path}")


def _load_document(statement: StatementRecord) -> RawDocument:
    try:
        contents = Path(statement.file_path).read_bytes()
    except OSError as e:
        raise ExtractionError(
            ExtractionErrorKind.MISSING_INPUT, "Stored statement file could not be read.", details=str(e)
        ) from e
    return RawDocument(content=contents, media_type=statement.media_type, filename=statement.name)


def process_statement(
    statement: StatementRecord,
    database: Database | None = None,
    recognizer: Recognizer | None = None,
) -> ProcessingOutcome:
    """
    Extract (unless raw text is already stored) and parse one statement.

    Failures are recorded on the statement (``parsed`` left as None) and
    returned in the outcome rather than raised. When another run already has
    an OCR job for the statement the outcome is ``busy`` and nothing is saved.
    """
    database = database or db
    statement_id = str(statement.id)

    try:
        raw_text = statement.raw_text
        if raw_text is None:
            result = extract_document(
                _load_document(statement), recognizer=recognizer, document_id=statement_id
            )
            raw_text = result.text
            database.save_raw_text(statement.id, raw_text)
            logger.info(f"Extracted {len(raw_text)} chars from {statement.name} ({result.source_kind.value})")
        else:
            logger.info(f"Reusing stored text for {statement.name}")

        entries = parse_transactions(raw_text)
    except OcrBusyError as e:
        logger.warning(f"Skipping {statement.name}: {e}")
        return ProcessingOutcome(
            statement_id=statement_id,
            status="busy",
            outcome=ParseOutcome.NOT_RUN,
            error=str(e),
            retryable=True,
        )
    except CancellationError:
        logger.info(f"Processing of {statement.name} canceled")
        database.save_parsed(statement.id, None)
        return ProcessingOutcome(statement_id=statement_id, status="canceled", outcome=ParseOutcome.NOT_RUN)
    except ExtractionError as e:
        logger.error(f"Extraction failed for {statement.name}: {e}")
        database.save_parsed(statement.id, None, error=e.message)
        return ProcessingOutcome(
            statement_id=statement_id,
            status="failed",
            outcome=ParseOutcome.NOT_RUN,
            error=e.message,
            retryable=e.retryable,
        )
    except ParseError as e:
        logger.warning(f"Could not parse {statement.name}: {e}")
        database.save_parsed(statement.id, None, error=str(e))
        return ProcessingOutcome(
            statement_id=statement_id, status="failed", outcome=ParseOutcome.NOT_RUN, error=str(e)
        )

    database.save_parsed(statement.id, entries)
    outcome = ParseOutcome.POPULATED if entries else ParseOutcome.EMPTY
    logger.info(f"Parsed {len(entries)} entries from {statement.name}")
    return ProcessingOutcome(statement_id=statement_id, status="ok", outcome=outcome, entries=len(entries))


async def process_statements(
    statements: list[StatementRecord],
    database: Database | None = None,
    recognizer: Recognizer | None = None,
) -> list[ProcessingOutcome]:
    """Process several statements concurrently; one failure never stops the others."""
    results = await asyncio.gather(
        *(asyncio.to_thread(process_statement, statement, database, recognizer) for statement in statements),
        return_exceptions=True,
    )

    outcomes: list[ProcessingOutcome] = []
    for statement, result in zip(statements, results):
        if isinstance(result, BaseException):
            logger.error(f"Unexpected error processing {statement.name}: {result}")
            outcomes.append(
                ProcessingOutcome(
                    statement_id=str(statement.id),
                    status="failed",
                    outcome=ParseOutcome.NOT_RUN,
                    error=str(result),
                    retryable=True,
                )
            )
        else:
            outcomes.append(result)
    return outcomes
