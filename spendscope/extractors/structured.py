"""Server-side text extraction for text-bearing documents (PDF, plain text)."""

import logging
from io import BytesIO

import pdfplumber

from spendscope.config import settings
from spendscope.extractors.errors import ExtractionError, ExtractionErrorKind
from spendscope.models import ExtractionResult, RawDocument, SourceKind

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"

# Tried in order; latin-1 accepts any byte sequence so it goes last.
TEXT_ENCODINGS = ["utf-8", "utf-8-sig", "latin-1"]


def extract_pdf_text(contents: bytes, max_pages: int | None = None) -> str:
    """
    Pull the text layer out of a PDF.

    Args:
        contents: Raw PDF bytes
        max_pages: Stop after this many pages (defaults to settings.max_pdf_pages)

    Returns:
        Page texts joined by newlines. Empty when the PDF has no text layer.

    Raises:
        ExtractionError: If the bytes are missing or not a readable PDF
    """
    if not contents:
        raise ExtractionError(ExtractionErrorKind.MISSING_INPUT, "No file provided.")

    limit = max_pages or settings.max_pdf_pages
    pages: list[str] = []

    try:
        with pdfplumber.open(BytesIO(contents)) as pdf:
            for page in pdf.pages[:limit]:
                pages.append(page.extract_text() or "")
            total_pages = len(pdf.pages)
    except Exception as e:
        logger.error(f"PDF extraction failed: {e}")
        raise ExtractionError(ExtractionErrorKind.DECODE_FAILURE, "Failed to parse PDF.", details=str(e)) from e

    if total_pages > limit:
        logger.warning(f"PDF has {total_pages} pages, only the first {limit} were read")

    text = "\n".join(pages)
    if not text.strip():
        logger.warning("PDF has no text layer; scanned statements should be uploaded as images for OCR")

    return text


def decode_plain_text(contents: bytes) -> str:
    """Decode a plain-text statement, trying common encodings."""
    if not contents:
        raise ExtractionError(ExtractionErrorKind.MISSING_INPUT, "No file provided.")

    for encoding in TEXT_ENCODINGS:
        try:
            return contents.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise ExtractionError(
        ExtractionErrorKind.DECODE_FAILURE,
        "Could not decode text file.",
        details=f"tried encodings: {', '.join(TEXT_ENCODINGS)}",
    )


def extract_structured(document: RawDocument) -> ExtractionResult:
    """Extract text from a PDF or text document without a network hop."""
    if document.media_type == PDF_MEDIA_TYPE:
        text = extract_pdf_text(document.content)
    elif document.media_type.startswith("text/"):
        text = decode_plain_text(document.content)
    else:
        raise ExtractionError(
            ExtractionErrorKind.UNSUPPORTED_MEDIA_TYPE,
            f"Unsupported media type for structured extraction: {document.media_type or 'unknown'}",
        )

    logger.info(f"Structured extraction: {len(text)} chars from {document.filename or 'document'}")
    return ExtractionResult(text=text, source_kind=SourceKind.STRUCTURED)
