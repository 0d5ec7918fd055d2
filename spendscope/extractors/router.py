"""Pick the extraction path for a document based on its media type."""

import logging
import mimetypes

from spendscope.config import settings
from spendscope.extractors.client import extract_remote
from spendscope.extractors.errors import ExtractionError, ExtractionErrorKind
from spendscope.extractors.ocr import Recognizer, extract_ocr
from spendscope.extractors.structured import PDF_MEDIA_TYPE, extract_structured
from spendscope.models import ExtractionResult, RawDocument

logger = logging.getLogger(__name__)

GENERIC_MEDIA_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

# Leading bytes of the formats we accept
MAGIC_NUMBERS = [
    (b"%PDF-", PDF_MEDIA_TYPE),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"BM", "image/bmp"),
]


def resolve_media_type(document: RawDocument) -> str:
    """
    Work out a document's media type.

    The declared type wins unless it is missing or generic, in which case the
    filename extension and then the leading magic bytes are consulted.
    """
    declared = (document.media_type or "").split(";")[0].strip().lower()
    if declared not in GENERIC_MEDIA_TYPES:
        return declared

    if document.filename:
        guessed, _ = mimetypes.guess_type(document.filename)
        if guessed and guessed not in GENERIC_MEDIA_TYPES:
            return guessed

    for magic, media_type in MAGIC_NUMBERS:
        if document.content.startswith(magic):
            return media_type

    return declared


def is_structured(media_type: str) -> bool:
    return media_type == PDF_MEDIA_TYPE or media_type.startswith("text/")


def is_image(media_type: str) -> bool:
    return media_type.startswith("image/")


def extract_document(
    document: RawDocument,
    recognizer: Recognizer | None = None,
    document_id: str | None = None,
) -> ExtractionResult:
    """
    Convert a document into text.

    PDFs and text go through the structured path (remote function when
    ``settings.extraction_url`` is set, local decode otherwise). Images go
    through OCR, at most one job per ``document_id`` at a time.

    Raises:
        ExtractionError: On unsupported type, missing input, decode or transport failure
        CancellationError: If the OCR job was canceled
        OcrBusyError: If ``document_id`` already has an OCR job in flight
    """
    if not document.content:
        raise ExtractionError(ExtractionErrorKind.MISSING_INPUT, "No file provided.")

    media_type = resolve_media_type(document)
    routed = document.model_copy(update={"media_type": media_type})

    if is_structured(media_type):
        if settings.extraction_url:
            logger.info(f"Extracting {document.filename or 'document'} via remote function")
            return extract_remote(routed)
        return extract_structured(routed)

    if is_image(media_type):
        logger.info(f"Extracting {document.filename or 'document'} via OCR")
        return extract_ocr(routed, recognizer=recognizer, document_id=document_id)

    raise ExtractionError(
        ExtractionErrorKind.UNSUPPORTED_MEDIA_TYPE,
        f"Unsupported media type: {media_type or 'unknown'}",
    )
