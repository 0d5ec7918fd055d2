"""Client for a remote extraction function (see ``/functions/parse-pdf``)."""

import logging

import requests

from spendscope.config import settings
from spendscope.extractors.errors import ExtractionError, ExtractionErrorKind
from spendscope.models import ExtractionResult, RawDocument, SourceKind

logger = logging.getLogger(__name__)

_STATUS_KINDS = {
    400: ExtractionErrorKind.MISSING_INPUT,
    415: ExtractionErrorKind.UNSUPPORTED_MEDIA_TYPE,
}


def extract_remote(document: RawDocument, url: str | None = None) -> ExtractionResult:
    """
    Post a document to the extraction function and return its text.

    Args:
        document: The document to extract
        url: Function URL (defaults to settings.extraction_url)

    Returns:
        ExtractionResult built from the ``{text}`` response body

    Raises:
        ExtractionError: TRANSPORT_TIMEOUT on timeout or connection failure,
            otherwise the kind implied by the error status
    """
    target = url or settings.extraction_url
    files = {
        "file": (
            document.filename or "statement",
            document.content,
            document.media_type or "application/octet-stream",
        )
    }

    try:
        response = requests.post(
            target,
            files=files,
            headers={"Accept": "application/json"},
            timeout=(settings.extraction_connect_timeout, settings.extraction_read_timeout),
        )
    except requests.Timeout as e:
        logger.warning(f"Extraction function timed out: {e}")
        raise ExtractionError(
            ExtractionErrorKind.TRANSPORT_TIMEOUT, "Extraction timed out, please retry.", details=str(e)
        ) from e
    except requests.RequestException as e:
        logger.warning(f"Extraction function unreachable: {e}")
        raise ExtractionError(
            ExtractionErrorKind.TRANSPORT_TIMEOUT, "Extraction service unavailable, please retry.", details=str(e)
        ) from e

    try:
        body = response.json()
    except ValueError:
        body = {}

    if response.status_code >= 400:
        kind = _STATUS_KINDS.get(response.status_code, ExtractionErrorKind.DECODE_FAILURE)
        message = body.get("error") if isinstance(body, dict) else None
        details = body.get("details") if isinstance(body, dict) else None
        logger.error(f"Extraction function returned {response.status_code}: {message}")
        raise ExtractionError(kind, message or f"Extraction failed with status {response.status_code}", details)

    if not isinstance(body, dict) or not isinstance(body.get("text"), str):
        raise ExtractionError(ExtractionErrorKind.DECODE_FAILURE, "Extraction function returned no text.")

    return ExtractionResult(text=body["text"], source_kind=SourceKind.STRUCTURED)
