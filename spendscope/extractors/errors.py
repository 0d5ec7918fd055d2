"""Exceptions raised by the document text extractors."""

from enum import Enum


class ExtractionErrorKind(str, Enum):
    """Why a document could not be turned into text."""

    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    MISSING_INPUT = "missing_input"
    DECODE_FAILURE = "decode_failure"
    TRANSPORT_TIMEOUT = "transport_timeout"


_RETRYABLE = {ExtractionErrorKind.DECODE_FAILURE, ExtractionErrorKind.TRANSPORT_TIMEOUT}


class ExtractionError(Exception):
    """Raised when a document cannot be converted into text."""

    def __init__(self, kind: ExtractionErrorKind, message: str, details: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def retryable(self) -> bool:
        """Decode and transport failures may succeed on another attempt."""
        return self.kind in _RETRYABLE

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class CancellationError(Exception):
    """Raised inside an OCR worker when the user cancels the job."""

    pass


class OcrBusyError(Exception):
    """Raised when an OCR job is started while another one still owns a worker."""

    pass
