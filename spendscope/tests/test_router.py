"""Tests for document routing and structured extraction."""

from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from spendscope.extractors.errors import ExtractionError, ExtractionErrorKind
from spendscope.extractors.router import extract_document, resolve_media_type
from spendscope.extractors.structured import decode_plain_text, extract_pdf_text
from spendscope.models import ExtractionResult, RawDocument, SourceKind


def create_png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def mock_pdf(page_texts: list[str | None]) -> MagicMock:
    """Create a pdfplumber document stand-in with the given page texts."""
    pdf = MagicMock()
    pdf.pages = [MagicMock(**{"extract_text.return_value": text}) for text in page_texts]
    pdf.__enter__.return_value = pdf
    return pdf


class TestResolveMediaType:
    """Test media type detection."""

    def test_declared_type_wins(self):
        """Should trust a specific declared type."""
        doc = RawDocument(content=b"%PDF-1.4", media_type="text/plain", filename="a.pdf")
        assert resolve_media_type(doc) == "text/plain"

    def test_strips_parameters(self):
        """Should ignore charset and other parameters."""
        assert resolve_media_type(RawDocument(content=b"x", media_type="text/plain; charset=utf-8")) == "text/plain"

    def test_generic_type_uses_filename(self):
        """Should fall back to the filename extension."""
        doc = RawDocument(content=b"x", media_type="application/octet-stream", filename="jan.pdf")
        assert resolve_media_type(doc) == "application/pdf"

    def test_magic_bytes(self):
        """Should sniff the content when nothing else is known."""
        assert resolve_media_type(RawDocument(content=b"%PDF-1.7 ...")) == "application/pdf"
        assert resolve_media_type(RawDocument(content=create_png(), filename="scan.bin")) == "image/png"

    def test_unknown(self):
        """Should return an empty type when nothing matches."""
        assert resolve_media_type(RawDocument(content=b"\x00\x01")) == ""


class TestExtractPdfText:
    """Test the PDF text layer extraction."""

    def test_joins_pages(self):
        """Should join page texts with newlines."""
        with patch("spendscope.extractors.structured.pdfplumber.open", return_value=mock_pdf(["page one", None, "page three"])):
            assert extract_pdf_text(b"%PDF-1.4") == "page one\n\npage three"

    def test_respects_page_limit(self):
        """Should stop after max_pages."""
        with patch("spendscope.extractors.structured.pdfplumber.open", return_value=mock_pdf(["a", "b", "c"])):
            assert extract_pdf_text(b"%PDF-1.4", max_pages=2) == "a\nb"

    def test_garbage_is_decode_failure(self):
        """Should raise a retryable decode failure for unreadable bytes."""
        with pytest.raises(ExtractionError) as exc_info:
            extract_pdf_text(b"this is not a pdf")
        assert exc_info.value.kind == ExtractionErrorKind.DECODE_FAILURE
        assert exc_info.value.message == "Failed to parse PDF."
        assert exc_info.value.details

    def test_empty_is_missing_input(self):
        """Should raise MISSING_INPUT for no bytes."""
        with pytest.raises(ExtractionError) as exc_info:
            extract_pdf_text(b"")
        assert exc_info.value.kind == ExtractionErrorKind.MISSING_INPUT
        assert not exc_info.value.retryable


class TestDecodePlainText:
    """Test plain-text decoding."""

    def test_utf8(self):
        """Should decode UTF-8."""
        assert decode_plain_text("2024-01-01 Café 4.50".encode()) == "2024-01-01 Café 4.50"

    def test_latin1_fallback(self):
        """Should fall back to latin-1 for legacy exports."""
        assert decode_plain_text("Café".encode("latin-1")) == "Café"


class TestExtractDocument:
    """Test routing between structured and OCR extraction."""

    def test_empty_document(self):
        """Should raise MISSING_INPUT before routing."""
        with pytest.raises(ExtractionError) as exc_info:
            extract_document(RawDocument(content=b"", media_type="application/pdf"))
        assert exc_info.value.kind == ExtractionErrorKind.MISSING_INPUT

    def test_plain_text_is_structured(self):
        """Should decode text locally."""
        result = extract_document(RawDocument(content=b"2024-01-01 Coffee -4.50", filename="jan.txt"))
        assert result.source_kind == SourceKind.STRUCTURED
        assert result.text == "2024-01-01 Coffee -4.50"

    def test_pdf_is_structured(self):
        """Should send PDFs through the text layer extractor."""
        with patch("spendscope.extractors.structured.pdfplumber.open", return_value=mock_pdf(["2024-01-01 Rent -900.00"])):
            result = extract_document(RawDocument(content=b"%PDF-1.4", media_type="application/pdf"))
        assert result.text == "2024-01-01 Rent -900.00"
        assert result.confidence is None

    def test_image_is_ocr(self):
        """Should send images through OCR."""
        result = extract_document(
            RawDocument(content=create_png(), media_type="image/png"),
            recognizer=lambda band: ("2024-01-01 Coffee -4.50", [88.0]),
        )
        assert result.source_kind == SourceKind.OCR
        assert result.text == "2024-01-01 Coffee -4.50"
        assert result.confidence == 0.88

    def test_unsupported_type(self):
        """Should reject types neither path handles."""
        with pytest.raises(ExtractionError) as exc_info:
            extract_document(RawDocument(content=b"PK\x03\x04", media_type="application/zip"))
        assert exc_info.value.kind == ExtractionErrorKind.UNSUPPORTED_MEDIA_TYPE
        assert not exc_info.value.retryable

    def test_remote_function_when_configured(self):
        """Should call the extraction function when a URL is configured."""
        remote = ExtractionResult(text="remote text", source_kind=SourceKind.STRUCTURED)
        with (
            patch("spendscope.extractors.router.settings.extraction_url", "http://functions.test/parse-pdf"),
            patch("spendscope.extractors.router.extract_remote", return_value=remote) as mock_remote,
        ):
            result = extract_document(RawDocument(content=b"%PDF-1.4", media_type="application/pdf"))

        assert result.text == "remote text"
        assert mock_remote.call_args.args[0].media_type == "application/pdf"
