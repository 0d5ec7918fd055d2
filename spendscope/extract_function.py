"""Stateless extraction function: multipart file in, ``{text}`` out.

Served as its own ASGI app under ``/functions`` so that it answers CORS itself
(every response carries the headers, preflight gets an empty 204) instead of
going through the API's CORS middleware.
"""

import asyncio
import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from spendscope.config import settings
from spendscope.extractors.errors import ExtractionError, ExtractionErrorKind
from spendscope.extractors.structured import decode_plain_text, extract_pdf_text

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "authorization, x-client-info, apikey, content-type, accept"

METHOD_NOT_ALLOWED = "Method not allowed. Use POST with multipart/form-data."
NO_FILE = "No file provided. Include a 'file' field in multipart/form-data."

functions_app = FastAPI(
    title="Spendscope extraction function",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


def cors_headers(request: Request) -> dict[str, str]:
    """CORS headers for a response, honouring the configured allow-list."""
    origins = settings.origin_list
    headers = {
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
    }
    if "*" in origins:
        headers["Access-Control-Allow-Origin"] = "*"
    else:
        origin = request.headers.get("origin", "")
        headers["Access-Control-Allow-Origin"] = origin if origin in origins else origins[0]
        headers["Vary"] = "Origin"
    return headers


def _error(request: Request, status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status_code, headers=cors_headers(request))


async def _read_file_field(request: Request) -> UploadFile | None:
    if "multipart/form-data" not in request.headers.get("content-type", ""):
        return None
    try:
        form = await request.form()
    except Exception as e:
        logger.warning(f"Could not read multipart body: {e}")
        return None
    upload = form.get("file")
    return upload if isinstance(upload, UploadFile) else None


def _extract(contents: bytes, content_type: str) -> str:
    if content_type.startswith("text/"):
        return decode_plain_text(contents)
    return extract_pdf_text(contents)


@functions_app.api_route(
    "/parse-pdf",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def parse_pdf(request: Request) -> Response:
    """Extract the text of an uploaded PDF (or plain-text) statement."""
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=cors_headers(request))

    if request.method != "POST":
        return _error(request, 405, METHOD_NOT_ALLOWED)

    upload = await _read_file_field(request)
    if upload is None:
        return _error(request, 400, NO_FILE)

    try:
        contents = await upload.read()
        text = await asyncio.to_thread(_extract, contents, upload.content_type or "")
    except ExtractionError as e:
        if e.kind == ExtractionErrorKind.MISSING_INPUT:
            return _error(request, 400, NO_FILE)
        logger.error(f"parse-pdf error: {e}")
        return _error(request, 500, "Failed to parse PDF.", e.details or e.message)
    except Exception as e:
        logger.error(f"parse-pdf error: {e}")
        return _error(request, 500, "Failed to parse PDF.", str(e))

    return JSONResponse({"text": text}, status_code=200, headers=cors_headers(request))
