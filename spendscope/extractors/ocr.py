"""OCR extraction for statement images.

Recognition runs on a background worker thread owned by an ``OcrJob``. The
image is split into steps (horizontal bands of every frame) so the job can
report progress and honour a cancel request between steps.

Job lifecycle::

    IDLE -> RUNNING -> DONE
                    -> FAILED
                    -> CANCELING -> CANCELED

A job owns at most one worker at a time. The worker handle is released on
every exit transition, and ``close()`` cancels and joins a worker that is
still running.
"""

import logging
import os
import tempfile
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from enum import Enum
from io import BytesIO

import pytesseract
from PIL import Image, ImageSequence

from spendscope.config import settings
from spendscope.extractors.errors import CancellationError, ExtractionError, ExtractionErrorKind, OcrBusyError
from spendscope.models import ExtractionResult, RawDocument, SourceKind
from spendscope.services.progress import clear_progress, update_progress

logger = logging.getLogger(__name__)

# (text, word confidences in 0-100) for one band
Recognizer = Callable[[Image.Image], tuple[str, list[float]]]
ProgressCallback = Callable[[float], None]
FinishCallback = Callable[["OcrState"], None]

PREVIEW_MAX_SIZE = (512, 512)

# Finished jobs are kept this long for polling clients (15 minutes)
JOB_TTL_SECONDS = 900


class OcrState(str, Enum):
    """States of an OCR job."""

    IDLE = "idle"
    RUNNING = "running"
    CANCELING = "canceling"
    CANCELED = "canceled"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = {OcrState.CANCELED, OcrState.DONE, OcrState.FAILED}

# Progress status and message recorded when a job ends
FINISH_STATUS = {
    OcrState.DONE: ("complete", "Text recognized"),
    OcrState.CANCELED: ("canceled", "OCR canceled"),
    OcrState.FAILED: ("error", "OCR failed"),
}


def tesseract_recognize(band: Image.Image) -> tuple[str, list[float]]:
    """Run tesseract over one band and rebuild its text line by line."""
    config = f"--oem 1 --psm {settings.ocr_psm}"
    data = pytesseract.image_to_data(
        band, lang=settings.ocr_lang, config=config, output_type=pytesseract.Output.DICT
    )

    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []
    for i, word in enumerate(data.get("text", [])):
        if not word or not word.strip():
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word.strip())
        conf = float(data["conf"][i])
        if conf >= 0:
            confidences.append(conf)

    return "\n".join(" ".join(words) for words in lines.values()), confidences


def split_into_bands(image: Image.Image, band_height: int) -> list[Image.Image]:
    """Cut every frame of an image into horizontal bands, top to bottom."""
    bands: list[Image.Image] = []
    for frame in ImageSequence.Iterator(image):
        page = frame.convert("L")
        width, height = page.size
        if band_height <= 0 or height <= band_height:
            bands.append(page.copy())
            continue
        for top in range(0, height, band_height):
            bands.append(page.crop((0, top, width, min(top + band_height, height))))
    return bands


class OcrJob:
    """A single OCR run over one image, with progress and cancellation."""

    def __init__(
        self,
        image: bytes,
        document_id: str | None = None,
        recognizer: Recognizer | None = None,
        on_progress: ProgressCallback | None = None,
        on_finish: FinishCallback | None = None,
        band_height: int | None = None,
    ):
        self.id = str(uuid.uuid4())
        self.document_id = document_id or self.id
        self.image = image
        self.recognizer = recognizer or tesseract_recognize
        self.on_progress = on_progress
        self.on_finish = on_finish
        self.band_height = settings.ocr_band_height if band_height is None else band_height

        self.state = OcrState.IDLE
        self.percent = 0
        self.text = ""
        self.confidence: float | None = None
        self.error: ExtractionError | None = None
        self.preview_path: str | None = None
        self.finished_at: float | None = None

        self._lock = threading.RLock()
        self._cancel = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def worker(self) -> threading.Thread | None:
        """The worker thread, or None once it has exited."""
        return self._worker

    @property
    def is_active(self) -> bool:
        return self._worker is not None

    def start(self) -> None:
        """
        Spawn the worker.

        Raises:
            OcrBusyError: If a worker from an earlier start is still alive
            ExtractionError: If there is no image to recognize
        """
        if not self.image:
            raise ExtractionError(ExtractionErrorKind.MISSING_INPUT, "No image provided.")

        with self._lock:
            if self._worker is not None:
                raise OcrBusyError(f"OCR already running for document {self.document_id}")
            self._cancel.clear()
            self.state = OcrState.RUNNING
            self.percent = 0
            self.text = ""
            self.confidence = None
            self.error = None
            self.finished_at = None
            self._worker = threading.Thread(target=self._run, name=f"ocr-{self.id[:8]}", daemon=True)
            worker = self._worker

        logger.info(f"OCR job {self.id[:8]} started for document {self.document_id}")
        worker.start()

    def cancel(self) -> None:
        """Ask the worker to stop before its next step."""
        with self._lock:
            if self.state != OcrState.RUNNING:
                return
            self.state = OcrState.CANCELING
            self._cancel.set()
        logger.info(f"OCR job {self.id[:8]} cancel requested")

    def wait(self, timeout: float | None = None) -> OcrState:
        """Block until the worker exits (or the timeout passes)."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return self.state

    def create_preview(self) -> str:
        """Write a thumbnail of the image to a temp file and return its path."""
        if self.preview_path:
            return self.preview_path
        try:
            with Image.open(BytesIO(self.image)) as img:
                thumb = img.convert("RGB")
                thumb.thumbnail(PREVIEW_MAX_SIZE)
                fd, path = tempfile.mkstemp(prefix="spendscope-preview-", suffix=".png")
                with os.fdopen(fd, "wb") as f:
                    thumb.save(f, format="PNG")
        except Exception as e:
            raise ExtractionError(ExtractionErrorKind.DECODE_FAILURE, "Could not read image.", details=str(e)) from e
        self.preview_path = path
        return path

    def release_preview(self) -> None:
        if self.preview_path:
            try:
                os.remove(self.preview_path)
            except FileNotFoundError:
                pass
            self.preview_path = None

    def close(self, timeout: float | None = 10.0) -> None:
        """Tear the job down: cancel and join any live worker, drop the preview."""
        self.cancel()
        self.wait(timeout)
        if self._worker is not None:
            logger.warning(f"OCR job {self.id[:8]} worker did not stop within {timeout}s")
        self.release_preview()

    def result(self) -> ExtractionResult:
        """
        Return the finished job's text.

        Raises:
            CancellationError: If the job was canceled
            ExtractionError: If the job failed or has not finished
        """
        if self.state == OcrState.DONE:
            return ExtractionResult(text=self.text, source_kind=SourceKind.OCR, confidence=self.confidence)
        if self.state == OcrState.CANCELED:
            raise CancellationError("OCR canceled")
        if self.state == OcrState.FAILED and self.error is not None:
            raise self.error
        raise ExtractionError(ExtractionErrorKind.DECODE_FAILURE, f"OCR job is {self.state.value}")

    def to_dict(self) -> dict:
        return {
            "job_id": self.id,
            "document_id": self.document_id,
            "state": self.state.value,
            "progress": self.percent,
            "text": self.text if self.state == OcrState.DONE else None,
            "confidence": self.confidence,
            "error": self.error.message if self.error else None,
        }

    def __enter__(self) -> "OcrJob":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Worker side

    def _emit(self, progress: float) -> None:
        # Callback runs under the lock so nothing is delivered once cancel() returns.
        with self._lock:
            if self.state != OcrState.RUNNING:
                return
            self.percent = max(self.percent, min(100, round(progress * 100)))
            if self.on_progress:
                self.on_progress(self.percent / 100)

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise CancellationError("OCR canceled")

    def _steps(self) -> Iterator[Image.Image]:
        try:
            with Image.open(BytesIO(self.image)) as img:
                bands = split_into_bands(img, self.band_height)
        except Exception as e:
            raise ExtractionError(ExtractionErrorKind.DECODE_FAILURE, "Could not read image.", details=str(e)) from e
        total = len(bands)
        for index, band in enumerate(bands):
            yield band
            self._emit((index + 1) / total)

    def _run(self) -> None:
        texts: list[str] = []
        confidences: list[float] = []
        try:
            self._emit(0.0)
            for band in self._steps():
                self._check_cancel()
                text, confs = self.recognizer(band)
                if text.strip():
                    texts.append(text.strip())
                confidences.extend(confs)
            self._check_cancel()
        except CancellationError:
            with self._lock:
                self.state = OcrState.CANCELED
            logger.info(f"OCR job {self.id[:8]} canceled")
        except ExtractionError as e:
            self._fail(e)
        except Exception as e:
            logger.error(f"OCR job {self.id[:8]} failed: {e}")
            self._fail(ExtractionError(ExtractionErrorKind.DECODE_FAILURE, "OCR failed.", details=str(e)))
        else:
            with self._lock:
                self.text = "\n".join(texts)
                self.confidence = round(sum(confidences) / len(confidences) / 100, 4) if confidences else None
                self.percent = 100
                self.state = OcrState.DONE
            logger.info(f"OCR job {self.id[:8]} done: {len(self.text)} chars")
        finally:
            with self._lock:
                self.finished_at = time.time()
                if self.on_finish:
                    self.on_finish(self.state)
                self._worker = None

    def _fail(self, error: ExtractionError) -> None:
        with self._lock:
            self.error = error
            self.state = OcrState.FAILED


class OcrJobRegistry:
    """
    Tracks OCR jobs so that each document has at most one worker in flight.

    Finished jobs stay available for polling for ``ttl_seconds`` and are
    pruned (image bytes, preview and progress entry) on the next submit.
    """

    def __init__(self, recognizer: Recognizer | None = None, ttl_seconds: float = JOB_TTL_SECONDS):
        self.recognizer = recognizer
        self.ttl_seconds = ttl_seconds
        self._jobs: dict[str, OcrJob] = {}
        self._lock = threading.Lock()

    def _prune_finished(self, now: float) -> None:
        """Forget finished jobs older than the TTL. Caller holds the lock."""
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and not job.is_active and now - job.finished_at >= self.ttl_seconds
        ]
        for job_id in stale:
            job = self._jobs.pop(job_id)
            job.release_preview()
            clear_progress(job_id)
            logger.debug(f"Pruned finished OCR job {job_id[:8]}")

    def _record_finish(self, job: OcrJob, state: OcrState) -> None:
        status, message = FINISH_STATUS[state]
        update_progress(job.id, status, job.percent, message)

    def submit(
        self,
        image: bytes,
        document_id: str | None = None,
        recognizer: Recognizer | None = None,
    ) -> OcrJob:
        """
        Create and start a job.

        The busy check and the worker start happen under one lock, so two
        callers racing on the same document cannot both get a worker.

        Raises:
            OcrBusyError: If the document already has an active job
            ExtractionError: If there is no image to recognize
        """
        with self._lock:
            self._prune_finished(time.time())
            if document_id:
                for job in self._jobs.values():
                    if job.document_id == document_id and job.is_active:
                        raise OcrBusyError(f"OCR already running for document {document_id}")

            job = OcrJob(image, document_id=document_id, recognizer=recognizer or self.recognizer)
            job.on_progress = lambda p, job_id=job.id: update_progress(
                job_id, "processing", round(p * 100), "Recognizing text..."
            )
            job.on_finish = lambda state, job=job: self._record_finish(job, state)
            job.start()
            self._jobs[job.id] = job

        return job

    def get(self, job_id: str) -> OcrJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> OcrJob | None:
        job = self.get(job_id)
        if job is not None:
            job.cancel()
        return job

    def discard(self, job_id: str) -> None:
        """Close a job and forget it."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is not None:
            job.close()
            clear_progress(job_id)

    def shutdown(self) -> None:
        """Close every job. Called when the app stops."""
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.close()
            clear_progress(job.id)
        if jobs:
            logger.info(f"Shut down {len(jobs)} OCR jobs")


def extract_ocr(
    document: RawDocument,
    recognizer: Recognizer | None = None,
    document_id: str | None = None,
) -> ExtractionResult:
    """
    Run OCR to completion through the shared registry.

    Raises:
        OcrBusyError: If ``document_id`` already has a job in flight
        CancellationError: If the job was canceled
        ExtractionError: If the image could not be recognized
    """
    job = ocr_jobs.submit(document.content, document_id=document_id, recognizer=recognizer)
    try:
        job.wait()
        return job.result()
    finally:
        ocr_jobs.discard(job.id)


# Global registry instance
ocr_jobs = OcrJobRegistry()
