"""Progress tracking for background OCR jobs.

Thread-safe store of the latest progress per job, with TTL-based cleanup so
abandoned jobs do not accumulate.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

_job_progress: dict[str, dict[str, Any]] = {}
_progress_lock = threading.Lock()

# TTL for progress entries (15 minutes)
PROGRESS_TTL_SECONDS = 900


def _cleanup_stale_entries(now: float) -> None:
    """Remove progress entries older than TTL. Caller holds the lock."""
    stale = [job_id for job_id, data in _job_progress.items() if now - data["_created_at"] > PROGRESS_TTL_SECONDS]
    for job_id in stale:
        del _job_progress[job_id]
        logger.debug(f"Cleaned up stale progress entry: {job_id[:8]}...")


def update_progress(job_id: str, status: str, progress: int, message: str) -> None:
    """
    Record a job's progress.

    Args:
        job_id: OCR job identifier
        status: Current status ("processing", "complete", "canceled", "error")
        progress: Progress percentage (0-100); never moves backwards for a job
        message: Human-readable status message
    """
    now = time.time()
    with _progress_lock:
        _cleanup_stale_entries(now)
        existing = _job_progress.get(job_id, {})
        _job_progress[job_id] = {
            "status": status,
            "progress": max(progress, existing.get("progress", 0)),
            "message": message,
            "timestamp": datetime.now().isoformat(),
            "_created_at": existing.get("_created_at", now),
        }

    logger.debug(f"[PROGRESS] {job_id[:8]}... {progress}% - {message}")


def get_progress(job_id: str) -> dict[str, Any] | None:
    """Get a copy of a job's progress without internal fields."""
    with _progress_lock:
        data = _job_progress.get(job_id)
        if data is None:
            return None
        return {k: v for k, v in data.items() if not k.startswith("_")}


def clear_progress(job_id: str) -> None:
    """Forget a job's progress."""
    with _progress_lock:
        if _job_progress.pop(job_id, None) is not None:
            logger.debug(f"Cleared progress for {job_id[:8]}...")
