from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base error with a stable code, HTTP status and optional context."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, code: str | None = None, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            err["context"] = self.context
        if self.retryable:
            err["retryable"] = True
        return {"ok": False, "error": err}


# -----------------------------
# Admission queue
# -----------------------------
class QueueFullError(AppError):
    code = "QUEUE_FULL"
    status_code = 503
    retryable = True

    def __init__(self, queue_stats: dict[str, Any]):
        super().__init__(
            "Queue is full. Please try again later.",
            context={"queue_stats": queue_stats},
        )


class QueueTimeoutError(AppError):
    code = "QUEUE_TIMEOUT"
    status_code = 504
    retryable = True

    def __init__(self, waited_sec: float, timeout_sec: float, queue_stats: dict[str, Any] | None = None):
        context: dict[str, Any] = {"waited_ms": int(waited_sec * 1000), "timeout_ms": int(timeout_sec * 1000)}
        if queue_stats is not None:
            context["queue_stats"] = queue_stats
        super().__init__("Request timed out waiting in queue", context=context)


class QueueCancelledError(AppError):
    code = "QUEUE_CANCELLED"
    status_code = 503
    retryable = True


# -----------------------------
# Extraction
# -----------------------------
class ExtractionFailedError(AppError):
    code = "EXTRACTION_FAILED"
    status_code = 502
    retryable = True

    def __init__(self, message: str, video_url: str | None = None, *, code: str | None = None, attempt: int | None = None):
        context: dict[str, Any] = {}
        if video_url:
            context["video_url"] = video_url
        if attempt:
            context["attempt"] = attempt
        super().__init__(message, code=code, context=context)


class TranscriptNotFoundError(ExtractionFailedError):
    code = "NO_TRANSCRIPT"
    status_code = 404
    retryable = False

    def __init__(self, video_url: str | None = None, reason: str | None = None):
        super().__init__(reason or "No transcript available for this video", video_url)


# -----------------------------
# Input / lookups
# -----------------------------
class InvalidUrlError(AppError):
    code = "INVALID_URL"
    status_code = 400

    def __init__(self, url: str, hint: str | None = None):
        super().__init__(
            "Invalid YouTube URL format" + (f": {hint}" if hint else ""),
            context={"provided_url": url},
        )


class NoValidUrlsError(AppError):
    code = "NO_VALID_URLS"
    status_code = 400

    def __init__(self, rejected: list[str]):
        super().__init__("No valid YouTube URLs provided", context={"rejected_urls": rejected[:50]})


class JobNotFoundError(AppError):
    code = "JOB_NOT_FOUND"
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", context={"job_id": job_id})


class JobStateError(AppError):
    code = "JOB_NOT_RUNNABLE"
    status_code = 409

    def __init__(self, job_id: str, status: str, reason: str | None = None):
        super().__init__(
            reason or f"Job {job_id} is {status} and cannot be processed",
            context={"job_id": job_id, "status": status},
        )


class PlaylistEnumerationError(AppError):
    code = "PLAYLIST_EXTRACTION_FAILED"
    status_code = 502


class CacheEvictionError(AppError):
    code = "CACHE_EVICTION_FAILED"
    status_code = 500
