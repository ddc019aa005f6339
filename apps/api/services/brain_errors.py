"""Error taxonomy for the Brain subsystem."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class BrainError(Exception):
    """Base class for Brain failures that map to an HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BrainError):
    """Malformed query or filter, rejected before any upstream call."""

    status_code = 422


class NotFoundError(BrainError):
    """Unknown video, cluster or context reference."""

    status_code = 404


class UpstreamServiceError(BrainError):
    """Embedding service or vector store failure."""

    status_code = 502

    def __init__(self, message: str, *, retryable: bool = True, service: str = "embedding"):
        super().__init__(message)
        self.retryable = retryable
        self.service = service


class PartialIndexFailure(BrainError):
    """Some videos failed during a bulk reindex; the rest were indexed."""

    status_code = 207

    def __init__(self, failures: List[Dict[str, Any]], indexed_count: int):
        video_ids = ", ".join(str(item.get("video_id")) for item in failures[:5])
        super().__init__(f"{len(failures)} video(s) failed to index: {video_ids}")
        self.failures = failures
        self.indexed_count = indexed_count


class DegradedModeWarning(UserWarning):
    """Similarity search unavailable; recency fallback served instead."""


class TransientServiceError(Exception):
    """Raised by clients for failures worth retrying (throttling, 5xx, timeouts)."""


class PermanentServiceError(Exception):
    """Raised by clients for failures that will not succeed on retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
