"""Server-side error taxonomy.

Every error raised by the ingestion engine, the summary service and the
write-intent queue derives from ``HealthServiceError`` and carries the HTTP
status the boundary maps it to.  The FastAPI exception handlers in
``healthsync.main`` render them as ``{"error": "<message>"}``.
"""

from __future__ import annotations


class HealthServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class HealthValidationError(HealthServiceError):
    """Malformed input: bad sample, bad range, bad cursor."""

    status_code = 400


class PayloadTooLargeError(HealthServiceError):
    """Ingest batch larger than the per-call limit."""

    status_code = 413


class IntentNotFoundError(HealthServiceError):
    """Ack for an external id that was never queued."""

    status_code = 404
