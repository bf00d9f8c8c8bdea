"""Client-side API error."""

from __future__ import annotations


class HealthApiError(Exception):
    """A failed call to the health API.

    ``status_code`` is None when the request never got an HTTP response
    (connection refused, DNS failure, timeout).
    """

    def __init__(self, message: str, status_code: int | None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"HealthApiError({self.message!r}, status_code={self.status_code})"
