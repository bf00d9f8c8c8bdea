"""Opaque keyset cursors for paged listings.

A cursor is the sort key of the last item returned, serialized as
base64url JSON.  Callers treat it as an opaque string; the store resumes
strictly after that key, so pages never repeat an item and a listing
terminates exactly when ``next_cursor`` is None.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from healthsync.errors import HealthValidationError


def encode_cursor(position: tuple[Any, Any]) -> str:
    raw = json.dumps(list(position), separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> tuple[int, str] | None:
    """Decode a cursor into ``(sort_ms, tiebreak_key)``.

    Raises:
        HealthValidationError: if the cursor was not produced by ``encode_cursor``.
    """
    if cursor is None or cursor == "":
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        value = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError):
        raise HealthValidationError("Invalid cursor") from None

    if (
        not isinstance(value, list)
        or len(value) != 2
        or not isinstance(value[0], int)
        or isinstance(value[0], bool)
        or not isinstance(value[1], str)
    ):
        raise HealthValidationError("Invalid cursor")
    return value[0], value[1]


def check_limit(limit: int, maximum: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > maximum:
        raise HealthValidationError(f"limit must be an integer between 1 and {maximum}")
    return limit
