"""Server-side queue of device writes awaiting application.

Lifecycle:
    upsert            -> pending (attempt 0, due now)
    ack applied       -> applied
    ack skipped       -> skipped
    ack failed        -> pending again, attempt + 1, due after backoff

Backoff doubles from 5 minutes with the exponent capped at 6, so the longest
wait between retries is 5 min x 2^6 = 320 minutes.  The 24 hour ceiling in
``backoff_ms`` never binds at that exponent cap.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from healthsync.errors import HealthValidationError, IntentNotFoundError
from healthsync.health.domain import now_ms, resolve_timezone
from healthsync.health.pagination import check_limit, decode_cursor, encode_cursor
from healthsync.models.write_intents import (
    MAX_WRITE_INTENT_PAGE_SIZE,
    AckStatus,
    PendingPage,
    UpsertResult,
    WriteIntent,
    WriteIntentAck,
    WriteIntentPayload,
    WriteIntentStatus,
)
from healthsync.storage.base import HealthStore

logger = logging.getLogger("healthsync.write_intents")

BASE_BACKOFF_MS = 5 * 60 * 1000
MAX_BACKOFF_MS = 24 * 60 * 60 * 1000
MAX_BACKOFF_EXPONENT = 6


def backoff_ms(attempt_count: int) -> int:
    """Delay before the next retry after ``attempt_count`` failed attempts."""
    exponent = min(max(attempt_count, 0), MAX_BACKOFF_EXPONENT)
    return min(MAX_BACKOFF_MS, BASE_BACKOFF_MS * 2**exponent)


def validate_payload(payload: WriteIntentPayload) -> None:
    if not payload.external_id.strip():
        raise HealthValidationError("externalId is required")
    if payload.end_time_ms < payload.start_time_ms:
        raise HealthValidationError("endTimeMs must be >= startTimeMs")
    if not payload.unit.strip():
        raise HealthValidationError("unit is required")
    if not payload.timezone.strip():
        raise HealthValidationError("timezone is required")
    resolve_timezone(payload.timezone)


class WriteIntentQueue:
    """Idempotent queue keyed by ``external_id``."""

    def __init__(self, store: HealthStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.clock = clock

    async def upsert(self, payload: WriteIntentPayload) -> UpsertResult:
        """Create an intent, or reset an existing one with the same external id.

        A reset keeps ``intent_id`` and ``created_at_ms``, replaces the
        content and puts the intent back to pending with a clean slate.
        """
        validate_payload(payload)
        now = self.clock()
        content = payload.model_dump()

        existing = await self.store.get_write_intent(payload.external_id)
        if existing is not None:
            intent = existing.model_copy(update={
                **content,
                "status": WriteIntentStatus.PENDING.value,
                "attempt_count": 0,
                "updated_at_ms": now,
                "next_retry_at_ms": now,
                "last_attempt_at_ms": None,
                "healthkit_uuid": None,
                "failure_code": None,
                "failure_message": None,
                "applied_at_ms": None,
            })
            await self.store.update_write_intent(intent)
            logger.info("Write intent %s reset to pending", payload.external_id)
            return UpsertResult(created=False, intent=intent)

        intent = WriteIntent(
            **content,
            intent_id=str(uuid.uuid4()),
            status=WriteIntentStatus.PENDING,
            attempt_count=0,
            created_at_ms=now,
            updated_at_ms=now,
            next_retry_at_ms=now,
        )
        if not await self.store.insert_write_intent(intent):
            # Lost a race with a concurrent create; fold into the reset path.
            return await self.upsert(payload)
        logger.info("Write intent %s queued (%s)", payload.external_id, intent.intent_id)
        return UpsertResult(created=True, intent=intent)

    async def list_pending(
        self,
        limit: int,
        cursor: str | None = None,
        now_ms: int | None = None,
    ) -> PendingPage:
        """Pending intents due now, oldest first, keyset-paginated."""
        check_limit(limit, MAX_WRITE_INTENT_PAGE_SIZE)
        after = decode_cursor(cursor)
        current = self.clock() if now_ms is None else now_ms

        rows = await self.store.list_pending_write_intents(current, limit + 1, after)
        items = rows[:limit]
        next_cursor = None
        if len(rows) > limit:
            last = items[-1]
            next_cursor = encode_cursor((last.created_at_ms, last.intent_id))
        return PendingPage(items=items, next_cursor=next_cursor)

    async def ack(self, ack: WriteIntentAck) -> WriteIntent:
        """Record the device's outcome for one intent.

        Raises:
            HealthValidationError: blank external id.
            IntentNotFoundError:   no intent with that external id.
        """
        if not ack.external_id.strip():
            raise HealthValidationError("externalId is required")

        intent = await self.store.get_write_intent(ack.external_id)
        if intent is None:
            raise IntentNotFoundError("Intent not found")

        now = self.clock()
        if ack.status == AckStatus.APPLIED:
            update = {
                "status": WriteIntentStatus.APPLIED.value,
                "applied_at_ms": ack.applied_at_ms if ack.applied_at_ms is not None else now,
                "healthkit_uuid": ack.healthkit_uuid,
                "failure_code": None,
                "failure_message": None,
            }
        elif ack.status == AckStatus.SKIPPED:
            update = {
                "status": WriteIntentStatus.SKIPPED.value,
                "failure_code": None,
                "failure_message": None,
            }
        else:
            # Delay keyed on attempts before this failure; the first failure waits 5 min
            attempts = intent.attempt_count + 1
            update = {
                "status": WriteIntentStatus.PENDING.value,
                "attempt_count": attempts,
                "next_retry_at_ms": now + backoff_ms(intent.attempt_count),
                "failure_code": ack.error_code,
                "failure_message": ack.error_message,
            }
            logger.warning(
                "Write intent %s failed on device (attempt %d): %s",
                ack.external_id, attempts, ack.error_message or ack.error_code or "unknown",
            )

        updated = intent.model_copy(update={**update, "last_attempt_at_ms": now, "updated_at_ms": now})
        await self.store.update_write_intent(updated)
        return updated

    async def list_by_status(self, status: str | None, limit: int) -> list[WriteIntent]:
        """Operator view: intents filtered by lifecycle status, most recently updated first."""
        if status is not None:
            try:
                status = WriteIntentStatus(status).value
            except ValueError:
                raise HealthValidationError(
                    "status must be pending, applied, failed, or skipped"
                ) from None
        check_limit(limit, MAX_WRITE_INTENT_PAGE_SIZE)
        return await self.store.list_write_intents(status, limit)
