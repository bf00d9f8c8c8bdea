"""Apply server-queued write intents to the device store and acknowledge them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from healthsync.client.api import HealthApiClient
from healthsync.client.device import DeviceSampleSource
from healthsync.health.domain import now_ms
from healthsync.models.write_intents import WriteIntentAck

logger = logging.getLogger("healthsync.client.writeback")

DEFAULT_PAGE_SIZE = 50


@dataclass
class WriteBackResult:
    total_pulled: int = 0
    applied: int = 0
    failed: int = 0
    skipped: int = 0

    def to_json(self) -> dict:
        return {
            "totalPulled": self.total_pulled,
            "applied": self.applied,
            "failed": self.failed,
            "skipped": self.skipped,
        }

    @classmethod
    def from_json(cls, data: dict) -> "WriteBackResult":
        result = cls()
        for attr, key in (
            ("total_pulled", "totalPulled"),
            ("applied", "applied"),
            ("failed", "failed"),
            ("skipped", "skipped"),
        ):
            value = data.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                setattr(result, attr, value)
        return result


class WriteBackEngine:
    """Drain the pending write-intent queue into the device store.

    Usage::

        result = await WriteBackEngine(source, api).run()
    """

    def __init__(
        self,
        source: DeviceSampleSource,
        api: HealthApiClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._source = source
        self._api = api
        self._page_size = page_size
        self._clock = clock

    async def run(self) -> WriteBackResult:
        """Apply and ack every due intent, page by page.

        Returns zero counters without touching the queue when write
        permission is denied.  Every intent is acked right after its apply
        attempt, so a crash mid-page leaves the rest pending.
        """
        result = WriteBackResult()
        if not await self._source.request_write_permissions():
            logger.info("Write permission not granted; skipping write-back")
            return result

        cursor: str | None = None
        while True:
            page = await self._api.list_pending_write_intents(self._page_size, cursor)
            result.total_pulled += len(page.items)

            for intent in page.items:
                outcome = await self._source.apply_write(intent)
                await self._api.ack_write_intent(WriteIntentAck(
                    external_id=intent.external_id,
                    status=outcome.status,
                    applied_at_ms=self._clock() if outcome.status == "applied" else None,
                    healthkit_uuid=outcome.healthkit_uuid,
                    error_code=outcome.error_code,
                    error_message=outcome.error_message,
                ))

                if outcome.status == "applied":
                    result.applied += 1
                elif outcome.status == "failed":
                    result.failed += 1
                    logger.warning(
                        "Write intent %s failed on device: %s",
                        intent.external_id, outcome.error_message or outcome.error_code,
                    )
                else:
                    result.skipped += 1

            cursor = page.next_cursor
            if cursor is None:
                break

        logger.info(
            "Write-back: %d pulled, %d applied, %d failed, %d skipped",
            result.total_pulled, result.applied, result.failed, result.skipped,
        )
        return result
