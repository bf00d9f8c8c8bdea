"""Idempotent sample ingestion and daily rollup maintenance.

Flow for one ``ingest`` call:
    1. Reject oversized batches and blank device ids.
    2. Validate and prepare every sample (day key derivation) before any
       write, so one bad sample rejects the whole batch.
    3. Insert-if-absent each sample by sample key; count inserted vs deduped.
    4. Rebuild the rollup of every day that received a new sample.

Replaying a batch inserts nothing, recomputes nothing and leaves every
stored rollup untouched.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from healthsync.errors import HealthValidationError, PayloadTooLargeError
from healthsync.health.domain import (
    assert_day_range,
    build_daily_rollup,
    now_ms,
    prepare_sample,
    rollup_metrics_view,
)
from healthsync.health.pagination import check_limit, decode_cursor, encode_cursor
from healthsync.models.health import (
    MAX_INGEST_BATCH_SIZE,
    MAX_RAW_PAGE_SIZE,
    HealthMetric,
    IngestResult,
    RawSamplePage,
    SampleIn,
)
from healthsync.storage.base import HealthStore

logger = logging.getLogger("healthsync.ingest")


class IngestionEngine:
    """Writes raw samples and keeps ``health_daily_metrics`` in step with them.

    Usage::

        engine = IngestionEngine(store)
        result = await engine.ingest("device-abc", samples)
    """

    def __init__(self, store: HealthStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.clock = clock

    async def ingest(self, device_id: str, samples: Sequence[SampleIn]) -> IngestResult:
        """Store new samples and recompute the days they land on.

        Args:
            device_id: Uploading device; must be non-blank.
            samples:   Up to 500 samples.

        Returns:
            IngestResult with inserted/deduped counts and the sorted list of
            recomputed days.

        Raises:
            PayloadTooLargeError:  more than 500 samples.
            HealthValidationError: blank device id or any invalid sample.
        """
        if len(samples) > MAX_INGEST_BATCH_SIZE:
            raise PayloadTooLargeError(f"Batch exceeds maximum size of {MAX_INGEST_BATCH_SIZE}")
        if not device_id or not device_id.strip():
            raise HealthValidationError("deviceId is required")

        server_time_ms = self.clock()
        prepared = [prepare_sample(s, device_id, server_time_ms) for s in samples]

        inserted = 0
        deduped = 0
        affected_days: set[str] = set()
        for sample in prepared:
            if await self.store.insert_sample_if_absent(sample):
                inserted += 1
                affected_days.add(sample.day_key)
            else:
                deduped += 1

        recomputed_days = sorted(affected_days)
        for day_key in recomputed_days:
            await self._recompute_day(day_key, server_time_ms)

        logger.info(
            "Ingest device=%s: %d inserted, %d deduped, %d day(s) recomputed",
            device_id, inserted, deduped, len(recomputed_days),
        )
        return IngestResult(
            inserted=inserted,
            deduped=deduped,
            recomputed_days=recomputed_days,
            server_time_ms=server_time_ms,
        )

    async def _recompute_day(self, day_key: str, server_time_ms: int) -> None:
        day_samples = await self.store.samples_for_day(day_key)
        if not day_samples:
            await self.store.delete_daily_rollup(day_key)
            logger.debug("Day %s has no samples; rollup removed", day_key)
            return

        rollup = build_daily_rollup(
            day_key,
            day_samples[0].timezone,
            day_samples,
            server_time_ms,
        )
        await self.store.upsert_daily_rollup(rollup)

    async def list_daily(self, from_day: str, to_day: str) -> list[dict]:
        """Stored rollups in ``[from_day, to_day]`` as per-metric views."""
        assert_day_range(from_day, to_day)
        rollups = await self.store.list_daily_rollups(from_day, to_day)
        return [rollup_metrics_view(r) for r in rollups]

    async def list_raw(
        self,
        metric: str,
        from_ms: int,
        to_ms: int,
        limit: int,
        cursor: str | None = None,
    ) -> RawSamplePage:
        """One page of raw samples ordered by ``(start_time_ms, sample_key)``."""
        try:
            metric = HealthMetric(metric).value
        except ValueError:
            raise HealthValidationError("metric must be a valid HealthMetric") from None
        for name, value in (("fromMs", from_ms), ("toMs", to_ms)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise HealthValidationError(f"{name} must be an integer")
        if from_ms > to_ms:
            raise HealthValidationError("fromMs must be <= toMs")
        check_limit(limit, MAX_RAW_PAGE_SIZE)

        after = decode_cursor(cursor)
        rows = await self.store.list_raw_samples(metric, from_ms, to_ms, limit + 1, after)

        items = rows[:limit]
        next_cursor = None
        if len(rows) > limit:
            last = items[-1]
            next_cursor = encode_cursor((last.start_time_ms, last.sample_key))
        return RawSamplePage(items=items, next_cursor=next_cursor)
