"""Incremental pull-sync from the device health store to the API.

Per metric, in fixed order:
    1. Read the metric's cursor (last successful window end, ms).
    2. Window = [cursor - 24h, now], or [0, now] on first sync.  The 24h
       overlap picks up late-arriving samples; server dedup absorbs repeats.
    3. Fetch, normalize, chunk into 500-sample batches and upload each
       batch with retry/backoff.
    4. Advance the cursor to the window end only after every batch
       succeeded.  A failing metric keeps its old cursor and is retried in
       full on the next run; the other metrics still sync.

After the metrics, queued write intents are applied best-effort and the
run summary is persisted for display.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import httpx

from healthsync.client.api import HealthApiClient
from healthsync.client.config import ClientSettings
from healthsync.client.device import DeviceSampleSource
from healthsync.client.errors import HealthApiError
from healthsync.client.normalize import normalize_readings
from healthsync.client.storage import KeyValueStore
from healthsync.client.writeback import WriteBackEngine, WriteBackResult
from healthsync.health.domain import now_ms
from healthsync.models.health import HEALTH_METRICS, SampleIn

logger = logging.getLogger("healthsync.client.sync")

T = TypeVar("T")

CURSOR_OVERLAP_MS = 24 * 60 * 60 * 1000
SYNC_BATCH_SIZE = 500
MAX_UPLOAD_ATTEMPTS = 3

CURSOR_KEY_PREFIX = "health-sync-cursor:"
LAST_SYNC_SUMMARY_KEY = "health-last-sync-summary"
DEVICE_ID_KEY = "health-device-id"

_RETRYABLE_STATUS = {408, 425, 429}
_RETRYABLE_MESSAGE_FRAGMENTS = ("network", "timeout", "temporar", "failed to fetch")

_METRIC_NAMES = {m.value for m in HEALTH_METRICS}


def cursor_key(metric: str) -> str:
    return f"{CURSOR_KEY_PREFIX}{metric}"


def build_cursor_window(last_successful_end_ms: int, now: int) -> tuple[int, int]:
    """``(from_ms, to_ms)`` for the next fetch of one metric."""
    if last_successful_end_ms <= 0:
        return 0, now
    return max(0, last_successful_end_ms - CURSOR_OVERLAP_MS), now


def should_retry_health_error(exc: BaseException) -> bool:
    """True for failures worth retrying: network-level, timeouts, 408/425/429, 5xx."""
    if isinstance(exc, HealthApiError):
        if exc.status_code is None:
            return True
        if exc.status_code in _RETRYABLE_STATUS:
            return True
        return exc.status_code >= 500
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _RETRYABLE_MESSAGE_FRAGMENTS)


def retry_delay_ms(attempt: int) -> int:
    """Wait after failed attempt ``attempt`` (1-based): 500ms doubling, capped at 8s."""
    return min(8000, 500 * 2 ** (attempt - 1))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_UPLOAD_ATTEMPTS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, it fails non-retryably or attempts run out.

    Args:
        fn:           Zero-argument coroutine factory.
        max_attempts: Total attempts including the first.
        sleep:        Awaitable sleep in seconds (injected by tests).

    Returns:
        Whatever ``fn`` returns on its first success.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_attempts or not should_retry_health_error(exc):
                raise
            wait_ms = retry_delay_ms(attempt)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %dms",
                attempt, max_attempts, exc, wait_ms,
            )
            await sleep(wait_ms / 1000)


def chunk_samples(samples: Sequence[SampleIn], batch_size: int) -> list[list[SampleIn]]:
    return [list(samples[i:i + batch_size]) for i in range(0, len(samples), batch_size)]


def parse_cursor(raw: str | None) -> int:
    """Stored cursor as integer ms; absent, invalid or negative values read as 0."""
    if raw is None:
        return 0
    try:
        value = float(raw)
    except ValueError:
        return 0
    if value != value or value in (float("inf"), float("-inf")) or value < 0:
        return 0
    return int(value)


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return int(value)


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


@dataclass
class SyncMetricStats:
    """Per-metric counters for one sync run.

    Attributes:
        metric:          Metric name.
        fetched:         Samples returned by the device after normalization.
        uploaded:        Samples sent in successful batches.
        inserted:        Samples the server stored as new.
        deduped:         Samples the server already had.
        cursor_start_ms: Cursor before the run.
        cursor_end_ms:   Window upper bound (the new cursor on success).
    """

    metric: str
    fetched: int = 0
    uploaded: int = 0
    inserted: int = 0
    deduped: int = 0
    cursor_start_ms: int = 0
    cursor_end_ms: int = 0

    def to_json(self) -> dict:
        return {
            "metric": self.metric,
            "fetched": self.fetched,
            "uploaded": self.uploaded,
            "inserted": self.inserted,
            "deduped": self.deduped,
            "cursorStartMs": self.cursor_start_ms,
            "cursorEndMs": self.cursor_end_ms,
        }

    @classmethod
    def from_json(cls, data: Any) -> "SyncMetricStats | None":
        if not isinstance(data, dict) or data.get("metric") not in _METRIC_NAMES:
            return None
        values = {
            attr: _int_or_none(data.get(key))
            for attr, key in (
                ("fetched", "fetched"),
                ("uploaded", "uploaded"),
                ("inserted", "inserted"),
                ("deduped", "deduped"),
                ("cursor_start_ms", "cursorStartMs"),
                ("cursor_end_ms", "cursorEndMs"),
            )
        }
        if any(v is None for v in values.values()):
            return None
        return cls(metric=data["metric"], **values)


@dataclass
class SyncSummary:
    """Outcome of one sync run, persisted under ``health-last-sync-summary``."""

    started_at_ms: int
    completed_at_ms: int = 0
    inserted: int = 0
    deduped: int = 0
    recomputed_days: list[str] = field(default_factory=list)
    metrics: list[SyncMetricStats] = field(default_factory=list)
    write_back: WriteBackResult = field(default_factory=WriteBackResult)
    write_back_error: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_json(self) -> dict:
        data = {
            "startedAtMs": self.started_at_ms,
            "completedAtMs": self.completed_at_ms,
            "inserted": self.inserted,
            "deduped": self.deduped,
            "recomputedDays": self.recomputed_days,
            "metrics": [m.to_json() for m in self.metrics],
            "writeBack": self.write_back.to_json(),
            "errors": self.errors,
        }
        if self.write_back_error is not None:
            data["writeBackError"] = self.write_back_error
        return data

    @classmethod
    def from_json(cls, data: Any) -> "SyncSummary | None":
        """Tolerant parse: None when the top level is malformed, bad metric entries skipped."""
        if not isinstance(data, dict):
            return None
        started = _int_or_none(data.get("startedAtMs"))
        completed = _int_or_none(data.get("completedAtMs"))
        inserted = _int_or_none(data.get("inserted"))
        deduped = _int_or_none(data.get("deduped"))
        days = data.get("recomputedDays")
        metrics = data.get("metrics")
        if (
            started is None
            or completed is None
            or inserted is None
            or deduped is None
            or not isinstance(days, list)
            or not isinstance(metrics, list)
        ):
            return None

        summary = cls(
            started_at_ms=started,
            completed_at_ms=completed,
            inserted=inserted,
            deduped=deduped,
            recomputed_days=[d for d in days if isinstance(d, str)],
        )
        for entry in metrics:
            stats = SyncMetricStats.from_json(entry)
            if stats is not None:
                summary.metrics.append(stats)
        if isinstance(write_back := data.get("writeBack"), dict):
            summary.write_back = WriteBackResult.from_json(write_back)
        if isinstance(wb_error := data.get("writeBackError"), str):
            summary.write_back_error = wb_error
        if isinstance(errors := data.get("errors"), list):
            summary.errors = [e for e in errors if isinstance(e, str)]
        return summary


@dataclass
class SyncRunResult:
    supported: bool
    authorized: bool
    summary: SyncSummary | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PullSyncEngine:
    """Sync every metric from the device to the API, then run write-back.

    Usage::

        engine = PullSyncEngine(source, api, JsonFileKeyValueStore(path))
        result = await engine.run()
    """

    def __init__(
        self,
        source: DeviceSampleSource,
        api: HealthApiClient,
        store: KeyValueStore,
        settings: ClientSettings | None = None,
        writeback: WriteBackEngine | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = settings or ClientSettings()
        self._source = source
        self._api = api
        self._store = store
        self._batch_size = settings.sync_batch_size
        self._max_attempts = settings.max_upload_attempts
        self._writeback = writeback or WriteBackEngine(
            source, api, page_size=settings.writeback_page_size, clock=clock
        )
        self._clock = clock
        self._sleep = sleep

    async def read_cursor(self, metric: str) -> int:
        return parse_cursor(await self._store.get(cursor_key(metric)))

    async def write_cursor(self, metric: str, end_ms: int) -> None:
        await self._store.set(cursor_key(metric), str(end_ms))

    async def get_or_create_device_id(self) -> str:
        existing = await self._store.get(DEVICE_ID_KEY)
        if existing is not None and existing.strip():
            return existing
        generated = f"device-{uuid.uuid4().hex}"
        await self._store.set(DEVICE_ID_KEY, generated)
        logger.info("Generated device id %s", generated)
        return generated

    async def get_last_sync_summary(self) -> SyncSummary | None:
        raw = await self._store.get(LAST_SYNC_SUMMARY_KEY)
        if raw is None:
            return None
        try:
            return SyncSummary.from_json(json.loads(raw))
        except ValueError:
            logger.warning("Stored sync summary is not valid JSON; ignoring")
            return None

    async def run(self) -> SyncRunResult:
        """Run one full sync pass.

        Returns:
            SyncRunResult; ``error`` joins up to three per-metric errors.
        """
        if not self._source.is_supported():
            return SyncRunResult(
                supported=False,
                authorized=False,
                error="Health sync is not supported on this platform",
            )
        if not await self._source.is_available():
            return SyncRunResult(
                supported=True,
                authorized=False,
                error="Health data is not available on this device",
            )
        if not await self._source.request_read_permissions():
            return SyncRunResult(
                supported=True,
                authorized=False,
                error="Health permissions were not granted",
            )

        device_id = await self.get_or_create_device_id()
        timezone = self._source.timezone()
        summary = SyncSummary(started_at_ms=self._clock())
        recomputed: set[str] = set()

        for metric in HEALTH_METRICS:
            name = metric.value
            try:
                stats = await self._sync_metric(name, device_id, timezone, summary, recomputed)
            except Exception as exc:
                logger.error("Sync of %s failed: %s", name, exc)
                summary.errors.append(f"{name}: {exc}")
                continue
            summary.metrics.append(stats)

        try:
            summary.write_back = await self._writeback.run()
        except Exception as exc:
            logger.warning("Write-back failed: %s", exc)
            summary.write_back = WriteBackResult()
            summary.write_back_error = str(exc)

        summary.recomputed_days = sorted(recomputed)
        summary.completed_at_ms = self._clock()
        await self._store.set(LAST_SYNC_SUMMARY_KEY, json.dumps(summary.to_json()))

        logger.info(
            "Sync complete: %d inserted, %d deduped, %d day(s) recomputed, %d metric error(s)",
            summary.inserted, summary.deduped, len(summary.recomputed_days), len(summary.errors),
        )
        return SyncRunResult(
            supported=True,
            authorized=True,
            summary=summary,
            error="; ".join(summary.errors[:3]) if summary.errors else None,
        )

    async def _sync_metric(
        self,
        metric: str,
        device_id: str,
        timezone: str,
        summary: SyncSummary,
        recomputed: set[str],
    ) -> SyncMetricStats:
        """Upload one metric. Totals count per batch; the cursor moves only once all batches land."""
        previous = await self.read_cursor(metric)
        from_ms, to_ms = build_cursor_window(previous, self._clock())
        stats = SyncMetricStats(metric=metric, cursor_start_ms=previous, cursor_end_ms=to_ms)

        readings = await self._source.fetch_samples(metric, from_ms, to_ms, timezone)
        samples = normalize_readings(metric, readings, timezone)
        stats.fetched = len(samples)

        for batch in chunk_samples(samples, self._batch_size):
            response = await retry_with_backoff(
                lambda batch=batch: self._api.ingest(device_id, batch),
                max_attempts=self._max_attempts,
                sleep=self._sleep,
            )
            stats.uploaded += len(batch)
            stats.inserted += response.inserted
            stats.deduped += response.deduped
            summary.inserted += response.inserted
            summary.deduped += response.deduped
            recomputed.update(response.recomputed_days)

        await self.write_cursor(metric, to_ms)
        logger.info(
            "Synced %s: fetched=%d inserted=%d deduped=%d window=[%d, %d]",
            metric, stats.fetched, stats.inserted, stats.deduped, from_ms, to_ms,
        )
        return stats
