"""Tests for the pull-sync engine and its retry helpers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from healthsync.client.config import ClientSettings
from healthsync.client.errors import HealthApiError
from healthsync.client.storage import InMemoryKeyValueStore
from healthsync.client.sync import (
    CURSOR_OVERLAP_MS,
    DEVICE_ID_KEY,
    LAST_SYNC_SUMMARY_KEY,
    PullSyncEngine,
    SyncSummary,
    build_cursor_window,
    chunk_samples,
    cursor_key,
    parse_cursor,
    retry_delay_ms,
    retry_with_backoff,
    should_retry_health_error,
)
from healthsync.client.tests.conftest import (
    DAY_MS,
    HOUR_MS,
    NOW_MS,
    FakeApi,
    FakeClock,
    FakeSource,
    server_error,
    sleep,
    steps,
)
from healthsync.client.writeback import WriteBackResult
from healthsync.health.tests.conftest import intent_payload


class SleepRecorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


def _engine(source, api, kv, clock, sleeper=None, settings=None) -> PullSyncEngine:
    return PullSyncEngine(
        source,
        api,
        kv,
        settings=settings or ClientSettings(),
        clock=clock,
        sleep=sleeper or SleepRecorder(),
    )


class TestCursorWindow:
    def test_first_sync_starts_at_zero(self) -> None:
        assert build_cursor_window(0, NOW_MS) == (0, NOW_MS)

    def test_overlap_of_one_day(self) -> None:
        assert build_cursor_window(NOW_MS - HOUR_MS, NOW_MS) == (NOW_MS - HOUR_MS - CURSOR_OVERLAP_MS, NOW_MS)

    def test_clamped_at_zero(self) -> None:
        assert build_cursor_window(1000, NOW_MS) == (0, NOW_MS)

    @pytest.mark.parametrize("raw,expected", [(None, 0), ("", 0), ("abc", 0), ("-5", 0), ("nan", 0), ("1234", 1234)])
    def test_parse_cursor(self, raw, expected: int) -> None:
        assert parse_cursor(raw) == expected


class TestRetryClassification:
    @pytest.mark.parametrize("status", [408, 425, 429, 500, 502, 503])
    def test_retryable_statuses(self, status: int) -> None:
        assert should_retry_health_error(HealthApiError("x", status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413])
    def test_client_errors_not_retried(self, status: int) -> None:
        assert not should_retry_health_error(HealthApiError("x", status))

    def test_network_failure(self) -> None:
        assert should_retry_health_error(HealthApiError("Network request failed", None))
        assert should_retry_health_error(httpx.ConnectError("refused"))

    def test_message_heuristics(self) -> None:
        assert should_retry_health_error(RuntimeError("Request timeout"))
        assert should_retry_health_error(RuntimeError("temporarily unavailable"))
        assert not should_retry_health_error(ValueError("bad value"))

    def test_delays(self) -> None:
        assert [retry_delay_ms(n) for n in (1, 2, 3, 4, 5, 6)] == [500, 1000, 2000, 4000, 8000, 8000]


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self) -> None:
        sleeper = SleepRecorder()
        errors = [server_error(), server_error()]

        async def call() -> str:
            if errors:
                raise errors.pop(0)
            return "ok"

        assert await retry_with_backoff(call, max_attempts=3, sleep=sleeper) == "ok"
        assert sleeper.waits == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        sleeper = SleepRecorder()
        calls = 0

        async def call() -> None:
            nonlocal calls
            calls += 1
            raise server_error()

        with pytest.raises(HealthApiError):
            await retry_with_backoff(call, max_attempts=3, sleep=sleeper)
        assert calls == 3
        assert sleeper.waits == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self) -> None:
        sleeper = SleepRecorder()

        async def call() -> None:
            raise HealthApiError("Invalid bearer token", 403)

        with pytest.raises(HealthApiError, match="Invalid bearer token"):
            await retry_with_backoff(call, sleep=sleeper)
        assert sleeper.waits == []


def test_chunk_samples() -> None:
    chunks = chunk_samples(list(range(1100)), 500)
    assert [len(c) for c in chunks] == [500, 500, 100]


class TestPullSync:
    @pytest.mark.asyncio
    async def test_unsupported_platform(self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock) -> None:
        result = await _engine(FakeSource(supported=False), api, kv, clock).run()
        assert result.supported is False
        assert result.authorized is False
        assert "not supported" in result.error

    @pytest.mark.asyncio
    async def test_unavailable(self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock) -> None:
        result = await _engine(FakeSource(available=False), api, kv, clock).run()
        assert result.supported is True
        assert result.authorized is False
        assert result.error == "Health data is not available on this device"

    @pytest.mark.asyncio
    async def test_permission_denied(self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock) -> None:
        result = await _engine(FakeSource(read_granted=False), api, kv, clock).run()
        assert result.authorized is False
        assert result.error == "Health permissions were not granted"
        assert kv.values == {}

    @pytest.mark.asyncio
    async def test_first_sync_uploads_everything(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        source = FakeSource({
            "step_count": [steps("a", NOW_MS - 2 * HOUR_MS), steps("b", NOW_MS - HOUR_MS)],
            "sleep_segment": [sleep("n1", NOW_MS - 10 * HOUR_MS, 3), sleep("bad", NOW_MS - 9 * HOUR_MS, 99)],
        })
        result = await _engine(source, api, kv, clock).run()

        assert result.authorized is True
        assert result.error is None
        assert result.summary.inserted == 3
        assert result.summary.recomputed_days == ["2026-02-23"]
        assert all(f[1] == 0 for f in source.fetches)
        assert kv.values[cursor_key("step_count")] == str(NOW_MS)
        assert kv.values[DEVICE_ID_KEY].startswith("device-")

        stored = json.loads(kv.values[LAST_SYNC_SUMMARY_KEY])
        assert stored["inserted"] == 3
        assert stored["completedAtMs"] == NOW_MS

    @pytest.mark.asyncio
    async def test_second_sync_uses_overlap_and_dedups(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        source = FakeSource({"step_count": [steps("a", NOW_MS - HOUR_MS)]})
        engine = _engine(source, api, kv, clock)
        await engine.run()

        clock.now = NOW_MS + HOUR_MS
        source.fetches.clear()
        result = await engine.run()

        step_fetch = next(f for f in source.fetches if f[0] == "step_count")
        assert step_fetch == ("step_count", NOW_MS - DAY_MS, NOW_MS + HOUR_MS)
        assert result.summary.inserted == 0
        assert result.summary.deduped == 1

    @pytest.mark.asyncio
    async def test_failed_metric_keeps_cursor_and_others_continue(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        source = FakeSource({
            "step_count": [steps("a", NOW_MS - HOUR_MS)],
            "sleep_segment": [sleep("n1", NOW_MS - 10 * HOUR_MS, 4)],
        })
        api.fail_metrics["step_count"] = [HealthApiError("Bad request", 400)]
        result = await _engine(source, api, kv, clock).run()

        assert cursor_key("step_count") not in kv.values
        assert kv.values[cursor_key("sleep_segment")] == str(NOW_MS)
        assert result.summary.errors == ["step_count: Bad request"]
        assert result.error == "step_count: Bad request"
        assert result.summary.inserted == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried_within_run(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        sleeper = SleepRecorder()
        source = FakeSource({"step_count": [steps("a", NOW_MS - HOUR_MS)]})
        api.fail_metrics["step_count"] = [server_error(502)]
        result = await _engine(source, api, kv, clock, sleeper=sleeper).run()

        assert result.error is None
        assert result.summary.inserted == 1
        assert sleeper.waits == [0.5]

    @pytest.mark.asyncio
    async def test_batches_split_at_configured_size(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        readings = [steps(f"s{i}", NOW_MS - HOUR_MS + i) for i in range(5)]
        engine = _engine(FakeSource({"step_count": readings}), api, kv, clock, settings=ClientSettings(sync_batch_size=2))
        await engine.run()
        assert [n for m, n in api.ingest_calls if m == "step_count"] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_later_batch_failure_keeps_previous_cursor(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        previous = NOW_MS - 2 * HOUR_MS
        await kv.set(cursor_key("step_count"), str(previous))
        readings = [steps(f"s{i}", NOW_MS - HOUR_MS + i) for i in range(3)]
        api.fail_metrics["step_count"] = [None, HealthApiError("Bad request", 400)]
        engine = _engine(FakeSource({"step_count": readings}), api, kv, clock, settings=ClientSettings(sync_batch_size=2))

        result = await engine.run()

        assert [n for m, n in api.ingest_calls if m == "step_count"] == [2, 1]
        assert kv.values[cursor_key("step_count")] == str(previous)
        assert result.summary.inserted == 2
        assert result.summary.recomputed_days == ["2026-02-23"]
        assert "step_count" not in [m.metric for m in result.summary.metrics]
        assert result.error == "step_count: Bad request"

    @pytest.mark.asyncio
    async def test_writeback_failure_does_not_fail_sync(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        await api.queue.upsert(intent_payload("meal-1"))
        api.list_pending_write_intents = AsyncMock(side_effect=HealthApiError("Service unavailable", 503))
        source = FakeSource({"step_count": [steps("a", NOW_MS - HOUR_MS)]})

        result = await _engine(source, api, kv, clock).run()

        assert result.authorized is True
        assert result.error is None
        assert result.summary.write_back == WriteBackResult()
        assert result.summary.write_back_error == "Service unavailable"
        assert source.applied == []
        assert kv.values[cursor_key("step_count")] == str(NOW_MS)

        stored = json.loads(kv.values[LAST_SYNC_SUMMARY_KEY])
        assert stored["writeBackError"] == "Service unavailable"
        assert stored["writeBack"] == {"totalPulled": 0, "applied": 0, "failed": 0, "skipped": 0}

    @pytest.mark.asyncio
    async def test_device_timezone_passed_to_fetch(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        source = FakeSource(tz="America/Los_Angeles")
        await _engine(source, api, kv, clock).run()
        assert source.fetch_timezones == {"America/Los_Angeles"}

    @pytest.mark.asyncio
    async def test_device_id_is_stable(self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock) -> None:
        engine = _engine(FakeSource(), api, kv, clock)
        first = await engine.get_or_create_device_id()
        assert await engine.get_or_create_device_id() == first

    @pytest.mark.asyncio
    async def test_writeback_runs_after_metrics(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        await api.queue.upsert(intent_payload("meal-1"))
        source = FakeSource()
        result = await _engine(source, api, kv, clock).run()
        assert source.applied == ["meal-1"]
        assert result.summary.write_back.applied == 1

    @pytest.mark.asyncio
    async def test_last_summary_round_trip(
        self, api: FakeApi, kv: InMemoryKeyValueStore, clock: FakeClock
    ) -> None:
        engine = _engine(FakeSource({"step_count": [steps("a", NOW_MS - HOUR_MS)]}), api, kv, clock)
        assert await engine.get_last_sync_summary() is None
        result = await engine.run()
        loaded = await engine.get_last_sync_summary()
        assert loaded == result.summary


class TestSyncSummaryParsing:
    def test_malformed_top_level(self) -> None:
        assert SyncSummary.from_json([]) is None
        assert SyncSummary.from_json({"startedAtMs": "yesterday"}) is None

    def test_bad_metric_entries_skipped(self) -> None:
        parsed = SyncSummary.from_json({
            "startedAtMs": 1,
            "completedAtMs": 2,
            "inserted": 3,
            "deduped": 0,
            "recomputedDays": ["2026-02-23", 7],
            "metrics": [
                {"metric": "step_count", "fetched": 3, "uploaded": 3, "inserted": 3, "deduped": 0,
                 "cursorStartMs": 0, "cursorEndMs": 2},
                {"metric": "vo2_max", "fetched": 1},
                "garbage",
            ],
        })
        assert parsed is not None
        assert parsed.recomputed_days == ["2026-02-23"]
        assert [m.metric for m in parsed.metrics] == ["step_count"]
        assert parsed.write_back.applied == 0

    @pytest.mark.asyncio
    async def test_corrupt_stored_summary(self, api: FakeApi, clock: FakeClock) -> None:
        kv = InMemoryKeyValueStore({LAST_SYNC_SUMMARY_KEY: "{not json"})
        engine = _engine(FakeSource(), api, kv, clock)
        assert await engine.get_last_sync_summary() is None
