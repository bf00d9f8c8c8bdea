"""Shared fixtures and sample builders for the health engine tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthsync.health.ingest import IngestionEngine
from healthsync.health.summary_service import SummaryService
from healthsync.health.write_intents import WriteIntentQueue
from healthsync.models.health import SampleIn
from healthsync.models.write_intents import WriteIntentPayload
from healthsync.storage.memory import InMemoryHealthStore

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
MINUTE_MS = 60 * 1000

TEST_DEVICE_ID = "device-test-0001"


def utc_ms(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


# 2026-02-23T12:00:00Z
NOON_FEB_23 = utc_ms(2026, 2, 23, 12)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = NOON_FEB_23) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------


def quantity_sample(
    key: str,
    metric: str,
    start_ms: int,
    value: float,
    unit: str = "count",
    duration_ms: int = MINUTE_MS,
    tz: str = "UTC",
) -> SampleIn:
    return SampleIn(
        sample_key=key,
        metric=metric,
        start_time_ms=start_ms,
        end_time_ms=start_ms + duration_ms,
        value_number=value,
        unit=unit,
        source_name="Test Watch",
        source_bundle_id="com.example.watch",
        timezone=tz,
    )


def sleep_sample(key: str, stage: str, start_ms: int, duration_ms: int, tz: str = "UTC") -> SampleIn:
    return SampleIn(
        sample_key=key,
        metric="sleep_segment",
        start_time_ms=start_ms,
        end_time_ms=start_ms + duration_ms,
        category_value=stage,
        unit="ms",
        timezone=tz,
    )


def intent_payload(external_id: str = "meal-2026-02-23-lunch", **overrides) -> WriteIntentPayload:
    fields = {
        "external_id": external_id,
        "metric": "dietary_energy_kcal",
        "start_time_ms": NOON_FEB_23,
        "end_time_ms": NOON_FEB_23 + 30 * MINUTE_MS,
        "value_number": 650.0,
        "unit": "kcal",
        "timezone": "UTC",
        "note": "Lunch",
        "tags": ["meal"],
    }
    fields.update(overrides)
    return WriteIntentPayload(**fields)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def engine(store: InMemoryHealthStore, clock: FakeClock) -> IngestionEngine:
    return IngestionEngine(store, clock=clock)


@pytest.fixture
def summaries(store: InMemoryHealthStore, clock: FakeClock) -> SummaryService:
    return SummaryService(store, clock=clock)


@pytest.fixture
def queue(store: InMemoryHealthStore, clock: FakeClock) -> WriteIntentQueue:
    return WriteIntentQueue(store, clock=clock)
