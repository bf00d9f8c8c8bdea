"""Fakes for the device store and the API, backed by the real server engines."""

from __future__ import annotations

from typing import Sequence

import pytest

from healthsync.client.config import ClientSettings
from healthsync.client.device import (
    ApplyResult,
    CategoryReading,
    DeviceSampleSource,
    QuantityReading,
    Reading,
)
from healthsync.client.errors import HealthApiError
from healthsync.client.storage import InMemoryKeyValueStore
from healthsync.health.ingest import IngestionEngine
from healthsync.health.write_intents import WriteIntentQueue
from healthsync.models.health import IngestResult, SampleIn
from healthsync.models.write_intents import PendingPage, WriteIntent, WriteIntentAck
from healthsync.storage.memory import InMemoryHealthStore

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# 2026-02-23T12:00:00Z
NOW_MS = 1771848000000


class FakeClock:
    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeSource(DeviceSampleSource):
    """Device store with canned readings per metric."""

    def __init__(
        self,
        readings: dict[str, list[Reading]] | None = None,
        tz: str = "UTC",
        supported: bool = True,
        available: bool = True,
        read_granted: bool = True,
        write_granted: bool = True,
    ) -> None:
        self.readings = readings or {}
        self.tz = tz
        self.supported = supported
        self.available = available
        self.read_granted = read_granted
        self.write_granted = write_granted
        self.fetches: list[tuple[str, int, int]] = []
        self.fetch_timezones: set[str] = set()
        self.applied: list[str] = []
        self.apply_outcomes: dict[str, ApplyResult] = {}

    def is_supported(self) -> bool:
        return self.supported

    async def is_available(self) -> bool:
        return self.available

    async def request_read_permissions(self) -> bool:
        return self.read_granted

    async def request_write_permissions(self) -> bool:
        return self.write_granted

    def timezone(self) -> str:
        return self.tz

    async def fetch_samples(self, metric: str, from_ms: int, to_ms: int, timezone: str) -> Sequence[Reading]:
        self.fetches.append((metric, from_ms, to_ms))
        self.fetch_timezones.add(timezone)
        return [r for r in self.readings.get(metric, []) if from_ms <= r.start_ms <= to_ms]

    async def apply_write(self, intent: WriteIntent) -> ApplyResult:
        self.applied.append(intent.external_id)
        return self.apply_outcomes.get(
            intent.external_id,
            ApplyResult(status="applied", healthkit_uuid=f"hk-{intent.external_id}"),
        )


class FakeApi:
    """Stands in for HealthApiClient, serving requests from in-memory engines.

    ``fail_metrics`` maps a metric to the outcomes of its next uploads, one
    per call: an exception is raised, ``None`` lets that call through. Once
    the list is empty uploads of that metric succeed.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.store = InMemoryHealthStore()
        self.engine = IngestionEngine(self.store, clock=clock)
        self.queue = WriteIntentQueue(self.store, clock=clock)
        self.fail_metrics: dict[str, list[Exception | None]] = {}
        self.ingest_calls: list[tuple[str, int]] = []
        self.acks: list[WriteIntentAck] = []

    async def ingest(self, device_id: str, samples: Sequence[SampleIn]) -> IngestResult:
        metric = samples[0].metric if samples else None
        self.ingest_calls.append((metric, len(samples)))
        pending = self.fail_metrics.get(metric)
        if pending and (error := pending.pop(0)) is not None:
            raise error
        return await self.engine.ingest(device_id, samples)

    async def list_pending_write_intents(self, limit: int, cursor: str | None = None) -> PendingPage:
        return await self.queue.list_pending(limit, cursor)

    async def ack_write_intent(self, ack: WriteIntentAck) -> WriteIntent:
        self.acks.append(ack)
        return await self.queue.ack(ack)


def steps(uuid: str, start_ms: int, count: float = 100) -> QuantityReading:
    return QuantityReading(
        uuid=uuid,
        start_ms=start_ms,
        end_ms=start_ms + 60_000,
        quantity=count,
        unit="count",
        source_name="Watch",
    )


def sleep(uuid: str, start_ms: int, code: int, duration_ms: int = HOUR_MS) -> CategoryReading:
    return CategoryReading(uuid=uuid, start_ms=start_ms, end_ms=start_ms + duration_ms, value=code)


def server_error(status: int = 503) -> HealthApiError:
    return HealthApiError("Service unavailable", status)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api(clock: FakeClock) -> FakeApi:
    return FakeApi(clock)


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(base_url="http://api.test", api_token="test-token")
