"""HTTP test client wired to an in-memory store and a fixed clock."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from healthsync.config import Settings
from healthsync.main import create_app
from healthsync.storage.memory import InMemoryHealthStore

TEST_TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TEST_TOKEN}"}

# 2026-02-23T12:00:00Z
NOW_MS = 1771848000000
HOUR_MS = 60 * 60 * 1000


class FixedClock:
    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def sample_wire(key: str, metric: str = "step_count", start_ms: int = NOW_MS, **overrides) -> dict:
    sample = {
        "sampleKey": key,
        "metric": metric,
        "startTimeMs": start_ms,
        "endTimeMs": start_ms + 60_000,
        "valueNumber": 100,
        "unit": "count",
        "timezone": "UTC",
    }
    sample.update(overrides)
    return sample


def intent_wire(external_id: str = "meal-1", **overrides) -> dict:
    intent = {
        "externalId": external_id,
        "metric": "dietary_energy_kcal",
        "startTimeMs": NOW_MS,
        "endTimeMs": NOW_MS + 1_800_000,
        "valueNumber": 650,
        "unit": "kcal",
        "timezone": "UTC",
        "note": "Lunch",
    }
    intent.update(overrides)
    return intent


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def client(store: InMemoryHealthStore, clock: FixedClock) -> Iterator[TestClient]:
    app = create_app(settings=Settings(api_bearer_token=TEST_TOKEN), store=store, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
