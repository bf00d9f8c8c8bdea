"""In-process ``HealthStore`` used for tests and for running without a database."""

from __future__ import annotations

from healthsync.models.health import HEALTH_METRICS, DailyRollup, StoredSample
from healthsync.models.write_intents import WriteIntent, WriteIntentStatus
from healthsync.storage.base import HealthStore

_METRIC_ORDER = {m.value: i for i, m in enumerate(HEALTH_METRICS)}


class InMemoryHealthStore(HealthStore):
    """Dict-backed store.  Returned models are copies, never live references."""

    def __init__(self) -> None:
        self.samples: dict[str, StoredSample] = {}
        self.rollups: dict[str, DailyRollup] = {}
        self.intents: dict[str, WriteIntent] = {}

    # ---------- Raw samples ----------

    async def insert_sample_if_absent(self, sample: StoredSample) -> bool:
        if sample.sample_key in self.samples:
            return False
        self.samples[sample.sample_key] = sample.model_copy(deep=True)
        return True

    async def samples_for_day(self, day_key: str) -> list[StoredSample]:
        rows = [s for s in self.samples.values() if s.day_key == day_key]
        rows.sort(key=lambda s: (_METRIC_ORDER.get(s.metric, len(_METRIC_ORDER)), s.start_time_ms, s.sample_key))
        return [s.model_copy(deep=True) for s in rows]

    async def list_raw_samples(
        self,
        metric: str,
        from_ms: int,
        to_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[StoredSample]:
        rows = [
            s for s in self.samples.values()
            if s.metric == metric and from_ms <= s.start_time_ms <= to_ms
        ]
        rows.sort(key=lambda s: (s.start_time_ms, s.sample_key))
        if after is not None:
            rows = [s for s in rows if (s.start_time_ms, s.sample_key) > after]
        return [s.model_copy(deep=True) for s in rows[:limit]]

    # ---------- Daily rollups ----------

    async def get_daily_rollup(self, day_key: str) -> DailyRollup | None:
        rollup = self.rollups.get(day_key)
        return rollup.model_copy(deep=True) if rollup else None

    async def upsert_daily_rollup(self, rollup: DailyRollup) -> None:
        self.rollups[rollup.day_key] = rollup.model_copy(deep=True)

    async def delete_daily_rollup(self, day_key: str) -> None:
        self.rollups.pop(day_key, None)

    async def list_daily_rollups(self, from_day: str, to_day: str) -> list[DailyRollup]:
        return [
            self.rollups[k].model_copy(deep=True)
            for k in sorted(self.rollups)
            if from_day <= k <= to_day
        ]

    # ---------- Write intents ----------

    async def get_write_intent(self, external_id: str) -> WriteIntent | None:
        intent = self.intents.get(external_id)
        return intent.model_copy(deep=True) if intent else None

    async def insert_write_intent(self, intent: WriteIntent) -> bool:
        if intent.external_id in self.intents:
            return False
        self.intents[intent.external_id] = intent.model_copy(deep=True)
        return True

    async def update_write_intent(self, intent: WriteIntent) -> None:
        self.intents[intent.external_id] = intent.model_copy(deep=True)

    async def list_pending_write_intents(
        self,
        now_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[WriteIntent]:
        rows = [
            i for i in self.intents.values()
            if i.status == WriteIntentStatus.PENDING and i.next_retry_at_ms <= now_ms
        ]
        rows.sort(key=lambda i: (i.created_at_ms, i.intent_id))
        if after is not None:
            rows = [i for i in rows if (i.created_at_ms, i.intent_id) > after]
        return [i.model_copy(deep=True) for i in rows[:limit]]

    async def list_write_intents(self, status: str | None, limit: int) -> list[WriteIntent]:
        rows = [i for i in self.intents.values() if status is None or i.status == status]
        rows.sort(key=lambda i: (i.updated_at_ms, i.intent_id), reverse=True)
        return [i.model_copy(deep=True) for i in rows[:limit]]
