"""Abstract persistence interface shared by the ingestion engine and write-intent queue.

Implementations must give ``insert_sample_if_absent`` and
``insert_write_intent`` unique-key semantics (one row per sample key, one per
external id); the engines rely on that instead of locks for idempotence.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from healthsync.models.health import DailyRollup, StoredSample
from healthsync.models.write_intents import WriteIntent


class HealthStore(ABC):
    """Async storage for raw samples, daily rollups and write intents."""

    # ---------- Raw samples ----------

    @abstractmethod
    async def insert_sample_if_absent(self, sample: StoredSample) -> bool:
        """Insert ``sample`` unless its sample key exists.  True when inserted."""

    @abstractmethod
    async def samples_for_day(self, day_key: str) -> list[StoredSample]:
        """All samples of a day, in metric order then start time then key."""

    @abstractmethod
    async def list_raw_samples(
        self,
        metric: str,
        from_ms: int,
        to_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[StoredSample]:
        """Samples of ``metric`` with ``from_ms <= start <= to_ms``.

        Ordered by ``(start_time_ms, sample_key)`` and strictly after
        ``after`` when given; at most ``limit`` rows.
        """

    # ---------- Daily rollups ----------

    @abstractmethod
    async def get_daily_rollup(self, day_key: str) -> DailyRollup | None: ...

    @abstractmethod
    async def upsert_daily_rollup(self, rollup: DailyRollup) -> None: ...

    @abstractmethod
    async def delete_daily_rollup(self, day_key: str) -> None: ...

    @abstractmethod
    async def list_daily_rollups(self, from_day: str, to_day: str) -> list[DailyRollup]:
        """Stored rollups with ``from_day <= day_key <= to_day``, ascending."""

    # ---------- Write intents ----------

    @abstractmethod
    async def get_write_intent(self, external_id: str) -> WriteIntent | None: ...

    @abstractmethod
    async def insert_write_intent(self, intent: WriteIntent) -> bool:
        """Insert unless the external id exists.  True when inserted."""

    @abstractmethod
    async def update_write_intent(self, intent: WriteIntent) -> None:
        """Replace the stored intent with the same external id."""

    @abstractmethod
    async def list_pending_write_intents(
        self,
        now_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[WriteIntent]:
        """Pending intents due at ``now_ms``, by ``(created_at_ms, intent_id)``."""

    @abstractmethod
    async def list_write_intents(self, status: str | None, limit: int) -> list[WriteIntent]:
        """Intents filtered by status (all when None), newest update first."""
