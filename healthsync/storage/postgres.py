"""PostgreSQL ``HealthStore`` over the shared asyncpg pool."""

from __future__ import annotations

import logging
from typing import Any

from healthsync.models.health import HEALTH_METRICS, DailyRollup, StoredSample
from healthsync.models.write_intents import WriteIntent, WriteIntentStatus
from healthsync.services.database import execute, fetch, fetchrow, get_connection
from healthsync.storage.base import HealthStore
from healthsync.storage.sql import (
    INTENT_COLUMNS,
    INTENT_TABLE,
    ROLLUP_COLUMNS,
    ROLLUP_TABLE,
    SAMPLE_COLUMNS,
    SAMPLE_TABLE,
    SCHEMA_STATEMENTS,
    build_update_query,
    build_upsert_query,
)

logger = logging.getLogger("healthsync.storage.postgres")

_INSERT_SAMPLE = build_upsert_query(
    SAMPLE_TABLE, SAMPLE_COLUMNS, ["sample_key"], update_columns=[], returning="sample_key"
)
_UPSERT_ROLLUP = build_upsert_query(ROLLUP_TABLE, ROLLUP_COLUMNS, ["day_key"])
_INSERT_INTENT = build_upsert_query(
    INTENT_TABLE, INTENT_COLUMNS, ["external_id"], update_columns=[], returning="external_id"
)
_UPDATE_INTENT = build_update_query(INTENT_TABLE, INTENT_COLUMNS, "external_id")

_METRIC_ORDER = [m.value for m in HEALTH_METRICS]


def _values(model: Any, columns: list[str]) -> list[Any]:
    data = model.model_dump(mode="json")
    return [data.get(col) for col in columns]


class PostgresHealthStore(HealthStore):
    """Store backed by the tables in ``healthsync.storage.sql``."""

    async def create_schema(self) -> None:
        """Create tables and indexes if missing. Safe to run on every startup."""
        async with get_connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Health schema ensured")

    # ---------- Raw samples ----------

    async def insert_sample_if_absent(self, sample: StoredSample) -> bool:
        row = await fetchrow(_INSERT_SAMPLE, *_values(sample, SAMPLE_COLUMNS))
        return row is not None

    async def samples_for_day(self, day_key: str) -> list[StoredSample]:
        rows = await fetch(
            f"SELECT * FROM {SAMPLE_TABLE} WHERE day_key = $1 "
            "ORDER BY array_position($2::text[], metric), start_time_ms, sample_key",
            day_key,
            _METRIC_ORDER,
        )
        return [StoredSample.model_validate(dict(r)) for r in rows]

    async def list_raw_samples(
        self,
        metric: str,
        from_ms: int,
        to_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[StoredSample]:
        if after is None:
            rows = await fetch(
                f"SELECT * FROM {SAMPLE_TABLE} "
                "WHERE metric = $1 AND start_time_ms BETWEEN $2 AND $3 "
                "ORDER BY start_time_ms, sample_key LIMIT $4",
                metric, from_ms, to_ms, limit,
            )
        else:
            rows = await fetch(
                f"SELECT * FROM {SAMPLE_TABLE} "
                "WHERE metric = $1 AND start_time_ms BETWEEN $2 AND $3 "
                "AND (start_time_ms, sample_key) > ($5, $6) "
                "ORDER BY start_time_ms, sample_key LIMIT $4",
                metric, from_ms, to_ms, limit, after[0], after[1],
            )
        return [StoredSample.model_validate(dict(r)) for r in rows]

    # ---------- Daily rollups ----------

    async def get_daily_rollup(self, day_key: str) -> DailyRollup | None:
        row = await fetchrow(f"SELECT * FROM {ROLLUP_TABLE} WHERE day_key = $1", day_key)
        return DailyRollup.model_validate(dict(row)) if row else None

    async def upsert_daily_rollup(self, rollup: DailyRollup) -> None:
        await execute(_UPSERT_ROLLUP, *_values(rollup, ROLLUP_COLUMNS))

    async def delete_daily_rollup(self, day_key: str) -> None:
        await execute(f"DELETE FROM {ROLLUP_TABLE} WHERE day_key = $1", day_key)

    async def list_daily_rollups(self, from_day: str, to_day: str) -> list[DailyRollup]:
        rows = await fetch(
            f"SELECT * FROM {ROLLUP_TABLE} WHERE day_key BETWEEN $1 AND $2 ORDER BY day_key",
            from_day,
            to_day,
        )
        return [DailyRollup.model_validate(dict(r)) for r in rows]

    # ---------- Write intents ----------

    async def get_write_intent(self, external_id: str) -> WriteIntent | None:
        row = await fetchrow(f"SELECT * FROM {INTENT_TABLE} WHERE external_id = $1", external_id)
        return WriteIntent.model_validate(dict(row)) if row else None

    async def insert_write_intent(self, intent: WriteIntent) -> bool:
        row = await fetchrow(_INSERT_INTENT, *_values(intent, INTENT_COLUMNS))
        return row is not None

    async def update_write_intent(self, intent: WriteIntent) -> None:
        await execute(_UPDATE_INTENT, *_values(intent, INTENT_COLUMNS))

    async def list_pending_write_intents(
        self,
        now_ms: int,
        limit: int,
        after: tuple[int, str] | None = None,
    ) -> list[WriteIntent]:
        pending = WriteIntentStatus.PENDING.value
        if after is None:
            rows = await fetch(
                f"SELECT * FROM {INTENT_TABLE} "
                "WHERE status = $1 AND next_retry_at_ms <= $2 "
                "ORDER BY created_at_ms, intent_id LIMIT $3",
                pending, now_ms, limit,
            )
        else:
            rows = await fetch(
                f"SELECT * FROM {INTENT_TABLE} "
                "WHERE status = $1 AND next_retry_at_ms <= $2 "
                "AND (created_at_ms, intent_id) > ($4, $5) "
                "ORDER BY created_at_ms, intent_id LIMIT $3",
                pending, now_ms, limit, after[0], after[1],
            )
        return [WriteIntent.model_validate(dict(r)) for r in rows]

    async def list_write_intents(self, status: str | None, limit: int) -> list[WriteIntent]:
        if status is None:
            rows = await fetch(
                f"SELECT * FROM {INTENT_TABLE} ORDER BY updated_at_ms DESC, intent_id DESC LIMIT $1",
                limit,
            )
        else:
            rows = await fetch(
                f"SELECT * FROM {INTENT_TABLE} WHERE status = $1 "
                "ORDER BY updated_at_ms DESC, intent_id DESC LIMIT $2",
                status,
                limit,
            )
        return [WriteIntent.model_validate(dict(r)) for r in rows]
