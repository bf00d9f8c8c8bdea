"""Schema and query builders for the PostgreSQL store.

Uniqueness keys:
    - health_raw_samples:    (sample_key)   PRIMARY KEY
    - health_daily_metrics:  (day_key)      PRIMARY KEY
    - health_write_intents:  (external_id)  PRIMARY KEY, intent_id UNIQUE
"""

from __future__ import annotations

from healthsync.models.health import DailyRollup

SAMPLE_TABLE = "health_raw_samples"
ROLLUP_TABLE = "health_daily_metrics"
INTENT_TABLE = "health_write_intents"

SAMPLE_COLUMNS = [
    "sample_key",
    "device_id",
    "metric",
    "start_time_ms",
    "end_time_ms",
    "value_number",
    "category_value",
    "unit",
    "source_name",
    "source_bundle_id",
    "timezone",
    "day_key",
    "ingested_at_ms",
]

ROLLUP_COLUMNS = list(DailyRollup.model_fields)

INTENT_COLUMNS = [
    "external_id",
    "intent_id",
    "metric",
    "start_time_ms",
    "end_time_ms",
    "value_number",
    "unit",
    "timezone",
    "note",
    "source_name",
    "source_bundle_id",
    "tags",
    "status",
    "attempt_count",
    "created_at_ms",
    "updated_at_ms",
    "next_retry_at_ms",
    "last_attempt_at_ms",
    "healthkit_uuid",
    "failure_code",
    "failure_message",
    "applied_at_ms",
]


def _rollup_column_ddl() -> str:
    parts = []
    for name, field in DailyRollup.model_fields.items():
        if name == "day_key":
            parts.append("day_key TEXT PRIMARY KEY")
        elif field.annotation is str:
            parts.append(f"{name} TEXT NOT NULL")
        elif field.annotation is int:
            parts.append(f"{name} BIGINT NOT NULL DEFAULT 0")
        else:
            parts.append(f"{name} DOUBLE PRECISION NOT NULL DEFAULT 0")
    return ",\n    ".join(parts)


SCHEMA_STATEMENTS = [
    f"""
CREATE TABLE IF NOT EXISTS {SAMPLE_TABLE} (
    sample_key TEXT PRIMARY KEY,
    device_id TEXT NOT NULL,
    metric TEXT NOT NULL,
    start_time_ms BIGINT NOT NULL,
    end_time_ms BIGINT NOT NULL,
    value_number DOUBLE PRECISION,
    category_value TEXT,
    unit TEXT NOT NULL,
    source_name TEXT,
    source_bundle_id TEXT,
    timezone TEXT NOT NULL,
    day_key TEXT NOT NULL,
    ingested_at_ms BIGINT NOT NULL
)""",
    f"CREATE INDEX IF NOT EXISTS {SAMPLE_TABLE}_day_idx ON {SAMPLE_TABLE} (day_key)",
    f"CREATE INDEX IF NOT EXISTS {SAMPLE_TABLE}_metric_start_idx "
    f"ON {SAMPLE_TABLE} (metric, start_time_ms, sample_key)",
    f"""
CREATE TABLE IF NOT EXISTS {ROLLUP_TABLE} (
    {_rollup_column_ddl()}
)""",
    f"""
CREATE TABLE IF NOT EXISTS {INTENT_TABLE} (
    external_id TEXT PRIMARY KEY,
    intent_id TEXT NOT NULL UNIQUE,
    metric TEXT NOT NULL,
    start_time_ms BIGINT NOT NULL,
    end_time_ms BIGINT NOT NULL,
    value_number DOUBLE PRECISION NOT NULL,
    unit TEXT NOT NULL,
    timezone TEXT NOT NULL,
    note TEXT,
    source_name TEXT,
    source_bundle_id TEXT,
    tags TEXT[] NOT NULL DEFAULT '{{}}',
    status TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    created_at_ms BIGINT NOT NULL,
    updated_at_ms BIGINT NOT NULL,
    next_retry_at_ms BIGINT NOT NULL,
    last_attempt_at_ms BIGINT,
    healthkit_uuid TEXT,
    failure_code TEXT,
    failure_message TEXT,
    applied_at_ms BIGINT
)""",
    f"CREATE INDEX IF NOT EXISTS {INTENT_TABLE}_pending_idx "
    f"ON {INTENT_TABLE} (status, next_retry_at_ms, created_at_ms, intent_id)",
]


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT query.

    With ``update_columns`` empty the statement is insert-if-absent
    (``DO NOTHING``); combined with ``returning`` the caller can tell an
    insert from a conflict by whether a row comes back.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        Optional RETURNING column list.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query


def build_update_query(table: str, columns: list[str], key_column: str) -> str:
    """``UPDATE table SET ... WHERE key = $1`` with the key as the first parameter."""
    set_clauses = [
        f"{col} = ${i}"
        for i, col in enumerate((c for c in columns if c != key_column), start=2)
    ]
    return f"UPDATE {table} SET {', '.join(set_clauses)} WHERE {key_column} = $1"
