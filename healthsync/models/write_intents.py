"""Write intents: server-queued device writes and their acknowledgements."""

from __future__ import annotations

from enum import Enum

from pydantic import Field, StrictInt

from healthsync.models.base import HealthBase

MAX_WRITE_INTENT_PAGE_SIZE = 200


class WriteMetric(str, Enum):
    ACTIVE_ENERGY_KCAL = "active_energy_kcal"
    DIETARY_ENERGY_KCAL = "dietary_energy_kcal"


class WriteIntentStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


class AckStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


class WriteIntentPayload(HealthBase):
    """Caller-supplied content of an intent; ``external_id`` is the idempotence key."""

    external_id: str
    metric: WriteMetric
    start_time_ms: StrictInt
    end_time_ms: StrictInt
    value_number: float = Field(allow_inf_nan=False)
    unit: str
    timezone: str
    note: str | None = None
    source_name: str | None = None
    source_bundle_id: str | None = None
    tags: list[str] = Field(default_factory=list)


class WriteIntent(WriteIntentPayload):
    intent_id: str
    status: WriteIntentStatus
    attempt_count: int
    created_at_ms: int
    updated_at_ms: int
    next_retry_at_ms: int
    last_attempt_at_ms: int | None = None
    healthkit_uuid: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    applied_at_ms: int | None = None


class WriteIntentAck(HealthBase):
    external_id: str
    status: AckStatus
    applied_at_ms: StrictInt | None = None
    healthkit_uuid: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class UpsertResult(HealthBase):
    created: bool
    intent: WriteIntent


class PendingPage(HealthBase):
    items: list[WriteIntent]
    next_cursor: str | None = None
