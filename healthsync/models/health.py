"""Health samples, ingest payloads and daily rollups."""

from __future__ import annotations

from enum import Enum

from pydantic import Field, StrictInt

from healthsync.models.base import HealthBase

MAX_INGEST_BATCH_SIZE = 500
MAX_RAW_PAGE_SIZE = 500
DEFAULT_RAW_PAGE_SIZE = 100


class HealthMetric(str, Enum):
    STEP_COUNT = "step_count"
    ACTIVE_ENERGY_KCAL = "active_energy_kcal"
    DIETARY_ENERGY_KCAL = "dietary_energy_kcal"
    RESTING_HEART_RATE_BPM = "resting_heart_rate_bpm"
    HRV_SDNN_MS = "hrv_sdnn_ms"
    BODY_MASS_KG = "body_mass_kg"
    BODY_FAT_PERCENT = "body_fat_percent"
    SLEEP_SEGMENT = "sleep_segment"


# Sync order; also the order samples are gathered for a day's recompute.
HEALTH_METRICS: tuple[HealthMetric, ...] = tuple(HealthMetric)


class SleepStage(str, Enum):
    IN_BED = "inBed"
    ASLEEP = "asleep"
    AWAKE = "awake"
    ASLEEP_REM = "asleepREM"
    ASLEEP_CORE = "asleepCore"
    ASLEEP_DEEP = "asleepDeep"


# ---------- Samples ----------

class SampleIn(HealthBase):
    """One raw observation as uploaded by the device."""

    sample_key: str
    metric: HealthMetric
    start_time_ms: StrictInt
    end_time_ms: StrictInt
    value_number: float | None = Field(default=None, allow_inf_nan=False)
    category_value: SleepStage | None = None
    unit: str
    source_name: str | None = None
    source_bundle_id: str | None = None
    timezone: str


class StoredSample(SampleIn):
    """A validated sample as persisted, with its derived day key."""

    device_id: str
    day_key: str
    ingested_at_ms: int


class IngestRequest(HealthBase):
    device_id: str
    samples: list[SampleIn]


class IngestResult(HealthBase):
    inserted: int
    deduped: int
    recomputed_days: list[str]
    server_time_ms: int


class RawSamplePage(HealthBase):
    items: list[StoredSample]
    next_cursor: str | None = None


# ---------- Daily rollup ----------

class DailyRollup(HealthBase):
    """Per-day aggregate, always derived wholesale from that day's raw samples."""

    day_key: str
    timezone: str
    step_count_total: float = 0
    step_count_samples: int = 0
    active_energy_kcal_total: float = 0
    active_energy_kcal_samples: int = 0
    dietary_energy_kcal_total: float = 0
    dietary_energy_kcal_samples: int = 0
    resting_heart_rate_avg: float = 0
    resting_heart_rate_min: float = 0
    resting_heart_rate_max: float = 0
    resting_heart_rate_samples: int = 0
    hrv_sdnn_avg: float = 0
    hrv_sdnn_min: float = 0
    hrv_sdnn_max: float = 0
    hrv_sdnn_samples: int = 0
    body_mass_kg_avg: float = 0
    body_mass_kg_min: float = 0
    body_mass_kg_max: float = 0
    body_mass_kg_samples: int = 0
    body_fat_percent_avg: float = 0
    body_fat_percent_min: float = 0
    body_fat_percent_max: float = 0
    body_fat_percent_samples: int = 0
    sleep_sample_count: int = 0
    sleep_in_bed_ms: int = 0
    sleep_asleep_ms: int = 0
    sleep_awake_ms: int = 0
    sleep_asleep_rem_ms: int = 0
    sleep_asleep_core_ms: int = 0
    sleep_asleep_deep_ms: int = 0
    sleep_total_asleep_ms: int = 0
    recomputed_at_ms: int = 0
