"""Sample validation, day-key arithmetic and the daily rollup builder.

Everything in this module is a pure function with no I/O; the only clock read is
``now_ms()``.  The rollup builder is the single place aggregation rules live:
the ingestion engine calls it after every insert that lands on a day, and it
always rebuilds the full rollup from the day's raw samples so the stored
aggregate is a function of raw state alone.

Aggregation rules:
    additive     step_count, active_energy_kcal, dietary_energy_kcal -> total + count
    statistical  resting HR, HRV SDNN, body mass, body fat -> min / max / avg / count
    sleep        per-stage duration (end − start, clamped ≥ 0) in ms;
                 total asleep = every stage except inBed and awake
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from healthsync.errors import HealthValidationError
from healthsync.models.health import (
    DailyRollup,
    HealthMetric,
    SampleIn,
    SleepStage,
    StoredSample,
)

logger = logging.getLogger("healthsync.domain")

SAMPLE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._:|\-]{1,200}$")
DAY_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Timezones and day keys
# ---------------------------------------------------------------------------


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the IANA zone for ``name`` or raise a validation error."""
    if not name or not name.strip():
        raise HealthValidationError("timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError: names like "America" resolve to a tzdata directory
        raise HealthValidationError(f"Unknown timezone: {name}") from None


def day_key_from_timestamp(timestamp_ms: int, timezone: str) -> str:
    """Calendar date (``YYYY-MM-DD``) of ``timestamp_ms`` in ``timezone``.

    Uses zone-aware conversion, so an instant just after local midnight
    belongs to the new local day even when UTC is still on the previous one.
    """
    if isinstance(timestamp_ms, float) and not math.isfinite(timestamp_ms):
        raise HealthValidationError("timestampMs must be finite")
    zone = resolve_timezone(timezone)
    try:
        local = datetime.fromtimestamp(timestamp_ms / 1000, tz=zone)
    except (OverflowError, OSError, ValueError):
        raise HealthValidationError("timestampMs must produce a valid date") from None
    return local.date().isoformat()


def parse_day_key(day_key: str) -> date:
    """Parse a ``YYYY-MM-DD`` day key into a calendar date."""
    if not isinstance(day_key, str) or not DAY_KEY_PATTERN.match(day_key):
        raise HealthValidationError("Invalid day key format. Expected YYYY-MM-DD")
    try:
        return date.fromisoformat(day_key)
    except ValueError:
        raise HealthValidationError(f"Invalid calendar date: {day_key}") from None


def assert_day_range(from_day: str, to_day: str) -> None:
    parse_day_key(from_day)
    parse_day_key(to_day)
    if from_day > to_day:
        raise HealthValidationError("from must be <= to")


def shift_day_key(day_key: str, days: int) -> str:
    """Move a day key by whole calendar days (DST-safe: no millisecond math)."""
    return (parse_day_key(day_key) + timedelta(days=days)).isoformat()


def day_range(from_day: str, to_day: str) -> list[str]:
    """Every day key from ``from_day`` to ``to_day`` inclusive, gap-free."""
    assert_day_range(from_day, to_day)
    start = parse_day_key(from_day)
    end = parse_day_key(to_day)
    return [(start + timedelta(days=i)).isoformat() for i in range((end - start).days + 1)]


# ---------------------------------------------------------------------------
# Sample validation
# ---------------------------------------------------------------------------


def prepare_sample(sample: SampleIn, device_id: str, ingested_at_ms: int) -> StoredSample:
    """Validate one sample and derive its day key.

    Args:
        sample:         Sample as received from the device.
        device_id:      Uploading device.
        ingested_at_ms: Server time of this ingest call.

    Returns:
        StoredSample ready for insert-if-absent.

    Raises:
        HealthValidationError: describing the first rule the sample breaks.
    """
    if not SAMPLE_KEY_PATTERN.match(sample.sample_key):
        raise HealthValidationError(f"Invalid sampleKey format: {sample.sample_key!r}")

    if sample.end_time_ms < sample.start_time_ms:
        raise HealthValidationError(
            f"endTimeMs must be >= startTimeMs (sampleKey {sample.sample_key})"
        )

    if not sample.unit.strip():
        raise HealthValidationError(f"unit is required (sampleKey {sample.sample_key})")

    if sample.metric == HealthMetric.SLEEP_SEGMENT:
        if sample.category_value is None:
            raise HealthValidationError(
                f"categoryValue is required for sleep_segment (sampleKey {sample.sample_key})"
            )
    elif sample.value_number is None or not math.isfinite(sample.value_number):
        raise HealthValidationError(
            "valueNumber is required and must be finite for numeric metrics "
            f"(sampleKey {sample.sample_key})"
        )

    day_key = day_key_from_timestamp(sample.start_time_ms, sample.timezone)
    return StoredSample(
        **sample.model_dump(),
        device_id=device_id,
        day_key=day_key,
        ingested_at_ms=ingested_at_ms,
    )


# ---------------------------------------------------------------------------
# Daily rollup
# ---------------------------------------------------------------------------


@dataclass
class _Stat:
    total: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0

    def add(self, value: float) -> None:
        if not math.isfinite(value):
            return
        self.min = value if self.count == 0 else min(self.min, value)
        self.max = value if self.count == 0 else max(self.max, value)
        self.total += value
        self.count += 1

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


_ADDITIVE_METRICS = (
    HealthMetric.STEP_COUNT,
    HealthMetric.ACTIVE_ENERGY_KCAL,
    HealthMetric.DIETARY_ENERGY_KCAL,
)

_STATISTICAL_METRICS = (
    HealthMetric.RESTING_HEART_RATE_BPM,
    HealthMetric.HRV_SDNN_MS,
    HealthMetric.BODY_MASS_KG,
    HealthMetric.BODY_FAT_PERCENT,
)

# Rollup field prefix per metric
_FIELD_PREFIX: dict[str, str] = {
    HealthMetric.STEP_COUNT.value: "step_count",
    HealthMetric.ACTIVE_ENERGY_KCAL.value: "active_energy_kcal",
    HealthMetric.DIETARY_ENERGY_KCAL.value: "dietary_energy_kcal",
    HealthMetric.RESTING_HEART_RATE_BPM.value: "resting_heart_rate",
    HealthMetric.HRV_SDNN_MS.value: "hrv_sdnn",
    HealthMetric.BODY_MASS_KG.value: "body_mass_kg",
    HealthMetric.BODY_FAT_PERCENT.value: "body_fat_percent",
}

_SLEEP_FIELD: dict[str, str] = {
    SleepStage.IN_BED.value: "sleep_in_bed_ms",
    SleepStage.ASLEEP.value: "sleep_asleep_ms",
    SleepStage.AWAKE.value: "sleep_awake_ms",
    SleepStage.ASLEEP_REM.value: "sleep_asleep_rem_ms",
    SleepStage.ASLEEP_CORE.value: "sleep_asleep_core_ms",
    SleepStage.ASLEEP_DEEP.value: "sleep_asleep_deep_ms",
}

_NOT_ASLEEP = {SleepStage.IN_BED.value, SleepStage.AWAKE.value}


def build_daily_rollup(
    day_key: str,
    timezone: str,
    samples: Iterable[SampleIn],
    recomputed_at_ms: int,
) -> DailyRollup:
    """Rebuild a day's rollup from scratch.

    Deterministic: the same samples in the same order and the same
    ``recomputed_at_ms`` always produce an identical record.

    Args:
        day_key:          Day being rebuilt.
        timezone:         Timezone recorded on the rollup.
        samples:          Every raw sample whose day key is ``day_key``.
        recomputed_at_ms: Stamp for ``recomputedAtMs``.

    Returns:
        DailyRollup.
    """
    additive: dict[str, _Stat] = {m.value: _Stat() for m in _ADDITIVE_METRICS}
    stats: dict[str, _Stat] = {m.value: _Stat() for m in _STATISTICAL_METRICS}
    sleep_ms: dict[str, int] = {stage: 0 for stage in _SLEEP_FIELD}
    sleep_count = 0

    for sample in samples:
        metric = sample.metric
        if metric == HealthMetric.SLEEP_SEGMENT:
            if sample.category_value is None:
                continue
            sleep_count += 1
            sleep_ms[sample.category_value] += max(0, sample.end_time_ms - sample.start_time_ms)
        elif sample.value_number is None:
            continue
        elif metric in additive:
            additive[metric].total += sample.value_number
            additive[metric].count += 1
        elif metric in stats:
            stats[metric].add(sample.value_number)

    fields: dict[str, float | int | str] = {
        "day_key": day_key,
        "timezone": timezone,
        "recomputed_at_ms": recomputed_at_ms,
        "sleep_sample_count": sleep_count,
    }
    for metric, acc in additive.items():
        prefix = _FIELD_PREFIX[metric]
        fields[f"{prefix}_total"] = acc.total
        fields[f"{prefix}_samples"] = acc.count
    for metric, acc in stats.items():
        prefix = _FIELD_PREFIX[metric]
        fields[f"{prefix}_avg"] = acc.average
        fields[f"{prefix}_min"] = acc.min
        fields[f"{prefix}_max"] = acc.max
        fields[f"{prefix}_samples"] = acc.count
    for stage, field_name in _SLEEP_FIELD.items():
        fields[field_name] = sleep_ms[stage]
    fields["sleep_total_asleep_ms"] = sum(
        ms for stage, ms in sleep_ms.items() if stage not in _NOT_ASLEEP
    )

    return DailyRollup(**fields)


def empty_rollup(day_key: str, timezone: str, recomputed_at_ms: int) -> DailyRollup:
    """Placeholder rollup for a day with no samples (every count is zero)."""
    return DailyRollup(day_key=day_key, timezone=timezone, recomputed_at_ms=recomputed_at_ms)


def rollup_metrics_view(rollup: DailyRollup) -> dict:
    """Per-metric view of a rollup as served by ``GET /health/daily``."""

    def _stat(prefix: str, unit: str) -> dict:
        return {
            "average": getattr(rollup, f"{prefix}_avg"),
            "min": getattr(rollup, f"{prefix}_min"),
            "max": getattr(rollup, f"{prefix}_max"),
            "sampleCount": getattr(rollup, f"{prefix}_samples"),
            "unit": unit,
        }

    return {
        "dayKey": rollup.day_key,
        "timezone": rollup.timezone,
        "metrics": {
            "step_count": {
                "total": rollup.step_count_total,
                "sampleCount": rollup.step_count_samples,
                "unit": "count",
            },
            "active_energy_kcal": {
                "total": rollup.active_energy_kcal_total,
                "sampleCount": rollup.active_energy_kcal_samples,
                "unit": "kcal",
            },
            "dietary_energy_kcal": {
                "total": rollup.dietary_energy_kcal_total,
                "sampleCount": rollup.dietary_energy_kcal_samples,
                "unit": "kcal",
            },
            "resting_heart_rate_bpm": _stat("resting_heart_rate", "count/min"),
            "hrv_sdnn_ms": _stat("hrv_sdnn", "ms"),
            "body_mass_kg": _stat("body_mass_kg", "kg"),
            "body_fat_percent": _stat("body_fat_percent", "%"),
            "sleep_segment": {
                "sampleCount": rollup.sleep_sample_count,
                "inBedMs": rollup.sleep_in_bed_ms,
                "asleepMs": rollup.sleep_asleep_ms,
                "awakeMs": rollup.sleep_awake_ms,
                "asleepRemMs": rollup.sleep_asleep_rem_ms,
                "asleepCoreMs": rollup.sleep_asleep_core_ms,
                "asleepDeepMs": rollup.sleep_asleep_deep_ms,
                "totalAsleepMs": rollup.sleep_total_asleep_ms,
                "unit": "ms",
            },
        },
        "recomputedAtMs": rollup.recomputed_at_ms,
    }
