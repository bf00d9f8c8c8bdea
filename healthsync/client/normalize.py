"""Turn raw device readings into ingest samples.

Readings with non-finite times or values, inverted windows (end before
start) and sleep codes outside the known set are dropped silently.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from healthsync.client.device import CategoryReading, QuantityReading, Reading
from healthsync.models.health import HealthMetric, SampleIn, SleepStage

# Platform sleep-analysis category codes
SLEEP_CODES: dict[int, SleepStage] = {
    0: SleepStage.IN_BED,
    1: SleepStage.ASLEEP,
    2: SleepStage.AWAKE,
    3: SleepStage.ASLEEP_CORE,
    4: SleepStage.ASLEEP_DEEP,
    5: SleepStage.ASLEEP_REM,
}


def map_sleep_category_value(code: int) -> SleepStage | None:
    return SLEEP_CODES.get(code)


def build_sample_key(metric: str, sample_uuid: str) -> str:
    return f"{metric}:{sample_uuid}"


def _valid_window(start_ms: float, end_ms: float) -> bool:
    return math.isfinite(start_ms) and math.isfinite(end_ms) and end_ms >= start_ms


def normalize_quantity_samples(
    metric: str,
    readings: Iterable[QuantityReading],
    timezone: str,
) -> list[SampleIn]:
    samples: list[SampleIn] = []
    for r in readings:
        if not _valid_window(r.start_ms, r.end_ms) or not math.isfinite(r.quantity):
            continue
        samples.append(SampleIn(
            sample_key=build_sample_key(metric, r.uuid),
            metric=metric,
            start_time_ms=int(r.start_ms),
            end_time_ms=int(r.end_ms),
            value_number=r.quantity,
            unit=r.unit,
            source_name=r.source_name,
            source_bundle_id=r.source_bundle_id,
            timezone=timezone,
        ))
    return samples


def normalize_sleep_samples(readings: Iterable[CategoryReading], timezone: str) -> list[SampleIn]:
    metric = HealthMetric.SLEEP_SEGMENT.value
    samples: list[SampleIn] = []
    for r in readings:
        if not _valid_window(r.start_ms, r.end_ms):
            continue
        stage = map_sleep_category_value(r.value)
        if stage is None:
            continue
        samples.append(SampleIn(
            sample_key=build_sample_key(metric, r.uuid),
            metric=metric,
            start_time_ms=int(r.start_ms),
            end_time_ms=int(r.end_ms),
            category_value=stage,
            unit="ms",
            source_name=r.source_name,
            source_bundle_id=r.source_bundle_id,
            timezone=timezone,
        ))
    return samples


def normalize_readings(metric: str, readings: Sequence[Reading], timezone: str) -> list[SampleIn]:
    """Dispatch to the sleep or quantity normalizer by metric."""
    if metric == HealthMetric.SLEEP_SEGMENT:
        return normalize_sleep_samples(
            (r for r in readings if isinstance(r, CategoryReading)), timezone
        )
    return normalize_quantity_samples(
        metric, (r for r in readings if isinstance(r, QuantityReading)), timezone
    )
