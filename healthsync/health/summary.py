"""Deterministic day and range summaries built from daily rollups.

Pure functions only.  Given the same rollups these always return the same
summaries, so answers to "how did I sleep yesterday?" are reproducible and
never depend on wall-clock state beyond the explicit ``now_ms`` argument.

Bands:
    sleep     short < 7h, target 7-9h (inclusive), extended > 9h
    activity  low < 300 kcal, moderate 300-800 kcal (inclusive), high > 800 kcal
"""

from __future__ import annotations

import math
from typing import Sequence

from healthsync.health.domain import day_key_from_timestamp, shift_day_key
from healthsync.models.health import DailyRollup
from healthsync.models.summary import (
    ActivityBand,
    ActivityMetrics,
    BodyMetrics,
    DailySummary,
    DayMetrics,
    DerivedMetrics,
    Insight,
    RangeSummary,
    RangeTotals,
    RecoveryMetrics,
    SleepBand,
    SleepMetrics,
    StatBlock,
)

MS_PER_HOUR = 3_600_000

SLEEP_TARGET_MIN_HOURS = 7.0
SLEEP_TARGET_MAX_HOURS = 9.0
ACTIVE_KCAL_MODERATE_MIN = 300.0
ACTIVE_KCAL_MODERATE_MAX = 800.0
ELEVATED_RESTING_HR_BPM = 70.0
HEALTHY_HRV_MS = 40.0


def round_to(value: float, decimals: int) -> float:
    """Round half towards +infinity at ``decimals`` places.

    Python's ``round`` uses banker's rounding; summaries need 0.125 -> 0.13
    and -0.125 -> -0.12.
    """
    factor = 10**decimals
    return math.floor(value * factor + 0.5) / factor


def _hours(ms: float) -> float:
    return round_to(ms / MS_PER_HOUR, 2)


def _stat(avg: float, low: float, high: float, count: int) -> StatBlock:
    return StatBlock(
        average=round_to(avg, 2),
        min=round_to(low, 2),
        max=round_to(high, 2),
        sample_count=count,
    )


def sleep_band(asleep_hours: float) -> SleepBand:
    if asleep_hours < SLEEP_TARGET_MIN_HOURS:
        return "short"
    if asleep_hours > SLEEP_TARGET_MAX_HOURS:
        return "extended"
    return "target"


def activity_band(active_kcal: float) -> ActivityBand:
    if active_kcal < ACTIVE_KCAL_MODERATE_MIN:
        return "low"
    if active_kcal > ACTIVE_KCAL_MODERATE_MAX:
        return "high"
    return "moderate"


def _all_counts_zero(rollup: DailyRollup) -> bool:
    return (
        rollup.step_count_samples == 0
        and rollup.active_energy_kcal_samples == 0
        and rollup.dietary_energy_kcal_samples == 0
        and rollup.resting_heart_rate_samples == 0
        and rollup.hrv_sdnn_samples == 0
        and rollup.body_mass_kg_samples == 0
        and rollup.body_fat_percent_samples == 0
        and rollup.sleep_sample_count == 0
    )


def _insights(
    rollup: DailyRollup,
    s_band: SleepBand,
    a_band: ActivityBand,
) -> list[Insight]:
    insights: list[Insight] = []

    if s_band == "short":
        insights.append(Insight(
            code="sleep_below_target",
            severity="watch",
            message="Sleep was below 7 hours. Consider prioritizing recovery today.",
        ))
    elif s_band == "target":
        insights.append(Insight(
            code="sleep_on_target",
            severity="good",
            message="Sleep duration was within the target range.",
        ))

    if a_band == "high":
        insights.append(Insight(
            code="high_activity",
            severity="good",
            message="Active calorie burn was high.",
        ))
    elif a_band == "low":
        insights.append(Insight(
            code="low_activity",
            severity="info",
            message="Active calorie burn was low.",
        ))

    if rollup.resting_heart_rate_samples > 0 and rollup.resting_heart_rate_avg > ELEVATED_RESTING_HR_BPM:
        insights.append(Insight(
            code="elevated_resting_hr",
            severity="watch",
            message="Average resting heart rate was elevated.",
        ))

    if rollup.hrv_sdnn_samples > 0 and rollup.hrv_sdnn_avg >= HEALTHY_HRV_MS:
        insights.append(Insight(
            code="healthy_hrv",
            severity="good",
            message="HRV was in a strong range.",
        ))

    if _all_counts_zero(rollup):
        insights.append(Insight(
            code="no_data",
            severity="info",
            message="No health data was available for this day.",
        ))

    return insights


def summarize_day(rollup: DailyRollup) -> DailySummary:
    """Turn one daily rollup into a summary with bands and insights.

    Args:
        rollup: Stored (or empty placeholder) rollup for the day.

    Returns:
        DailySummary with hours rounded to 2 decimals, sleep efficiency to 3.
    """
    asleep_hours = _hours(rollup.sleep_total_asleep_ms)
    efficiency = (
        round_to(rollup.sleep_total_asleep_ms / rollup.sleep_in_bed_ms, 3)
        if rollup.sleep_in_bed_ms > 0
        else 0.0
    )

    s_band = sleep_band(asleep_hours)
    a_band = activity_band(rollup.active_energy_kcal_total)

    metrics = DayMetrics(
        sleep=SleepMetrics(
            sample_count=rollup.sleep_sample_count,
            in_bed_hours=_hours(rollup.sleep_in_bed_ms),
            asleep_hours=asleep_hours,
            awake_hours=_hours(rollup.sleep_awake_ms),
            rem_hours=_hours(rollup.sleep_asleep_rem_ms),
            core_hours=_hours(rollup.sleep_asleep_core_ms),
            deep_hours=_hours(rollup.sleep_asleep_deep_ms),
            sleep_efficiency=efficiency,
        ),
        activity=ActivityMetrics(
            step_count=round_to(rollup.step_count_total, 2),
            active_calories_kcal=round_to(rollup.active_energy_kcal_total, 2),
            dietary_calories_kcal=round_to(rollup.dietary_energy_kcal_total, 2),
        ),
        recovery=RecoveryMetrics(
            resting_heart_rate_bpm=_stat(
                rollup.resting_heart_rate_avg,
                rollup.resting_heart_rate_min,
                rollup.resting_heart_rate_max,
                rollup.resting_heart_rate_samples,
            ),
            hrv_sdnn_ms=_stat(
                rollup.hrv_sdnn_avg,
                rollup.hrv_sdnn_min,
                rollup.hrv_sdnn_max,
                rollup.hrv_sdnn_samples,
            ),
        ),
        body=BodyMetrics(
            body_mass_kg=_stat(
                rollup.body_mass_kg_avg,
                rollup.body_mass_kg_min,
                rollup.body_mass_kg_max,
                rollup.body_mass_kg_samples,
            ),
            body_fat_percent=_stat(
                rollup.body_fat_percent_avg,
                rollup.body_fat_percent_min,
                rollup.body_fat_percent_max,
                rollup.body_fat_percent_samples,
            ),
        ),
    )

    derived = DerivedMetrics(
        calorie_balance_kcal=round_to(
            rollup.dietary_energy_kcal_total - rollup.active_energy_kcal_total, 2
        ),
        active_calories_band=a_band,
        sleep_band=s_band,
    )

    return DailySummary(
        day_key=rollup.day_key,
        timezone=rollup.timezone,
        metrics=metrics,
        derived=derived,
        insights=_insights(rollup, s_band, a_band),
        recomputed_at_ms=rollup.recomputed_at_ms,
    )


def summarize_range(
    rollups: Sequence[DailyRollup],
    from_day: str,
    to_day: str,
    timezone: str,
) -> RangeSummary:
    """Summarize each rollup and total the range.

    Averages divide by the number of rollups given; callers fill calendar
    gaps with empty rollups first so every day counts.
    """
    days = [summarize_day(r) for r in rollups]
    count = len(days)

    total_steps = sum(d.metrics.activity.step_count for d in days)
    total_active = sum(d.metrics.activity.active_calories_kcal for d in days)
    total_dietary = sum(d.metrics.activity.dietary_calories_kcal for d in days)
    sleep_hours = sum(d.metrics.sleep.asleep_hours for d in days)
    efficiency = sum(d.metrics.sleep.sleep_efficiency for d in days)

    totals = RangeTotals(
        days=count,
        total_steps=round_to(total_steps, 2),
        total_active_calories_kcal=round_to(total_active, 2),
        total_dietary_calories_kcal=round_to(total_dietary, 2),
        average_sleep_hours=round_to(sleep_hours / count, 2) if count else 0.0,
        average_sleep_efficiency=round_to(efficiency / count, 3) if count else 0.0,
    )
    return RangeSummary(
        from_day=from_day,
        to_day=to_day,
        timezone=timezone,
        days=days,
        totals=totals,
    )


def yesterday_day_key(timezone: str, now_ms: int) -> str:
    """The calendar day before today in ``timezone``.

    Subtracts one calendar day from today's date rather than 24h of
    milliseconds, so DST transitions never skip or repeat a day.
    """
    return shift_day_key(day_key_from_timestamp(now_ms, timezone), -1)
