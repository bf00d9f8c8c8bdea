"""Deterministic day / range summaries and structured summary queries."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field, field_validator, model_validator

from healthsync.models.base import DayKey, HealthBase

SleepBand = Literal["short", "target", "extended"]
ActivityBand = Literal["low", "moderate", "high"]
InsightSeverity = Literal["info", "watch", "good"]


class StatBlock(HealthBase):
    average: float
    min: float
    max: float
    sample_count: int


class SleepMetrics(HealthBase):
    sample_count: int
    in_bed_hours: float
    asleep_hours: float
    awake_hours: float
    rem_hours: float
    core_hours: float
    deep_hours: float
    sleep_efficiency: float


class ActivityMetrics(HealthBase):
    step_count: float
    active_calories_kcal: float
    dietary_calories_kcal: float


class RecoveryMetrics(HealthBase):
    resting_heart_rate_bpm: StatBlock
    hrv_sdnn_ms: StatBlock


class BodyMetrics(HealthBase):
    body_mass_kg: StatBlock
    body_fat_percent: StatBlock


class DayMetrics(HealthBase):
    sleep: SleepMetrics
    activity: ActivityMetrics
    recovery: RecoveryMetrics
    body: BodyMetrics


class DerivedMetrics(HealthBase):
    calorie_balance_kcal: float
    active_calories_band: ActivityBand
    sleep_band: SleepBand


class Insight(HealthBase):
    code: str
    severity: InsightSeverity
    message: str


class DailySummary(HealthBase):
    day_key: str
    timezone: str
    metrics: DayMetrics
    derived: DerivedMetrics
    insights: list[Insight]
    recomputed_at_ms: int


class RangeTotals(HealthBase):
    days: int
    total_steps: float
    total_active_calories_kcal: float
    total_dietary_calories_kcal: float
    average_sleep_hours: float
    average_sleep_efficiency: float


class RangeSummary(HealthBase):
    from_day: str = Field(alias="from")
    to_day: str = Field(alias="to")
    timezone: str
    days: list[DailySummary]
    totals: RangeTotals


# ---------- Structured query (POST /health/query) ----------

class _QueryBase(HealthBase):
    timezone: str = "UTC"
    utterance: str | None = None

    @field_validator("timezone")
    @classmethod
    def _timezone_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("timezone must be a non-empty string")
        return value


class DailySummaryQuery(_QueryBase):
    intent: Literal["daily_summary"]
    day: DayKey


class RangeSummaryQuery(_QueryBase):
    intent: Literal["range_summary"]
    from_day: DayKey = Field(alias="from")
    to_day: DayKey = Field(alias="to")

    @model_validator(mode="after")
    def _ordered(self) -> "RangeSummaryQuery":
        if self.from_day > self.to_day:
            raise ValueError("from must be <= to")
        return self


class YesterdaySummaryQuery(_QueryBase):
    intent: Literal["yesterday_summary"]


StructuredQuery = Annotated[
    Union[DailySummaryQuery, RangeSummaryQuery, YesterdaySummaryQuery],
    Field(discriminator="intent"),
]
