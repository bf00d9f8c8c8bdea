"""Loads rollups from storage and turns them into summaries.

Days with no stored rollup are filled with empty placeholders, so a range
summary always has one entry per calendar day.
"""

from __future__ import annotations

import logging
from typing import Callable

from healthsync.health.domain import day_range, empty_rollup, now_ms, parse_day_key, resolve_timezone
from healthsync.health.summary import summarize_day, summarize_range, yesterday_day_key
from healthsync.models.summary import DailySummary, RangeSummary
from healthsync.storage.base import HealthStore

logger = logging.getLogger("healthsync.summary")


class SummaryService:
    def __init__(self, store: HealthStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.clock = clock

    async def daily_summary(self, day: str, timezone: str) -> DailySummary:
        parse_day_key(day)
        resolve_timezone(timezone)
        rollup = await self.store.get_daily_rollup(day)
        if rollup is None:
            rollup = empty_rollup(day, timezone, self.clock())
        return summarize_day(rollup)

    async def range_summary(self, from_day: str, to_day: str, timezone: str) -> RangeSummary:
        """Summary of every day in ``[from_day, to_day]``, gaps filled."""
        days = day_range(from_day, to_day)
        resolve_timezone(timezone)
        stored = {r.day_key: r for r in await self.store.list_daily_rollups(from_day, to_day)}

        filled_at = self.clock()
        rollups = [stored.get(d) or empty_rollup(d, timezone, filled_at) for d in days]
        missing = len(days) - len(stored)
        if missing:
            logger.debug("Range %s..%s: %d day(s) without data", from_day, to_day, missing)
        return summarize_range(rollups, from_day, to_day, timezone)

    async def yesterday_summary(self, timezone: str, now_ms: int | None = None) -> DailySummary:
        current = self.clock() if now_ms is None else now_ms
        return await self.daily_summary(yesterday_day_key(timezone, current), timezone)
