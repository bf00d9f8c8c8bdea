"""Summary endpoints, the structured query endpoint and capability discovery."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import TypeAdapter

from healthsync.dependencies import Summaries
from healthsync.models.summary import (
    DailySummaryQuery,
    RangeSummaryQuery,
    StructuredQuery,
)
from healthsync.routers.common import envelope, parse_body, read_json_body, resolve_query_timezone

router = APIRouter(prefix="/health", tags=["health-summaries"])

_structured_query = TypeAdapter(StructuredQuery)

TIMEZONE_HINT = "IANA timezone (optional, default UTC)"

CAPABILITIES: dict[str, Any] = {
    "query": {
        "name": "structured_health_query",
        "endpoint": "/health/query",
        "description": (
            "Single intent-based endpoint for AI assistants. "
            "Use intent + typed parameters instead of free-form parsing."
        ),
        "intents": [
            {"name": "daily_summary", "required": ["day"]},
            {"name": "range_summary", "required": ["from", "to"]},
            {"name": "yesterday_summary", "required": []},
        ],
    },
    "summaries": [
        {
            "name": "daily_summary",
            "endpoint": "/health/summary/daily",
            "description": "Get a deterministic summary for a single day.",
            "input": {"day": "YYYY-MM-DD", "timezone": TIMEZONE_HINT},
        },
        {
            "name": "range_summary",
            "endpoint": "/health/summary/range",
            "description": "Get multi-day summaries and totals.",
            "input": {"from": "YYYY-MM-DD", "to": "YYYY-MM-DD", "timezone": TIMEZONE_HINT},
        },
        {
            "name": "yesterday_summary",
            "endpoint": "/health/summary/yesterday",
            "description": "Get yesterday's performance summary for morning briefing automations.",
            "input": {"timezone": TIMEZONE_HINT},
        },
    ],
    "writes": [
        {
            "name": "queue_calorie_write",
            "endpoint": "/health/write-intents",
            "description": "Queue an idempotent calorie write intent using externalId.",
        },
        {
            "name": "list_pending_write_intents",
            "endpoint": "/health/write-intents/pending",
            "description": "List pending intents to be applied on the device.",
        },
        {
            "name": "ack_write_intent",
            "endpoint": "/health/write-intents/ack",
            "description": "Acknowledge apply status (applied, failed, skipped).",
        },
    ],
}


# ---------- Summaries ----------

@router.get("/summary/daily")
async def daily_summary(
    service: Summaries,
    day: str,
    timezone: str | None = None,
) -> Any:
    tz = resolve_query_timezone(timezone)
    summary = await service.daily_summary(day, tz)
    return envelope(summary.to_wire(), query="daily_summary", timezone=tz)


@router.get("/summary/range")
async def range_summary(
    service: Summaries,
    from_day: str = Query(alias="from"),
    to_day: str = Query(alias="to"),
    timezone: str | None = None,
) -> Any:
    tz = resolve_query_timezone(timezone)
    summary = await service.range_summary(from_day, to_day, tz)
    return envelope(summary.to_wire(), query="range_summary", timezone=tz)


@router.get("/summary/yesterday")
async def yesterday_summary(service: Summaries, timezone: str | None = None) -> Any:
    tz = resolve_query_timezone(timezone)
    summary = await service.yesterday_summary(tz)
    return envelope(summary.to_wire(), query="yesterday_summary", timezone=tz)


# ---------- Structured query ----------

@router.post("/query")
async def structured_query(request: Request, service: Summaries) -> Any:
    """Intent-based entry point: one of daily, range or yesterday summary."""
    query = parse_body(_structured_query, await read_json_body(request))

    if isinstance(query, DailySummaryQuery):
        summary = await service.daily_summary(query.day, query.timezone)
    elif isinstance(query, RangeSummaryQuery):
        summary = await service.range_summary(query.from_day, query.to_day, query.timezone)
    else:
        summary = await service.yesterday_summary(query.timezone)

    data = {
        "intent": query.intent,
        "utterance": query.utterance,
        "summary": summary.to_wire(),
    }
    return envelope(
        data,
        query="structured_health_query",
        intent=query.intent,
        timezone=query.timezone,
    )


# ---------- Discovery ----------

@router.get("/capabilities")
async def capabilities() -> Any:
    return envelope(CAPABILITIES, query="capabilities", version=2)
