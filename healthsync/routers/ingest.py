"""Raw sample ingest plus daily and raw read endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from healthsync.dependencies import Ingestion
from healthsync.errors import HealthValidationError, PayloadTooLargeError
from healthsync.models.health import DEFAULT_RAW_PAGE_SIZE, MAX_INGEST_BATCH_SIZE, IngestRequest
from healthsync.routers.common import parse_body, read_json_body

router = APIRouter(prefix="/health", tags=["health-data"])


@router.post("/ingest")
async def ingest_samples(request: Request, engine: Ingestion) -> Any:
    body = await read_json_body(request)
    if isinstance(body, dict):
        samples = body.get("samples")
        if not isinstance(samples, list):
            raise HealthValidationError("samples must be an array")
        if len(samples) > MAX_INGEST_BATCH_SIZE:
            raise PayloadTooLargeError(f"Batch exceeds maximum size of {MAX_INGEST_BATCH_SIZE}")

    payload: IngestRequest = parse_body(IngestRequest, body)
    result = await engine.ingest(payload.device_id, payload.samples)
    return result.to_wire()


@router.get("/daily")
async def list_daily(
    engine: Ingestion,
    from_day: str = Query(alias="from"),
    to_day: str = Query(alias="to"),
) -> Any:
    return {"items": await engine.list_daily(from_day, to_day)}


@router.get("/raw")
async def list_raw(
    engine: Ingestion,
    metric: str,
    from_ms: int = Query(alias="fromMs"),
    to_ms: int = Query(alias="toMs"),
    limit: int = DEFAULT_RAW_PAGE_SIZE,
    cursor: str | None = None,
) -> Any:
    page = await engine.list_raw(metric, from_ms, to_ms, limit, cursor or None)
    return page.model_dump(mode="json", by_alias=True)
