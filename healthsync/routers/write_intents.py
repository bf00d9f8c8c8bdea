"""Write-intent queue endpoints: queue, pull pending, acknowledge, inspect."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from healthsync.dependencies import WriteIntents
from healthsync.models.write_intents import (
    MAX_WRITE_INTENT_PAGE_SIZE,
    WriteIntentAck,
    WriteIntentPayload,
)
from healthsync.routers.common import envelope, parse_body, read_json_body

router = APIRouter(prefix="/health/write-intents", tags=["health-write-intents"])


@router.post("")
async def upsert_write_intent(request: Request, queue: WriteIntents) -> Any:
    payload = parse_body(WriteIntentPayload, await read_json_body(request))
    result = await queue.upsert(payload)
    return envelope(result.to_wire(), query="upsert_write_intent")


@router.get("")
async def list_write_intents(
    queue: WriteIntents,
    status: str | None = None,
    limit: int = MAX_WRITE_INTENT_PAGE_SIZE,
) -> Any:
    intents = await queue.list_by_status(status or None, limit)
    return envelope(
        {"items": [i.to_wire() for i in intents]},
        query="list_write_intents",
        status=status or "all",
    )


@router.get("/pending")
async def list_pending_write_intents(
    queue: WriteIntents,
    limit: int,
    cursor: str | None = None,
) -> Any:
    page = await queue.list_pending(limit, cursor or None)
    data = {
        "items": [i.to_wire() for i in page.items],
        "nextCursor": page.next_cursor,
    }
    return envelope(data, query="pending_write_intents")


@router.post("/ack")
async def ack_write_intent(request: Request, queue: WriteIntents) -> Any:
    ack = parse_body(WriteIntentAck, await read_json_body(request))
    intent = await queue.ack(ack)
    return envelope({"intent": intent.to_wire()}, query="ack_write_intent")
