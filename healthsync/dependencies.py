"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from healthsync.health.ingest import IngestionEngine
from healthsync.health.summary_service import SummaryService
from healthsync.health.write_intents import WriteIntentQueue
from healthsync.storage.base import HealthStore


def get_store(request: Request) -> HealthStore:
    """The store created by ``create_app`` and kept on ``app.state``."""
    return request.app.state.store


def get_ingestion_engine(request: Request) -> IngestionEngine:
    return IngestionEngine(get_store(request), clock=request.app.state.clock)


def get_summary_service(request: Request) -> SummaryService:
    return SummaryService(get_store(request), clock=request.app.state.clock)


def get_write_intent_queue(request: Request) -> WriteIntentQueue:
    return WriteIntentQueue(get_store(request), clock=request.app.state.clock)


# Annotated shortcuts for route signatures
Ingestion = Annotated[IngestionEngine, Depends(get_ingestion_engine)]
Summaries = Annotated[SummaryService, Depends(get_summary_service)]
WriteIntents = Annotated[WriteIntentQueue, Depends(get_write_intent_queue)]
