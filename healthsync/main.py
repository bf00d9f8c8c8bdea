"""healthsync API: FastAPI application entry point.

Run locally:
    uvicorn healthsync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from healthsync.config import Settings, get_settings
from healthsync.errors import HealthServiceError
from healthsync.health.domain import now_ms
from healthsync.middleware.bearer_auth import BearerAuthMiddleware
from healthsync.routers import ingest, summaries, write_intents
from healthsync.routers.common import format_validation_error
from healthsync.services.database import close_pool, init_pool
from healthsync.storage.base import HealthStore
from healthsync.storage.memory import InMemoryHealthStore
from healthsync.storage.postgres import PostgresHealthStore

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting %s API v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    store = app.state.store
    if isinstance(store, PostgresHealthStore):
        await init_pool(settings)
        await store.create_schema()
    yield
    if isinstance(store, PostgresHealthStore):
        await close_pool()
    logger.info("%s API shut down", settings.app_name)


# ---------- Error handlers ----------

async def health_error_handler(request: Request, exc: HealthServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": format_validation_error(exc)})


# ---------- App factory ----------

def _default_store(settings: Settings) -> HealthStore:
    if settings.database_url:
        return PostgresHealthStore()
    logger.warning("HEALTHSYNC_DATABASE_URL not set; using in-memory store (data is not persisted)")
    return InMemoryHealthStore()


def create_app(
    settings: Settings | None = None,
    store: HealthStore | None = None,
    clock: Callable[[], int] = now_ms,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description=(
            "Personal health sample sync: idempotent ingest, daily rollups, "
            "deterministic summaries and a device write-intent queue."
        ),
        version=settings.app_version,
        docs_url="/health/docs",
        redoc_url=None,
        openapi_url="/health/openapi.json",
        servers=[{"url": settings.public_base_url}] if settings.public_base_url else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store if store is not None else _default_store(settings)
    app.state.clock = clock

    app.add_exception_handler(HealthServiceError, health_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # ---------- Middleware (order matters: last added is outermost) ----------

    # Static bearer token on everything but the OpenAPI document and docs
    app.add_middleware(BearerAuthMiddleware, settings=settings)

    # CORS outermost so preflight and error responses carry the headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Routes (all under /health) ----------
    app.include_router(ingest.router)
    app.include_router(summaries.router)
    app.include_router(write_intents.router)

    return app


app = create_app()
