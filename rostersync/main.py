"""Rostersync remote record service — FastAPI application entry point.

Run locally:
    uvicorn rostersync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rostersync.config import Settings, get_settings
from rostersync.errors import NotFound, SyncError, Unreachable, ValidationError
from rostersync.logging_config import configure_logging
from rostersync.routers import health, records
from rostersync.services.postgres import PostgresRecordStore
from rostersync.sync.base import RemoteStore
from rostersync.sync.remote_memory import MemoryRemoteStore

logger = logging.getLogger("rostersync")


def build_record_store(settings: Settings) -> RemoteStore:
    """Postgres when DATABASE_URL is set, otherwise an in-process store."""
    if settings.database_url:
        return PostgresRecordStore(settings.database_url, settings=settings)
    logger.warning("DATABASE_URL not set; records are kept in memory only")
    return MemoryRemoteStore()


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Rostersync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    store: RemoteStore | None = getattr(app.state, "record_store", None)
    if store is None:
        store = build_record_store(settings)
        app.state.record_store = store
    await store.open()
    yield
    await store.close()
    logger.info("Rostersync API shut down")


# ---------- Error mapping ----------

_STATUS_FOR_ERROR: list[tuple[type[SyncError], int]] = [
    (ValidationError, 422),
    (NotFound, 404),
    (Unreachable, 503),
]


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    for error_type, status_code in _STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# ---------- App factory ----------

def create_app(store: RemoteStore | None = None) -> FastAPI:
    """Build the application.

    Args:
        store: Record store to serve (unopened); built from settings when None.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Rostersync API",
        description="Shared record store for offline-first Rostersync clients.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if store is not None:
        app.state.record_store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SyncError, sync_error_handler)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(health.router, prefix=v1_prefix)
    app.include_router(records.router, prefix=v1_prefix)

    return app


app = create_app()
