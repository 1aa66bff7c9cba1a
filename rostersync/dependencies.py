"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from rostersync.config import Settings, get_settings
from rostersync.sync.base import RemoteStore


async def get_record_store(request: Request) -> RemoteStore:
    """Return the record store opened by the app lifespan.

    The lifespan sets ``app.state.record_store`` before routes run.
    """
    store: RemoteStore | None = getattr(request.app.state, "record_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Record store not initialized")
    return store


# Annotated shortcuts for route signatures
RecordStore = Annotated[RemoteStore, Depends(get_record_store)]
AppSettings = Annotated[Settings, Depends(get_settings)]
