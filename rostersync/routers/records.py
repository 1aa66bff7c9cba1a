"""Record endpoints: CRUD plus the bulk-sync, cleanup and status routes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response, status

from rostersync.dependencies import RecordStore
from rostersync.errors import NotFound
from rostersync.models.base import ErrorDetail
from rostersync.models.records import (
    BulkSyncReport,
    BulkSyncRequest,
    CollapseReportRead,
    RecordCreate,
    RecordRead,
    RecordUpdate,
    RemoteStatusRead,
)
from rostersync.sync.base import MAX_AGE, MIN_AGE, BulkItem, Record, RecordId, utc_now
from rostersync.sync.collapser import collapse_duplicates

router = APIRouter(prefix="/records", tags=["records"])
logger = logging.getLogger("rostersync.records")

_NOT_FOUND = {404: {"model": ErrorDetail}}


# ---------- Sync ----------

@router.post("/sync/bulk", response_model=BulkSyncReport)
async def bulk_sync(store: RecordStore, body: BulkSyncRequest) -> Any:
    """Upsert a batch of locally-created records, matching by correlation id or content."""
    now = utc_now()
    items = [
        BulkItem(
            id=RecordId.local(item.id),
            name=item.name,
            age=item.age,
            created_at=item.created_at or now,
            updated_at=item.updated_at or now,
        )
        for item in body.records
    ]
    report = await store.bulk_upsert(items)
    logger.info(
        "Bulk sync: %d created, %d updated, %d errors",
        report.created, report.updated, len(report.errors),
    )
    return report


@router.post("/sync/cleanup", response_model=CollapseReportRead)
async def cleanup_duplicates(store: RecordStore) -> Any:
    """Remove duplicate records (same name and age), keeping the oldest of each group."""
    return await collapse_duplicates(store)


@router.get("/sync/status", response_model=RemoteStatusRead)
async def sync_status(store: RecordStore) -> Any:
    return await store.status()


# ---------- Lookups ----------

@router.get("/search", response_model=list[RecordRead])
async def search_records(
    store: RecordStore,
    name: str = Query(min_length=1),
    age: int = Query(ge=MIN_AGE, le=MAX_AGE),
) -> Any:
    """Records with exactly this (trimmed) name and age, oldest first."""
    records = await store.find_by_content(name, age)
    return [RecordRead.from_record(r) for r in records]


@router.get(
    "/by-correlation/{correlation_id}", response_model=RecordRead, responses=_NOT_FOUND
)
async def get_record_by_correlation(store: RecordStore, correlation_id: str) -> Any:
    record = await store.find_by_correlation_id(RecordId.local(correlation_id))
    if record is None:
        raise NotFound(f"No record with correlation id {correlation_id}")
    return RecordRead.from_record(record)


# ---------- CRUD ----------

@router.get("", response_model=list[RecordRead])
async def list_records(store: RecordStore) -> Any:
    """All records, newest first."""
    records = await store.list_all()
    records.sort(key=lambda r: r.created_at, reverse=True)
    return [RecordRead.from_record(r) for r in records]


@router.get("/{record_id}", response_model=RecordRead, responses=_NOT_FOUND)
async def get_record(store: RecordStore, record_id: str) -> Any:
    record = await store.get(RecordId.remote(record_id))
    if record is None:
        raise NotFound(f"Record {record_id} not found")
    return RecordRead.from_record(record)


@router.post("", response_model=RecordRead, status_code=status.HTTP_201_CREATED)
async def create_record(store: RecordStore, body: RecordCreate) -> Any:
    record = await store.insert(
        Record(
            name=body.name,
            age=body.age,
            correlation_id=RecordId.local(body.correlation_id) if body.correlation_id else None,
            created_at=body.created_at or utc_now(),
        )
    )
    return RecordRead.from_record(record)


@router.put("/{record_id}", response_model=RecordRead, responses=_NOT_FOUND)
async def update_record(store: RecordStore, record_id: str, body: RecordUpdate) -> Any:
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if updates.get("correlation_id") is not None:
        updates["correlation_id"] = RecordId.local(updates["correlation_id"])

    record = await store.update(RecordId.remote(record_id), updates)
    return RecordRead.from_record(record)


@router.delete(
    "/{record_id}", status_code=status.HTTP_204_NO_CONTENT, responses=_NOT_FOUND
)
async def delete_record(store: RecordStore, record_id: str) -> Response:
    await store.delete(RecordId.remote(record_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
