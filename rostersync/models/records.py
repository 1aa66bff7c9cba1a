"""Pydantic models for the records API: CRUD, bulk sync, cleanup and status."""

from __future__ import annotations

from datetime import datetime

from pydantic import AwareDatetime, Field

from rostersync.models.base import RosterBase, TimestampMixin
from rostersync.sync.base import MAX_AGE, MIN_AGE, Record


# ---------- Records ----------

class RecordCreate(RosterBase):
    name: str = Field(min_length=1, max_length=200)
    age: int = Field(ge=MIN_AGE, le=MAX_AGE, strict=True)
    correlation_id: str | None = Field(default=None, min_length=1)
    created_at: AwareDatetime | None = None


class RecordUpdate(RosterBase):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    age: int | None = Field(default=None, ge=MIN_AGE, le=MAX_AGE, strict=True)
    correlation_id: str | None = Field(default=None, min_length=1)


class RecordRead(RosterBase, TimestampMixin):
    id: str
    name: str
    age: int
    correlation_id: str | None = None
    version: int | None = None

    @classmethod
    def from_record(cls, record: Record) -> RecordRead:
        return cls(
            id=record.remote_id.value,
            name=record.name,
            age=record.age,
            correlation_id=record.correlation_id.value if record.correlation_id else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
            version=record.version,
        )


# ---------- Bulk sync ----------

class BulkSyncItem(RosterBase):
    """One locally-created record; content is validated per item by the store."""

    id: str = Field(min_length=1)
    name: str
    age: int
    created_at: AwareDatetime | None = None
    updated_at: AwareDatetime | None = None


class BulkSyncRequest(RosterBase):
    records: list[BulkSyncItem]


class BulkItemErrorRead(RosterBase):
    id: str
    error: str


class BulkSyncReport(RosterBase):
    created: int
    updated: int
    errors: list[BulkItemErrorRead] = Field(default_factory=list)


# ---------- Cleanup / status ----------

class DuplicateGroupRead(RosterBase):
    name: str
    age: int
    count: int


class CollapseReportRead(RosterBase):
    duplicates_found: int
    records_deleted: int
    duplicate_groups: list[DuplicateGroupRead] = Field(default_factory=list)
    correlations_reassigned: int = 0
    errors: list[str] = Field(default_factory=list)


class RemoteStatusRead(RosterBase):
    count: int
    last_updated: datetime | None = None
    reachable: bool = True
