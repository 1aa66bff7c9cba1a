"""In-process remote record store.

Backs the remote record service when no ``DATABASE_URL`` is configured, and
stands in for a real server in tests.  Enforces the same rules as the
Postgres store: validated content, immutable server-generated ids and a
sparse unique constraint on ``correlation_id``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Iterable, Mapping

from rostersync.errors import NotFound, ValidationError
from rostersync.sync.base import (
    UPDATABLE_FIELDS,
    Record,
    RecordId,
    RemoteStatus,
    RemoteStore,
    utc_now,
    validate_content,
)

logger = logging.getLogger("rostersync.sync.remote_memory")


class MemoryRemoteStore(RemoteStore):
    """Dict-backed ``RemoteStore``.

    Usage::

        store = MemoryRemoteStore()
        async with store:
            saved = await store.insert(Record(name="Alice", age=30))
    """

    def __init__(self, records: Iterable[Record] = ()) -> None:
        super().__init__()
        self._records: dict[str, Record] = {}
        for record in records:
            self.seed(record)

    def seed(self, record: Record) -> Record:
        """Place a record directly, keeping its timestamps and correlation id.

        Used to preload fixtures; bypasses the lifecycle check but not the
        content and uniqueness rules.
        """
        name = validate_content(record.name, record.age)
        self._check_correlation_free(record.correlation_id, exclude=None)
        remote_id = record.remote_id or RecordId.remote(uuid.uuid4().hex)
        stored = replace(
            record,
            name=name,
            local_id=None,
            remote_id=remote_id,
            deleted=False,
            version=record.version or 1,
        )
        self._records[remote_id.value] = stored
        return replace(stored)

    # ------------------------------------------------------------------
    # RemoteStore interface
    # ------------------------------------------------------------------

    async def insert(self, record: Record) -> Record:
        self._require_ready()
        name = validate_content(record.name, record.age)
        self._check_correlation_free(record.correlation_id, exclude=None)
        stored = Record(
            name=name,
            age=record.age,
            remote_id=RecordId.remote(uuid.uuid4().hex),
            correlation_id=record.correlation_id,
            created_at=record.created_at,
            updated_at=utc_now(),
            version=1,
        )
        self._records[stored.remote_id.value] = stored
        logger.debug("Inserted %s", stored.label())
        return replace(stored)

    async def update(self, remote_id: RecordId, fields: Mapping[str, Any]) -> Record:
        self._require_ready()
        current = self._records.get(remote_id.value)
        if current is None:
            raise NotFound(f"Record {remote_id} not found")
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")

        name = fields.get("name", current.name)
        age = fields.get("age", current.age)
        name = validate_content(name, age)
        correlation_id = fields.get("correlation_id", current.correlation_id)
        self._check_correlation_free(correlation_id, exclude=remote_id.value)

        updated = replace(
            current,
            name=name,
            age=age,
            correlation_id=correlation_id,
            updated_at=utc_now(),
            version=(current.version or 1) + 1,
        )
        self._records[remote_id.value] = updated
        return replace(updated)

    async def delete(self, remote_id: RecordId) -> None:
        self._require_ready()
        if self._records.pop(remote_id.value, None) is None:
            raise NotFound(f"Record {remote_id} not found")

    async def get(self, remote_id: RecordId) -> Record | None:
        self._require_ready()
        record = self._records.get(remote_id.value)
        return replace(record) if record else None

    async def list_all(self) -> list[Record]:
        self._require_ready()
        return [replace(r) for r in sorted(self._records.values(), key=lambda r: r.created_at)]

    async def find_by_correlation_id(self, correlation_id: RecordId) -> Record | None:
        self._require_ready()
        for record in self._records.values():
            if record.correlation_id == correlation_id:
                return replace(record)
        return None

    async def status(self) -> RemoteStatus:
        self._require_ready()
        last = max((r.updated_at for r in self._records.values()), default=None)
        return RemoteStatus(count=len(self._records), last_updated=last)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_correlation_free(self, correlation_id: RecordId | None, exclude: str | None) -> None:
        if correlation_id is None:
            return
        for key, record in self._records.items():
            if key != exclude and record.correlation_id == correlation_id:
                raise ValidationError(f"Correlation id {correlation_id} is already in use")
