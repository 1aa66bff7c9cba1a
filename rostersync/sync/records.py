"""Offline-first record operations.

Every change lands in the local store first.  When sync is enabled the
change is also written through to the remote store; if that write fails
because the remote is unreachable or rejects it, the change stays
local-only and the next reconciliation pass picks it up.
"""

from __future__ import annotations

import logging

from rostersync.errors import NotFound, Unreachable, ValidationError
from rostersync.sync.base import Record, RecordId, RemoteStore, validate_content
from rostersync.sync.controller import SyncController
from rostersync.sync.local_store import LocalStore

logger = logging.getLogger("rostersync.sync.records")


class RecordService:
    """Create/update/delete/list records with optional write-through.

    Usage::

        service = RecordService(local_store, remote_store, controller)
        record = await service.create("Alice", 30)
        await service.delete(record.local_id)
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        controller: SyncController,
    ) -> None:
        self._local = local
        self._remote = remote
        self._controller = controller

    @property
    def write_through(self) -> bool:
        return self._controller.enabled

    async def list(self) -> list[Record]:
        """Return active local records, newest first."""
        records = await self._local.list_active()
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def get(self, local_id: RecordId) -> Record | None:
        return await self._local.get(local_id)

    async def create(self, name: str, age: int) -> Record:
        """Create a record locally, then push it when sync is enabled.

        Raises:
            ValidationError: If name/age fail the record rules.
        """
        name = validate_content(name, age)
        record = await self._local.insert(
            Record(name=name, age=age, local_id=RecordId.new_local())
        )
        logger.info("Created %s locally", record.label())

        if not self.write_through:
            return record

        try:
            saved = await self._remote.insert(
                Record(
                    name=record.name,
                    age=record.age,
                    correlation_id=record.local_id,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )
        except (Unreachable, ValidationError) as exc:
            logger.warning("Write-through of %s deferred: %s", record.label(), exc)
            return record

        return await self._local.update(
            record.local_id,
            {"remote_id": saved.remote_id, "correlation_id": record.local_id},
        )

    async def update(
        self,
        local_id: RecordId,
        name: str | None = None,
        age: int | None = None,
    ) -> Record:
        """Change name and/or age of an active record.

        Raises:
            NotFound:        If no active record has ``local_id``.
            ValidationError: If the resulting name/age are invalid.
        """
        current = await self._local.get(local_id)
        if current is None:
            raise NotFound(f"Record {local_id} not found")

        fields: dict = {}
        if name is not None:
            fields["name"] = name
        if age is not None:
            fields["age"] = age
        fields["name"] = validate_content(
            fields.get("name", current.name), fields.get("age", current.age)
        )

        updated = await self._local.update(local_id, fields)

        if self.write_through and updated.remote_id is not None:
            try:
                await self._remote.update(updated.remote_id, fields)
            except (Unreachable, ValidationError, NotFound) as exc:
                logger.warning("Write-through update of %s deferred: %s", updated.label(), exc)
        return updated

    async def delete(self, local_id: RecordId) -> None:
        """Soft-delete locally; remove the remote counterpart when possible.

        Raises:
            NotFound: If no active record has ``local_id``.
        """
        current = await self._local.get(local_id)
        if current is None:
            raise NotFound(f"Record {local_id} not found")
        await self._local.soft_delete(local_id)
        logger.info("Deleted %s locally", current.label())

        if not self.write_through or current.remote_id is None:
            return
        try:
            await self._remote.delete(current.remote_id)
        except NotFound:
            logger.info("%s was already gone remotely", current.label())
        except (Unreachable, ValidationError) as exc:
            logger.warning("Write-through delete of %s deferred: %s", current.label(), exc)
