"""Record types and the remote store contract for the Rostersync sync core.

Every store adapter speaks in terms of the ``Record`` dataclass and the
tagged ``RecordId``.  These types are the single source of truth shared by
the correlator, the collapser, the reconciliation engine and the API layer.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from rostersync.errors import StoreClosed, SyncError, Unreachable, ValidationError

logger = logging.getLogger("rostersync.sync")

MIN_AGE = 0
MAX_AGE = 150

#: Fields a caller may change through ``RemoteStore.update``.
UPDATABLE_FIELDS = frozenset({"name", "age", "correlation_id"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class IdOrigin(str, Enum):
    local = "local"
    remote = "remote"


@dataclass(frozen=True)
class RecordId:
    """Identifier tagged with the store that generated it.

    Local ids are minted on-device when a record is created offline; remote
    ids are assigned by the remote store on first insertion.  Correlation ids
    are always local-origin.
    """

    origin: IdOrigin
    value: str

    @classmethod
    def local(cls, value: str) -> RecordId:
        return cls(IdOrigin.local, value)

    @classmethod
    def remote(cls, value: str) -> RecordId:
        return cls(IdOrigin.remote, value)

    @classmethod
    def new_local(cls) -> RecordId:
        return cls.local(uuid.uuid4().hex)

    @property
    def is_local(self) -> bool:
        return self.origin is IdOrigin.local

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Record:
    """The unit of sync.

    Attributes:
        name:           Display name, non-empty after trimming.
        age:            Integer age in [0, 150].
        local_id:       Key in the local store (None for records that only
                        exist remotely).
        remote_id:      Key in the remote store, absent until first push.
        correlation_id: Join key between the two id spaces; equals the
                        originating record's local id once pushed.
        created_at:     UTC creation time, preserved across stores.
        updated_at:     UTC time of the last change.
        deleted:        Local soft-delete flag (the remote store hard-deletes).
        version:        Remote update counter, observability only.
    """

    name: str
    age: int
    local_id: RecordId | None = None
    remote_id: RecordId | None = None
    correlation_id: RecordId | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    deleted: bool = False
    version: int | None = None

    @property
    def content_key(self) -> tuple[str, int]:
        """The ``(name, age)`` pair used for content matching and collapsing."""
        return (self.name.strip(), self.age)

    @property
    def is_linked(self) -> bool:
        """True once the record is known to have a remote counterpart."""
        return self.remote_id is not None or self.correlation_id is not None

    def label(self) -> str:
        ident = self.local_id or self.remote_id
        return f"{self.name}/{self.age} ({ident})"


def validate_content(name: Any, age: Any) -> str:
    """Check a record's user-supplied fields and return the trimmed name.

    Raises:
        ValidationError: If ``name`` is empty or ``age`` is not an integer
            in [MIN_AGE, MAX_AGE].
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    if isinstance(age, bool) or not isinstance(age, int) or not MIN_AGE <= age <= MAX_AGE:
        raise ValidationError(f"Age must be between {MIN_AGE} and {MAX_AGE}")
    return name.strip()


# ---------------------------------------------------------------------------
# Bulk upsert / status payloads
# ---------------------------------------------------------------------------


@dataclass
class BulkItem:
    """One local record offered to ``RemoteStore.bulk_upsert``."""

    id: RecordId
    name: str
    age: int
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class BulkItemError:
    id: str
    error: str


@dataclass
class BulkReport:
    created: int = 0
    updated: int = 0
    errors: list[BulkItemError] = field(default_factory=list)


@dataclass
class RemoteStatus:
    """Point-in-time remote store summary.

    Attributes:
        count:        Number of records held remotely.
        last_updated: Most recent ``updated_at`` across records (None if empty).
        reachable:    False when the store could not be queried.
    """

    count: int
    last_updated: datetime | None
    reachable: bool = True


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class StoreState(str, Enum):
    created = "created"
    ready = "ready"
    closed = "closed"


class StoreLifecycle:
    """``created -> ready -> closed`` bookkeeping shared by both adapters."""

    def __init__(self) -> None:
        self._state = StoreState.created

    @property
    def state(self) -> StoreState:
        return self._state

    async def open(self) -> None:
        if self._state is StoreState.closed:
            raise StoreClosed(f"{type(self).__name__} cannot be reopened")
        self._state = StoreState.ready

    async def close(self) -> None:
        self._state = StoreState.closed

    def _require_ready(self) -> None:
        if self._state is not StoreState.ready:
            raise StoreClosed(f"{type(self).__name__} is {self._state.value}, not ready")

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# Abstract remote store
# ---------------------------------------------------------------------------


class RemoteStore(StoreLifecycle, ABC):
    """Abstract base class for the shared, server-keyed record store.

    Subclasses must implement:
        - insert()
        - update()
        - delete()
        - get()
        - list_all()

    Optional overrides (scan ``list_all()`` by default):
        - find_by_correlation_id()
        - find_by_content()
        - status()

    Any operation may raise ``Unreachable``.
    """

    @abstractmethod
    async def insert(self, record: Record) -> Record:
        """Store a new record and return it with its assigned ``remote_id``.

        Raises:
            ValidationError: If name/age are invalid or the correlation id
                is already taken.
        """

    @abstractmethod
    async def update(self, remote_id: RecordId, fields: Mapping[str, Any]) -> Record:
        """Change ``name``, ``age`` and/or ``correlation_id`` of a record.

        Raises:
            NotFound: If ``remote_id`` does not exist.
        """

    @abstractmethod
    async def delete(self, remote_id: RecordId) -> None:
        """Hard-delete a record.

        Raises:
            NotFound: If ``remote_id`` does not exist.
        """

    @abstractmethod
    async def get(self, remote_id: RecordId) -> Record | None:
        """Return one record or None."""

    @abstractmethod
    async def list_all(self) -> list[Record]:
        """Return every record, oldest first."""

    async def find_by_correlation_id(self, correlation_id: RecordId) -> Record | None:
        for record in await self.list_all():
            if record.correlation_id == correlation_id:
                return record
        return None

    async def find_by_content(self, name: str, age: int) -> list[Record]:
        key = (name.strip(), age)
        matches = [r for r in await self.list_all() if r.content_key == key]
        return sorted(matches, key=lambda r: r.created_at)

    async def status(self) -> RemoteStatus:
        try:
            records = await self.list_all()
        except Unreachable as exc:
            logger.warning("Remote status probe failed: %s", exc)
            return RemoteStatus(count=0, last_updated=None, reachable=False)
        last = max((r.updated_at for r in records), default=None)
        return RemoteStatus(count=len(records), last_updated=last)

    async def bulk_upsert(self, items: Iterable[BulkItem]) -> BulkReport:
        """Upsert a batch of local-origin records, each independently.

        Per item: a record already carrying ``correlation_id == item.id`` is
        refreshed (name, age); otherwise the oldest uncorrelated record with
        the same ``(name, age)`` adopts ``item.id`` as its correlation id;
        otherwise a new record is created.  Failures are collected in the
        report, never raised.
        """
        report = BulkReport()
        for item in items:
            try:
                existing = await self.find_by_correlation_id(item.id)
                if existing is not None and existing.remote_id is not None:
                    await self.update(existing.remote_id, {"name": item.name, "age": item.age})
                    report.updated += 1
                    continue

                candidates = [
                    r for r in await self.find_by_content(item.name, item.age)
                    if r.correlation_id is None and r.remote_id is not None
                ]
                if candidates:
                    await self.update(candidates[0].remote_id, {"correlation_id": item.id})
                    report.updated += 1
                    logger.info(
                        "Bulk upsert: linked existing %s/%s to correlation id %s",
                        item.name, item.age, item.id,
                    )
                else:
                    await self.insert(
                        Record(
                            name=item.name,
                            age=item.age,
                            correlation_id=item.id,
                            created_at=item.created_at,
                            updated_at=item.updated_at,
                        )
                    )
                    report.created += 1
            except SyncError as exc:
                logger.warning("Bulk upsert failed for %s: %s", item.id, exc)
                report.errors.append(BulkItemError(id=item.id.value, error=str(exc)))
        return report
