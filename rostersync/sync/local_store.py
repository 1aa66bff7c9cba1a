"""On-device record storage backed by SQLite.

Rows are keyed by a tagged local id and survive process restarts.  Deletes
are soft: the row is flagged and stays until the next ``replace_all``.

All public methods are coroutines; the SQLite work runs in a worker thread
behind a single lock, so no reader ever observes a half-applied
``replace_all``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from rostersync.errors import DuplicateKey, NotFound, ValidationError
from rostersync.sync.base import (
    IdOrigin,
    Record,
    RecordId,
    StoreLifecycle,
    utc_now,
)

logger = logging.getLogger("rostersync.sync.local_store")

#: Fields a caller may change through ``LocalStore.update``.
LOCAL_UPDATABLE_FIELDS = frozenset({"name", "age", "remote_id", "correlation_id"})

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS records (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        local_origin TEXT NOT NULL,
        local_id TEXT NOT NULL,
        remote_id TEXT,
        correlation_id TEXT,
        name TEXT NOT NULL,
        age INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted INTEGER NOT NULL DEFAULT 0,
        version INTEGER,
        UNIQUE (local_origin, local_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_records_created_at ON records(created_at)",
    """
    CREATE TABLE IF NOT EXISTS sync_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)

_COLUMNS = (
    "local_origin, local_id, remote_id, correlation_id, name, age, "
    "created_at, updated_at, deleted, version"
)


def local_copy_of(remote: Record) -> Record:
    """Build the local row for a record pulled from the remote store.

    The local key is the correlation id when the record originated on some
    device, otherwise the remote id (tagged as remote-origin).
    """
    local_id = remote.correlation_id or RecordId.remote(remote.remote_id.value)
    return replace(remote, local_id=local_id, deleted=False)


class LocalStore(StoreLifecycle):
    """SQLite-backed local record store.

    Usage::

        store = LocalStore("rostersync_local.db")
        async with store:
            record = await store.insert(Record(name="Alice", age=30))
            active = await store.list_active()
    """

    DEFAULT_DB_PATH = "rostersync_local.db"

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize the local store.

        Args:
            db_path: Path to the SQLite database file. Use ``":memory:"`` for
                     a throwaway in-memory database (useful for testing).
        """
        super().__init__()
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await super().open()
        await asyncio.to_thread(self._connect)
        logger.debug("Local store opened at %s", self.db_path)

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        await super().close()

    def _connect(self) -> None:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        with conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        self._conn = conn

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def insert(self, record: Record) -> Record:
        """Store a new record, minting a local id if it has none.

        Raises:
            DuplicateKey: If the local id already exists.
        """
        self._require_ready()
        return await asyncio.to_thread(self._insert, record)

    async def update(self, local_id: RecordId, fields: Mapping[str, Any]) -> Record:
        """Change fields of an active record.

        Raises:
            NotFound: If no active record has ``local_id``.
        """
        self._require_ready()
        return await asyncio.to_thread(self._update, local_id, dict(fields))

    async def soft_delete(self, local_id: RecordId) -> None:
        """Flag a record as deleted; the row stays until the next replace_all.

        Raises:
            NotFound: If no active record has ``local_id``.
        """
        self._require_ready()
        await asyncio.to_thread(self._soft_delete, local_id)

    async def get(self, local_id: RecordId) -> Record | None:
        """Return the active record for ``local_id`` or None."""
        self._require_ready()
        return await asyncio.to_thread(self._get, local_id)

    async def list_active(self) -> list[Record]:
        self._require_ready()
        return await asyncio.to_thread(self._list, False)

    async def list_deleted(self) -> list[Record]:
        """Return soft-deleted rows still awaiting the next replace_all."""
        self._require_ready()
        return await asyncio.to_thread(self._list, True)

    async def count_active(self) -> int:
        self._require_ready()
        return await asyncio.to_thread(self._count_active)

    async def sequence_mark(self) -> int:
        """Return the highest insertion sequence number handed out so far."""
        self._require_ready()
        return await asyncio.to_thread(self._sequence_mark)

    async def replace_all(
        self,
        records: Iterable[Record],
        *,
        keep: Iterable[RecordId] = (),
        keep_newer_than: int | None = None,
        settled_tombstones: Iterable[RecordId] | None = None,
    ) -> int:
        """Atomically replace the store contents with ``records``.

        Rows survive the replacement when their local id is listed in
        ``keep``, or when they are active, unlinked and were inserted after
        sequence mark ``keep_newer_than``.  When ``settled_tombstones`` is
        given, soft-deleted rows missing from it also survive: they were
        deleted after the caller listed the tombstones and still have to be
        propagated.  A surviving row takes precedence over an incoming record
        with the same local id.

        Args:
            records:         Local copies of the authoritative remote set.
            keep:            Local ids that must survive (e.g. failed pushes).
            keep_newer_than: Sequence mark taken before the pass listed the
                             local records.
            settled_tombstones: Tombstones the caller has already handled;
                             None drops every tombstone.

        Returns:
            Number of incoming records written.
        """
        self._require_ready()
        return await asyncio.to_thread(
            self._replace_all,
            list(records),
            set(keep),
            keep_newer_than,
            None if settled_tombstones is None else set(settled_tombstones),
        )

    async def last_sync_at(self) -> datetime | None:
        self._require_ready()
        value = await asyncio.to_thread(self._get_meta, "last_sync_at")
        return datetime.fromisoformat(value) if value else None

    async def record_sync(self, when: datetime) -> None:
        self._require_ready()
        await asyncio.to_thread(self._set_meta, "last_sync_at", when.isoformat())

    # ------------------------------------------------------------------
    # SQLite work (runs in a worker thread)
    # ------------------------------------------------------------------

    def _insert(self, record: Record) -> Record:
        now = utc_now()
        stored = replace(
            record,
            local_id=record.local_id or RecordId.new_local(),
            created_at=record.created_at or now,
            updated_at=record.updated_at or now,
        )
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO records ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        _to_row(stored),
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateKey(f"Local id {stored.local_id} already exists") from exc
        logger.debug("Inserted locally: %s", stored.label())
        return stored

    def _update(self, local_id: RecordId, fields: dict[str, Any]) -> Record:
        unknown = set(fields) - LOCAL_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")
        with self._lock:
            current = self._fetch_one(local_id, include_deleted=False)
            if current is None:
                raise NotFound(f"Local record {local_id} not found")
            updated = replace(current, **fields, updated_at=utc_now())
            with self._conn:
                self._conn.execute(
                    """
                    UPDATE records
                    SET name = ?, age = ?, remote_id = ?, correlation_id = ?, updated_at = ?
                    WHERE local_origin = ? AND local_id = ?
                    """,
                    (
                        updated.name,
                        updated.age,
                        _id_value(updated.remote_id),
                        _id_value(updated.correlation_id),
                        updated.updated_at.isoformat(),
                        local_id.origin.value,
                        local_id.value,
                    ),
                )
        return updated

    def _soft_delete(self, local_id: RecordId) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE records SET deleted = 1, updated_at = ?
                WHERE local_origin = ? AND local_id = ? AND deleted = 0
                """,
                (utc_now().isoformat(), local_id.origin.value, local_id.value),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Local record {local_id} not found")

    def _get(self, local_id: RecordId) -> Record | None:
        with self._lock:
            return self._fetch_one(local_id, include_deleted=False)

    def _fetch_one(self, local_id: RecordId, include_deleted: bool) -> Record | None:
        row = self._conn.execute(
            "SELECT * FROM records WHERE local_origin = ? AND local_id = ?",
            (local_id.origin.value, local_id.value),
        ).fetchone()
        if row is None or (row["deleted"] and not include_deleted):
            return None
        return _from_row(row)

    def _list(self, deleted: bool) -> list[Record]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM records WHERE deleted = ? ORDER BY created_at, seq",
                (1 if deleted else 0,),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def _count_active(self) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE deleted = 0"
            ).fetchone()[0]

    def _sequence_mark(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM records").fetchone()[0]

    def _replace_all(
        self,
        records: list[Record],
        keep: set[RecordId],
        keep_newer_than: int | None,
        settled_tombstones: set[RecordId] | None,
    ) -> int:
        with self._lock, self._conn:
            survivors = [
                row for row in self._conn.execute("SELECT * FROM records").fetchall()
                if _survives(row, keep, keep_newer_than, settled_tombstones)
            ]
            survivor_keys = {(row["local_origin"], row["local_id"]) for row in survivors}

            self._conn.execute("DELETE FROM records")
            self._conn.executemany(
                f"INSERT INTO records (seq, {_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [(row["seq"], *_to_row(_from_row(row))) for row in survivors],
            )
            incoming = [
                _to_row(r) for r in records
                if (r.local_id.origin.value, r.local_id.value) not in survivor_keys
            ]
            self._conn.executemany(
                f"INSERT INTO records ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                incoming,
            )
        logger.info(
            "Local store replaced: %d pulled, %d local rows kept",
            len(incoming), len(survivors),
        )
        return len(incoming)

    def _get_meta(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_meta WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def _set_meta(self, key: str, value: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO sync_meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _id_value(record_id: RecordId | None) -> str | None:
    return record_id.value if record_id else None


def _survives(
    row: sqlite3.Row,
    keep: set[RecordId],
    keep_newer_than: int | None,
    settled_tombstones: set[RecordId] | None,
) -> bool:
    local_id = RecordId(IdOrigin(row["local_origin"]), row["local_id"])
    if local_id in keep:
        return True
    if row["deleted"]:
        return settled_tombstones is not None and local_id not in settled_tombstones
    return (
        keep_newer_than is not None
        and row["seq"] > keep_newer_than
        and row["remote_id"] is None
        and row["correlation_id"] is None
    )


def _to_row(record: Record) -> tuple:
    return (
        record.local_id.origin.value,
        record.local_id.value,
        _id_value(record.remote_id),
        _id_value(record.correlation_id),
        record.name,
        record.age,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        1 if record.deleted else 0,
        record.version,
    )


def _from_row(row: sqlite3.Row) -> Record:
    return Record(
        name=row["name"],
        age=row["age"],
        local_id=RecordId(IdOrigin(row["local_origin"]), row["local_id"]),
        remote_id=RecordId.remote(row["remote_id"]) if row["remote_id"] else None,
        correlation_id=RecordId.local(row["correlation_id"]) if row["correlation_id"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        deleted=bool(row["deleted"]),
        version=row["version"],
    )
