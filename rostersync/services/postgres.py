"""Postgres-backed remote record store.

Used by the remote record service when ``DATABASE_URL`` is set.  Uses
``asyncpg`` directly; the pool is owned by the store instance and created
in ``open()``, so tests and the app each manage their own.

The schema enforces the record rules itself: trimmed non-empty name, age in
[0, 150] and a sparse unique ``correlation_id`` (NULLs never collide).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Mapping

import asyncpg

from rostersync.config import Settings, get_settings
from rostersync.errors import NotFound, Unreachable, ValidationError
from rostersync.sync.base import (
    MAX_AGE,
    MIN_AGE,
    UPDATABLE_FIELDS,
    Record,
    RecordId,
    RemoteStatus,
    RemoteStore,
    validate_content,
)

logger = logging.getLogger("rostersync.db")

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS records (
    id             TEXT PRIMARY KEY,
    name           TEXT NOT NULL CHECK (length(btrim(name)) > 0),
    age            INTEGER NOT NULL CHECK (age BETWEEN {MIN_AGE} AND {MAX_AGE}),
    correlation_id TEXT UNIQUE,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    version        INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_records_content ON records (name, age);
CREATE INDEX IF NOT EXISTS idx_records_created_at ON records (created_at);
"""

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
)

_CONSTRAINT_ERRORS = (
    asyncpg.exceptions.UniqueViolationError,
    asyncpg.exceptions.CheckViolationError,
    asyncpg.exceptions.NotNullViolationError,
)


class PostgresRecordStore(RemoteStore):
    """``RemoteStore`` on a Postgres ``records`` table.

    Usage::

        store = PostgresRecordStore(settings.database_url)
        await store.open()
        try:
            records = await store.list_all()
        finally:
            await store.close()
    """

    def __init__(self, dsn: str | None = None, settings: Settings | None = None) -> None:
        super().__init__()
        self._settings = settings or get_settings()
        self._dsn = dsn or self._settings.database_url
        self._pool: asyncpg.Pool | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the connection pool and ensure the schema exists."""
        s = self._settings
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=s.db_pool_min_size,
                max_size=s.db_pool_max_size,
                command_timeout=s.db_command_timeout,
            )
        except _CONNECTION_ERRORS as exc:
            raise Unreachable(f"Cannot connect to database: {exc}") from exc
        await super().open()
        await self._execute(_SCHEMA)
        logger.info(
            "Database pool initialized (min=%d, max=%d)",
            s.db_pool_min_size, s.db_pool_max_size,
        )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")
        await super().close()

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a pooled connection inside a transaction.

        Connection failures surface as ``Unreachable``; constraint violations
        as ``ValidationError``.
        """
        self._require_ready()
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except _CONSTRAINT_ERRORS as exc:
            raise ValidationError(_constraint_message(exc)) from exc
        except _CONNECTION_ERRORS as exc:
            raise Unreachable(f"Database unavailable: {exc}") from exc

    # ------------------------------------------------------------------
    # RemoteStore interface
    # ------------------------------------------------------------------

    async def insert(self, record: Record) -> Record:
        name = validate_content(record.name, record.age)
        row = await self._fetchrow(
            """
            INSERT INTO records (id, name, age, correlation_id, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, now())
            RETURNING *
            """,
            uuid.uuid4().hex,
            name,
            record.age,
            _id_value(record.correlation_id),
            record.created_at,
        )
        return _from_row(row)

    async def update(self, remote_id: RecordId, fields: Mapping[str, Any]) -> Record:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")

        async with self.connection() as conn:
            current = await conn.fetchrow(
                "SELECT * FROM records WHERE id = $1 FOR UPDATE", remote_id.value
            )
            if current is None:
                raise NotFound(f"Record {remote_id} not found")
            name = fields.get("name", current["name"])
            age = fields.get("age", current["age"])
            name = validate_content(name, age)
            correlation_id = (
                _id_value(fields["correlation_id"])
                if "correlation_id" in fields
                else current["correlation_id"]
            )
            row = await conn.fetchrow(
                """
                UPDATE records
                SET name = $2, age = $3, correlation_id = $4,
                    updated_at = now(), version = version + 1
                WHERE id = $1
                RETURNING *
                """,
                remote_id.value,
                name,
                age,
                correlation_id,
            )
        return _from_row(row)

    async def delete(self, remote_id: RecordId) -> None:
        deleted = await self._fetchval(
            "DELETE FROM records WHERE id = $1 RETURNING id", remote_id.value
        )
        if deleted is None:
            raise NotFound(f"Record {remote_id} not found")

    async def get(self, remote_id: RecordId) -> Record | None:
        row = await self._fetchrow("SELECT * FROM records WHERE id = $1", remote_id.value)
        return _from_row(row) if row else None

    async def list_all(self) -> list[Record]:
        rows = await self._fetch("SELECT * FROM records ORDER BY created_at, id")
        return [_from_row(row) for row in rows]

    async def find_by_correlation_id(self, correlation_id: RecordId) -> Record | None:
        row = await self._fetchrow(
            "SELECT * FROM records WHERE correlation_id = $1", correlation_id.value
        )
        return _from_row(row) if row else None

    async def find_by_content(self, name: str, age: int) -> list[Record]:
        rows = await self._fetch(
            "SELECT * FROM records WHERE btrim(name) = $1 AND age = $2 ORDER BY created_at, id",
            name.strip(),
            age,
        )
        return [_from_row(row) for row in rows]

    async def status(self) -> RemoteStatus:
        try:
            row = await self._fetchrow(
                "SELECT count(*) AS count, max(updated_at) AS last_updated FROM records"
            )
        except Unreachable as exc:
            logger.warning("Database status probe failed: %s", exc)
            return RemoteStatus(count=0, last_updated=None, reachable=False)
        return RemoteStatus(count=row["count"], last_updated=row["last_updated"])

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def _execute(self, query: str, *args: Any) -> str:
        async with self.connection() as conn:
            return await conn.execute(query, *args)

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.connection() as conn:
            return await conn.fetch(query, *args)

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.connection() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetchval(self, query: str, *args: Any) -> Any:
        async with self.connection() as conn:
            return await conn.fetchval(query, *args)


def _id_value(record_id: RecordId | str | None) -> str | None:
    if record_id is None:
        return None
    return record_id.value if isinstance(record_id, RecordId) else str(record_id)


def _constraint_message(exc: asyncpg.exceptions.PostgresError) -> str:
    if isinstance(exc, asyncpg.exceptions.UniqueViolationError):
        return "Correlation id is already in use"
    return f"Record rejected by database: {exc}"


def _from_row(row: asyncpg.Record) -> Record:
    return Record(
        name=row["name"],
        age=row["age"],
        remote_id=RecordId.remote(row["id"]),
        correlation_id=RecordId.local(row["correlation_id"]) if row["correlation_id"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
    )
