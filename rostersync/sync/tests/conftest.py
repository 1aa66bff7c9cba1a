"""Shared fixtures and fault-injecting stores for sync core tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import pytest

from rostersync.errors import Unreachable
from rostersync.sync.base import Record, RecordId
from rostersync.sync.engine import ReconciliationEngine
from rostersync.sync.local_store import LocalStore
from rostersync.sync.remote_memory import MemoryRemoteStore

# Fixed clock origin so created_at ordering is explicit in every test
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def remote_record(
    name: str,
    age: int,
    minutes: int = 0,
    correlation_id: str | None = None,
) -> Record:
    """A record as it would sit in the remote store before any test action."""
    return Record(
        name=name,
        age=age,
        correlation_id=RecordId.local(correlation_id) if correlation_id else None,
        created_at=at(minutes),
        updated_at=at(minutes),
    )


# ---------------------------------------------------------------------------
# Fault-injecting remote store
# ---------------------------------------------------------------------------


class FlakyRemoteStore(MemoryRemoteStore):
    """MemoryRemoteStore with switchable failures and call accounting.

    Attributes:
        reject_names:    Inserts for these names raise ``insert_error``.
        insert_error:    Error raised for rejected inserts.
        fail_listing:    When True, ``list_all`` raises Unreachable.
        fail_list_after: Number of successful ``list_all`` calls before it
                         starts raising Unreachable (None = never).
        insert_delay:    Seconds each insert sleeps (to observe concurrency).
    """

    def __init__(self, records=()) -> None:
        super().__init__(records)
        self.reject_names: set[str] = set()
        self.insert_error: Exception = Unreachable("connection reset")
        self.fail_listing = False
        self.fail_list_after: int | None = None
        self.insert_delay = 0.0
        self.insert_attempts: list[str] = []
        self.list_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def insert(self, record: Record) -> Record:
        self.insert_attempts.append(record.name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.insert_delay:
                await asyncio.sleep(self.insert_delay)
            if record.name in self.reject_names:
                raise self.insert_error
            return await super().insert(record)
        finally:
            self.in_flight -= 1

    async def list_all(self) -> list[Record]:
        if self.fail_listing:
            raise Unreachable("remote listing unavailable")
        if self.fail_list_after is not None and self.list_calls >= self.fail_list_after:
            raise Unreachable("remote listing unavailable")
        self.list_calls += 1
        return await super().list_all()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def local_store() -> AsyncIterator[LocalStore]:
    """In-memory SQLite local store, opened for the test."""
    store = LocalStore(":memory:")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def remote_store() -> AsyncIterator[FlakyRemoteStore]:
    store = FlakyRemoteStore()
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def engine(local_store: LocalStore, remote_store: FlakyRemoteStore) -> ReconciliationEngine:
    return ReconciliationEngine(local_store, remote_store, max_concurrent=4)


async def add_local(store: LocalStore, name: str, age: int, minutes: int = 0) -> Record:
    """Create an unsynced local record the way the record service does."""
    return await store.insert(
        Record(
            name=name,
            age=age,
            local_id=RecordId.new_local(),
            created_at=at(minutes),
            updated_at=at(minutes),
        )
    )
