"""Rostersync offline-first reconciliation core.

Subpackages:
    tests/ — Store, correlator, engine and trigger tests

Core modules:
    base          — Record / RecordId types and the RemoteStore ABC
    local_store   — SQLite-backed on-device store with soft delete
    remote_memory — In-process RemoteStore
    remote_http   — httpx client of the remote record service
    correlator    — Identity correlation across the two id spaces
    collapser     — Oldest-wins duplicate collapsing
    engine        — Push-then-pull reconciliation pass
    status        — Divergence snapshot for status panels
    controller    — Toggle / reconnect / manual sync triggers
    records       — Local-first record operations with write-through

Usage::

    from rostersync.sync import LocalStore, HttpRemoteStore, ReconciliationEngine

    async with LocalStore() as local, HttpRemoteStore() as remote:
        result = await ReconciliationEngine(local, remote).sync_once()
"""

from rostersync.sync.base import (
    BulkItem,
    BulkReport,
    IdOrigin,
    Record,
    RecordId,
    RemoteStatus,
    RemoteStore,
    validate_content,
)
from rostersync.sync.collapser import CollapseReport, collapse_duplicates
from rostersync.sync.controller import SyncController
from rostersync.sync.correlator import Match, MatchKind, RemoteIndex, correlate
from rostersync.sync.engine import ReconciliationEngine, SyncFailure, SyncResult
from rostersync.sync.local_store import LocalStore
from rostersync.sync.records import RecordService
from rostersync.sync.remote_http import HttpRemoteStore
from rostersync.sync.remote_memory import MemoryRemoteStore
from rostersync.sync.status import SyncStatus

__all__ = [
    "BulkItem",
    "BulkReport",
    "CollapseReport",
    "HttpRemoteStore",
    "IdOrigin",
    "LocalStore",
    "Match",
    "MatchKind",
    "MemoryRemoteStore",
    "ReconciliationEngine",
    "Record",
    "RecordId",
    "RecordService",
    "RemoteIndex",
    "RemoteStatus",
    "RemoteStore",
    "SyncController",
    "SyncFailure",
    "SyncResult",
    "SyncStatus",
    "collapse_duplicates",
    "correlate",
    "validate_content",
]
