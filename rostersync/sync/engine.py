"""Reconciliation engine: one push-then-pull pass between the two stores.

A pass runs in two phases that must never be reordered:

1. Push: classify every active local record against the current remote
   listing, insert the unmatched ones (``correlation_id = local_id``), link
   content matches by setting their ``correlation_id``, and delete the remote
   counterparts of linked local tombstones.  Writes run concurrently up to
   ``max_concurrent`` and are all awaited before the pull starts.
2. Pull: re-list the remote store and atomically rebuild the local store
   from it, keeping records whose push failed so the next pass retries them.

Pulling first would let the rebuild discard records that were never pushed.

Usage::

    engine = ReconciliationEngine(local_store, remote_store, max_concurrent=4)
    result = await engine.sync_once()
    status = await engine.status()
    report = await engine.collapse_duplicates()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from rostersync.config import get_settings
from rostersync.errors import NotFound, SyncError
from rostersync.sync import collapser
from rostersync.sync.base import Record, RecordId, RemoteStore, utc_now
from rostersync.sync.collapser import CollapseReport
from rostersync.sync.correlator import MatchKind, RemoteIndex
from rostersync.sync.local_store import LocalStore, local_copy_of
from rostersync.sync.status import StatusReporter, SyncStatus

logger = logging.getLogger("rostersync.sync.engine")


@dataclass
class SyncFailure:
    """One record the push phase could not reconcile."""

    record: Record
    cause: Exception

    @property
    def message(self) -> str:
        return f"{self.record.label()}: {self.cause}"


@dataclass
class SyncResult:
    """Result of one reconciliation pass.

    Attributes:
        pushed:       Local records inserted remotely.
        merged:       Local records linked to a pre-existing remote record.
        deleted:      Remote records removed for local tombstones.
        errors:       Per-record failures (the pass continued past them).
        remote_count: Size of the remote set the local store was rebuilt from.
        started_at:   UTC start of the pass.
        finished_at:  UTC end of the pass.
    """

    pushed: int = 0
    merged: int = 0
    deleted: int = 0
    errors: list[SyncFailure] = field(default_factory=list)
    remote_count: int = 0
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


class PushAction(str, Enum):
    insert = "insert"
    merge = "merge"
    delete = "delete"


@dataclass
class PushStep:
    action: PushAction
    record: Record
    remote_id: RecordId | None = None


class ReconciliationEngine:
    """Owns the three caller-facing operations: sync, status and collapse.

    At most one pass runs at a time; a caller arriving while a pass is in
    flight receives that pass's result.  ``collapse_duplicates()`` shares
    the same exclusive lock, so it never overlaps a push.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        max_concurrent: int | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            local:          Opened local store.
            remote:         Opened remote store.
            max_concurrent: Upper bound on simultaneous remote writes during
                            the push phase (defaults to settings.push_concurrency).
        """
        self._local = local
        self._remote = remote
        self._max_concurrent = max(1, max_concurrent or get_settings().push_concurrency)
        self._exclusive = asyncio.Lock()
        self._inflight: asyncio.Task[SyncResult] | None = None
        self._reporter = StatusReporter(local, remote)

    @property
    def syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def sync_once(self) -> SyncResult:
        """Run one push-then-pull pass (or join the one already running).

        Returns:
            SyncResult with per-record failures collected in ``errors``.

        Raises:
            Unreachable: If either remote listing that bounds a phase fails;
                no partial result is meaningful without the remote set.
        """
        if self.syncing:
            logger.info("Sync already in progress; waiting for its result")
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.create_task(self._run_pass())
        return await asyncio.shield(self._inflight)

    async def status(self) -> SyncStatus:
        return await self._reporter.status()

    async def collapse_duplicates(self) -> CollapseReport:
        """Collapse remote duplicates while no sync pass can run."""
        async with self._exclusive:
            return await collapser.collapse_duplicates(self._remote)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run_pass(self) -> SyncResult:
        async with self._exclusive:
            result = SyncResult()
            logger.info("Sync pass started")

            # Taken before listing so rows created or deleted mid-pass survive the pull.
            mark = await self._local.sequence_mark()
            active = await self._local.list_active()
            tombstones = await self._local.list_deleted()
            index = RemoteIndex(await self._remote.list_all())

            steps = self._plan(active, tombstones, index)
            keep = await self._push(steps, result)

            refreshed = await self._remote.list_all()
            await self._local.replace_all(
                [local_copy_of(r) for r in refreshed],
                keep=keep,
                keep_newer_than=mark,
                settled_tombstones=[r.local_id for r in tombstones],
            )

            result.remote_count = len(refreshed)
            result.finished_at = utc_now()
            await self._local.record_sync(result.finished_at)
            logger.info(
                "Sync pass completed: pushed=%d merged=%d deleted=%d errors=%d remote=%d",
                result.pushed, result.merged, result.deleted,
                len(result.errors), result.remote_count,
            )
            return result

    def _plan(
        self,
        active: list[Record],
        tombstones: list[Record],
        index: RemoteIndex,
    ) -> list[PushStep]:
        """Classify local records sequentially so content matches are claimed once."""
        steps: list[PushStep] = []

        for record in active:
            match = index.correlate(record)
            if match.kind is MatchKind.unmatched:
                if record.local_id is None or not record.local_id.is_local:
                    logger.warning("Skipping %s: no local-origin id to correlate on", record.label())
                    continue
                steps.append(PushStep(PushAction.insert, record))
            elif match.kind is MatchKind.content:
                index.claim(match.remote_id)
                steps.append(PushStep(PushAction.merge, record, match.remote_id))

        for record in tombstones:
            remote_id = record.remote_id
            if remote_id is None:
                counterpart = index.by_correlation(record.correlation_id or record.local_id)
                remote_id = counterpart.remote_id if counterpart else None
            if remote_id is not None:
                steps.append(PushStep(PushAction.delete, record, remote_id))

        logger.debug(
            "Push plan: %d inserts, %d merges, %d deletes (of %d active, %d tombstones)",
            sum(1 for s in steps if s.action is PushAction.insert),
            sum(1 for s in steps if s.action is PushAction.merge),
            sum(1 for s in steps if s.action is PushAction.delete),
            len(active), len(tombstones),
        )
        return steps

    async def _push(self, steps: list[PushStep], result: SyncResult) -> set[RecordId]:
        """Execute the plan; return the local ids that must survive the pull."""
        semaphore = asyncio.Semaphore(self._max_concurrent)
        outcomes = await asyncio.gather(
            *(self._execute(step, semaphore) for step in steps), return_exceptions=True
        )

        keep: set[RecordId] = set()
        for step, error in zip(steps, outcomes):
            if error is None:
                if step.action is PushAction.insert:
                    result.pushed += 1
                elif step.action is PushAction.merge:
                    result.merged += 1
                else:
                    result.deleted += 1
                continue
            if not isinstance(error, Exception):
                raise error

            if isinstance(error, NotFound) and step.action is PushAction.delete:
                logger.info("%s already deleted remotely", step.record.label())
                continue

            keep.add(step.record.local_id)
            if isinstance(error, NotFound):
                # Content-match target vanished; the record is pushed next pass.
                logger.info("Merge target for %s is gone: %s", step.record.label(), error)
                continue
            if isinstance(error, SyncError):
                logger.warning(
                    "Push %s failed for %s: %s", step.action.value, step.record.label(), error
                )
            else:
                logger.error(
                    "Push %s failed for %s with unexpected error: %r",
                    step.action.value, step.record.label(), error,
                )
            result.errors.append(SyncFailure(record=step.record, cause=error))

        return keep

    async def _execute(self, step: PushStep, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            if step.action is PushAction.insert:
                await self._remote.insert(
                    Record(
                        name=step.record.name,
                        age=step.record.age,
                        correlation_id=step.record.local_id,
                        created_at=step.record.created_at,
                        updated_at=step.record.updated_at,
                    )
                )
            elif step.action is PushAction.merge:
                await self._remote.update(
                    step.remote_id, {"correlation_id": step.record.local_id}
                )
            else:
                await self._remote.delete(step.remote_id)
