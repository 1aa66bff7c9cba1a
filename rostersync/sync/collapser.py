"""Duplicate collapsing for the remote record store.

Records with equal ``(name, age)`` typically appear when several clients
created the same person before any of them had synced.  A collapse pass
keeps the oldest record of each such group and hard-deletes the rest.

This is destructive and irreversible; callers must not run it while a sync
pass is pushing to the same store (``ReconciliationEngine`` serializes both).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from rostersync.errors import NotFound, SyncError
from rostersync.sync.base import Record, RecordId, RemoteStore

logger = logging.getLogger("rostersync.sync.collapser")


@dataclass
class DuplicateGroup:
    name: str
    age: int
    count: int


@dataclass
class CollapseReport:
    """Summary of one collapse pass.

    Attributes:
        duplicates_found:        Number of (name, age) groups with more than one record.
        records_deleted:         Number of records actually removed.
        duplicate_groups:        (name, age, count) of every collapsed group.
        correlations_reassigned: Survivors that inherited a deleted member's correlation id.
        errors:                  Per-record failures; the pass continues past them.
    """

    duplicates_found: int = 0
    records_deleted: int = 0
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    correlations_reassigned: int = 0
    errors: list[str] = field(default_factory=list)


def find_duplicate_groups(records: Iterable[Record]) -> list[list[Record]]:
    """Group records by content and return the groups with more than one member.

    Each group is ordered oldest first; the first element is the survivor.
    """
    groups: dict[tuple[str, int], list[Record]] = defaultdict(list)
    for record in records:
        groups[record.content_key].append(record)

    return [
        sorted(group, key=lambda r: (r.created_at, r.remote_id.value if r.remote_id else ""))
        for group in groups.values()
        if len(group) > 1
    ]


async def collapse_duplicates(remote: RemoteStore) -> CollapseReport:
    """Delete every duplicate but the oldest from ``remote``.

    If the survivor has no correlation id and exactly one deleted member had
    one, the survivor inherits it (best effort).

    Raises:
        Unreachable: If the remote listing cannot be fetched.
    """
    report = CollapseReport()
    records = await remote.list_all()

    for group in find_duplicate_groups(records):
        survivor, *redundant = group
        report.duplicates_found += 1
        report.duplicate_groups.append(
            DuplicateGroup(name=survivor.name, age=survivor.age, count=len(group))
        )
        logger.info(
            "Found %d duplicates for %s/%s, keeping oldest, removing %d",
            len(group), survivor.name, survivor.age, len(redundant),
        )

        orphaned: list[RecordId] = []
        for record in redundant:
            try:
                await remote.delete(record.remote_id)
            except NotFound:
                logger.info("Duplicate %s already gone", record.label())
                continue
            except SyncError as exc:
                logger.warning("Could not delete duplicate %s: %s", record.label(), exc)
                report.errors.append(f"{record.remote_id}: {exc}")
                continue
            report.records_deleted += 1
            if record.correlation_id is not None:
                orphaned.append(record.correlation_id)

        if survivor.correlation_id is None and len(orphaned) == 1:
            try:
                await remote.update(survivor.remote_id, {"correlation_id": orphaned[0]})
                report.correlations_reassigned += 1
            except SyncError as exc:
                logger.warning(
                    "Could not move correlation id %s to %s: %s",
                    orphaned[0], survivor.label(), exc,
                )

    logger.info(
        "Duplicate cleanup completed: %d groups, %d records deleted",
        report.duplicates_found, report.records_deleted,
    )
    return report
