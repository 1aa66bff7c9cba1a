"""Point-in-time divergence snapshot between the local and remote stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from rostersync.errors import Unreachable
from rostersync.sync.base import RemoteStore
from rostersync.sync.correlator import MatchKind, RemoteIndex
from rostersync.sync.local_store import LocalStore

logger = logging.getLogger("rostersync.sync.status")


@dataclass
class SyncStatus:
    """What a status panel shows, and what a scheduler checks before syncing.

    Attributes:
        local_count:     Active local records.
        remote_count:    Remote records (0 when unreachable).
        new_local_count: Active local records the next pass would push.
        last_sync_at:    Completion time of the last successful pass.
        reachable:       False when the remote listing failed.
    """

    local_count: int
    remote_count: int
    new_local_count: int
    last_sync_at: datetime | None
    reachable: bool = True

    @property
    def degraded(self) -> bool:
        return not self.reachable


class StatusReporter:
    """Computes ``SyncStatus`` without writing to either store."""

    def __init__(self, local: LocalStore, remote: RemoteStore) -> None:
        self._local = local
        self._remote = remote

    async def status(self) -> SyncStatus:
        active = await self._local.list_active()
        last_sync_at = await self._local.last_sync_at()

        try:
            remote_records = await self._remote.list_all()
        except Unreachable as exc:
            logger.warning("Remote unreachable while computing status: %s", exc)
            return SyncStatus(
                local_count=len(active),
                remote_count=0,
                new_local_count=sum(1 for r in active if not r.is_linked),
                last_sync_at=last_sync_at,
                reachable=False,
            )

        index = RemoteIndex(remote_records)
        new_local = 0
        for record in active:
            match = index.correlate(record)
            if match.kind is MatchKind.unmatched:
                new_local += 1
            elif match.kind is MatchKind.content:
                index.claim(match.remote_id)

        return SyncStatus(
            local_count=len(active),
            remote_count=len(remote_records),
            new_local_count=new_local,
            last_sync_at=last_sync_at,
        )
