"""Identity correlation between local records and the remote record set.

A local record is classified against an index over one remote listing:

    1. correlation: it already carries a link (correlation id or remote id),
       or some remote record's correlation id equals its local id
    2. content:     an uncorrelated remote record has the same (name, age);
       the oldest such record wins
    3. unmatched:   neither; the record has to be pushed

Content matching only bridges records created before any link existed.
Remote records that already carry a correlation id are never offered as
content candidates, so two distinct people sharing name and age are not
merged once either of them has been synced.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from rostersync.sync.base import Record, RecordId


class MatchKind(str, Enum):
    unmatched = "unmatched"
    correlation = "correlation"
    content = "content"


@dataclass(frozen=True)
class Match:
    """Outcome of correlating one local record.

    Attributes:
        kind:      How (or whether) a remote counterpart was found.
        remote_id: The counterpart's remote id, when known.
    """

    kind: MatchKind
    remote_id: RecordId | None = None

    @classmethod
    def unmatched(cls) -> Match:
        return cls(MatchKind.unmatched)


class RemoteIndex:
    """Lookup tables over one remote listing.

    Usage::

        index = RemoteIndex(await remote.list_all())
        match = index.correlate(local_record)
        if match.kind is MatchKind.content:
            index.claim(match.remote_id)
    """

    def __init__(self, remote_records: Iterable[Record]) -> None:
        self._by_remote_id: dict[RecordId, Record] = {}
        self._by_correlation: dict[RecordId, Record] = {}
        self._uncorrelated: dict[tuple[str, int], list[Record]] = defaultdict(list)

        for record in remote_records:
            if record.remote_id is not None:
                self._by_remote_id[record.remote_id] = record
            if record.correlation_id is not None:
                self._by_correlation[record.correlation_id] = record
            else:
                self._uncorrelated[record.content_key].append(record)

        for candidates in self._uncorrelated.values():
            candidates.sort(key=lambda r: r.created_at)

    def __len__(self) -> int:
        return len(self._by_remote_id)

    def by_correlation(self, correlation_id: RecordId) -> Record | None:
        return self._by_correlation.get(correlation_id)

    def content_candidates(self, name: str, age: int) -> list[Record]:
        """Uncorrelated remote records with this content, oldest first."""
        return list(self._uncorrelated.get((name.strip(), age), ()))

    def claim(self, remote_id: RecordId) -> None:
        """Withdraw a remote record from content matching for this pass."""
        for key, candidates in self._uncorrelated.items():
            remaining = [r for r in candidates if r.remote_id != remote_id]
            if len(remaining) != len(candidates):
                self._uncorrelated[key] = remaining
                return

    def correlate(self, local: Record) -> Match:
        """Classify one local record against this index."""
        if local.correlation_id is not None:
            counterpart = self._by_correlation.get(local.correlation_id)
            remote_id = counterpart.remote_id if counterpart else local.remote_id
            return Match(MatchKind.correlation, remote_id)

        if local.local_id is not None:
            counterpart = self._by_correlation.get(local.local_id)
            if counterpart is not None:
                return Match(MatchKind.correlation, counterpart.remote_id)

        if local.remote_id is not None:
            return Match(MatchKind.correlation, local.remote_id)

        candidates = self.content_candidates(local.name, local.age)
        if candidates:
            return Match(MatchKind.content, candidates[0].remote_id)

        return Match.unmatched()


def correlate(local: Record, remote_records: Iterable[Record] | RemoteIndex) -> Match:
    """Classify ``local`` against a remote listing or a prebuilt index."""
    index = remote_records if isinstance(remote_records, RemoteIndex) else RemoteIndex(remote_records)
    return index.correlate(local)
