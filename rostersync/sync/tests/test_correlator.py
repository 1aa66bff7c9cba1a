"""Tests for identity correlation between local and remote records."""

from __future__ import annotations

from rostersync.sync.base import Record, RecordId
from rostersync.sync.correlator import Match, MatchKind, RemoteIndex, correlate
from rostersync.sync.tests.conftest import at


def remote(name: str, age: int, rid: str, minutes: int = 0, corr: str | None = None) -> Record:
    return Record(
        name=name,
        age=age,
        remote_id=RecordId.remote(rid),
        correlation_id=RecordId.local(corr) if corr else None,
        created_at=at(minutes),
    )


def local(name: str, age: int, lid: str = "l1", **kwargs) -> Record:
    return Record(name=name, age=age, local_id=RecordId.local(lid), **kwargs)


class TestCorrelation:
    def test_own_correlation_id_matches(self) -> None:
        listing = [remote("Alice", 30, "r1", corr="l1")]
        record = local("Alice", 30, correlation_id=RecordId.local("l1"))
        assert correlate(record, listing) == Match(MatchKind.correlation, RecordId.remote("r1"))

    def test_remote_correlation_equal_to_local_id_matches(self) -> None:
        listing = [remote("Alice", 31, "r1", corr="l1")]
        assert correlate(local("Alice", 30), listing) == Match(
            MatchKind.correlation, RecordId.remote("r1")
        )

    def test_linked_record_matches_even_when_remote_is_gone(self) -> None:
        record = local("Alice", 30, remote_id=RecordId.remote("r-gone"))
        match = correlate(record, [])
        assert match.kind is MatchKind.correlation

    def test_correlation_wins_over_content(self) -> None:
        listing = [remote("Alice", 30, "r-old", minutes=0), remote("Alice", 30, "r1", minutes=5, corr="l1")]
        assert correlate(local("Alice", 30), listing).remote_id == RecordId.remote("r1")


class TestContentMatching:
    def test_uncorrelated_twin_matches_by_content(self) -> None:
        match = correlate(local("Alice", 30), [remote("Alice", 30, "r1")])
        assert match == Match(MatchKind.content, RecordId.remote("r1"))

    def test_earliest_candidate_wins(self) -> None:
        listing = [remote("Alice", 30, "late", minutes=9), remote("Alice", 30, "early", minutes=1)]
        assert correlate(local("Alice", 30), listing).remote_id == RecordId.remote("early")

    def test_names_compare_after_trimming(self) -> None:
        match = correlate(local(" Alice ", 30), [remote("Alice", 30, "r1")])
        assert match.kind is MatchKind.content

    def test_correlated_remote_is_never_a_candidate(self) -> None:
        match = correlate(local("Alice", 30), [remote("Alice", 30, "r1", corr="other")])
        assert match == Match.unmatched()

    def test_different_age_is_unmatched(self) -> None:
        assert correlate(local("Alice", 30), [remote("Alice", 31, "r1")]).kind is MatchKind.unmatched


class TestRemoteIndex:
    def test_claim_withdraws_candidate(self) -> None:
        index = RemoteIndex([remote("Alice", 30, "r1"), remote("Alice", 30, "r2", minutes=1)])
        first = index.correlate(local("Alice", 30, "a"))
        index.claim(first.remote_id)
        second = index.correlate(local("Alice", 30, "b"))
        index.claim(second.remote_id)

        assert first.remote_id == RecordId.remote("r1")
        assert second.remote_id == RecordId.remote("r2")
        assert index.correlate(local("Alice", 30, "c")).kind is MatchKind.unmatched

    def test_len_counts_remote_records(self) -> None:
        assert len(RemoteIndex([remote("A", 1, "r1"), remote("B", 2, "r2")])) == 2

    def test_prebuilt_index_accepted(self) -> None:
        index = RemoteIndex([remote("Alice", 30, "r1")])
        assert correlate(local("Alice", 30), index).kind is MatchKind.content
