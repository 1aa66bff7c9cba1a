"""Tests for oldest-wins duplicate collapsing."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from rostersync.errors import NotFound, Unreachable
from rostersync.sync.base import RecordId
from rostersync.sync.collapser import collapse_duplicates, find_duplicate_groups
from rostersync.sync.remote_memory import MemoryRemoteStore
from rostersync.sync.tests.conftest import at, remote_record


async def opened(*records) -> MemoryRemoteStore:
    store = MemoryRemoteStore(records)
    await store.open()
    return store


class TestCollapse:
    @pytest.mark.asyncio
    async def test_three_bobs_collapse_to_the_oldest(self) -> None:
        store = await opened(
            remote_record("Bob", 25, minutes=3),
            remote_record("Bob", 25, minutes=1),
            remote_record("Bob", 25, minutes=2),
        )

        report = await collapse_duplicates(store)

        assert report.duplicates_found == 1
        assert report.records_deleted == 2
        assert [(g.name, g.age, g.count) for g in report.duplicate_groups] == [("Bob", 25, 3)]
        remaining = await store.list_all()
        assert len(remaining) == 1
        assert remaining[0].created_at == at(1)

    @pytest.mark.asyncio
    async def test_distinct_records_untouched(self) -> None:
        store = await opened(remote_record("Bob", 25), remote_record("Bob", 26), remote_record("Rob", 25))
        report = await collapse_duplicates(store)
        assert (report.duplicates_found, report.records_deleted) == (0, 0)
        assert len(await store.list_all()) == 3

    @pytest.mark.asyncio
    async def test_correlated_records_are_collapsed_too(self) -> None:
        store = await opened(
            remote_record("Bob", 25, minutes=1, correlation_id="device-a"),
            remote_record("Bob", 25, minutes=2, correlation_id="device-b"),
        )
        report = await collapse_duplicates(store)
        assert report.records_deleted == 1
        assert (await store.list_all())[0].correlation_id == RecordId.local("device-a")


class TestCorrelationPropagation:
    @pytest.mark.asyncio
    async def test_single_orphaned_correlation_moves_to_survivor(self) -> None:
        store = await opened(
            remote_record("Bob", 25, minutes=1),
            remote_record("Bob", 25, minutes=2, correlation_id="device-a"),
        )
        report = await collapse_duplicates(store)
        assert report.correlations_reassigned == 1
        assert (await store.list_all())[0].correlation_id == RecordId.local("device-a")

    @pytest.mark.asyncio
    async def test_ambiguous_correlations_are_not_propagated(self) -> None:
        store = await opened(
            remote_record("Bob", 25, minutes=1),
            remote_record("Bob", 25, minutes=2, correlation_id="device-a"),
            remote_record("Bob", 25, minutes=3, correlation_id="device-b"),
        )
        report = await collapse_duplicates(store)
        assert report.correlations_reassigned == 0
        assert (await store.list_all())[0].correlation_id is None


class TestCollapseFailures:
    @pytest.mark.asyncio
    async def test_delete_failure_is_reported_and_pass_continues(self) -> None:
        store = await opened(
            remote_record("Bob", 25, minutes=1),
            remote_record("Bob", 25, minutes=2),
            remote_record("Eve", 40, minutes=1),
            remote_record("Eve", 40, minutes=2),
        )
        real_delete = store.delete
        victims = {r.remote_id for r in await store.list_all() if r.name == "Bob"}

        async def flaky_delete(remote_id):
            if remote_id in victims:
                raise Unreachable("timeout")
            return await real_delete(remote_id)

        with patch.object(store, "delete", AsyncMock(side_effect=flaky_delete)):
            report = await collapse_duplicates(store)

        assert report.duplicates_found == 2
        assert report.records_deleted == 1
        assert len(report.errors) == 1

    @pytest.mark.asyncio
    async def test_already_deleted_duplicate_is_not_an_error(self) -> None:
        store = await opened(remote_record("Bob", 25, minutes=1), remote_record("Bob", 25, minutes=2))
        with patch.object(store, "delete", AsyncMock(side_effect=NotFound("gone"))):
            report = await collapse_duplicates(store)
        assert report.errors == []
        assert report.records_deleted == 0

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self) -> None:
        store = await opened()
        with patch.object(store, "list_all", AsyncMock(side_effect=Unreachable("down"))):
            with pytest.raises(Unreachable):
                await collapse_duplicates(store)


class TestFindDuplicateGroups:
    def test_groups_sorted_oldest_first(self) -> None:
        records = [remote_record("Bob", 25, minutes=m) for m in (5, 1, 3)]
        [group] = find_duplicate_groups(records)
        assert [r.created_at for r in group] == [at(1), at(3), at(5)]
