"""Tests for sync triggers: toggle, reconnect and manual sync."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from rostersync.errors import Unreachable
from rostersync.sync.controller import SyncController
from rostersync.sync.engine import ReconciliationEngine, SyncResult
from rostersync.sync.local_store import LocalStore
from rostersync.sync.tests.conftest import FlakyRemoteStore, add_local


class TestTriggers:
    @pytest.mark.asyncio
    async def test_enabling_sync_runs_a_pass(
        self, engine: ReconciliationEngine, local_store: LocalStore, remote_store: FlakyRemoteStore
    ) -> None:
        await add_local(local_store, "Alice", 30)
        controller = SyncController(engine, enabled=False)

        result = await controller.set_enabled(True)

        assert controller.enabled
        assert result is not None and result.pushed == 1
        assert controller.last_result is result

    @pytest.mark.asyncio
    async def test_enabling_twice_runs_one_pass(self, engine: ReconciliationEngine) -> None:
        controller = SyncController(engine, enabled=True)
        assert await controller.set_enabled(True) is None

    @pytest.mark.asyncio
    async def test_disabling_never_syncs(self, engine: ReconciliationEngine) -> None:
        engine.sync_once = AsyncMock()
        controller = SyncController(engine, enabled=True)
        await controller.set_enabled(False)
        engine.sync_once.assert_not_called()

    @pytest.mark.asyncio
    async def test_reconnect_respects_the_toggle(
        self, engine: ReconciliationEngine, local_store: LocalStore, remote_store: FlakyRemoteStore
    ) -> None:
        await add_local(local_store, "Alice", 30)
        controller = SyncController(engine, enabled=False)

        assert await controller.on_reconnect() is None
        assert await remote_store.list_all() == []

        await controller.set_enabled(True)
        await add_local(local_store, "Bob", 25, minutes=1)
        result = await controller.on_reconnect()
        assert result.pushed == 1

    @pytest.mark.asyncio
    async def test_manual_sync_runs_while_disabled(
        self, engine: ReconciliationEngine, local_store: LocalStore
    ) -> None:
        await add_local(local_store, "Alice", 30)
        controller = SyncController(engine, enabled=False)
        result = await controller.sync_now()
        assert result.pushed == 1


class TestFailureReporting:
    @pytest.mark.asyncio
    async def test_unreachable_remote_is_absorbed(
        self, engine: ReconciliationEngine, remote_store: FlakyRemoteStore
    ) -> None:
        remote_store.fail_listing = True
        controller = SyncController(engine, enabled=True)

        result = await controller.sync_now()

        assert result is None
        assert isinstance(controller.last_error, Unreachable)
        assert controller.summary().startswith("Sync failed")

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(
        self, engine: ReconciliationEngine, remote_store: FlakyRemoteStore
    ) -> None:
        controller = SyncController(engine, enabled=True)
        remote_store.fail_listing = True
        await controller.sync_now()
        remote_store.fail_listing = False
        await controller.sync_now()
        assert controller.last_error is None
        assert isinstance(controller.last_result, SyncResult)

    @pytest.mark.asyncio
    async def test_summary_renders_before_and_after_sync(
        self, engine: ReconciliationEngine, local_store: LocalStore, remote_store: FlakyRemoteStore
    ) -> None:
        controller = SyncController(engine, enabled=True)
        assert controller.summary() == "Not synced yet"

        await add_local(local_store, "Alice", 30)
        await add_local(local_store, "Bob", 25, minutes=1)
        remote_store.reject_names = {"Bob"}
        await controller.sync_now()

        summary = controller.summary()
        assert "Synced 1 new" in summary
        assert "(1 failed)" in summary
