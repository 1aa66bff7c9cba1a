"""Sync triggers: the user toggle, network reconnect and the manual button.

Reconciliation is never continuous; a pass runs only when one of these
events fires.  The controller keeps the outcome of the latest pass so a
summary can always be rendered, and absorbs sync errors instead of raising
them at the caller.
"""

from __future__ import annotations

import logging

from rostersync.config import get_settings
from rostersync.errors import SyncError
from rostersync.sync.engine import ReconciliationEngine, SyncResult
from rostersync.sync.status import SyncStatus

logger = logging.getLogger("rostersync.sync.controller")


class SyncController:
    """Fires reconciliation passes in response to user and network events.

    Usage::

        controller = SyncController(engine)
        await controller.set_enabled(True)    # turning sync on runs a pass
        await controller.on_reconnect()       # runs a pass only if enabled
        await controller.sync_now()           # always runs a pass
    """

    def __init__(self, engine: ReconciliationEngine, enabled: bool | None = None) -> None:
        self._engine = engine
        self._enabled = get_settings().sync_enabled if enabled is None else enabled
        self.last_result: SyncResult | None = None
        self.last_error: SyncError | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def engine(self) -> ReconciliationEngine:
        return self._engine

    async def set_enabled(self, enabled: bool) -> SyncResult | None:
        """Flip the sync toggle; switching it on triggers a pass."""
        was_enabled, self._enabled = self._enabled, enabled
        logger.info("Sync %s", "enabled" if enabled else "disabled")
        if enabled and not was_enabled:
            return await self._run("toggle")
        return None

    async def on_reconnect(self) -> SyncResult | None:
        if not self._enabled:
            logger.debug("Reconnected while sync is disabled; skipping pass")
            return None
        return await self._run("reconnect")

    async def sync_now(self) -> SyncResult | None:
        """Manual trigger; runs regardless of the toggle."""
        return await self._run("manual")

    async def status(self) -> SyncStatus:
        return await self._engine.status()

    def summary(self) -> str:
        """One-line description of the latest pass for display."""
        if self.last_error is not None:
            return f"Sync failed: {self.last_error}"
        result = self.last_result
        if result is None:
            return "Not synced yet"
        text = (
            f"Synced {result.pushed} new, linked {result.merged}, "
            f"deleted {result.deleted}; {result.remote_count} records on server"
        )
        if result.errors:
            text += f" ({len(result.errors)} failed)"
        return text

    async def _run(self, trigger: str) -> SyncResult | None:
        logger.info("Sync triggered by %s", trigger)
        try:
            result = await self._engine.sync_once()
        except SyncError as exc:
            logger.warning("Sync (%s) failed: %s", trigger, exc)
            self.last_error = exc
            return None
        self.last_result = result
        self.last_error = None
        return result
