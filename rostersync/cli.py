"""rostersync CLI - manage local records and sync them with the server.

Uses tyro for type-driven CLI generation from dataclasses.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Annotated

import tyro

from rostersync.config import get_settings
from rostersync.errors import NotFound, SyncError
from rostersync.logging_config import configure_logging
from rostersync.sync.base import Record, RecordId
from rostersync.sync.controller import SyncController
from rostersync.sync.engine import ReconciliationEngine
from rostersync.sync.local_store import LocalStore
from rostersync.sync.records import RecordService
from rostersync.sync.remote_http import HttpRemoteStore

logger = logging.getLogger("rostersync.cli")


@dataclass
class Session:
    local: LocalStore
    remote: HttpRemoteStore
    engine: ReconciliationEngine
    controller: SyncController
    records: RecordService


@asynccontextmanager
async def open_session(offline: bool = False) -> AsyncIterator[Session]:
    """Open both stores from settings and wire the sync components."""
    settings = get_settings()
    async with LocalStore(settings.local_db_path) as local, HttpRemoteStore() as remote:
        engine = ReconciliationEngine(local, remote, settings.push_concurrency)
        controller = SyncController(engine, enabled=settings.sync_enabled and not offline)
        yield Session(
            local=local,
            remote=remote,
            engine=engine,
            controller=controller,
            records=RecordService(local, remote, controller),
        )


def _format_record(record: Record) -> str:
    state = "synced" if record.is_linked else "local"
    return f"{record.local_id}  {record.name:<24} {record.age:>3}  [{state}]"


@dataclass
class Add:
    """Create a record (written through to the server when sync is on)."""

    name: tyro.conf.Positional[str]
    age: tyro.conf.Positional[int]
    offline: bool = field(default=False, metadata={"help": "Do not write through"})

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session(self.offline) as session:
            record = await session.records.create(self.name, self.age)
        print(_format_record(record))
        return 0


@dataclass
class List:
    """Show active local records, newest first."""

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session(offline=True) as session:
            records = await session.records.list()
        for record in records:
            print(_format_record(record))
        print(f"{len(records)} records")
        return 0


@dataclass
class Remove:
    """Delete a record by the id shown in ``list``."""

    record_id: tyro.conf.Positional[str]
    offline: bool = field(default=False, metadata={"help": "Do not write through"})

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session(self.offline) as session:
            for candidate in (RecordId.local(self.record_id), RecordId.remote(self.record_id)):
                try:
                    await session.records.delete(candidate)
                except NotFound:
                    continue
                print(f"Deleted {self.record_id}")
                return 0
        print(f"No record {self.record_id}")
        return 1


@dataclass
class Sync:
    """Run one reconciliation pass now."""

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session() as session:
            result = await session.controller.sync_now()
            print(session.controller.summary())
            if result is None:
                return 1
            for failure in result.errors:
                print(f"  failed: {failure.message}")
        return 0 if result.ok else 2


@dataclass
class Status:
    """Compare local and server record counts."""

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session() as session:
            status = await session.engine.status()
        print(f"local records:   {status.local_count}")
        print(f"server records:  {status.remote_count}" + ("" if status.reachable else " (unreachable)"))
        print(f"pending push:    {status.new_local_count}")
        print(f"last sync:       {status.last_sync_at.isoformat() if status.last_sync_at else 'never'}")
        return 0 if status.reachable else 1


@dataclass
class Collapse:
    """Delete server-side duplicates (same name and age), keeping the oldest."""

    def run(self) -> int:
        return asyncio.run(self._run())

    async def _run(self) -> int:
        async with open_session() as session:
            try:
                report = await session.engine.collapse_duplicates()
            except SyncError as exc:
                print(f"Cleanup failed: {exc}")
                return 1
        for group in report.duplicate_groups:
            print(f"  {group.name}/{group.age}: {group.count} copies")
        print(
            f"{report.duplicates_found} duplicate groups, "
            f"{report.records_deleted} records deleted"
        )
        return 0 if not report.errors else 2


@dataclass
class Serve:
    """Run the remote record service."""

    host: str = field(default="127.0.0.1", metadata={"help": "Bind address"})
    port: int = field(default=8000, metadata={"help": "Bind port"})
    reload: bool = field(default=False, metadata={"help": "Reload on code changes"})

    def run(self) -> int:
        import uvicorn

        uvicorn.run("rostersync.main:app", host=self.host, port=self.port, reload=self.reload)
        return 0


Command = (
    Annotated[Add, tyro.conf.subcommand("add")]
    | Annotated[List, tyro.conf.subcommand("list")]
    | Annotated[Remove, tyro.conf.subcommand("remove")]
    | Annotated[Sync, tyro.conf.subcommand("sync")]
    | Annotated[Status, tyro.conf.subcommand("status")]
    | Annotated[Collapse, tyro.conf.subcommand("collapse")]
    | Annotated[Serve, tyro.conf.subcommand("serve")]
)


def main() -> int:
    """Entry point for the CLI."""
    configure_logging(get_settings().log_level)

    try:
        cmd = tyro.cli(
            Command,
            prog="rostersync",
            description="Offline-first record store with server reconciliation.",
        )
        return cmd.run()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        return 130
    except SyncError as e:
        logger.error("%s", e)
        return 1
