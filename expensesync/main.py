from __future__ import annotations

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, NamedTuple, Optional

import typer

from expensesync.config import get_settings
from expensesync.connectivity import ConnectivityMonitor, ConnectivityState
from expensesync.domain.entities import ENTITY_DESCRIPTORS
from expensesync.gateway.http import HttpRemoteGateway
from expensesync.infrastructure.local_store import LocalStore
from expensesync.orchestrator import SyncOrchestrator
from expensesync.reporter import print_status, print_summary
from expensesync.utils.logging import configure_logging

app = typer.Typer(help="expensesync: offline-first sync for receipts and time entries.")

OwnerOption = typer.Option(
    None,
    "--owner",
    "-o",
    help="Owner id to operate on (default: EXPENSESYNC_OWNER_ID).",
)
DbOption = typer.Option(
    None,
    "--db",
    help="Path to the local SQLite database (default: EXPENSESYNC_DB_PATH).",
)


class Runtime(NamedTuple):
    store: LocalStore
    gateway: HttpRemoteGateway
    monitor: ConnectivityMonitor
    orchestrator: SyncOrchestrator


@asynccontextmanager
async def _runtime(owner: Optional[str], db: Optional[str]) -> AsyncIterator[Runtime]:
    settings = get_settings()
    store = LocalStore.open(db or settings.db_path)
    gateway = HttpRemoteGateway()
    state = ConnectivityState()
    monitor = ConnectivityMonitor(state, gateway.ping)
    orchestrator = SyncOrchestrator(store, gateway, state, identity=owner or settings.owner_id)
    try:
        yield Runtime(store, gateway, monitor, orchestrator)
    finally:
        await gateway.close()
        store.close()


def _require_owner(owner: Optional[str]) -> str:
    owner = owner or get_settings().owner_id
    if not owner:
        typer.echo("No owner id. Pass --owner or set EXPENSESYNC_OWNER_ID.", err=True)
        raise typer.Exit(code=2)
    return owner


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"API={settings.api_base_url} | DB={settings.db_path} | "
        f"owner={settings.owner_id or '-'} interval={settings.sync_interval_seconds}s "
        f"max_attempts={settings.max_sync_attempts or 'unbounded'}"
    )


@app.command()
def status(owner: Optional[str] = OwnerOption, db: Optional[str] = DbOption) -> None:
    """
    Show per-entity record counts by sync status.
    """
    owner_id = _require_owner(owner)

    async def _status() -> None:
        async with _runtime(owner_id, db) as rt:
            await rt.orchestrator.refresh_pending_count()
            counts: Dict[str, Dict[str, int]] = {}
            for entity_type in ENTITY_DESCRIPTORS:
                counts[entity_type.value] = await rt.store.records(entity_type).status_counts(
                    owner_id
                )
            print_status(rt.orchestrator.status(), counts)
            typer.echo(f"Queued mutations: {await rt.store.sync_queue.size()}")

    asyncio.run(_status())


@app.command()
def probe() -> None:
    """
    Check whether the remote API answers its health probe.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _probe() -> bool:
        async with HttpRemoteGateway() as gateway:
            monitor = ConnectivityMonitor(ConnectivityState(), gateway.ping)
            return await monitor.check_connectivity()

    online = asyncio.run(_probe())
    typer.echo(f"{settings.api_base_url}: {'online' if online else 'offline'}")
    if not online:
        raise typer.Exit(code=1)


@app.command()
def sync(owner: Optional[str] = OwnerOption, db: Optional[str] = DbOption) -> None:
    """
    Push pending local changes and pull the server's records.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    owner_id = _require_owner(owner)

    async def _sync() -> bool:
        async with _runtime(owner_id, db) as rt:
            if not await rt.monitor.check_connectivity():
                typer.echo("Remote API unreachable; changes stay queued.", err=True)
                return False
            ok = await rt.orchestrator.sync_all()
            print_summary(rt.orchestrator.last_summary)
            if not ok:
                typer.echo(f"Sync failed: {rt.orchestrator.error_message}", err=True)
            return ok

    if not asyncio.run(_sync()):
        raise typer.Exit(code=1)


@app.command("retry-failed")
def retry_failed(owner: Optional[str] = OwnerOption, db: Optional[str] = DbOption) -> None:
    """
    Move records parked in sync_error back to pending_sync.
    """
    owner_id = _require_owner(owner)

    async def _retry() -> int:
        async with _runtime(owner_id, db) as rt:
            return await rt.orchestrator.retry_failed(owner_id)

    typer.echo(f"Requeued {asyncio.run(_retry())} record(s).")


@app.command()
def clear(
    db: Optional[str] = DbOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """
    Drop every local record and queued mutation. Unsynced changes are lost.
    """
    if not yes:
        typer.confirm("Discard all local records, including unsynced changes?", abort=True)

    async def _clear() -> None:
        async with _runtime(None, db) as rt:
            await rt.store.clear_all()

    asyncio.run(_clear())
    typer.echo("Local store cleared.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
