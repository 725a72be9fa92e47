"""
Seed script for expensesync.

Creates deterministic pseudo-random receipts and time entries in the local
store as if they had been captured offline: every record gets a local id and
`pending_sync` status, and one queued create. Run `expensesync sync` afterwards
to push them.
"""

from __future__ import annotations

import asyncio
import random
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import typer

from expensesync.config import get_settings
from expensesync.connectivity import ConnectivityState
from expensesync.domain.models import EXPENSE_CATEGORIES, ReceiptCreate, TimeEntryCreate
from expensesync.gateway.http import HttpRemoteGateway
from expensesync.infrastructure.local_store import LocalStore
from expensesync.orchestrator import SyncOrchestrator
from expensesync.services import ReceiptService, TimeEntryService

app = typer.Typer(help="Seed the local store with offline receipts and time entries.")

MERCHANTS = ["Blue Bottle", "Uber", "Hilton", "Staples", "AWS", "Delta", "Shell", "Notion"]
PROJECTS = ["Website", "Mobile", "Internal", None]


async def _seed(
    store: LocalStore, owner_id: str, receipts: int, time_entries: int, seed: int
) -> None:
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    offline = ConnectivityState(online=False)
    gateway = HttpRemoteGateway()
    orchestrator = SyncOrchestrator(store, gateway, offline, identity=owner_id)
    receipt_service = ReceiptService(store, gateway, offline, orchestrator)
    time_service = TimeEntryService(store, gateway, offline, orchestrator)
    try:
        for _ in range(receipts):
            await receipt_service.create(
                ReceiptCreate(
                    merchant_name=rng.choice(MERCHANTS),
                    transaction_date=now - timedelta(days=rng.randint(0, 60)),
                    total_amount=round(rng.uniform(3, 900), 2),
                    category=rng.choice(EXPENSE_CATEGORIES),
                    description="seeded offline",
                )
            )
        for _ in range(time_entries):
            await time_service.create(
                TimeEntryCreate(
                    date=now - timedelta(days=rng.randint(0, 30)),
                    hours=rng.choice([0.5, 1.0, 1.5, 2.0, 4.0, 8.0]),
                    description=rng.choice(["Planning", "Review", "Implementation", "Meetings"]),
                    project=rng.choice(PROJECTS),
                )
            )
    finally:
        await gateway.close()


@app.command()
def main(
    receipts: int = typer.Option(25, "--receipts", "-r", help="Number of receipts to create."),
    time_entries: int = typer.Option(
        40, "--time-entries", "-t", help="Number of time entries to create."
    ),
    owner: Optional[str] = typer.Option(
        None, "--owner", "-o", help="Owner id (default: EXPENSESYNC_OWNER_ID)."
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Local SQLite database path."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
) -> None:
    """
    Create offline records in the local store.
    """
    settings = get_settings()
    owner_id = owner or settings.owner_id
    if not owner_id:
        typer.echo("No owner id. Pass --owner or set EXPENSESYNC_OWNER_ID.", err=True)
        raise typer.Exit(code=2)

    start = time.perf_counter()
    store = LocalStore.open(db or settings.db_path)
    try:
        asyncio.run(_seed(store, owner_id, receipts, time_entries, seed))
        pending = asyncio.run(store.count_pending(owner_id))
    finally:
        store.close()
    duration = time.perf_counter() - start
    typer.echo(
        f"Seeded {receipts} receipts and {time_entries} time entries for {owner_id} "
        f"in {duration:.2f}s ({pending} pending sync)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
