from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from expensesync.domain.models import SyncStatus

_STATUS_STYLES = {
    SyncStatus.SYNCED.value: "green",
    SyncStatus.PENDING_SYNC.value: "yellow",
    SyncStatus.SYNC_ERROR.value: "red",
}


def _state_label(status: Mapping[str, Any]) -> str:
    state = status.get("state", "idle")
    colour = {"idle": "green", "syncing": "cyan", "error": "red"}.get(state, "white")
    online = "[green]online[/green]" if status.get("online") else "[red]offline[/red]"
    return f"[{colour}]{state}[/{colour}] │ {online}"


def print_status(
    status: Mapping[str, Any],
    counts: Mapping[str, Mapping[str, int]],
    console: Optional[Console] = None,
) -> None:
    """
    Render the sync status of the local store as a rich table.

    `status` is `SyncOrchestrator.status()`; `counts` maps an entity type to
    its per-status record counts.
    """
    console = console or Console()

    caption_parts = []
    if status.get("last_sync_time"):
        caption_parts.append(f"Last sync: {status['last_sync_time']}")
    else:
        caption_parts.append("Never synced")
    if status.get("error_message"):
        caption_parts.append(f"[red]Error: {status['error_message']}[/red]")

    table = Table(
        title=f"expensesync status\n{_state_label(status)}",
        box=box.ROUNDED,
        caption=" │ ".join(caption_parts),
    )
    table.add_column("Entity", style="cyan", no_wrap=True)
    for value, style in _STATUS_STYLES.items():
        table.add_column(value, justify="right", style=style)
    table.add_column("deleted", justify="right", style="magenta")

    for entity_type, per_status in counts.items():
        table.add_row(
            entity_type,
            *(str(per_status.get(value, 0)) for value in _STATUS_STYLES),
            str(per_status.get("deleted", 0)),
        )

    console.print(table)


def print_summary(summary: Optional[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """Render the outcome of one sync cycle."""
    console = console or Console()
    if not summary:
        console.print("[yellow]No sync has run.[/yellow]")
        return

    table = Table(title="Sync cycle", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="bold")
    for key in ("pushed", "remapped", "purged", "failed", "capped", "skipped", "pulled"):
        table.add_row(key, str(summary.get(key, 0)))
    table.add_row("duration (s)", f"{summary.get('duration_seconds', 0.0):.3f}")
    console.print(table)

    for line in summary.get("errors") or []:
        console.print(f"[red]✗[/red] {line}")


__all__ = ["print_status", "print_summary"]
