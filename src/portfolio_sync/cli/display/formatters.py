"""Display formatters and UI helpers for CLI."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ...core.sync import (
    ConflictDiffItem,
    SyncAction,
    SyncOutcome,
    build_conflict_diff,
)
from ...models import ConflictDescriptor, SyncErrorInfo, SyncStatus

console = Console()
logger = logging.getLogger(__name__)

ACTION_MESSAGES = {
    SyncAction.UPLOADED: "Uploaded local settings to the server",
    SyncAction.DOWNLOADED: "Applied settings from the server",
    SyncAction.NO_CHANGE: "Already in sync",
    SyncAction.NOTHING_TO_DOWNLOAD: "Nothing on the server to download",
    SyncAction.CONFLICT: "Conflict detected",
}


def format_timestamp(value: Optional[int]) -> str:
    """Render epoch milliseconds as local time, ``never`` when unset."""
    if not value:
        return "never"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def display_sync_outcome(outcome: SyncOutcome) -> None:
    """Display the result of a sync run or conflict resolution.

    Args:
        outcome: Outcome returned by the sync service
    """
    if outcome.status == SyncStatus.CONFLICT and outcome.conflict is not None:
        display_conflict(outcome.conflict)
        return

    message = ACTION_MESSAGES.get(outcome.action, outcome.action.value)
    console.print(f"\n[bold green]✅ {message}[/bold green]")
    if outcome.timestamp:
        console.print(f"  [dim]Sync timestamp: {format_timestamp(outcome.timestamp)}[/dim]")


def display_conflict(
    conflict: ConflictDescriptor, goal_names: Optional[Dict[str, str]] = None
) -> None:
    """Display both sides of a conflict and how to resolve it."""
    console.print("\n[bold yellow]⚠️  Sync conflict[/bold yellow]")
    console.print(
        f"  Local changes from {format_timestamp(conflict.local_timestamp)}, "
        f"server changes from {format_timestamp(conflict.remote_timestamp)} "
        f"(device {conflict.remote_device_id})"
    )

    items = build_conflict_diff(conflict, goal_names)
    if items:
        console.print(_conflict_table(items))
    else:
        console.print("  [dim]No goal-level differences[/dim]")

    console.print(
        "\nResolve with [cyan]portfolio-sync resolve local[/cyan] "
        "or [cyan]portfolio-sync resolve remote[/cyan]"
    )


def _conflict_table(items: List[ConflictDiffItem]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Goal", style="cyan")
    table.add_column("Local target", justify="right")
    table.add_column("Server target", justify="right")
    table.add_column("Local fixed", justify="center")
    table.add_column("Server fixed", justify="center")

    for item in items:
        table.add_row(
            item.goal_name,
            item.local_target_display,
            item.remote_target_display,
            item.local_fixed_display,
            item.remote_fixed_display,
        )
    return table


def display_status(status: Dict[str, Any]) -> None:
    """Display the sync status report.

    Args:
        status: Dictionary returned by ``SyncService.get_status``
    """
    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Status", status["status"])
    table.add_row("Enabled", "Yes" if status["enabled"] else "No")
    table.add_row("Logged in", "Yes" if status["configured"] else "No")
    table.add_row("Unlocked", "Yes" if status["unlocked"] else "[yellow]No[/yellow]")
    table.add_row("Server", status["server_url"] or "-")
    table.add_row("User", status["user_id"] or "-")
    table.add_row("Device", status["device_id"])
    table.add_row("Last sync", format_timestamp(status["last_sync"]))
    auto = (
        f"every {status['interval_minutes']} min" if status["auto_sync"] else "off"
    )
    table.add_row("Auto sync", auto)

    console.print("\n[bold blue]🔄 Sync status[/bold blue]")
    console.print(table)

    last_error = status.get("last_error")
    if last_error is not None:
        display_sync_error(last_error, heading="Last sync failed")


def display_goals(goals: List[Dict[str, Any]]) -> None:
    """Display the local goal settings."""
    if not goals:
        console.print("[dim]No goal settings stored[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Goal", style="cyan")
    table.add_column("Target", justify="right")
    table.add_column("Fixed", justify="center")
    for goal in goals:
        table.add_row(goal["goal_id"], goal["target"], goal["fixed"])
    console.print(table)


def display_sync_error(info: SyncErrorInfo, heading: str = "Sync failed") -> None:
    """Display a classified error with the action the user should take."""
    console.print(f"\n[bold red]❌ {heading}: {info.user_message}[/bold red]")
    console.print(f"  → {info.primary_action}")
    if info.detail and info.detail != info.user_message:
        console.print(f"  [dim]{info.detail}[/dim]")
