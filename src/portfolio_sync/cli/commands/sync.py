"""Sync commands: sync, resolve, status, health, delete, watch."""

import asyncio
import logging
from typing import Any, Dict, Optional

import click

from ...config import Config
from ...core.sync import SyncOutcome, SyncService
from ...models import SyncDirection, SyncStatus
from ..display import console, display_status, display_sync_outcome
from .common import ensure_unlocked, run_with_service

logger = logging.getLogger(__name__)

unlock_password_option = click.option(
    "--password",
    help="Sync password, needed when the encryption key is not remembered",
)


@click.command("sync")
@click.option(
    "--direction",
    type=click.Choice([d.value for d in SyncDirection]),
    default=SyncDirection.BOTH.value,
    show_default=True,
    help="Upload, download or reconcile both ways",
)
@click.option(
    "--force",
    is_flag=True,
    help="On conflict, let the newer side win instead of stopping",
)
@unlock_password_option
@click.pass_obj
def sync_command(
    config: Config, direction: str, force: bool, password: Optional[str]
) -> None:
    """Synchronize goal settings with the server."""
    console.print("[bold blue]🔄 Syncing goal settings...[/bold blue]")

    async def _sync(service: SyncService) -> SyncOutcome:
        await ensure_unlocked(service, password)
        return await service.perform_sync(direction, force=force)

    outcome = run_with_service(config, _sync)
    display_sync_outcome(outcome)
    if outcome.status == SyncStatus.CONFLICT:
        raise SystemExit(2)


@click.command("resolve")
@click.argument("choice", type=click.Choice(["local", "remote"]))
@unlock_password_option
@click.pass_obj
def resolve_command(config: Config, choice: str, password: Optional[str]) -> None:
    """Resolve a sync conflict by keeping local or server settings.

    Runs a sync first to pick up the current conflict.
    """

    async def _resolve(service: SyncService) -> Optional[SyncOutcome]:
        await ensure_unlocked(service, password)
        outcome = await service.perform_sync()
        if outcome.status != SyncStatus.CONFLICT:
            return None
        return await service.resolve_conflict(choice, outcome.conflict)

    outcome = run_with_service(config, _resolve)
    if outcome is None:
        console.print("[dim]✓ No conflict to resolve, settings are in sync[/dim]")
        return
    display_sync_outcome(outcome)


@click.command("status")
@click.pass_obj
def status_command(config: Config) -> None:
    """Show sync configuration and the last result."""

    async def _status(service: SyncService) -> Dict[str, Any]:
        return service.get_status()

    display_status(run_with_service(config, _status))


@click.command("health")
@click.option("--server", "server_url", help="Server to check (defaults to configured)")
@click.pass_obj
def health_command(config: Config, server_url: Optional[str]) -> None:
    """Check that the sync server is reachable."""

    async def _health(service: SyncService) -> Dict[str, Any]:
        return await service.check_health(server_url or config.server_url or None)

    result = run_with_service(config, _health)
    console.print(
        f"[bold green]✅ Server is {result.get('status', 'up')}[/bold green] "
        f"[dim](version {result.get('version', 'unknown')})[/dim]"
    )


@click.command("delete")
@click.confirmation_option(
    prompt="Delete your encrypted settings from the sync server?"
)
@click.pass_obj
def delete_command(config: Config) -> None:
    """Delete this account's data from the server."""

    async def _delete(service: SyncService) -> None:
        await service.delete_remote_data()

    run_with_service(config, _delete)
    console.print("[bold green]✅ Server data deleted[/bold green]")


@click.command("watch")
@unlock_password_option
@click.pass_obj
def watch_command(config: Config, password: Optional[str]) -> None:
    """Sync now, then keep syncing on the configured interval.

    Stop with Ctrl+C.
    """

    async def _watch(service: SyncService) -> None:
        await ensure_unlocked(service, password)
        display_sync_outcome(await service.perform_sync())
        if not service.start():
            console.print(
                "[yellow]⚠️  Auto sync is off or sync is not configured[/yellow]"
            )
            return
        interval = service.scheduler.interval_minutes
        console.print(f"[dim]Watching, syncing every {interval} minute(s)...[/dim]")
        while True:
            await asyncio.sleep(3600)

    try:
        run_with_service(config, _watch)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
