"""Shared plumbing for CLI commands."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from ...config import Config
from ...core.sync import SyncService, classify_error
from ...exceptions import SyncError
from ...storage import StorageError
from ..display import console, display_sync_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

server_option = click.option(
    "--server",
    "server_url",
    help="Sync server URL (defaults to PORTFOLIO_SYNC_SERVER_URL)",
)
user_option = click.option(
    "--user",
    "user_id",
    help="Sync user id (defaults to PORTFOLIO_SYNC_USER_ID)",
)
password_option = click.option(
    "--password",
    prompt=True,
    hide_input=True,
    help="Sync password (prompted if omitted)",
)


def resolve_account(
    config: Config, server_url: Optional[str], user_id: Optional[str]
) -> tuple[str, str]:
    """Fill server and user from configuration, failing if still missing."""
    server_url = server_url or config.server_url
    user_id = user_id or config.user_id
    if not server_url:
        raise click.UsageError("No server given. Use --server or PORTFOLIO_SYNC_SERVER_URL")
    if not user_id:
        raise click.UsageError("No user given. Use --user or PORTFOLIO_SYNC_USER_ID")
    return server_url, user_id


def run_with_service(
    config: Config, action: Callable[[SyncService], Awaitable[T]], **kwargs: Any
) -> T:
    """Run ``action`` against a service bound to the configured state file.

    A remembered encryption key is restored first. Sync failures are shown
    with their recommended action and abort the command.
    """

    async def _run() -> T:
        async with SyncService.from_config(config, **kwargs) as service:
            service.credentials.restore_session_key()
            return await action(service)

    try:
        return asyncio.run(_run())
    except SyncError as e:
        logger.debug("Command failed", exc_info=True)
        display_sync_error(classify_error(e))
        raise click.Abort()
    except StorageError as e:
        logger.exception("Local state unavailable")
        console.print(f"[bold red]❌ Local state unavailable: {e}[/bold red]")
        raise click.Abort()


async def ensure_unlocked(service: SyncService, password: Optional[str]) -> None:
    """Unlock with ``password`` when no session key was restored."""
    if service.credentials.has_session_key() or not password:
        return
    await service.unlock(password)
