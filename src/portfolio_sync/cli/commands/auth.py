"""Account commands: register, login, logout, unlock, enable, disable."""

import logging
from typing import Optional

import click

from ...config import Config
from ...core.sync import SyncService
from ..display import console
from .common import (
    password_option,
    resolve_account,
    run_with_service,
    server_option,
    user_option,
)

logger = logging.getLogger(__name__)


@click.command("register")
@server_option
@user_option
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Sync password (at least 8 characters)",
)
@click.option("--remember-key", is_flag=True, help="Keep the encryption key on disk")
@click.pass_obj
def register_command(
    config: Config,
    server_url: Optional[str],
    user_id: Optional[str],
    password: str,
    remember_key: bool,
) -> None:
    """Create a sync account.

    The password never leaves this machine; the server only stores a hash
    of it and never sees the encryption key.
    """
    server_url, user_id = resolve_account(config, server_url, user_id)

    async def _register(service: SyncService) -> None:
        await service.register(server_url, user_id, password, remember_key=remember_key)

    run_with_service(config, _register)
    console.print(f"[bold green]✅ Registered {user_id} on {server_url}[/bold green]")
    console.print("  Next: [cyan]portfolio-sync enable[/cyan]")


@click.command("login")
@server_option
@user_option
@password_option
@click.option("--remember-key", is_flag=True, help="Keep the encryption key on disk")
@click.pass_obj
def login_command(
    config: Config,
    server_url: Optional[str],
    user_id: Optional[str],
    password: str,
    remember_key: bool,
) -> None:
    """Log in to the sync server."""
    server_url, user_id = resolve_account(config, server_url, user_id)

    async def _login(service: SyncService) -> None:
        await service.login(
            server_url, user_id, password, remember_key=remember_key or None
        )

    run_with_service(config, _login)
    console.print(f"[bold green]✅ Logged in as {user_id}[/bold green]")


@click.command("logout")
@click.pass_obj
def logout_command(config: Config) -> None:
    """Forget tokens and the encryption key."""

    async def _logout(service: SyncService) -> None:
        service.logout()

    run_with_service(config, _logout)
    console.print("[bold green]✅ Logged out[/bold green]")


@click.command("unlock")
@password_option
@click.option("--remember-key", is_flag=True, help="Keep the encryption key on disk")
@click.pass_obj
def unlock_command(config: Config, password: str, remember_key: bool) -> None:
    """Re-derive the encryption key from the sync password.

    Only useful together with --remember-key, since the key otherwise only
    lives for the duration of one command.
    """

    async def _unlock(service: SyncService) -> None:
        await service.unlock(password, remember=remember_key or None)

    run_with_service(config, _unlock)
    console.print("[bold green]✅ Encryption key unlocked[/bold green]")


@click.command("enable")
@server_option
@user_option
@password_option
@click.option("--remember-key", is_flag=True, help="Keep the encryption key on disk")
@click.option("--auto-sync/--no-auto-sync", default=True, help="Sync in the background")
@click.option(
    "--interval",
    "interval_minutes",
    type=int,
    help="Auto-sync interval in minutes (5-1440)",
)
@click.pass_obj
def enable_command(
    config: Config,
    server_url: Optional[str],
    user_id: Optional[str],
    password: str,
    remember_key: bool,
    auto_sync: bool,
    interval_minutes: Optional[int],
) -> None:
    """Log in and turn sync on."""
    server_url, user_id = resolve_account(config, server_url, user_id)

    async def _enable(service: SyncService) -> None:
        await service.enable(
            server_url,
            user_id,
            password,
            remember_key=remember_key,
            auto_sync=auto_sync,
            interval_minutes=(
                interval_minutes
                if interval_minutes is not None
                else config.sync_interval_minutes
            ),
        )

    run_with_service(config, _enable)
    console.print(f"[bold green]✅ Sync enabled for {user_id}[/bold green]")
    if not remember_key:
        console.print(
            "  [yellow]The encryption key is not remembered; pass --password "
            "to sync commands or run unlock --remember-key[/yellow]"
        )


@click.command("disable")
@click.pass_obj
def disable_command(config: Config) -> None:
    """Turn sync off and forget the encryption key, keeping the account."""

    async def _disable(service: SyncService) -> None:
        service.disable()

    run_with_service(config, _disable)
    console.print("[bold green]✅ Sync disabled[/bold green]")
