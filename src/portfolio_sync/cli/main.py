"""Command-line interface for the portfolio sync client.

This is the main entry point that delegates to command modules.
"""

from pathlib import Path
from typing import Any, Optional

import click

from ..config import get_config
from ..utils.logging_config import configure_third_party_loggers, setup_logging
from .commands import (
    delete_command,
    disable_command,
    enable_command,
    goals,
    health_command,
    login_command,
    logout_command,
    register_command,
    resolve_command,
    status_command,
    sync_command,
    unlock_command,
    watch_command,
)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set logging level (defaults to PORTFOLIO_SYNC_LOG_LEVEL or INFO)",
)
@click.option("--log-file", type=click.Path(), help="Log to file")
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Local state file (defaults to ~/.portfolio-sync/state.json)",
)
@click.pass_context
def cli(
    ctx: Any,
    log_level: Optional[str],
    log_file: Optional[str],
    state_file: Optional[Path],
) -> None:
    """Portfolio Sync.

    End-to-end encrypted sync of goal targets and fixed flags between devices.
    """
    config = get_config()
    if state_file is not None:
        config.state_file = state_file
        config._ensure_directories()

    # Set up logging
    setup_logging(
        log_level=log_level or config.log_level,
        log_file=Path(log_file) if log_file else config.log_file,
    )
    configure_third_party_loggers()

    ctx.obj = config


# Register command groups and commands
cli.add_command(register_command)
cli.add_command(login_command)
cli.add_command(logout_command)
cli.add_command(unlock_command)
cli.add_command(enable_command)
cli.add_command(disable_command)
cli.add_command(sync_command)
cli.add_command(resolve_command)
cli.add_command(status_command)
cli.add_command(health_command)
cli.add_command(delete_command)
cli.add_command(watch_command)
cli.add_command(goals)


if __name__ == "__main__":
    cli()
