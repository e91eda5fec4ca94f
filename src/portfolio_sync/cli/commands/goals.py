"""Goal settings commands."""

import logging
from typing import Any, Dict, List

import click

from ...config import Config
from ...core.sync import SyncService, format_fixed, format_target
from ..display import console, display_goals
from .common import run_with_service

logger = logging.getLogger(__name__)


@click.group("goals")
def goals() -> None:
    """View and edit goal targets and fixed flags."""


@goals.command("list")
@click.pass_obj
def list_goals(config: Config) -> None:
    """List local goal settings."""

    async def _list(service: SyncService) -> List[Dict[str, Any]]:
        store = service.goals
        return [
            {
                "goal_id": goal_id,
                "target": format_target(store.get_target(goal_id)),
                "fixed": format_fixed(store.is_fixed(goal_id)),
            }
            for goal_id in store.goal_ids()
        ]

    display_goals(run_with_service(config, _list))


@goals.command("set-target")
@click.argument("goal_id")
@click.argument("percent", type=click.FloatRange(0, 100))
@click.pass_obj
def set_target(config: Config, goal_id: str, percent: float) -> None:
    """Set the target percentage of a goal."""

    async def _set(service: SyncService) -> None:
        service.goals.set_target(goal_id, percent)

    run_with_service(config, _set)
    console.print(f"[green]✓ Target of {goal_id} set to {format_target(percent)}[/green]")


@goals.command("clear-target")
@click.argument("goal_id")
@click.pass_obj
def clear_target(config: Config, goal_id: str) -> None:
    """Remove the target percentage of a goal."""

    async def _clear(service: SyncService) -> None:
        service.goals.clear_target(goal_id)

    run_with_service(config, _clear)
    console.print(f"[green]✓ Target of {goal_id} cleared[/green]")


@goals.command("fix")
@click.argument("goal_id")
@click.pass_obj
def fix_goal(config: Config, goal_id: str) -> None:
    """Mark a goal as fixed (its target is ignored)."""

    async def _fix(service: SyncService) -> None:
        service.goals.set_fixed(goal_id, True)

    run_with_service(config, _fix)
    console.print(f"[green]✓ {goal_id} is fixed[/green]")


@goals.command("unfix")
@click.argument("goal_id")
@click.pass_obj
def unfix_goal(config: Config, goal_id: str) -> None:
    """Remove the fixed flag of a goal."""

    async def _unfix(service: SyncService) -> None:
        service.goals.clear_fixed(goal_id)

    run_with_service(config, _unfix)
    console.print(f"[green]✓ {goal_id} is no longer fixed[/green]")
