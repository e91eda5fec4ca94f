"""CLI command modules."""

from .auth import (
    disable_command,
    enable_command,
    login_command,
    logout_command,
    register_command,
    unlock_command,
)
from .goals import goals
from .sync import (
    delete_command,
    health_command,
    resolve_command,
    status_command,
    sync_command,
    watch_command,
)

__all__ = [
    "delete_command",
    "disable_command",
    "enable_command",
    "goals",
    "health_command",
    "login_command",
    "logout_command",
    "register_command",
    "resolve_command",
    "status_command",
    "sync_command",
    "unlock_command",
    "watch_command",
]
