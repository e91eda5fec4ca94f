"""CLI display and formatting utilities."""

from .formatters import (
    console,
    display_conflict,
    display_goals,
    display_status,
    display_sync_error,
    display_sync_outcome,
    format_timestamp,
)

__all__ = [
    "console",
    "display_conflict",
    "display_goals",
    "display_status",
    "display_sync_error",
    "display_sync_outcome",
    "format_timestamp",
]
