"""Utility helpers (logging, clock)."""

from .clock import Clock, ManualClock, SystemClock
from .logging_config import configure_third_party_loggers, setup_logging

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "configure_third_party_loggers",
    "setup_logging",
]
