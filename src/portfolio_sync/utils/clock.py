"""Clock abstraction used for token expiry and sync timestamps.

All instants are integer milliseconds since the Unix epoch, the unit the
sync server uses on the wire.
"""

import time


class Clock:
    """Source of the current time."""

    def now_ms(self) -> int:
        """Return the current time in epoch milliseconds."""
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock backed by :func:`time.time`."""

    def now_ms(self) -> int:
        """Return the current wall-clock time in epoch milliseconds."""
        return int(time.time() * 1000)


class ManualClock(Clock):
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        """Return the frozen time."""
        return self._now

    def advance(self, milliseconds: int) -> None:
        """Move the clock forward."""
        self._now += milliseconds

    def set(self, instant_ms: int) -> None:
        """Jump to an absolute instant."""
        self._now = instant_ms
