"""Automatic sync: a periodic timer plus a debounced on-change trigger."""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from ...config import clamp_interval_minutes
from ...exceptions import SyncError, SyncInProgressError
from ...models import SyncDirection
from ...storage import KeyValueStorage, keys
from ..auth import CredentialManager
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEBOUNCE_SECONDS = 15.0
RETRY_SECONDS = 3.0


class ChangeTriggerState(str, Enum):
    """Lifecycle of the on-change trigger."""

    IDLE = "idle"
    PENDING = "pending"  # Debounce timer armed
    BLOCKED = "blocked"  # Timer fired during a sync, waiting for it to end
    FIRED = "fired"  # Sync started


class AutoSyncScheduler:
    """Runs background syncs on a fixed interval and after local edits.

    Background failures are logged and never propagate.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        credentials: CredentialManager,
        storage: KeyValueStorage,
        sleep: Sleep = asyncio.sleep,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        retry_seconds: float = RETRY_SECONDS,
    ) -> None:
        """Initialize scheduler.

        Args:
            orchestrator: Orchestrator that performs the syncs
            credentials: Used to check the account and session key
            storage: Holds the auto-sync flag and interval
            sleep: Awaitable sleep used by every timer
            debounce_seconds: Quiet period after the last change
            retry_seconds: Re-check delay while another sync is running
        """
        self.orchestrator = orchestrator
        self.credentials = credentials
        self.storage = storage
        self.sleep = sleep
        self.debounce_seconds = debounce_seconds
        self.retry_seconds = retry_seconds

        self.change_state = ChangeTriggerState.IDLE
        self.interval_minutes: Optional[int] = None
        self._periodic_task: Optional["asyncio.Task[None]"] = None
        self._change_task: Optional["asyncio.Task[None]"] = None
        self._running_syncs: Set["asyncio.Task[Any]"] = set()

    # Guards

    @property
    def auto_sync_enabled(self) -> bool:
        return bool(self.storage.get(keys.AUTO_SYNC, False))

    @property
    def is_running(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    def can_sync(self) -> bool:
        """Enabled, configured and holding a session key."""
        return self.credentials.is_configured() and self.credentials.has_session_key()

    # Periodic timer

    def start(self) -> bool:
        """(Re)arm the periodic timer from stored settings.

        Returns:
            True if the timer is running afterwards
        """
        self._cancel_periodic()
        if not self.auto_sync_enabled:
            logger.debug("Auto sync disabled, periodic timer not started")
            return False
        if not self.can_sync():
            logger.info("Auto sync not started: sync is not configured or locked")
            return False

        self.interval_minutes = clamp_interval_minutes(
            self.storage.get(keys.SYNC_INTERVAL)
        )
        self._periodic_task = asyncio.ensure_future(
            self._periodic_loop(self.interval_minutes * 60)
        )
        logger.info("Auto sync every %d minute(s)", self.interval_minutes)
        return True

    def apply_settings(
        self, auto_sync: Optional[bool] = None, interval_minutes: Optional[int] = None
    ) -> bool:
        """Persist new auto-sync settings and re-arm the timer."""
        if auto_sync is not None:
            self.storage.set(keys.AUTO_SYNC, bool(auto_sync))
        if interval_minutes is not None:
            self.storage.set(keys.SYNC_INTERVAL, clamp_interval_minutes(interval_minutes))
        if not self.auto_sync_enabled:
            self.stop()
            return False
        return self.start()

    async def _periodic_loop(self, interval_seconds: float) -> None:
        while True:
            await self.sleep(interval_seconds)
            self._spawn_sync(self._sync_quietly("periodic"))

    # On-change trigger

    def schedule_sync_on_change(self, reason: str = "change") -> None:
        """Arm the debounce timer after a local edit.

        A burst of edits results in one sync, ``debounce_seconds`` after the
        last edit.
        """
        if not self.auto_sync_enabled or not self.can_sync():
            logger.debug("Ignoring change (%s): auto sync inactive", reason)
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Ignoring change (%s): no running event loop", reason)
            return

        if self.change_state == ChangeTriggerState.BLOCKED:
            # Already waiting for the running sync; it will pick this edit up
            return
        if self._change_task is not None and not self._change_task.done():
            self._change_task.cancel()

        logger.debug("Change detected (%s), sync in %.0fs", reason, self.debounce_seconds)
        self.change_state = ChangeTriggerState.PENDING
        self._change_task = asyncio.ensure_future(
            self._debounce(reason, self.debounce_seconds)
        )

    async def _debounce(self, reason: str, delay: float) -> None:
        await self.sleep(delay)
        while self.orchestrator.is_syncing:
            self.change_state = ChangeTriggerState.BLOCKED
            await self.sleep(self.retry_seconds)
        self.change_state = ChangeTriggerState.FIRED
        self._change_task = None
        task = self._spawn_sync(self._change_sync(reason))
        task.add_done_callback(self._reset_change_state)

    async def _change_sync(self, reason: str) -> None:
        completed = await self._sync_quietly(f"change:{reason}")
        if completed or self.change_state != ChangeTriggerState.FIRED:
            return
        # Another run took the slot first; wait for it like any blocked trigger
        logger.debug("Change sync (%s) deferred, retrying in %.0fs", reason, self.retry_seconds)
        self.change_state = ChangeTriggerState.BLOCKED
        self._change_task = asyncio.ensure_future(
            self._debounce(reason, self.retry_seconds)
        )

    def _reset_change_state(self, _task: "asyncio.Task[Any]") -> None:
        if self.change_state == ChangeTriggerState.FIRED:
            self.change_state = ChangeTriggerState.IDLE

    # Shared

    def _spawn_sync(self, sync: Awaitable[Any]) -> "asyncio.Task[Any]":
        # Tracked apart from the timers so stop() never cancels a running sync
        task = asyncio.ensure_future(sync)
        self._running_syncs.add(task)
        task.add_done_callback(self._running_syncs.discard)
        return task

    async def _sync_quietly(self, trigger: str) -> bool:
        """Run one background sync.

        Returns:
            False only when another run held the slot
        """
        if not self.can_sync():
            logger.debug("Skipping %s sync: sync is not configured or locked", trigger)
            return True
        try:
            outcome = await self.orchestrator.perform_sync(SyncDirection.BOTH)
        except SyncInProgressError:
            logger.debug("Skipping %s sync: another sync is running", trigger)
            return False
        except SyncError as e:
            logger.warning("Background %s sync failed: %s", trigger, e)
        except Exception:
            logger.exception("Unexpected error during %s sync", trigger)
        else:
            logger.debug("Background %s sync: %s", trigger, outcome.action.value)
        return True

    def _cancel_periodic(self) -> None:
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

    def stop(self) -> None:
        """Cancel the periodic timer, the debounce timer and the retry timer."""
        self._cancel_periodic()
        if self._change_task is not None:
            self._change_task.cancel()
            self._change_task = None
        self.change_state = ChangeTriggerState.IDLE
        logger.debug("Auto sync stopped")

    async def wait_for_running_syncs(self) -> None:
        """Wait until background syncs that already started have finished."""
        if self._running_syncs:
            await asyncio.gather(*list(self._running_syncs))
