"""Single entry point wiring storage, credentials, sync and scheduling."""

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import httpx

from ...config import Config, clamp_interval_minutes
from ...exceptions import SyncNotConfiguredError
from ...models import ConflictDescriptor, SyncDirection, SyncErrorInfo
from ...storage import JsonFileStorage, KeyValueStorage, keys
from ...utils.clock import Clock, SystemClock
from ..api import SyncApiClient
from ..api.client import DEFAULT_TIMEOUT
from ..auth import CredentialManager
from .conflict_resolver import ConflictResolution, ConflictResolver
from .orchestrator import ConflictObserver, StatusObserver, SyncOrchestrator, SyncOutcome
from .scheduler import AutoSyncScheduler, Sleep
from .snapshot import GoalSettingsStore

logger = logging.getLogger(__name__)


class SyncService:
    """Facade over the sync engine used by front-ends such as the CLI."""

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Clock] = None,
        api: Optional[SyncApiClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        on_status: Optional[StatusObserver] = None,
        on_conflict: Optional[ConflictObserver] = None,
    ) -> None:
        """Initialize sync service.

        Args:
            storage: Persistent key-value storage
            clock: Time source (system clock by default)
            api: Pre-built API client; built from timeout/transport if omitted
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport for the built client
            sleep: Sleep used by the auto-sync timers
            on_status: Status transition observer
            on_conflict: Conflict observer
        """
        self.storage = storage
        self.clock = clock or SystemClock()
        self.api = api or SyncApiClient(timeout=timeout, transport=transport)
        self.credentials = CredentialManager(storage, self.api, self.clock)
        self.orchestrator = SyncOrchestrator(
            storage,
            self.credentials,
            self.api,
            self.clock,
            on_status=on_status,
            on_conflict=on_conflict,
        )
        self.resolver = ConflictResolver(self.orchestrator)
        self.scheduler = AutoSyncScheduler(
            self.orchestrator, self.credentials, storage, sleep=sleep
        )
        self.goals = GoalSettingsStore(
            storage, on_change=self.scheduler.schedule_sync_on_change
        )

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> "SyncService":
        """Build a service persisting to ``config.state_file``."""
        return cls(
            JsonFileStorage(config.state_file), timeout=config.http_timeout, **kwargs
        )

    async def __aenter__(self) -> "SyncService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # Account

    async def register(
        self, server_url: str, user_id: str, password: str, remember_key: bool = False
    ) -> Dict[str, Any]:
        return await self.credentials.register(
            server_url, user_id, password, remember_key=remember_key
        )

    async def login(
        self,
        server_url: str,
        user_id: str,
        password: str,
        remember_key: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Log in and resume automatic sync if it was enabled before."""
        result = await self.credentials.login(
            server_url, user_id, password, remember_key=remember_key
        )
        if self.credentials.is_enabled and self.scheduler.auto_sync_enabled:
            self.scheduler.start()
        return result

    async def enable(
        self,
        server_url: str,
        user_id: str,
        password: str,
        remember_key: bool = False,
        auto_sync: bool = True,
        interval_minutes: Optional[int] = None,
    ) -> None:
        """Log in and turn sync on with the given auto-sync settings."""
        await self.credentials.login(
            server_url, user_id, password, remember_key=remember_key
        )
        self.storage.set(keys.SYNC_ENABLED, True)
        self.storage.set(
            keys.SYNC_INTERVAL,
            clamp_interval_minutes(
                interval_minutes
                if interval_minutes is not None
                else self.storage.get(keys.SYNC_INTERVAL)
            ),
        )
        self.scheduler.apply_settings(auto_sync=auto_sync)
        logger.info("Sync enabled for %s at %s", user_id, server_url)

    def disable(self) -> None:
        """Turn sync off and drop the encryption key.

        Tokens are kept so sync can be re-enabled with the password alone.
        """
        self.scheduler.stop()
        self.storage.set(keys.SYNC_ENABLED, False)
        self.credentials.clear_session_key(forget=True)
        logger.info("Sync disabled")

    def logout(self) -> None:
        self.scheduler.stop()
        self.credentials.logout()

    async def unlock(self, password: str, remember: Optional[bool] = None) -> None:
        """Re-derive the session key and resume automatic sync."""
        await self.credentials.unlock(password, remember)
        if self.credentials.is_enabled and self.scheduler.auto_sync_enabled:
            self.scheduler.start()

    def update_auto_sync(
        self, auto_sync: Optional[bool] = None, interval_minutes: Optional[int] = None
    ) -> bool:
        return self.scheduler.apply_settings(auto_sync, interval_minutes)

    # Sync

    async def perform_sync(
        self,
        direction: Union[SyncDirection, str] = SyncDirection.BOTH,
        force: bool = False,
    ) -> SyncOutcome:
        return await self.orchestrator.perform_sync(direction, force)

    async def resolve_conflict(
        self,
        choice: Union[ConflictResolution, str],
        conflict: Optional[ConflictDescriptor] = None,
    ) -> SyncOutcome:
        return await self.resolver.resolve_conflict(choice, conflict)

    async def check_health(self, server_url: Optional[str] = None) -> Dict[str, Any]:
        """Query ``GET /health`` on the given or configured server."""
        server_url = server_url or self.credentials.server_url
        if not server_url:
            raise SyncNotConfiguredError("No sync server configured")
        return await self.api.health(server_url)

    async def delete_remote_data(self) -> None:
        """Delete this account's record from the server.

        Local goal settings stay untouched; the next sync uploads them again.
        """
        server_url = self.credentials.server_url
        user_id = self.credentials.user_id
        if not server_url or not user_id:
            raise SyncNotConfiguredError("No sync account configured")
        access_token = await self.credentials.get_access_token()
        await self.api.delete(server_url, access_token, user_id)
        self.storage.delete(keys.LAST_SYNC)
        self.storage.delete(keys.LAST_SYNC_HASH)
        logger.info("Deleted remote configuration for %s", user_id)

    def last_error(self) -> Optional[SyncErrorInfo]:
        """Error of the most recent failed run, surviving restarts."""
        if self.orchestrator.last_error is not None:
            return self.orchestrator.last_error
        stored = self.storage.get(keys.LAST_ERROR)
        if stored:
            return SyncErrorInfo.model_validate(stored)
        return None

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of sync state for display."""
        return {
            "status": self.orchestrator.status.value,
            "enabled": self.credentials.is_enabled,
            "configured": self.credentials.is_configured(),
            "unlocked": self.credentials.has_session_key(),
            "server_url": self.credentials.server_url,
            "user_id": self.credentials.user_id,
            "device_id": self.orchestrator.device_id,
            "last_sync": self.orchestrator.last_sync,
            "last_sync_hash": self.orchestrator.last_sync_hash,
            "auto_sync": self.scheduler.auto_sync_enabled,
            "interval_minutes": clamp_interval_minutes(
                self.storage.get(keys.SYNC_INTERVAL)
            ),
            "pending_conflict": self.orchestrator.pending_conflict is not None,
            "last_error": self.last_error(),
        }

    # Lifecycle

    def start(self) -> bool:
        """Restore a remembered key and start automatic sync if enabled."""
        self.credentials.restore_session_key()
        if not self.credentials.is_enabled:
            return False
        return self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    async def aclose(self) -> None:
        self.stop()
        await self.scheduler.wait_for_running_syncs()
        await self.api.aclose()
