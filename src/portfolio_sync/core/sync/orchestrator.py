"""Sync orchestrator for the encrypted goal configuration.

Coordinates one sync run:
1. Check preconditions (configured, crypto available, session key held)
2. Build a fresh local snapshot and its content hash
3. Download and/or upload the encrypted record
4. Decide between no-op, upload, apply-remote or surfacing a conflict

At most one run is in flight; a concurrent call is rejected rather than
queued.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ...exceptions import (
    CryptoUnsupportedError,
    EncryptionKeyRequiredError,
    InvalidServerResponseError,
    SyncInProgressError,
    SyncNotConfiguredError,
)
from ...models import (
    SNAPSHOT_VERSION,
    ConfigSnapshot,
    ConflictDescriptor,
    SyncDirection,
    SyncErrorInfo,
    SyncRecord,
    SyncStatus,
)
from ...storage import KeyValueStorage, keys
from ...utils.clock import Clock, SystemClock
from ..api import SyncApiClient
from ..auth import CredentialManager
from ..crypto import decrypt, encrypt, generate_device_id, is_supported
from .conflict_resolver import detect_conflict
from .errors import classify_error
from .snapshot import (
    apply_config_data,
    collect_config_data,
    snapshot_hash,
    store_extra_platforms,
)

logger = logging.getLogger(__name__)

StatusObserver = Callable[[SyncStatus], None]
ConflictObserver = Callable[[ConflictDescriptor], None]


class SyncAction(str, Enum):
    """What a finished sync run actually did."""

    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    NO_CHANGE = "no_change"
    NOTHING_TO_DOWNLOAD = "nothing_to_download"
    CONFLICT = "conflict"


@dataclass
class SyncOutcome:
    """Result of a sync run or conflict resolution."""

    status: SyncStatus
    action: SyncAction
    direction: SyncDirection
    timestamp: Optional[int] = None
    content_hash: Optional[str] = None
    conflict: Optional[ConflictDescriptor] = None

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of the sync run."""
        summary: Dict[str, Any] = {
            "status": self.status.value,
            "action": self.action.value,
            "direction": self.direction.value,
        }
        if self.timestamp is not None:
            summary["timestamp"] = self.timestamp
        if self.conflict is not None:
            summary["conflict"] = {
                "local_timestamp": self.conflict.local_timestamp,
                "remote_timestamp": self.conflict.remote_timestamp,
                "remote_device_id": self.conflict.remote_device_id,
            }
        return summary


class SyncOrchestrator:
    """Runs upload/download/reconcile cycles against the sync server."""

    def __init__(
        self,
        storage: KeyValueStorage,
        credentials: CredentialManager,
        api: SyncApiClient,
        clock: Optional[Clock] = None,
        on_status: Optional[StatusObserver] = None,
        on_conflict: Optional[ConflictObserver] = None,
    ) -> None:
        """Initialize sync orchestrator.

        Args:
            storage: Key-value storage with sync metadata and goal settings
            credentials: Credential manager holding tokens and the session key
            api: Sync server client
            clock: Time source for snapshot timestamps
            on_status: Called on every status transition
            on_conflict: Called when a run stops on a conflict
        """
        self.storage = storage
        self.credentials = credentials
        self.api = api
        self.clock = clock or SystemClock()
        self.on_status = on_status
        self.on_conflict = on_conflict

        self.status = SyncStatus.IDLE
        self.last_error: Optional[SyncErrorInfo] = None
        self.pending_conflict: Optional[ConflictDescriptor] = None

    # State

    @property
    def device_id(self) -> str:
        """Persistent id of this client, generated on first use."""
        device_id = self.storage.get(keys.DEVICE_ID)
        if not device_id:
            device_id = generate_device_id()
            self.storage.set(keys.DEVICE_ID, device_id)
            logger.info("Generated device id %s", device_id)
        return device_id

    @property
    def is_syncing(self) -> bool:
        return self.status == SyncStatus.SYNCING

    @property
    def last_sync(self) -> Optional[int]:
        return self.storage.get(keys.LAST_SYNC)

    @property
    def last_sync_hash(self) -> Optional[str]:
        return self.storage.get(keys.LAST_SYNC_HASH)

    def _set_status(self, status: SyncStatus) -> None:
        self.status = status
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception:
                logger.exception("Status observer failed")

    def begin(self) -> None:
        """Claim the in-flight slot or fail with ``SYNC_IN_PROGRESS``.

        Status is checked and set without awaiting, so two coroutines can
        never both pass this point.
        """
        if self.status == SyncStatus.SYNCING:
            raise SyncInProgressError("Sync already in progress")
        self._set_status(SyncStatus.SYNCING)

    def finish(self, outcome: SyncOutcome) -> SyncOutcome:
        """Release the slot after a completed run."""
        self.last_error = None
        self.storage.delete(keys.LAST_ERROR)
        self._set_status(outcome.status)
        return outcome

    def fail(self, error: BaseException) -> SyncErrorInfo:
        """Release the slot after a failed run and record error metadata."""
        info = classify_error(error, attempted_at=self.clock.now_ms())
        self.last_error = info
        self.storage.set(keys.LAST_ERROR, info.model_dump(mode="json"))
        logger.error("Sync failed [%s]: %s", info.category.value, error)
        self._set_status(SyncStatus.ERROR)
        return info

    def abandon(self) -> None:
        """Release the slot after a run was cancelled mid-flight.

        Nothing is recorded as an error; the next run starts from the stored
        baseline.
        """
        logger.warning("Sync run cancelled before completion")
        self._set_status(SyncStatus.IDLE)

    def record_success(self, timestamp: int, content_hash: str) -> None:
        """Persist the baseline used to detect future changes."""
        self.storage.set(keys.LAST_SYNC, int(timestamp))
        self.storage.set(keys.LAST_SYNC_HASH, content_hash)

    # Preconditions

    def require_session_key(self) -> bytes:
        """Check preconditions and return the session key.

        Raises:
            SyncNotConfiguredError: Sync disabled or not logged in
            CryptoUnsupportedError: No crypto backend
            EncryptionKeyRequiredError: No session key held
        """
        if not self.credentials.is_configured():
            raise SyncNotConfiguredError(
                "Sync is not enabled or configured. Log in to the sync server first."
            )
        if not is_supported():
            raise CryptoUnsupportedError("No cryptographic provider available")
        master_key = self.credentials.session_key
        if master_key is None:
            raise EncryptionKeyRequiredError(
                "Encryption key required. Enter your sync password to unlock."
            )
        return master_key

    # Building blocks

    def build_local_snapshot(self) -> Tuple[ConfigSnapshot, str]:
        """Fresh snapshot of local settings plus its content hash.

        Unchanged content keeps the last synced timestamp so an idle device
        does not look newer than everyone else.
        """
        snapshot = collect_config_data(self.storage)
        content_hash = snapshot_hash(snapshot)
        last_sync = self.last_sync
        if content_hash == self.last_sync_hash and last_sync:
            timestamp = int(last_sync)
        else:
            timestamp = self.clock.now_ms()
        return snapshot.with_timestamp(timestamp), content_hash

    async def upload_snapshot(
        self,
        snapshot: ConfigSnapshot,
        content_hash: str,
        master_key: bytes,
        force: bool = False,
    ) -> int:
        """Encrypt and upload ``snapshot``, then record it as the baseline.

        Returns:
            Timestamp recorded for the upload
        """
        access_token = await self.credentials.get_access_token()
        record = SyncRecord(
            encrypted_data=await encrypt(snapshot.to_json(), master_key),
            device_id=self.device_id,
            timestamp=snapshot.timestamp,
            version=SNAPSHOT_VERSION,
        )
        response = await self.api.upload(
            self._server_url(), access_token, self._user_id(), record, force=force
        )

        # A forced upload may be re-stamped by the server
        stored = response.get("timestamp")
        if isinstance(stored, int) and not isinstance(stored, bool):
            timestamp = stored
        else:
            timestamp = snapshot.timestamp
        self.record_success(timestamp, content_hash)
        logger.info("Uploaded configuration (timestamp %d)", timestamp)
        return timestamp

    async def fetch_remote(
        self, master_key: bytes
    ) -> Tuple[Optional[SyncRecord], Optional[ConfigSnapshot], Optional[str]]:
        """Download and decrypt the server record.

        Returns:
            (record, snapshot, content hash), all None when the server is empty
        """
        access_token = await self.credentials.get_access_token()
        record = await self.api.download(
            self._server_url(), access_token, self._user_id()
        )
        if record is None:
            return None, None, None

        plaintext = await decrypt(record.encrypted_data, master_key)
        try:
            remote = ConfigSnapshot.model_validate(json.loads(plaintext))
        except ValueError as e:
            raise InvalidServerResponseError(
                "Remote configuration is malformed"
            ) from e
        return record, remote, snapshot_hash(remote)

    def apply_remote(
        self, snapshot: ConfigSnapshot, timestamp: int, content_hash: str
    ) -> None:
        """Overwrite local settings with ``snapshot`` and record the baseline."""
        apply_config_data(self.storage, snapshot)
        self.record_success(timestamp, content_hash)

    def _server_url(self) -> str:
        return self.credentials.server_url or ""

    def _user_id(self) -> str:
        return self.credentials.user_id or ""

    # Entry point

    async def perform_sync(
        self,
        direction: Union[SyncDirection, str] = SyncDirection.BOTH,
        force: bool = False,
    ) -> SyncOutcome:
        """Run one sync cycle.

        Args:
            direction: upload, download or both
            force: On conflict, fall back to last-writer-wins instead of stopping

        Returns:
            SyncOutcome describing what happened

        Raises:
            SyncInProgressError: Another run is in flight
            SyncError: Any failure, after status and error metadata are recorded
        """
        direction = SyncDirection(direction)
        self.begin()
        try:
            outcome = await self._run(direction, force)
        except asyncio.CancelledError:
            self.abandon()
            raise
        except Exception as e:
            self.fail(e)
            raise
        logger.info("Sync complete: %s", outcome.get_summary())
        return self.finish(outcome)

    async def _run(self, direction: SyncDirection, force: bool) -> SyncOutcome:
        master_key = self.require_session_key()
        local, local_hash = self.build_local_snapshot()

        if direction == SyncDirection.UPLOAD:
            timestamp = await self.upload_snapshot(local, local_hash, master_key, force)
            return SyncOutcome(
                SyncStatus.SUCCESS, SyncAction.UPLOADED, direction, timestamp, local_hash
            )

        record, remote, remote_hash = await self.fetch_remote(master_key)

        if direction == SyncDirection.DOWNLOAD:
            if record is None or remote is None or remote_hash is None:
                logger.info("No configuration on server, nothing to download")
                return SyncOutcome(
                    SyncStatus.SUCCESS, SyncAction.NOTHING_TO_DOWNLOAD, direction
                )
            self.apply_remote(remote, record.timestamp, remote_hash)
            return SyncOutcome(
                SyncStatus.SUCCESS,
                SyncAction.DOWNLOADED,
                direction,
                record.timestamp,
                remote_hash,
            )

        return await self._reconcile(
            local, local_hash, record, remote, remote_hash, master_key, force
        )

    async def _reconcile(
        self,
        local: ConfigSnapshot,
        local_hash: str,
        record: Optional[SyncRecord],
        remote: Optional[ConfigSnapshot],
        remote_hash: Optional[str],
        master_key: bytes,
        force: bool,
    ) -> SyncOutcome:
        direction = SyncDirection.BOTH

        if record is None or remote is None or remote_hash is None:
            logger.info("Server has no configuration yet, uploading local copy")
            timestamp = await self.upload_snapshot(local, local_hash, master_key)
            return SyncOutcome(
                SyncStatus.SUCCESS, SyncAction.UPLOADED, direction, timestamp, local_hash
            )

        # Other platforms are never edited here; the server copy is current
        local = local.with_extra_platforms(remote.extra_platforms)
        store_extra_platforms(self.storage, remote.extra_platforms)

        if local_hash == remote_hash:
            timestamp = max(local.timestamp, record.timestamp)
            self.record_success(timestamp, local_hash)
            logger.info("Local and remote configuration are identical")
            return SyncOutcome(
                SyncStatus.SUCCESS, SyncAction.NO_CHANGE, direction, timestamp, local_hash
            )

        conflict = detect_conflict(
            local, local_hash, record, remote, remote_hash, self.device_id
        )
        if conflict is not None and not force:
            return self._surface_conflict(conflict)
        if conflict is not None:
            logger.warning("Conflict detected, forcing last-writer-wins")

        if local.timestamp > record.timestamp:
            timestamp = await self.upload_snapshot(
                local, local_hash, master_key, force=force
            )
            return SyncOutcome(
                SyncStatus.SUCCESS, SyncAction.UPLOADED, direction, timestamp, local_hash
            )
        if record.timestamp > local.timestamp:
            self.apply_remote(remote, record.timestamp, remote_hash)
            return SyncOutcome(
                SyncStatus.SUCCESS,
                SyncAction.DOWNLOADED,
                direction,
                record.timestamp,
                remote_hash,
            )

        logger.info("Timestamps match, treating configuration as in sync")
        return SyncOutcome(
            SyncStatus.SUCCESS, SyncAction.NO_CHANGE, direction, local.timestamp
        )

    def _surface_conflict(self, conflict: ConflictDescriptor) -> SyncOutcome:
        self.pending_conflict = conflict
        logger.warning(
            "Sync conflict: remote change from device %s is newer than local state",
            conflict.remote_device_id,
        )
        if self.on_conflict is not None:
            try:
                self.on_conflict(conflict)
            except Exception:
                logger.exception("Conflict observer failed")
        return SyncOutcome(
            SyncStatus.CONFLICT,
            SyncAction.CONFLICT,
            SyncDirection.BOTH,
            conflict=conflict,
        )
