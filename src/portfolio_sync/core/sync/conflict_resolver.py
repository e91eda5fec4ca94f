"""Conflict detection and user-driven conflict resolution.

Detection is asymmetric: a conflict is raised only when local
state is older than a foreign write with different content. A local state
that looks newer simply overwrites the server (last writer wins).
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Union

from ...exceptions import InvalidResolutionError
from ...models import (
    ConfigSnapshot,
    ConflictDescriptor,
    SyncDirection,
    SyncRecord,
    SyncStatus,
)

if TYPE_CHECKING:
    from .orchestrator import SyncOrchestrator, SyncOutcome

logger = logging.getLogger(__name__)


class ConflictResolution(str, Enum):
    """Which side wins a conflict."""

    LOCAL = "local"  # Keep this device's settings and overwrite the server
    REMOTE = "remote"  # Take the server's settings


def detect_conflict(
    local: ConfigSnapshot,
    local_hash: str,
    record: Optional[SyncRecord],
    remote: Optional[ConfigSnapshot],
    remote_hash: Optional[str],
    device_id: str,
) -> Optional[ConflictDescriptor]:
    """Decide whether a sync must stop for a user decision.

    Args:
        local: Local snapshot (timestamp already resolved)
        local_hash: Content hash of ``local``
        record: Server record metadata, or None if the server is empty
        remote: Decrypted server snapshot
        remote_hash: Content hash of ``remote``
        device_id: This client's device id

    Returns:
        ConflictDescriptor if local state is stale against a foreign write
    """
    if record is None or remote is None or remote_hash is None:
        return None
    if local_hash == remote_hash:
        return None
    if record.device_id == device_id:
        return None
    if local.timestamp < record.timestamp:
        return ConflictDescriptor(
            local=local,
            remote=remote,
            local_timestamp=local.timestamp,
            remote_timestamp=record.timestamp,
            remote_device_id=record.device_id,
            local_hash=local_hash,
            remote_hash=remote_hash,
        )
    return None


class ConflictResolver:
    """Applies the user's choice for a surfaced conflict."""

    def __init__(self, orchestrator: "SyncOrchestrator") -> None:
        """Initialize conflict resolver.

        Args:
            orchestrator: Orchestrator that surfaced the conflict
        """
        self.orchestrator = orchestrator

    async def resolve_conflict(
        self,
        choice: Union[ConflictResolution, str],
        conflict: Optional[ConflictDescriptor] = None,
    ) -> "SyncOutcome":
        """Resolve ``conflict`` by keeping the local or the remote side.

        Args:
            choice: ``"local"`` or ``"remote"``
            conflict: Conflict to resolve (defaults to the pending one)

        Returns:
            SyncOutcome with status success

        Raises:
            InvalidResolutionError: Unknown choice or nothing to resolve
            SyncInProgressError: A sync run is in flight
        """
        from .orchestrator import SyncAction, SyncOutcome

        try:
            resolution = ConflictResolution(choice)
        except ValueError:
            raise InvalidResolutionError(
                f"Invalid conflict resolution {choice!r}, expected 'local' or 'remote'"
            ) from None

        conflict = conflict or self.orchestrator.pending_conflict
        if conflict is None:
            raise InvalidResolutionError("There is no conflict to resolve")

        orchestrator = self.orchestrator
        orchestrator.begin()
        try:
            master_key = orchestrator.require_session_key()
            if resolution == ConflictResolution.LOCAL:
                # Stamp now so the kept settings are the newest write everywhere
                local = conflict.local.with_timestamp(
                    max(orchestrator.clock.now_ms(), conflict.remote_timestamp + 1)
                )
                timestamp = await orchestrator.upload_snapshot(
                    local, conflict.local_hash, master_key, force=True
                )
                outcome = SyncOutcome(
                    SyncStatus.SUCCESS,
                    SyncAction.UPLOADED,
                    SyncDirection.UPLOAD,
                    timestamp,
                    conflict.local_hash,
                )
            else:
                orchestrator.apply_remote(
                    conflict.remote, conflict.remote_timestamp, conflict.remote_hash
                )
                outcome = SyncOutcome(
                    SyncStatus.SUCCESS,
                    SyncAction.DOWNLOADED,
                    SyncDirection.DOWNLOAD,
                    conflict.remote_timestamp,
                    conflict.remote_hash,
                )
        except asyncio.CancelledError:
            orchestrator.abandon()
            raise
        except Exception as e:
            orchestrator.fail(e)
            raise

        orchestrator.pending_conflict = None
        logger.info("Conflict resolved in favour of %s settings", resolution.value)
        return orchestrator.finish(outcome)


# Conflict presentation helpers


@dataclass
class ConflictDiffItem:
    """One goal whose settings differ between the two sides."""

    goal_id: str
    goal_name: str
    local_target: Optional[float]
    remote_target: Optional[float]
    local_fixed: bool
    remote_fixed: bool

    @property
    def local_target_display(self) -> str:
        return format_target(self.local_target)

    @property
    def remote_target_display(self) -> str:
        return format_target(self.remote_target)

    @property
    def local_fixed_display(self) -> str:
        return format_fixed(self.local_fixed)

    @property
    def remote_fixed_display(self) -> str:
        return format_fixed(self.remote_fixed)


def format_target(value: Optional[float]) -> str:
    """Render a target percentage, ``-`` when unset."""
    if value is None:
        return "-"
    return f"{value:.2f}%"


def format_fixed(value: bool) -> str:
    return "Yes" if value else "No"


def build_conflict_diff(
    conflict: ConflictDescriptor, goal_names: Optional[Mapping[str, str]] = None
) -> List[ConflictDiffItem]:
    """List goals whose target or fixed flag differs between both sides.

    Target differences of goals fixed on both sides are ignored: those
    targets are never used.
    """
    goal_names = goal_names or {}
    local, remote = conflict.local, conflict.remote
    goal_ids = sorted(
        set(local.goal_targets)
        | set(remote.goal_targets)
        | set(local.goal_fixed)
        | set(remote.goal_fixed)
    )

    items: List[ConflictDiffItem] = []
    for goal_id in goal_ids:
        local_fixed = bool(local.goal_fixed.get(goal_id, False))
        remote_fixed = bool(remote.goal_fixed.get(goal_id, False))
        local_target = local.goal_targets.get(goal_id)
        remote_target = remote.goal_targets.get(goal_id)

        fixed_changed = local_fixed != remote_fixed
        target_changed = local_target != remote_target and not (
            local_fixed and remote_fixed
        )
        if not (fixed_changed or target_changed):
            continue

        items.append(
            ConflictDiffItem(
                goal_id=goal_id,
                goal_name=goal_names.get(goal_id) or f"Goal {goal_id}",
                local_target=local_target,
                remote_target=remote_target,
                local_fixed=local_fixed,
                remote_fixed=remote_fixed,
            )
        )
    return items


def summarize_conflict(conflict: ConflictDescriptor) -> Dict[str, int]:
    """Counts used by front-ends to describe a conflict in one line."""
    diff = build_conflict_diff(conflict)
    return {
        "goals_changed": len(diff),
        "local_goals": len(conflict.local.goal_targets) + len(conflict.local.goal_fixed),
        "remote_goals": len(conflict.remote.goal_targets)
        + len(conflict.remote.goal_fixed),
    }


__all__ = [
    "ConflictDiffItem",
    "ConflictResolution",
    "ConflictResolver",
    "build_conflict_diff",
    "detect_conflict",
    "format_fixed",
    "format_target",
    "summarize_conflict",
]
