"""Synchronization module.

Handles snapshots, orchestration, conflict resolution, error classification
and automatic scheduling.
"""

from .conflict_resolver import (
    ConflictDiffItem,
    ConflictResolution,
    ConflictResolver,
    build_conflict_diff,
    detect_conflict,
    format_fixed,
    format_target,
    summarize_conflict,
)
from .errors import GUIDANCE, classify_error
from .orchestrator import SyncAction, SyncOrchestrator, SyncOutcome
from .scheduler import AutoSyncScheduler, ChangeTriggerState
from .service import SyncService
from .snapshot import (
    GoalSettingsStore,
    apply_config_data,
    collect_config_data,
    snapshot_hash,
)

__all__ = [
    # Snapshot
    "GoalSettingsStore",
    "apply_config_data",
    "collect_config_data",
    "snapshot_hash",
    # Orchestration
    "SyncAction",
    "SyncOrchestrator",
    "SyncOutcome",
    # Conflicts
    "ConflictDiffItem",
    "ConflictResolution",
    "ConflictResolver",
    "build_conflict_diff",
    "detect_conflict",
    "format_fixed",
    "format_target",
    "summarize_conflict",
    # Errors
    "GUIDANCE",
    "classify_error",
    # Scheduling
    "AutoSyncScheduler",
    "ChangeTriggerState",
    # Facade
    "SyncService",
]
