"""Collect and apply the local goal configuration.

Goal settings live in the shared key-value storage under
``goal_target_<id>`` and ``goal_fixed_<id>``. The UI layer owns them; this
module only turns them into a :class:`ConfigSnapshot` and back.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ...models import ConfigSnapshot
from ...storage import KeyValueStorage, keys
from ..crypto import hash_content

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


def collect_config_data(storage: KeyValueStorage, timestamp: int = 0) -> ConfigSnapshot:
    """Build a snapshot from the goal settings currently in storage.

    Fixed goals are left out of ``goal_targets``.
    """
    targets: Dict[str, float] = {}
    fixed: Dict[str, bool] = {}

    for key in storage.keys():
        if key.startswith(keys.GOAL_TARGET_PREFIX):
            goal_id = key[len(keys.GOAL_TARGET_PREFIX) :]
            value = storage.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                targets[goal_id] = float(value)
            else:
                logger.debug("Ignoring non-numeric target for goal %s", goal_id)
        elif key.startswith(keys.GOAL_FIXED_PREFIX):
            goal_id = key[len(keys.GOAL_FIXED_PREFIX) :]
            fixed[goal_id] = bool(storage.get(key))

    for goal_id, is_fixed in fixed.items():
        if is_fixed:
            targets.pop(goal_id, None)

    return ConfigSnapshot(
        goal_targets=targets,
        goal_fixed=fixed,
        timestamp=timestamp,
        extra_platforms=storage.get(keys.EXTRA_PLATFORMS) or {},
    )


def apply_config_data(storage: KeyValueStorage, snapshot: ConfigSnapshot) -> None:
    """Replace local goal settings with the contents of ``snapshot``."""
    for key in storage.keys():
        if key.startswith((keys.GOAL_TARGET_PREFIX, keys.GOAL_FIXED_PREFIX)):
            storage.delete(key)

    for goal_id, is_fixed in snapshot.goal_fixed.items():
        storage.set(keys.goal_fixed(goal_id), is_fixed)
    for goal_id, target in snapshot.goal_targets.items():
        if snapshot.goal_fixed.get(goal_id):
            continue
        storage.set(keys.goal_target(goal_id), target)
    store_extra_platforms(storage, snapshot.extra_platforms)

    logger.info(
        "Applied remote configuration: %d targets, %d fixed flags",
        len(snapshot.goal_targets),
        len(snapshot.goal_fixed),
    )


def store_extra_platforms(storage: KeyValueStorage, extra_platforms: Dict[str, Any]) -> None:
    """Keep the server's sections for other platforms for the next upload."""
    if extra_platforms:
        storage.set(keys.EXTRA_PLATFORMS, dict(extra_platforms))
    else:
        storage.delete(keys.EXTRA_PLATFORMS)


def snapshot_hash(snapshot: ConfigSnapshot) -> str:
    """Content hash of a snapshot. The timestamp is not part of it."""
    return hash_content(snapshot.canonical_content())


class GoalSettingsStore:
    """Edits goal settings and reports every change to a listener.

    The listener is typically the auto-sync scheduler's change trigger.
    """

    def __init__(
        self, storage: KeyValueStorage, on_change: Optional[ChangeListener] = None
    ) -> None:
        self.storage = storage
        self.on_change = on_change

    def _notify(self, reason: str) -> None:
        if self.on_change is not None:
            self.on_change(reason)

    def goal_ids(self) -> List[str]:
        """Ids of all goals with a stored target or fixed flag."""
        ids = set()
        for key in self.storage.keys():
            for prefix in (keys.GOAL_TARGET_PREFIX, keys.GOAL_FIXED_PREFIX):
                if key.startswith(prefix):
                    ids.add(key[len(prefix) :])
        return sorted(ids)

    def get_target(self, goal_id: str) -> Optional[float]:
        return self.storage.get(keys.goal_target(goal_id))

    def is_fixed(self, goal_id: str) -> bool:
        return bool(self.storage.get(keys.goal_fixed(goal_id), False))

    def set_target(self, goal_id: str, percent: float) -> None:
        """Store a target percentage (0-100)."""
        value = float(percent)
        if not 0.0 <= value <= 100.0:
            raise ValueError(f"Target must be between 0 and 100, got {percent}")
        self.storage.set(keys.goal_target(goal_id), value)
        self._notify("target-update")

    def clear_target(self, goal_id: str) -> None:
        self.storage.delete(keys.goal_target(goal_id))
        self._notify("target-clear")

    def set_fixed(self, goal_id: str, fixed: bool = True) -> None:
        self.storage.set(keys.goal_fixed(goal_id), bool(fixed))
        self._notify("fixed-update")

    def clear_fixed(self, goal_id: str) -> None:
        self.storage.delete(keys.goal_fixed(goal_id))
        self._notify("fixed-clear")
