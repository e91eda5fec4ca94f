"""Tests for collecting and applying goal configuration."""

import json
from unittest.mock import MagicMock

import pytest

from portfolio_sync.core.sync import (
    GoalSettingsStore,
    apply_config_data,
    collect_config_data,
    snapshot_hash,
)
from portfolio_sync.models import ConfigSnapshot
from portfolio_sync.storage import MemoryStorage, keys


class TestCollect:
    """Test building snapshots from storage."""

    def test_collects_targets_and_fixed_flags(self):
        """Test goal keys become snapshot entries."""
        storage = MemoryStorage(
            {
                keys.goal_target("g1"): 40.0,
                keys.goal_target("g2"): 60,
                keys.goal_fixed("g3"): True,
                keys.SERVER_URL: "https://ignored.example",
            }
        )
        snapshot = collect_config_data(storage, timestamp=7)

        assert snapshot.goal_targets == {"g1": 40.0, "g2": 60.0}
        assert snapshot.goal_fixed == {"g3": True}
        assert snapshot.timestamp == 7

    def test_fixed_goals_have_no_target(self):
        """Test targets of fixed goals are excluded."""
        storage = MemoryStorage(
            {keys.goal_target("g1"): 40.0, keys.goal_fixed("g1"): True}
        )
        snapshot = collect_config_data(storage)
        assert "g1" not in snapshot.goal_targets
        assert snapshot.goal_fixed == {"g1": True}

    def test_non_numeric_targets_ignored(self):
        """Test garbage values are skipped."""
        storage = MemoryStorage(
            {keys.goal_target("g1"): "forty", keys.goal_target("g2"): True}
        )
        assert collect_config_data(storage).goal_targets == {}


class TestApply:
    """Test replacing local settings with a snapshot."""

    def test_apply_replaces_goal_keys(self):
        """Test stale local goals are removed and remote ones written."""
        storage = MemoryStorage(
            {
                keys.goal_target("old"): 10.0,
                keys.goal_fixed("old"): True,
                keys.USER_ID: "alice",
            }
        )
        snapshot = ConfigSnapshot(
            goal_targets={"g1": 25.0}, goal_fixed={"g2": True, "g3": False}
        )

        apply_config_data(storage, snapshot)

        assert storage.get(keys.goal_target("g1")) == 25.0
        assert storage.get(keys.goal_fixed("g2")) is True
        assert storage.get(keys.goal_fixed("g3")) is False
        assert not storage.has(keys.goal_target("old"))
        assert not storage.has(keys.goal_fixed("old"))
        assert storage.get(keys.USER_ID) == "alice"

    def test_apply_then_collect_preserves_content(self):
        """Test applied content hashes the same when collected again."""
        snapshot = ConfigSnapshot(
            goal_targets={"g1": 12.345}, goal_fixed={"g2": True}, timestamp=99
        )
        storage = MemoryStorage()
        apply_config_data(storage, snapshot)
        assert snapshot_hash(collect_config_data(storage)) == snapshot_hash(snapshot)


class TestSnapshotModel:
    """Test snapshot serialization rules."""

    def test_hash_ignores_timestamp(self):
        """Test equal content hashes equal regardless of timestamp."""
        first = ConfigSnapshot(goal_targets={"a": 1.0}, timestamp=1)
        second = first.with_timestamp(2)
        assert snapshot_hash(first) == snapshot_hash(second)

    def test_hash_ignores_key_order(self):
        """Test canonical JSON sorts keys."""
        first = ConfigSnapshot(goal_targets={"a": 1.0, "b": 2.0})
        second = ConfigSnapshot(goal_targets={"b": 2.0, "a": 1.0})
        assert snapshot_hash(first) == snapshot_hash(second)

    def test_wire_names(self):
        """Test the serialized form uses camelCase names."""
        snapshot = ConfigSnapshot(goal_targets={"a": 1.0}, timestamp=5)
        assert snapshot.to_json() == (
            '{"goalFixed":{},"goalTargets":{"a":1.0},"timestamp":5,"version":1}'
        )

    def test_accepts_platform_payload(self):
        """Test payloads nested under platforms.endowus are accepted."""
        snapshot = ConfigSnapshot.model_validate(
            {
                "version": 2,
                "platforms": {
                    "endowus": {"goalTargets": {"g1": 30}, "goalFixed": {"g2": True}}
                },
                "timestamp": 123,
            }
        )
        assert snapshot.goal_targets == {"g1": 30.0}
        assert snapshot.goal_fixed == {"g2": True}
        assert snapshot.timestamp == 123

    def test_platform_payload_keeps_other_platforms(self):
        """Test sections of other platforms survive a decode and re-encode."""
        fsm = {"targetsByCode": {"AAA": 12}, "fixedByCode": {"BBB": True}}
        snapshot = ConfigSnapshot.model_validate(
            {
                "version": 2,
                "platforms": {
                    "endowus": {"goalTargets": {"g1": 40}, "goalFixed": {}},
                    "fsm": fsm,
                },
                "timestamp": 5,
            }
        )

        assert snapshot.extra_platforms == {"fsm": fsm}
        assert json.loads(snapshot.to_json()) == {
            "version": 2,
            "platforms": {
                "endowus": {"goalTargets": {"g1": 40.0}, "goalFixed": {}},
                "fsm": fsm,
            },
            "timestamp": 5,
        }

    def test_other_platforms_not_hashed(self):
        """Test only this platform's goals take part in the content hash."""
        plain = ConfigSnapshot(goal_targets={"g1": 40.0})
        with_fsm = plain.with_extra_platforms({"fsm": {"targetsByCode": {"AAA": 12}}})
        assert snapshot_hash(plain) == snapshot_hash(with_fsm)

    def test_other_platforms_kept_in_storage(self):
        """Test applied platform sections are collected again for upload."""
        storage = MemoryStorage()
        fsm = {"portfolios": [{"id": "core", "name": "Core", "archived": False}]}
        apply_config_data(
            storage,
            ConfigSnapshot(goal_targets={"g1": 40.0}).with_extra_platforms({"fsm": fsm}),
        )

        assert collect_config_data(storage).extra_platforms == {"fsm": fsm}

        apply_config_data(storage, ConfigSnapshot(goal_targets={"g1": 40.0}))
        assert not storage.has(keys.EXTRA_PLATFORMS)


class TestGoalSettingsStore:
    """Test editing goal settings."""

    def test_every_edit_notifies(self):
        """Test each edit reports its reason to the listener."""
        listener = MagicMock()
        store = GoalSettingsStore(MemoryStorage(), on_change=listener)

        store.set_target("g1", 55)
        store.set_fixed("g1")
        store.clear_fixed("g1")
        store.clear_target("g1")

        reasons = [call.args[0] for call in listener.call_args_list]
        assert reasons == ["target-update", "fixed-update", "fixed-clear", "target-clear"]

    def test_target_range(self):
        """Test targets outside 0-100 are rejected without notifying."""
        listener = MagicMock()
        store = GoalSettingsStore(MemoryStorage(), on_change=listener)
        with pytest.raises(ValueError):
            store.set_target("g1", 100.5)
        listener.assert_not_called()

    def test_goal_ids(self):
        """Test ids are collected from both key families."""
        store = GoalSettingsStore(MemoryStorage())
        store.set_target("b", 10)
        store.set_fixed("a")
        assert store.goal_ids() == ["a", "b"]
        assert store.get_target("b") == 10.0
        assert store.is_fixed("a")
