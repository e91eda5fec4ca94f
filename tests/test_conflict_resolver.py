"""Tests for conflict detection, resolution and presentation."""

import pytest
import pytest_asyncio

from portfolio_sync.core.sync import (
    ConflictResolver,
    SyncAction,
    build_conflict_diff,
    detect_conflict,
    format_fixed,
    format_target,
    snapshot_hash,
)
from portfolio_sync.core.crypto import decrypt
from portfolio_sync.exceptions import InvalidResolutionError
from portfolio_sync.models import ConfigSnapshot, ConflictDescriptor, SyncRecord, SyncStatus
from portfolio_sync.storage import keys

from conftest import USER_ID, seed_remote

DEVICE = "this-device"


def record(timestamp, device_id="other-device"):
    """Server record metadata."""
    return SyncRecord(encrypted_data="blob", device_id=device_id, timestamp=timestamp)


def descriptor(local, remote, local_ts=1, remote_ts=2):
    """Conflict between two snapshots."""
    return ConflictDescriptor(
        local=local,
        remote=remote,
        local_timestamp=local_ts,
        remote_timestamp=remote_ts,
        remote_device_id="other-device",
        local_hash=snapshot_hash(local),
        remote_hash=snapshot_hash(remote),
    )


class TestDetectConflict:
    """Test the asymmetric conflict rule."""

    local = ConfigSnapshot(goal_targets={"g1": 10.0}, timestamp=1_000)
    remote = ConfigSnapshot(goal_targets={"g1": 90.0})

    def check(self, record_value, remote=None):
        remote = remote or self.remote
        return detect_conflict(
            self.local,
            snapshot_hash(self.local),
            record_value,
            remote if record_value else None,
            snapshot_hash(remote) if record_value else None,
            DEVICE,
        )

    def test_no_record(self):
        """Test an empty server never conflicts."""
        assert self.check(None) is None

    def test_equal_content(self):
        """Test identical content never conflicts."""
        same = ConfigSnapshot(goal_targets={"g1": 10.0})
        assert self.check(record(2_000), remote=same) is None

    def test_own_device(self):
        """Test records written by this device never conflict."""
        assert self.check(record(2_000, device_id=DEVICE)) is None

    def test_stale_local(self):
        """Test an older local state against a foreign write conflicts."""
        conflict = self.check(record(2_000))
        assert conflict is not None
        assert conflict.local_timestamp == 1_000
        assert conflict.remote_timestamp == 2_000

    def test_newer_or_equal_local(self):
        """Test local state at least as new never conflicts."""
        assert self.check(record(500)) is None
        assert self.check(record(1_000)) is None


class TestResolveConflict:
    """Test applying the user's choice."""

    @pytest_asyncio.fixture
    async def surfaced(self, orchestrator, storage, server, clock, master_key):
        """Orchestrator stopped on a conflict (local 10%, server 90%)."""
        storage.set(keys.goal_target("g1"), 10.0)
        await seed_remote(
            server,
            master_key,
            ConfigSnapshot(goal_targets={"g1": 90.0}),
            clock.now_ms() + 5_000,
        )
        outcome = await orchestrator.perform_sync()
        assert outcome.status == SyncStatus.CONFLICT
        return orchestrator

    @pytest.mark.asyncio
    async def test_keep_local(self, surfaced, storage, server, clock, master_key):
        """Test keeping local settings overwrites the server with a newer stamp."""
        conflict = surfaced.pending_conflict
        clock.advance(1_000)

        outcome = await ConflictResolver(surfaced).resolve_conflict("local")

        assert outcome.status == SyncStatus.SUCCESS
        assert outcome.action == SyncAction.UPLOADED
        assert surfaced.status == SyncStatus.SUCCESS
        assert surfaced.pending_conflict is None
        stored = server.records[USER_ID]
        assert stored["timestamp"] > conflict.remote_timestamp
        assert stored["deviceId"] == surfaced.device_id
        plaintext = await decrypt(stored["encryptedData"], master_key)
        assert ConfigSnapshot.model_validate_json(plaintext).goal_targets == {"g1": 10.0}
        assert storage.get(keys.LAST_SYNC_HASH) == conflict.local_hash

        # Settled: the next sync changes nothing
        again = await surfaced.perform_sync()
        assert again.action == SyncAction.NO_CHANGE

    @pytest.mark.asyncio
    async def test_keep_remote(self, surfaced, storage):
        """Test taking server settings applies them locally."""
        conflict = surfaced.pending_conflict

        outcome = await ConflictResolver(surfaced).resolve_conflict("remote", conflict)

        assert outcome.action == SyncAction.DOWNLOADED
        assert storage.get(keys.goal_target("g1")) == 90.0
        assert storage.get(keys.LAST_SYNC) == conflict.remote_timestamp
        assert storage.get(keys.LAST_SYNC_HASH) == conflict.remote_hash

        again = await surfaced.perform_sync()
        assert again.action == SyncAction.NO_CHANGE

    @pytest.mark.asyncio
    async def test_invalid_choice(self, surfaced):
        """Test unknown choices are rejected without changing state."""
        with pytest.raises(InvalidResolutionError):
            await ConflictResolver(surfaced).resolve_conflict("both")
        assert surfaced.status == SyncStatus.CONFLICT
        assert surfaced.pending_conflict is not None

    @pytest.mark.asyncio
    async def test_nothing_to_resolve(self, orchestrator):
        """Test resolving without a conflict is rejected."""
        with pytest.raises(InvalidResolutionError):
            await ConflictResolver(orchestrator).resolve_conflict("local")


class TestConflictDiff:
    """Test the per-goal conflict view."""

    def test_formatting(self):
        """Test target and fixed rendering."""
        assert format_target(12.3456) == "12.35%"
        assert format_target(None) == "-"
        assert format_fixed(True) == "Yes"
        assert format_fixed(False) == "No"

    def test_diff_lists_changed_goals_only(self):
        """Test unchanged goals are omitted and names fall back to ids."""
        conflict = descriptor(
            ConfigSnapshot(goal_targets={"g1": 10.0, "g2": 50.0, "g3": 5.0}),
            ConfigSnapshot(goal_targets={"g1": 90.0, "g2": 50.0}, goal_fixed={"g3": True}),
        )

        items = build_conflict_diff(conflict, {"g1": "Retirement"})

        assert [item.goal_id for item in items] == ["g1", "g3"]
        first, second = items
        assert first.goal_name == "Retirement"
        assert first.local_target_display == "10.00%"
        assert first.remote_target_display == "90.00%"
        assert second.goal_name == "Goal g3"
        assert second.remote_target_display == "-"
        assert (second.local_fixed_display, second.remote_fixed_display) == ("No", "Yes")

    def test_goals_fixed_on_both_sides_are_ignored(self):
        """Test goals fixed everywhere never show up."""
        conflict = descriptor(
            ConfigSnapshot(goal_fixed={"g1": True}, goal_targets={"g2": 1.0}),
            ConfigSnapshot(goal_fixed={"g1": True}, goal_targets={"g2": 2.0}),
        )
        assert [item.goal_id for item in build_conflict_diff(conflict)] == ["g2"]
