"""Data models for the portfolio sync client.

Wire-facing models use camelCase aliases because the sync server speaks
JavaScript-flavoured JSON; Python code uses the snake_case field names.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SNAPSHOT_VERSION = 1
PLATFORM_SNAPSHOT_VERSION = 2

# Platform whose goal settings this client edits
GOAL_PLATFORM = "endowus"


class SyncStatus(str, Enum):
    """Lifecycle states of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    CONFLICT = "conflict"


class SyncDirection(str, Enum):
    """Which way data flows during a sync run."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    BOTH = "both"


class ErrorKind(str, Enum):
    """User-facing error taxonomy."""

    AUTH = "auth"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    IN_PROGRESS = "in_progress"
    CRYPTO = "crypto"
    PARSE = "parse"
    SERVER = "server"


class WireModel(BaseModel):
    """Base for models exchanged with the server or persisted as JSON."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump using the camelCase wire names."""
        return self.model_dump(by_alias=True, mode="json")


class ConfigSnapshot(WireModel):
    """The synchronised goal configuration.

    A goal flagged as fixed never carries a target: its percentage is derived
    from the live balance, not from stored settings.

    Multi-platform (v2) payloads keep the sections of other platforms in
    ``extra_platforms``. They are written back unchanged and are not part of
    the content hash.
    """

    version: int = SNAPSHOT_VERSION
    goal_targets: Dict[str, float] = Field(default_factory=dict, alias="goalTargets")
    goal_fixed: Dict[str, bool] = Field(default_factory=dict, alias="goalFixed")
    timestamp: int = 0
    extra_platforms: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_platform_payload(cls, data: Any) -> Any:
        """Accept v2 payloads that nest goal settings under ``platforms``."""
        if isinstance(data, dict) and "platforms" in data:
            platforms = data.get("platforms") or {}
            goals = platforms.get(GOAL_PLATFORM) or {}
            return {
                "version": SNAPSHOT_VERSION,
                "goalTargets": goals.get("goalTargets") or {},
                "goalFixed": goals.get("goalFixed") or {},
                "timestamp": data.get("timestamp") or goals.get("timestamp") or 0,
                "extra_platforms": {
                    name: section
                    for name, section in platforms.items()
                    if name != GOAL_PLATFORM
                },
            }
        return data

    @model_validator(mode="after")
    def _drop_targets_of_fixed_goals(self) -> "ConfigSnapshot":
        for goal_id, fixed in self.goal_fixed.items():
            if fixed:
                self.goal_targets.pop(goal_id, None)
        return self

    def content(self) -> Dict[str, Any]:
        """Return the timestamp-free part of the snapshot."""
        return {
            "version": self.version,
            "goalTargets": self.goal_targets,
            "goalFixed": self.goal_fixed,
        }

    def canonical_content(self) -> str:
        """Stable JSON of the content, used for content hashing."""
        return json.dumps(self.content(), sort_keys=True, separators=(",", ":"))

    def to_json(self) -> str:
        """Serialise the full snapshot for encryption.

        Snapshots carrying other platforms are written in the v2 layout so
        those sections survive the upload.
        """
        if not self.extra_platforms:
            payload = self.to_wire()
        else:
            platforms = dict(self.extra_platforms)
            platforms[GOAL_PLATFORM] = {
                "goalTargets": self.goal_targets,
                "goalFixed": self.goal_fixed,
            }
            payload = {
                "version": PLATFORM_SNAPSHOT_VERSION,
                "platforms": platforms,
                "timestamp": self.timestamp,
            }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def with_timestamp(self, timestamp: int) -> "ConfigSnapshot":
        """Copy of this snapshot stamped with ``timestamp``."""
        return self.model_copy(update={"timestamp": timestamp})

    def with_extra_platforms(self, extra_platforms: Dict[str, Any]) -> "ConfigSnapshot":
        return self.model_copy(update={"extra_platforms": dict(extra_platforms)})


class SyncRecord(WireModel):
    """Server-held encrypted record."""

    encrypted_data: str = Field(alias="encryptedData")
    device_id: str = Field(alias="deviceId")
    timestamp: int
    version: int = SNAPSHOT_VERSION

    @field_validator("encrypted_data", "device_id")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must be a non-empty string")
        return value


class TokenPair(WireModel):
    """Access/refresh token pair issued by the auth endpoints."""

    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    access_expires_at: Optional[int] = Field(default=None, alias="accessExpiresAt")
    refresh_expires_at: Optional[int] = Field(default=None, alias="refreshExpiresAt")


class ConflictDescriptor(BaseModel):
    """Both sides of a conflicting sync, handed to the user for a decision."""

    local: ConfigSnapshot
    remote: ConfigSnapshot
    local_timestamp: int
    remote_timestamp: int
    remote_device_id: str
    local_hash: str
    remote_hash: str


class SyncErrorInfo(BaseModel):
    """Structured error metadata recorded after a failed sync."""

    category: ErrorKind
    user_message: str
    primary_action: str
    retry_after_seconds: Optional[int] = None
    last_attempt_at: Optional[int] = None
    code: Optional[str] = None
    detail: Optional[str] = None
