"""Data models for the portfolio sync client."""

from .models import (
    SNAPSHOT_VERSION,
    ConfigSnapshot,
    ConflictDescriptor,
    ErrorKind,
    SyncDirection,
    SyncErrorInfo,
    SyncRecord,
    SyncStatus,
    TokenPair,
)

__all__ = [
    "SNAPSHOT_VERSION",
    "ConfigSnapshot",
    "ConflictDescriptor",
    "ErrorKind",
    "SyncDirection",
    "SyncErrorInfo",
    "SyncRecord",
    "SyncStatus",
    "TokenPair",
]
