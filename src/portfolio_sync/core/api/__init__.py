"""HTTP access to the sync server."""

from .client import SyncApiClient, kind_for_status, parse_retry_after

__all__ = ["SyncApiClient", "kind_for_status", "parse_retry_after"]
