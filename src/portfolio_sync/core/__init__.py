"""Core logic of the sync client.

This package is organized by concern:
- crypto: key derivation and payload encryption
- auth: tokens, credentials and the session key
- api: HTTP access to the sync server
- sync: snapshots, orchestration, conflicts and scheduling
"""

__all__: list[str] = []
