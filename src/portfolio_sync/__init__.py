"""Portfolio Sync.

End-to-end encrypted synchronization of goal-allocation settings
(target percentages and fixed flags) between devices through a
zero-knowledge sync server.
"""

__version__ = "1.0.0"

from .config import Config
from .core.sync import SyncService
from .exceptions import SyncError
from .models import ConfigSnapshot, SyncStatus
from .storage import JsonFileStorage, MemoryStorage

__all__ = [
    "Config",
    "ConfigSnapshot",
    "JsonFileStorage",
    "MemoryStorage",
    "SyncError",
    "SyncService",
    "SyncStatus",
]
