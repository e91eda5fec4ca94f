"""Local key-value storage used for tokens, keys and goal settings."""

from . import keys
from .key_value import JsonFileStorage, KeyValueStorage, MemoryStorage, StorageError

__all__ = [
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "StorageError",
    "keys",
]
