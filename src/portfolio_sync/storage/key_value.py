"""Key-value storage backends.

The sync engine only needs ``get``/``set``/``delete``/``keys``. Values must be
JSON-serialisable. ``JsonFileStorage`` persists to a single JSON document and
rewrites it atomically on every mutation.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the local state file cannot be read or written."""


class KeyValueStorage:
    """Storage contract used by every engine component."""

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value or ``default``."""
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        raise NotImplementedError

    def keys(self) -> List[str]:
        """List all stored keys."""
        raise NotImplementedError

    def has(self, key: str) -> bool:
        """Check whether ``key`` is stored."""
        return key in self.keys()


class MemoryStorage(KeyValueStorage):
    """In-process storage, used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def has(self, key: str) -> bool:
        return key in self._data


class JsonFileStorage(KeyValueStorage):
    """Storage persisted as a JSON object on disk."""

    def __init__(self, path: Path) -> None:
        """Initialize file storage.

        Args:
            path: Location of the JSON state file (created on first write)
        """
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"State file {self.path} is not a JSON object")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".state-", suffix=".json"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write state file {self.path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self) -> List[str]:
        return list(self._load())
