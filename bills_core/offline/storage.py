# =============================================================================
# bills_core/offline/storage.py
# Key-value stores backing the local cache
# =============================================================================
"""
Small string key-value stores with a capacity limit.

The local cache only needs get/set/delete/keys; it never assumes anything
about where bytes end up. Both stores raise StorageQuotaExceededError when
a write would take them over capacity, leaving the previous value intact.

Directory Structure (FileStore):
-------------------------------
local_data/cache/
├── bills_accounts.json
├── bills_filter.json
└── store_index.json       # key -> file name and size
"""

from __future__ import annotations
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from bills_core.errors import StorageQuotaExceededError
from bills_core.logging import get_logger

logger = get_logger(__name__)


def _size_of(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStore(ABC):
    """Minimal persistent string store."""

    def __init__(self, capacity_bytes: Optional[int] = None):
        self.capacity_bytes = capacity_bytes

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None"""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value``; raise StorageQuotaExceededError when full"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``; return True if it existed"""

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys"""

    @abstractmethod
    def usage_bytes(self) -> int:
        """Bytes currently used"""

    def _check_capacity(self, key: str, value: str, current_size: int) -> None:
        if self.capacity_bytes is None:
            return
        projected = self.usage_bytes() - current_size + _size_of(key, value)
        if projected > self.capacity_bytes:
            raise StorageQuotaExceededError(key=key, capacity_bytes=self.capacity_bytes)


class MemoryStore(KeyValueStore):
    """In-process store, used for tests and ephemeral sessions."""

    def __init__(self, capacity_bytes: Optional[int] = None):
        super().__init__(capacity_bytes)
        self._data: Dict[str, str] = {}
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            current = self._data.get(key)
            current_size = _size_of(key, current) if current is not None else 0
            self._check_capacity(key, value, current_size)
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def usage_bytes(self) -> int:
        with self._lock:
            return sum(_size_of(k, v) for k, v in self._data.items())


class FileStore(KeyValueStore):
    """
    One JSON file per key plus an index, under ``directory``.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves a half-written value behind.
    """

    INDEX_FILE = "store_index.json"

    def __init__(self, directory: Path, capacity_bytes: Optional[int] = None):
        """
        Args:
            directory: Base directory for the store
            capacity_bytes: Maximum total size (None for unlimited)
        """
        super().__init__(capacity_bytes)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._index: Dict[str, Dict] = {}
        self._load_index()

    def _load_index(self) -> None:
        """Load store index from file."""
        index_path = self.directory / self.INDEX_FILE
        if not index_path.exists():
            self._index = {}
            return
        try:
            with open(index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
        except (ValueError, IOError) as e:
            logger.warning(f"Error loading store index, rebuilding: {e}")
            self._index = {}
            return

        if not isinstance(index, dict):
            logger.warning("Store index is not a mapping, rebuilding")
            index = {}
        # Keep only well-formed entries
        self._index = {
            key: info for key, info in index.items()
            if isinstance(info, dict) and isinstance(info.get("file"), str)
        }

    def _save_index(self) -> None:
        self._write_atomic(self.directory / self.INDEX_FILE, json.dumps(self._index, indent=2))

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)

    @staticmethod
    def _file_name(key: str) -> str:
        safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in key)
        return f"{safe}.json"

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            info = self._index.get(key)
            if info is None:
                return None
            path = self.directory / info["file"]
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return f.read()
            except FileNotFoundError:
                # Remove stale index entry
                del self._index[key]
                self._save_index()
                return None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            current_size = self._index.get(key, {}).get("size_bytes", 0)
            self._check_capacity(key, value, current_size)

            file_name = self._file_name(key)
            self._write_atomic(self.directory / file_name, value)
            self._index[key] = {
                "file": file_name,
                "size_bytes": _size_of(key, value),
                "written_at": datetime.now().isoformat(),
            }
            self._save_index()

    def delete(self, key: str) -> bool:
        with self._lock:
            info = self._index.pop(key, None)
            if info is None:
                return False
            path = self.directory / info["file"]
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            self._save_index()
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._index.keys())

    def usage_bytes(self) -> int:
        with self._lock:
            return sum(info.get("size_bytes", 0) for info in self._index.values())
