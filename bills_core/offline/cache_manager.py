# =============================================================================
# bills_core/offline/cache_manager.py
# Local Cache for session data, filters and accounts
# =============================================================================
"""
LocalCache - Typed, expiring, self-healing cache on top of a KeyValueStore.

Features:
- JSON envelopes with write time and optional expiry
- Namespaced keys (``bills:<name>``)
- Corrupted entries are removed and reported as a miss
- On quota exhaustion, low-priority keys are evicted and the write retried once

Nothing here raises on storage trouble: failures are logged and reported
through return values so offline reads keep working.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from bills_core.config import get_settings
from bills_core.errors import CacheCorruptionError, StorageQuotaExceededError
from bills_core.logging import get_logger
from bills_core.offline.storage import FileStore, KeyValueStore

logger = get_logger(__name__)

NAMESPACE = "bills"

_MISSING = object()

TTL = Union[None, float, int, timedelta]


class CacheKey(Enum):
    """Well-known cache entries."""
    AUTH = "auth"
    USER = "user"
    FILTER = "filter"
    ACCOUNTS = "accounts"
    SWEEP_LAST_RUN = "sweep_last_run"
    AUDIT_LOG = "audit_log"
    REPORT_CACHE = "report_cache"


# Evicted first when the store is full
LOW_PRIORITY_KEYS = (CacheKey.AUDIT_LOG, CacheKey.REPORT_CACHE)


def storage_key(key: Union[CacheKey, str]) -> str:
    name = key.value if isinstance(key, CacheKey) else str(key)
    return f"{NAMESPACE}:{name}"


@dataclass
class CacheEntry:
    """A cached value with its write time and optional expiry."""
    key: str
    value: Any
    written_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "value": self.value,
            "written_at": self.written_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        })

    @classmethod
    def from_json(cls, key: str, raw: str) -> CacheEntry:
        """
        Raises:
            CacheCorruptionError: If ``raw`` is not a valid envelope
        """
        try:
            envelope = json.loads(raw)
            if not isinstance(envelope, dict) or "value" not in envelope:
                raise ValueError("missing envelope fields")
            written_at = datetime.fromisoformat(envelope["written_at"])
            expires_raw = envelope.get("expires_at")
            expires_at = datetime.fromisoformat(expires_raw) if expires_raw else None
        except (ValueError, TypeError, KeyError) as e:
            raise CacheCorruptionError(f"Unreadable cache entry: {e}", key=key) from e
        return cls(key=key, value=envelope["value"], written_at=written_at, expires_at=expires_at)


class LocalCache:
    """
    Local persistent cache.

    Usage:
        cache = LocalCache(FileStore(Path("local_data/cache")))
        cache.save(CacheKey.FILTER, {"month": 3, "year": 2025})
        current = cache.read(CacheKey.FILTER, default={})
    """

    _instance: Optional[LocalCache] = None

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Backing key-value store
            clock: Time source for write times and expiry
        """
        self.store = store
        self._clock = clock

    @classmethod
    def get_instance(cls) -> LocalCache:
        """Get or create singleton instance backed by the configured directory."""
        if cls._instance is None:
            policy = get_settings().cache
            cls._instance = LocalCache(FileStore(Path(policy.directory), policy.capacity_bytes))
        return cls._instance

    # =========================================================================
    # WRITE
    # =========================================================================

    def save(self, key: Union[CacheKey, str], value: Any, ttl: TTL = None) -> bool:
        """
        Store ``value`` (JSON-compatible) under ``key``.

        Args:
            key: Cache key
            value: Value to store
            ttl: Lifetime in seconds or as timedelta (None for no expiry)

        Returns:
            True if the value was stored
        """
        skey = storage_key(key)
        now = self._clock()
        if ttl is not None and not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        entry = CacheEntry(skey, value, now, now + ttl if ttl is not None else None)

        try:
            raw = entry.to_json()
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize cache value for {skey}: {e}")
            return False

        try:
            self.store.set(skey, raw)
            return True
        except StorageQuotaExceededError:
            logger.warning(f"Local storage full while writing {skey}; evicting low-priority entries")
        except OSError as e:
            logger.error(f"Error writing cache entry {skey}: {e}")
            return False

        self.evict_low_priority()
        try:
            self.store.set(skey, raw)
            return True
        except (StorageQuotaExceededError, OSError) as e:
            logger.error(f"Cache write for {skey} failed after eviction: {e}")
            return False

    def evict_low_priority(self) -> int:
        """
        Remove low-priority entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key in LOW_PRIORITY_KEYS:
            if self._delete(storage_key(key)):
                removed += 1
        if removed:
            logger.info(f"Evicted {removed} low-priority cache entries")
        return removed

    # =========================================================================
    # READ
    # =========================================================================

    def _load(self, key: Union[CacheKey, str]) -> Optional[CacheEntry]:
        skey = storage_key(key)
        try:
            raw = self.store.get(skey)
        except ValueError as e:
            # Undecodable bytes on disk
            logger.warning(f"Discarding unreadable cache entry {skey}: {e}")
            self._delete(skey)
            return None
        except OSError as e:
            logger.error(f"Error reading cache entry {skey}: {e}")
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.from_json(skey, raw)
        except CacheCorruptionError as e:
            logger.warning(f"Discarding corrupted cache entry {skey}: {e.message}")
            self._delete(skey)
            return None

        if entry.is_expired(self._clock()):
            logger.debug(f"Cache entry {skey} expired")
            self._delete(skey)
            return None
        return entry

    def read(self, key: Union[CacheKey, str], default: Any = None) -> Any:
        """Return the cached value, or ``default`` on miss/expiry/corruption."""
        entry = self._load(key)
        return default if entry is None else entry.value

    def exists(self, key: Union[CacheKey, str]) -> bool:
        return self._load(key) is not None

    def age(self, key: Union[CacheKey, str]) -> Optional[timedelta]:
        """Time since the entry was written, or None if absent."""
        entry = self._load(key)
        if entry is None:
            return None
        return self._clock() - entry.written_at

    # =========================================================================
    # DELETE
    # =========================================================================

    def _delete(self, skey: str) -> bool:
        try:
            return self.store.delete(skey)
        except OSError as e:
            logger.error(f"Error deleting cache entry {skey}: {e}")
            return False

    def remove(self, key: Union[CacheKey, str]) -> bool:
        return self._delete(storage_key(key))

    def clear(self) -> int:
        """Remove every entry in the namespace."""
        prefix = f"{NAMESPACE}:"
        removed = sum(1 for skey in self.store.keys() if skey.startswith(prefix) and self._delete(skey))
        logger.info(f"Cache cleared ({removed} entries)")
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        prefix = f"{NAMESPACE}:"
        return {
            "total_items": sum(1 for k in self.store.keys() if k.startswith(prefix)),
            "total_size_bytes": self.store.usage_bytes(),
            "capacity_bytes": self.store.capacity_bytes,
        }


class NamespacedCache:
    """
    View of a single cache key.

    Usage:
        filter_cache = NamespacedCache(cache, CacheKey.FILTER)
        filter_cache.save({"month": 3})
    """

    def __init__(self, cache: LocalCache, key: Union[CacheKey, str], ttl: TTL = None):
        self.cache = cache
        self.key = key
        self.ttl = ttl

    def save(self, value: Any, ttl: TTL = None) -> bool:
        return self.cache.save(self.key, value, ttl if ttl is not None else self.ttl)

    def read(self, default: Any = None) -> Any:
        return self.cache.read(self.key, default)

    def remove(self) -> bool:
        return self.cache.remove(self.key)

    def exists(self) -> bool:
        return self.cache.exists(self.key)

    def age(self) -> Optional[timedelta]:
        return self.cache.age(self.key)


# Singleton accessor
_local_cache: Optional[LocalCache] = None


def get_local_cache() -> LocalCache:
    """Get the global LocalCache instance."""
    global _local_cache
    if _local_cache is None:
        _local_cache = LocalCache.get_instance()
    return _local_cache
