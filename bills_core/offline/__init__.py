# =============================================================================
# bills_core/offline/__init__.py
# Offline resilience for the Bill Tracker sync core
# =============================================================================
"""
Offline Resilience Module

Keeps the app usable when the backend cannot be reached: reads are served
from the local cache, writes are refused with a clear error, and the
connection manager keeps probing in the background.

Architecture:
------------
   ┌──────────────────────────────────────────────┐
   │            AccountSyncService                │
   └──────────────────────────────────────────────┘
          │                │                 │
          ▼                ▼                 ▼
   ┌──────────────┐ ┌──────────────┐ ┌────────────────┐
   │ ConnectionMgr│ │  LocalCache  │ │StatusUpdateQueue│
   │(Online/Offl.)│ │ (KV + TTL)   │ │ (best effort)  │
   └──────────────┘ └──────────────┘ └────────────────┘
          ▲                                  │
          │          ┌──────────────────┐    │
          └──────────│RemoteDataGateway │◄───┘
                     └──────────────────┘
"""

from bills_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from bills_core.offline.storage import (
    KeyValueStore,
    MemoryStore,
    FileStore,
)

from bills_core.offline.cache_manager import (
    CacheEntry,
    CacheKey,
    LocalCache,
    NamespacedCache,
    LOW_PRIORITY_KEYS,
    get_local_cache,
)

from bills_core.offline.sync_engine import (
    StatusUpdateQueue,
    SyncOperation,
    SyncState,
    SyncStatus,
)

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    # Cache
    "CacheEntry",
    "CacheKey",
    "LocalCache",
    "NamespacedCache",
    "LOW_PRIORITY_KEYS",
    "get_local_cache",
    # Status updates
    "StatusUpdateQueue",
    "SyncOperation",
    "SyncState",
    "SyncStatus",
]
