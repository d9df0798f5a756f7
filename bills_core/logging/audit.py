# =============================================================================
# bills_core/logging/audit.py
# Audit trail for user-visible account actions
# =============================================================================
"""
AuditLog - structured audit events for account mutations and exports.

Events are written to the ``bills_core.audit`` logger and, when a cache view
is attached, the most recent ones are kept in the local cache under the
diagnostic-log key. That key is low priority: it is the first thing evicted
when the local store runs out of space.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import get_logger, redact

logger = get_logger("bills_core.audit")


@dataclass
class AuditEvent:
    """A single audit record."""
    type: str
    user_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLog:
    """
    Records audit events.

    Usage:
        audit = AuditLog(NamespacedCache(cache, CacheKey.AUDIT_LOG))
        audit.record("ACCOUNT_PAID", user_id, account_id=acc.id, amount=str(acc.amount))
    """

    MAX_EVENTS = 100

    def __init__(self, store=None):
        """
        Args:
            store: Optional cache view exposing ``read()`` and ``save(value)``
        """
        self._store = store

    def record(self, event_type: str, user_id: Optional[str] = None, **details) -> AuditEvent:
        event = AuditEvent(type=event_type, user_id=user_id, details=redact(details))
        logger.info(f"AUDIT: {event_type}", extra={"details": event.to_dict()})

        if self._store is not None:
            events = self._store.read() or []
            if not isinstance(events, list):
                events = []
            events.append(event.to_dict())
            # Keep only the latest events
            self._store.save(events[-self.MAX_EVENTS:])

        return event

    def recent(self) -> List[Dict[str, Any]]:
        """Return the persisted audit events, oldest first."""
        if self._store is None:
            return []
        events = self._store.read()
        return events if isinstance(events, list) else []
