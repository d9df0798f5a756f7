# =============================================================================
# bills_core/offline/sync_engine.py
# Best-effort delivery of lifecycle status changes
# =============================================================================
"""
StatusUpdateQueue - Pushes status changes produced by the due-date sweep to
the backend without blocking the caller.

Features:
- Background drainer thread
- One pending update per account (latest status wins)
- Short per-update attempt budget, then the update is dropped with a warning
- Paused while offline, drained as soon as the connection comes back
- Event callbacks

The queue lives in memory only. Anything still pending at shutdown is lost;
the next sweep recomputes it.
"""

from __future__ import annotations
import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from bills_core.api.gateway import GatewayOperation, RemoteDataGateway
from bills_core.config import SweepPolicy, get_settings
from bills_core.errors import ErrorContext
from bills_core.logging import get_logger
from bills_core.models.account import AccountStatus

logger = get_logger(__name__)


class SyncStatus(Enum):
    """Delivery status of a queued update."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DROPPED = "dropped"


@dataclass
class SyncOperation:
    """A status change waiting to be delivered."""
    id: int
    account_id: str
    owner_id: str
    status: AccountStatus
    state: SyncStatus = SyncStatus.PENDING
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class SyncState:
    """Current queue state."""
    is_draining: bool = False
    last_drain: Optional[datetime] = None
    pending_count: int = 0
    delivered_count: int = 0
    dropped_count: int = 0


class StatusUpdateQueue:
    """
    In-memory queue of status updates.

    Usage:
        queue = StatusUpdateQueue(gateway, monitor=connection_manager)
        queue.start()
        queue.enqueue(account.id, account.owner_id, AccountStatus.OVERDUE)
    """

    def __init__(
        self,
        gateway: RemoteDataGateway,
        monitor=None,
        policy: Optional[SweepPolicy] = None,
    ):
        """
        Args:
            gateway: Gateway used for delivery
            monitor: ConnectionManager; delivery waits while it reports offline
            policy: Attempt budget and drain interval
        """
        self.gateway = gateway
        self.monitor = monitor
        self.policy = policy or get_settings().sweep

        self._pending: Dict[str, SyncOperation] = {}
        self._ids = itertools.count(1)
        self._state = SyncState()
        self._lock = threading.RLock()
        self._callbacks: List[Callable[[SyncState], None]] = []

        self._drain_thread: Optional[threading.Thread] = None
        self._stop_drain = threading.Event()
        self._wake = threading.Event()

    @property
    def state(self) -> SyncState:
        """Get current queue state."""
        return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending(self) -> List[SyncOperation]:
        with self._lock:
            return list(self._pending.values())

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(self, account_id: str, owner_id: str, status: AccountStatus) -> SyncOperation:
        """
        Queue a status change. Never blocks on I/O.

        Returns:
            The queued operation
        """
        with self._lock:
            op = SyncOperation(
                id=next(self._ids),
                account_id=account_id,
                owner_id=owner_id,
                status=status,
            )
            self._pending[account_id] = op
            self._state.pending_count = len(self._pending)

        logger.debug(f"Queued status update {account_id} -> {status.value}")
        self._wake.set()
        return op

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def drain_now(self) -> bool:
        """
        Deliver every pending update once.

        Returns:
            True if nothing is left pending
        """
        if self.monitor is not None and self.monitor.is_offline:
            logger.debug("Cannot drain status updates: offline")
            return False

        with self._lock:
            if self._state.is_draining:
                return False
            self._state.is_draining = True
            batch = list(self._pending.values())

        try:
            for op in batch:
                self._deliver(op)
        finally:
            with self._lock:
                self._state.is_draining = False
                self._state.last_drain = datetime.now()
                self._state.pending_count = len(self._pending)
            self._notify_callbacks()

        return self.pending_count == 0

    def _deliver(self, op: SyncOperation) -> None:
        op.state = SyncStatus.IN_PROGRESS
        op.attempts += 1

        result = self.gateway.execute(
            GatewayOperation.update(op.owner_id, op.account_id, {"status": op.status.value})
        )

        with self._lock:
            # A newer update for the same account replaced this one meanwhile
            current = self._pending.get(op.account_id)
            superseded = current is not None and current.id != op.id

            if result:
                op.state = SyncStatus.COMPLETED
                self._state.delivered_count += 1
                if not superseded:
                    self._pending.pop(op.account_id, None)
                logger.debug(f"Delivered status update {op.account_id} -> {op.status.value}")
                return

            op.error_message = result.error
            retryable = getattr(result.exception, "retryable", False)
            if retryable and op.attempts < self.policy.max_attempts:
                op.state = SyncStatus.PENDING
                return

            op.state = SyncStatus.DROPPED
            self._state.dropped_count += 1
            if not superseded:
                self._pending.pop(op.account_id, None)

        logger.warning(
            f"Dropped status update {op.account_id} -> {op.status.value} "
            f"after {op.attempts} attempt(s): {result.error}"
        )

    # =========================================================================
    # BACKGROUND DRAINER
    # =========================================================================

    def start(self) -> None:
        """Start background drainer thread."""
        if self._drain_thread is not None and self._drain_thread.is_alive():
            return

        if self.monitor is not None:
            self.monitor.register_callback(self._on_connection_change)

        self._stop_drain.clear()
        self._drain_thread = threading.Thread(
            target=self._drain_loop,
            daemon=True,
            name="StatusUpdateQueue"
        )
        self._drain_thread.start()
        logger.info("Status update queue started")

    def stop(self) -> None:
        """Stop background drainer thread. Pending updates are discarded."""
        self._stop_drain.set()
        self._wake.set()
        if self.monitor is not None:
            self.monitor.unregister_callback(self._on_connection_change)
        if self._drain_thread and self._drain_thread is not threading.current_thread():
            self._drain_thread.join(timeout=10)

        with self._lock:
            discarded = len(self._pending)
            self._pending.clear()
            self._state.pending_count = 0
        if discarded:
            logger.info(f"Discarded {discarded} undelivered status update(s)")
        logger.info("Status update queue stopped")

    def _drain_loop(self) -> None:
        while not self._stop_drain.is_set():
            self._wake.wait(timeout=self.policy.drain_interval_seconds)
            self._wake.clear()
            if self._stop_drain.is_set():
                break
            if self.pending_count:
                with ErrorContext("Draining status updates"):
                    self.drain_now()

    def _on_connection_change(self, state) -> None:
        """Handle connection status changes."""
        if state.status.value == "online" and self.pending_count:
            logger.info("Connection restored, draining status updates")
            self._wake.set()

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for queue state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get queue status for UI display."""
        return {
            "is_draining": self._state.is_draining,
            "last_drain": self._state.last_drain.isoformat() if self._state.last_drain else None,
            "pending_count": self.pending_count,
            "delivered_count": self._state.delivered_count,
            "dropped_count": self._state.dropped_count,
        }
