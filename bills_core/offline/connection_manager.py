# =============================================================================
# bills_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Tracks whether the remote backend is reachable.

Features:
- Health probe with its own short timeout
- Offline after N consecutive request failures or a failed explicit probe
- Reconnection scheduler with increasing intervals and a capped attempt count
- Immediate re-probe when the host reports that the network is back
- Event callbacks for status changes

Only the manager mutates the connection state; everything else reads it
through the properties or a registered callback.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from bills_core.config import ReconnectPolicy, get_settings
from bills_core.errors import OfflineError
from bills_core.logging import get_logger

logger = get_logger(__name__)

ProbeFn = Callable[[float], bool]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Backend reachable
    OFFLINE = "offline"         # Backend unreachable, serving cached data
    UNKNOWN = "unknown"         # Initial state, treated optimistically


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    reconnect_attempts: int = 0
    scheduler_paused: bool = False
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Owner of the online/offline flag.

    Usage:
        manager = ConnectionManager(probe=backend.probe)
        manager.check_connection()
        if manager.is_offline:
            # Serve cached data
    """

    def __init__(
        self,
        probe: ProbeFn,
        policy: Optional[ReconnectPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            probe: Callable taking a timeout in seconds and returning reachability
            policy: Probe/reconnection settings
            clock: Time source
        """
        self._probe = probe
        self.policy = policy or get_settings().reconnect
        self._clock = clock
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.RLock()

        self._scheduler_thread: Optional[threading.Thread] = None
        self._stop_scheduler = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    # =========================================================================
    # READ-ONLY VIEW
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        """Snapshot of the current connection state."""
        with self._lock:
            return replace(self._state)

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if the last probe or request succeeded."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        """Check if we are in offline mode."""
        return self._state.status == ConnectionStatus.OFFLINE

    @property
    def scheduler_running(self) -> bool:
        thread = self._scheduler_thread
        return thread is not None and thread.is_alive() and not self._stop_scheduler.is_set()

    # =========================================================================
    # PROBING
    # =========================================================================

    def _run_probe(self) -> bool:
        try:
            reachable = bool(self._probe(self.policy.probe_timeout_seconds))
        except Exception as e:
            logger.debug(f"Health probe raised: {e}")
            reachable = False
        with self._lock:
            self._state.last_check = self._clock()
        return reachable

    def check_connection(self) -> ConnectionState:
        """
        Perform an explicit health probe and update state.

        A failed explicit probe switches to offline immediately.

        Returns:
            Updated ConnectionState snapshot
        """
        if self._run_probe():
            self._set_online()
        else:
            self._set_offline("Health probe failed")
        return self.state

    # =========================================================================
    # GATEWAY HOOKS
    # =========================================================================

    def record_success(self) -> None:
        """A remote request succeeded: the backend is reachable."""
        self._set_online()

    def record_failure(self, reason: str = "Request failed") -> None:
        """A remote request failed transiently. N in a row means offline."""
        with self._lock:
            self._state.consecutive_failures += 1
            self._state.error_message = reason
            failures = self._state.consecutive_failures
        logger.debug(f"Transient failure {failures}/{self.policy.failure_threshold}: {reason}")
        if failures >= self.policy.failure_threshold:
            self._set_offline(reason)

    def mark_offline(self, reason: str = "Remote service unreachable") -> None:
        """Enter offline mode immediately (retries exhausted)."""
        self._set_offline(reason)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _set_online(self) -> None:
        with self._lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = self._clock()
            self._state.consecutive_failures = 0
            self._state.reconnect_attempts = 0
            self._state.scheduler_paused = False
            self._state.error_message = None

        self.stop_reconnect()
        if old_status != ConnectionStatus.ONLINE:
            logger.info(f"Connection status changed: {old_status.value} -> online")
            self._notify_callbacks()

    def _set_offline(self, reason: str) -> None:
        with self._lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.OFFLINE
            self._state.error_message = reason

        if old_status != ConnectionStatus.OFFLINE:
            logger.warning(f"Connection status changed: {old_status.value} -> offline ({reason})")
            self._notify_callbacks()
            self.start_reconnect()

    # =========================================================================
    # RECONNECTION SCHEDULER
    # =========================================================================

    def start_reconnect(self) -> None:
        """Start (or restart) the reconnection scheduler."""
        with self._lock:
            if self.scheduler_running:
                return
            self._state.reconnect_attempts = 0
            self._state.scheduler_paused = False
            self._stop_scheduler = threading.Event()
            self._scheduler_thread = threading.Thread(
                target=self._reconnect_loop,
                args=(self._stop_scheduler,),
                daemon=True,
                name="ReconnectScheduler",
            )
            self._scheduler_thread.start()
        logger.debug("Reconnection scheduler started")

    def stop_reconnect(self, wait: bool = False) -> None:
        """Cancel the reconnection scheduler (logout, back online)."""
        self._stop_scheduler.set()
        thread = self._scheduler_thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def join_scheduler(self, timeout: Optional[float] = None) -> None:
        """Wait for the scheduler to finish (used by tests and shutdown)."""
        thread = self._scheduler_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _reconnect_loop(self, stop_event: threading.Event) -> None:
        max_attempts = self.policy.max_reconnect_attempts

        for attempt in range(1, max_attempts + 1):
            if stop_event.wait(timeout=self.policy.interval_for(attempt)):
                return

            with self._lock:
                self._state.reconnect_attempts = attempt

            if self._run_probe():
                logger.info(f"Reconnected on attempt {attempt}/{max_attempts}")
                self._set_online()
                return
            if stop_event.is_set():
                # Cancelled while probing; a newer scheduler may own the state
                return
            logger.info(f"Reconnection attempt {attempt}/{max_attempts} failed")

        with self._lock:
            self._state.scheduler_paused = True
        logger.warning(
            f"Reconnection paused after {max_attempts} attempts; "
            "waiting for a network event or a manual retry"
        )

    def network_regained(self) -> bool:
        """
        The host environment reports connectivity is back: probe now and,
        if the backend is still unreachable, restart the scheduler.

        Returns:
            True if online after the probe
        """
        logger.info("Network regained event received")
        self.check_connection()
        if self.is_offline:
            self.start_reconnect()
        return self.is_online

    def ensure_online_for_write(self) -> None:
        """
        Gate for mutating operations. While offline, probe once before
        giving up.

        Raises:
            OfflineError: If the backend is still unreachable
        """
        if not self.is_offline:
            return
        self.check_connection()
        if self.is_offline:
            raise OfflineError()

    # =========================================================================
    # PERIODIC HEALTH CHECKS
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background health checks while online."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background health checks."""
        self._stop_monitoring.set()
        if self._monitor_thread and self._monitor_thread is not threading.current_thread():
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.wait(timeout=self.policy.health_check_interval_seconds):
            # The reconnection scheduler owns probing while offline
            if self.is_offline:
                continue
            self.check_connection()

    def shutdown(self) -> None:
        """Cancel every background timer."""
        self.stop_monitoring()
        self.stop_reconnect(wait=True)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with a ConnectionState snapshot when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        snapshot = self.state
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.state
        return {
            "status": state.status.value,
            "is_online": state.status == ConnectionStatus.ONLINE,
            "is_offline": state.status == ConnectionStatus.OFFLINE,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_online": state.last_online.isoformat() if state.last_online else None,
            "failures": state.consecutive_failures,
            "reconnect_attempts": state.reconnect_attempts,
            "scheduler_paused": state.scheduler_paused,
            "error": state.error_message,
        }
