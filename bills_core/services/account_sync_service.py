# =============================================================================
# bills_core/services/account_sync_service.py
# Account Sync Service - Single API for Online/Offline Operations
# =============================================================================
"""
AccountSyncService - The primary API for all account operations.

This service owns the in-memory account set of the logged-in user and
automatically handles:
- Session start: cached data first, then the authoritative remote set
- Offline mode: reads served from the local cache, writes refused
- Writes: validated, sent through the gateway, then applied locally
- The daily due-date sweep and focus-triggered re-sweeps
- Filter persistence and on-demand reports

Usage:
------
from bills_core.services.account_sync_service import get_sync_service

service = get_sync_service()
service.start_session(user_id)

service.add_account({"name": "Rent", "amount": "900.00",
                     "due_date": "2025-03-05", "category": "fixed"})
service.set_filter(status="overdue")
print(service.report())
"""

from __future__ import annotations
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from bills_core.api.gateway import GatewayOperation, RemoteDataGateway
from bills_core.config import get_settings
from bills_core.data.supabase_client import get_backend
from bills_core.errors import (
    AuthenticationError,
    BillsError,
    NotFoundError,
    ValidationError,
)
from bills_core.logging import AuditLog
from bills_core.models.account import Account, AccountFilter, Report
from bills_core.models.validation import (
    validate_account_update,
    validate_filter,
    validate_new_account,
)
from bills_core.offline.cache_manager import (
    CacheKey,
    LocalCache,
    NamespacedCache,
    get_local_cache,
)
from bills_core.offline.connection_manager import ConnectionManager, ConnectionState
from bills_core.offline.sync_engine import StatusUpdateQueue
from bills_core.services.base_service import BaseService, ServiceResult
from bills_core.services.lifecycle import LifecycleEngine, SweepResult, initial_status
from bills_core.services.report_service import apply_filter, build_report


@dataclass
class SyncSnapshot:
    """What the UI renders: accounts, filter, report and connection flags."""
    accounts: List[Account]
    filter: AccountFilter
    filtered: List[Account]
    report: Report
    offline: bool
    degraded: bool
    owner_id: Optional[str] = None
    taken_at: datetime = field(default_factory=datetime.now)


class AccountSyncService(BaseService):
    """
    Synchronization orchestrator for one user session.

    The in-memory account set is only mutated under one re-entrant lock,
    which is never held across a remote call. Commands on the same account
    are serialised by a per-account lock and apply in call order; commands
    on different accounts run concurrently.
    """

    _instance: Optional[AccountSyncService] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        gateway: RemoteDataGateway,
        monitor: ConnectionManager,
        cache: LocalCache,
        queue: Optional[StatusUpdateQueue] = None,
        lifecycle: Optional[LifecycleEngine] = None,
        audit: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = datetime.now,
        accounts_ttl: Optional[float] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        """
        Args:
            gateway: Remote data gateway
            monitor: Connection manager shared with the gateway
            cache: Local cache
            queue: Status update queue fed by the sweep
            lifecycle: Lifecycle engine (built from cache/queue if None)
            audit: Audit log (kept in the cache if None)
            clock: Time source
            accounts_ttl: Lifetime of the cached account set in seconds
            id_factory: Generator for new account ids
        """
        super().__init__()
        self.gateway = gateway
        self.monitor = monitor
        self.cache = cache
        self.queue = queue
        self.lifecycle = lifecycle or LifecycleEngine(cache, queue, clock)
        self.audit = audit or AuditLog(NamespacedCache(cache, CacheKey.AUDIT_LOG))
        self._clock = clock
        self._new_id = id_factory

        self._accounts_cache = NamespacedCache(cache, CacheKey.ACCOUNTS, ttl=accounts_ttl)
        self._filter_cache = NamespacedCache(cache, CacheKey.FILTER)

        self._lock = threading.RLock()
        self._record_locks: Dict[str, threading.Lock] = {}
        self._owner_id: Optional[str] = None
        self._accounts: List[Account] = []
        self._filter = AccountFilter.for_month(self._today())
        self._degraded = False
        self._subscribers: List[Callable[[SyncSnapshot], None]] = []

    @classmethod
    def get_instance(cls) -> AccountSyncService:
        """Get or create the singleton wired to Supabase and the file cache."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    settings = get_settings()
                    backend = get_backend()
                    monitor = ConnectionManager(backend.probe, settings.reconnect)
                    gateway = RemoteDataGateway(backend, monitor, settings.retry)
                    queue = StatusUpdateQueue(gateway, monitor, settings.sweep)
                    cls._instance = AccountSyncService(
                        gateway,
                        monitor,
                        get_local_cache(),
                        queue=queue,
                        accounts_ttl=settings.cache.accounts_ttl_seconds,
                    )
        return cls._instance

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def accounts(self) -> List[Account]:
        """Copy of the current account set."""
        with self._lock:
            return list(self._accounts)

    @property
    def filter(self) -> AccountFilter:
        return self._filter

    @property
    def filtered_accounts(self) -> List[Account]:
        with self._lock:
            return apply_filter(self._accounts, self._filter)

    @property
    def is_offline(self) -> bool:
        return self.monitor.is_offline

    @property
    def degraded(self) -> bool:
        """True while the session runs on cached data."""
        return self._degraded

    def _today(self) -> date:
        return self._clock().date()

    def _require_owner(self) -> str:
        if self._owner_id is None:
            raise AuthenticationError("No active session")
        return self._owner_id

    # =========================================================================
    # CACHE HELPERS
    # =========================================================================

    def _load_cached_filter(self) -> AccountFilter:
        data = self._filter_cache.read()
        if not isinstance(data, dict):
            return AccountFilter.for_month(self._today())
        try:
            return validate_filter(data)
        except ValidationError as e:
            self.logger.warning(f"Ignoring invalid cached filter: {e.message}")
            self._filter_cache.remove()
            return AccountFilter.for_month(self._today())

    def _load_cached_accounts(self, owner_id: str) -> List[Account]:
        data = self._accounts_cache.read()
        if not isinstance(data, dict) or data.get("owner_id") != owner_id:
            return []
        try:
            return [Account.from_row(row) for row in data.get("accounts", [])]
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            self.logger.warning(f"Discarding unreadable cached accounts: {e}")
            self._accounts_cache.remove()
            return []

    def _persist_accounts(self) -> None:
        saved = self._accounts_cache.save({
            "owner_id": self._owner_id,
            "accounts": [a.to_row() for a in self._accounts],
        })
        if not saved:
            self.logger.warning("Account set could not be written to the local cache")

    def _replace_accounts(self, accounts: List[Account]) -> None:
        with self._lock:
            self._accounts = sorted(accounts, key=lambda a: a.due_date)
            self._persist_accounts()

    def _put_account(self, account: Account) -> None:
        with self._lock:
            others = [a for a in self._accounts if a.id != account.id]
            self._replace_accounts(others + [account])

    def _forget(self, account_id: str) -> None:
        with self._lock:
            remaining = [a for a in self._accounts if a.id != account_id]
            if len(remaining) != len(self._accounts):
                self.logger.info(f"Removing stale account {account_id} from the local set")
                self._replace_accounts(remaining)

    def _find(self, account_id: str) -> Account:
        with self._lock:
            for account in self._accounts:
                if account.id == account_id:
                    return account
        raise NotFoundError(account_id=account_id)

    # =========================================================================
    # SESSION
    # =========================================================================

    def start_session(self, owner_id: str) -> ServiceResult:
        """
        Start a session for ``owner_id``.

        1. Render cached filter and accounts immediately
        2. Probe connectivity
        3. Online: fetch, sweep and cache the authoritative set
        4. Offline: keep the cached set and mark the session degraded
        """
        with self._lock:
            self._owner_id = owner_id
            self._filter = self._load_cached_filter()
            self._accounts = self._load_cached_accounts(owner_id)
            self._degraded = True
        self.monitor.register_callback(self._on_connection_change)
        self.logger.info(f"Session started for {owner_id} ({len(self._accounts)} cached accounts)")
        self._notify()

        self.monitor.check_connection()
        if self.monitor.is_offline:
            self.logger.warning("Starting in offline mode with cached accounts")
            self._reconcile()
            return ServiceResult.ok(self.snapshot(), metadata={"source": "cache"})

        result = self._fetch()
        if not result:
            self._reconcile()
            return ServiceResult.ok(self.snapshot(), metadata={"source": "cache", "error": result.error})
        return ServiceResult.ok(self.snapshot(), metadata={"source": "remote"})

    def end_session(self) -> None:
        """Logout: stop background work and forget session data."""
        self.monitor.unregister_callback(self._on_connection_change)
        self.monitor.shutdown()
        if self.queue is not None:
            self.queue.stop()

        with self._lock:
            self._owner_id = None
            self._accounts = []
            self._filter = AccountFilter.for_month(self._today())
            self._degraded = False
            self._record_locks.clear()
        for key in (CacheKey.AUTH, CacheKey.USER, CacheKey.ACCOUNTS):
            self.cache.remove(key)
        self.logger.info("Session ended")

    def start_background(self) -> None:
        """Start periodic health checks and the status update drainer."""
        self.monitor.start_monitoring()
        if self.queue is not None:
            self.queue.start()

    # =========================================================================
    # READS
    # =========================================================================

    def _fetch(self) -> ServiceResult:
        owner_id = self._require_owner()
        with self.log_operation("Fetching accounts"):
            result = self.gateway.execute(GatewayOperation.read_accounts(owner_id))
        if not result:
            self.logger.warning(f"Could not fetch accounts, keeping cached set: {result.error}")
            with self._lock:
                self._degraded = True
            self._notify()
            return result

        with self._lock:
            self._replace_accounts(result.data)
            self._degraded = False
        self._reconcile()
        return ServiceResult.ok(self.accounts, metadata={"source": "remote"})

    def refresh(self) -> ServiceResult:
        """Re-fetch from the backend, or serve the cached set while offline."""
        try:
            owner_id = self._require_owner()
        except AuthenticationError as e:
            return self.fail(e, operation="refresh")

        if self.monitor.is_offline:
            with self._lock:
                self._accounts = self._load_cached_accounts(owner_id) or self._accounts
                self._degraded = True
            self._reconcile()
            return ServiceResult.ok(self.accounts, metadata={"source": "cache"})
        return self._fetch()

    def read_accounts(self) -> ServiceResult:
        """Current account set: cached while offline, fetched while online."""
        return self.refresh()

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def _record_lock(self, account_id: str) -> threading.Lock:
        """Lock serialising remote commands on one account."""
        with self._lock:
            return self._record_locks.setdefault(account_id, threading.Lock())

    def _write(self, operation: GatewayOperation, command: str) -> ServiceResult:
        """Gate on connectivity, run ``operation`` and clean up stale ids."""
        self.monitor.ensure_online_for_write()
        result = self.gateway.execute(operation)
        if not result:
            if isinstance(result.exception, NotFoundError) and operation.account_id:
                self._forget(operation.account_id)
            self.logger.warning(f"{command} failed: {result.error}")
        return result

    def add_account(self, data: Dict[str, Any]) -> ServiceResult:
        """Validate and create an account. Past due dates start overdue."""
        try:
            owner_id = self._require_owner()
            cleaned = validate_new_account(data)
            account = Account(
                id=self._new_id(),
                owner_id=owner_id,
                name=cleaned["name"],
                amount=cleaned["amount"],
                due_date=cleaned["due_date"],
                status=initial_status(cleaned["due_date"], self._today()),
                category=cleaned["category"],
                note=cleaned["note"],
            )
            with self._record_lock(account.id):
                result = self._write(GatewayOperation.insert(account), "add_account")
                if result:
                    self._put_account(result.data)
        except BillsError as e:
            return self.fail(e, operation="add_account")

        if result:
            self.audit.record("ACCOUNT_ADDED", owner_id, account_id=result.data.id, name=result.data.name)
            self._notify()
        return result

    def update_account(self, account_id: str, changes: Dict[str, Any]) -> ServiceResult:
        """Apply a partial edit. Moving the due date flips open/overdue."""
        try:
            owner_id = self._require_owner()
            cleaned = validate_account_update(changes)
            with self._record_lock(account_id):
                current = self._find(account_id)
                if "due_date" in cleaned:
                    moved = self.lifecycle.apply_due_date_change(current, cleaned["due_date"])
                    if moved.status != current.status:
                        cleaned["status"] = moved.status

                result = self._write(
                    GatewayOperation.update(owner_id, account_id, cleaned), "update_account"
                )
                if result:
                    self._put_account(result.data)
        except BillsError as e:
            return self.fail(e, operation="update_account", account_id=account_id)

        if result:
            self.audit.record("ACCOUNT_UPDATED", owner_id, account_id=account_id, fields=sorted(cleaned))
            self._notify()
        return result

    def delete_account(self, account_id: str) -> ServiceResult:
        try:
            owner_id = self._require_owner()
            with self._record_lock(account_id):
                result = self._write(GatewayOperation.delete(owner_id, account_id), "delete_account")
                if result:
                    self._forget(account_id)
        except BillsError as e:
            return self.fail(e, operation="delete_account", account_id=account_id)

        if result:
            self.audit.record("ACCOUNT_REMOVED", owner_id, account_id=account_id)
            self._notify()
        return result

    def mark_paid(self, account_id: str) -> ServiceResult:
        """
        Mark an account as paid now.

        Unknown ids and accounts of other users are rejected without any
        remote call. Marking an already paid account is a no-op.
        """
        try:
            owner_id = self._require_owner()
            with self._record_lock(account_id):
                with self._lock:
                    current = next((a for a in self._accounts if a.id == account_id), None)
                    self.lifecycle.mark_paid(self._accounts, account_id, owner_id)
                if current.is_paid:
                    return ServiceResult.ok(current, metadata={"unchanged": True})

                result = self._write(GatewayOperation.mark_paid(owner_id, account_id), "mark_paid")
                if result:
                    self._put_account(result.data)
        except BillsError as e:
            return self.fail(e, operation="mark_paid", account_id=account_id)

        if result:
            self.audit.record(
                "ACCOUNT_PAID", owner_id, account_id=account_id, amount=str(result.data.amount)
            )
            self._notify()
        return result

    def set_filter(self, **changes) -> ServiceResult:
        """Update the active filter. Persisted regardless of connectivity."""
        try:
            merged = validate_filter({**self._filter.to_dict(), **changes})
        except ValidationError as e:
            return self.fail(e, operation="set_filter")

        with self._lock:
            self._filter = merged
        if not self._filter_cache.save(merged.to_dict()):
            self.logger.warning("Filter could not be written to the local cache")
        self._notify()
        return ServiceResult.ok(merged)

    # =========================================================================
    # DERIVED DATA
    # =========================================================================

    def report(self, month: Optional[int] = None, year: Optional[int] = None) -> Report:
        """Report for (month, year); defaults to the filter's, then today's."""
        today = self._today()
        month = month or self._filter.month or today.month
        year = year or self._filter.year or today.year
        with self._lock:
            return build_report(self._accounts, month, year)

    def snapshot(self) -> SyncSnapshot:
        with self._lock:
            return SyncSnapshot(
                accounts=list(self._accounts),
                filter=self._filter,
                filtered=apply_filter(self._accounts, self._filter),
                report=self.report(),
                offline=self.monitor.is_offline,
                degraded=self._degraded,
                owner_id=self._owner_id,
            )

    # =========================================================================
    # LIFECYCLE TRIGGERS
    # =========================================================================

    def _sweep(self, force: bool) -> SweepResult:
        with self._lock:
            result = self.lifecycle.run_sweep(self._accounts, force=force)
            if result.changed:
                self._replace_accounts(result.accounts)
        if result.changed:
            self._notify()
        return result

    def _reconcile(self) -> SweepResult:
        """Sweep a freshly fetched or loaded set, ignoring the daily marker."""
        return self._sweep(force=True)

    def daily_sweep(self) -> SweepResult:
        """Timer hook: sweep at most once per calendar day."""
        return self._sweep(force=False)

    def on_focus(self) -> SweepResult:
        """The app regained focus: re-run the sweep even if it ran today."""
        return self._sweep(force=True)

    def on_network_regained(self) -> ServiceResult:
        """The host reports connectivity is back: probe and refresh."""
        if self.monitor.network_regained() and self._owner_id is not None:
            return self.refresh()
        return ServiceResult.ok(self.accounts, metadata={"source": "cache"})

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Handle connection status changes."""
        self.logger.info(f"Connection changed: {state.status.value}")
        self._notify()

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, callback: Callable[[SyncSnapshot], None]) -> Callable[[], None]:
        """
        Register a callback receiving a SyncSnapshot after every change.

        Returns:
            Function that removes the subscription
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error(f"Error in subscriber callback: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Get comprehensive status information."""
        return {
            "owner_id": self._owner_id,
            "degraded": self._degraded,
            "account_count": len(self._accounts),
            "connection": self.monitor.get_status_display(),
            "status_updates": self.queue.get_status_display() if self.queue else None,
            "cache": self.cache.get_cache_stats(),
            "last_sweep": self.lifecycle.last_run.isoformat() if self.lifecycle.last_run else None,
        }


# Singleton accessor
_sync_service: Optional[AccountSyncService] = None


def get_sync_service() -> AccountSyncService:
    """Get the global AccountSyncService instance."""
    global _sync_service
    if _sync_service is None:
        _sync_service = AccountSyncService.get_instance()
    return _sync_service
