# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from bills_core.config import ReconnectPolicy, RetryPolicy, SweepPolicy
from bills_core.data.supabase_client import RemoteBackend
from bills_core.models.account import Account, AccountCategory, AccountStatus


TODAY = date(2025, 3, 15)
NOW = datetime(2025, 3, 15, 10, 30, 0)
OWNER = "user-1"
OTHER_OWNER = "user-2"


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeBackend(RemoteBackend):
    """
    In-memory backend. ``fail_next`` queues exceptions raised by the next
    calls (one per call), ``reachable`` drives the probe.
    """

    def __init__(self, rows: Optional[List[Dict]] = None):
        self.rows: Dict[str, Dict] = {row["id"]: dict(row) for row in rows or []}
        self.fail_next: List[Exception] = []
        self.reachable = True
        self.calls: List[str] = []
        self.session: Optional[Dict] = None

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_next:
            raise self.fail_next.pop(0)

    def fetch_accounts(self, owner_id):
        self._maybe_fail("fetch_accounts")
        rows = [dict(r) for r in self.rows.values() if r["owner_id"] == owner_id]
        return sorted(rows, key=lambda r: r["due_date"])

    def insert_account(self, row):
        self._maybe_fail("insert_account")
        self.rows[row["id"]] = dict(row)
        return dict(row)

    def update_account(self, account_id, owner_id, changes):
        self._maybe_fail("update_account")
        self.rows[account_id].update(changes)
        return dict(self.rows[account_id])

    def delete_account(self, account_id, owner_id):
        self._maybe_fail("delete_account")
        self.rows.pop(account_id, None)

    def get_owner(self, account_id):
        self._maybe_fail("get_owner")
        row = self.rows.get(account_id)
        return row["owner_id"] if row else None

    def probe(self, timeout):
        self.calls.append("probe")
        return self.reachable

    def sign_in(self, email, password):
        self.calls.append("sign_in")
        if password != "secret":
            from bills_core.errors import AuthenticationError
            raise AuthenticationError()
        self.session = {"user_id": OWNER, "email": email, "name": "Ana", "token": "tok-123"}
        return self.session

    def sign_out(self):
        self.calls.append("sign_out")
        self.session = None

    def current_session(self):
        self.calls.append("current_session")
        if self.fail_next:
            raise self.fail_next.pop(0)
        return self.session

    @property
    def remote_calls(self) -> List[str]:
        """Calls that hit the record API (the probe excluded)."""
        return [c for c in self.calls if c != "probe"]


def make_row(account_id: str, due: str, status: str = "open", amount: str = "10.00",
             category: str = "other", owner_id: str = OWNER, payment_date: Optional[str] = None) -> Dict:
    return {
        "id": account_id,
        "owner_id": owner_id,
        "name": f"Bill {account_id}",
        "amount": amount,
        "due_date": due,
        "payment_date": payment_date,
        "status": status,
        "category": category,
        "note": None,
    }


def make_account(account_id: str, due: date, status: AccountStatus = AccountStatus.OPEN,
                 amount: str = "10.00", category: AccountCategory = AccountCategory.OTHER,
                 owner_id: str = OWNER) -> Account:
    return Account(
        id=account_id,
        owner_id=owner_id,
        name=f"Bill {account_id}",
        amount=Decimal(amount),
        due_date=due,
        status=status,
        category=category,
        payment_date=NOW if status == AccountStatus.PAID else None,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Fixed clock at TODAY 10:30"""
    return lambda: NOW


@pytest.fixture
def retry_policy():
    """Retry policy without delays"""
    return RetryPolicy(
        max_attempts=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        request_timeout_seconds=2.0,
    )


@pytest.fixture
def reconnect_policy():
    """Reconnect policy with tiny intervals"""
    return ReconnectPolicy(
        probe_timeout_seconds=0.1,
        failure_threshold=3,
        reconnect_base_interval_seconds=0.01,
        reconnect_multiplier=1.0,
        reconnect_max_interval_seconds=0.01,
        max_reconnect_attempts=3,
        health_check_interval_seconds=0.01,
    )


@pytest.fixture
def sweep_policy():
    return SweepPolicy(max_attempts=2, drain_interval_seconds=0.01)


@pytest.fixture
def backend():
    """Empty fake backend"""
    return FakeBackend()


@pytest.fixture
def memory_store():
    from bills_core.offline.storage import MemoryStore
    return MemoryStore()


@pytest.fixture
def cache(memory_store, clock):
    from bills_core.offline.cache_manager import LocalCache
    return LocalCache(memory_store, clock=clock)


@pytest.fixture
def monitor(backend, reconnect_policy, clock):
    from bills_core.offline.connection_manager import ConnectionManager
    manager = ConnectionManager(backend.probe, reconnect_policy, clock=clock)
    yield manager
    manager.shutdown()


@pytest.fixture
def gateway(backend, monitor, retry_policy, clock):
    from bills_core.api.gateway import RemoteDataGateway
    gw = RemoteDataGateway(backend, monitor, retry_policy, sleep=lambda s: None, clock=clock)
    yield gw
    gw.shutdown()


@pytest.fixture
def queue(gateway, monitor, sweep_policy):
    from bills_core.offline.sync_engine import StatusUpdateQueue
    q = StatusUpdateQueue(gateway, monitor, sweep_policy)
    yield q
    q.stop()


@pytest.fixture
def service(gateway, monitor, cache, queue, clock):
    """Orchestrator wired to the fake backend with sequential ids"""
    from bills_core.services.account_sync_service import AccountSyncService
    counter = iter(range(1, 10_000))
    svc = AccountSyncService(
        gateway,
        monitor,
        cache,
        queue=queue,
        clock=clock,
        id_factory=lambda: f"new-{next(counter)}",
    )
    yield svc
    svc.end_session()


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client
