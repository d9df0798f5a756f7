# =============================================================================
# tests/unit/test_gateway.py
# Unit Tests for RemoteDataGateway
# =============================================================================

import time

import pytest

from conftest import OTHER_OWNER, OWNER, NOW, FakeBackend, make_row


def _transient(n):
    from bills_core.errors import TransientNetworkError
    return [TransientNetworkError(f"boom {i}", status_code=503) for i in range(n)]


class TestGatewayRetries:
    """Test bounded retries on transient failures"""

    @pytest.mark.parametrize("failures", [0, 1, 2])
    def test_fewer_failures_than_attempts_succeeds(self, backend, gateway, failures):
        """K transient failures with K < max_attempts succeed after K+1 calls"""
        from bills_core.api.gateway import GatewayOperation

        backend.rows = {"a1": make_row("a1", "2025-03-10")}
        backend.fail_next = _transient(failures)

        result = gateway.execute(GatewayOperation.read_accounts(OWNER))

        assert result.success
        assert [a.id for a in result.data] == ["a1"]
        assert backend.calls.count("fetch_accounts") == failures + 1
        assert result.metadata["attempts"] == failures + 1

    def test_exhausted_retries_fail_and_go_offline(self, backend, gateway, monitor):
        """K >= max_attempts fails with a transient error and marks offline"""
        from bills_core.api.gateway import GatewayOperation
        from bills_core.errors import TransientNetworkError

        backend.reachable = False
        backend.fail_next = _transient(5)

        result = gateway.execute(GatewayOperation.read_accounts(OWNER))

        assert not result.success
        assert isinstance(result.exception, TransientNetworkError)
        assert backend.calls.count("fetch_accounts") == 3
        assert monitor.is_offline

    def test_backoff_delays_grow_and_are_capped(self, backend, monitor):
        from bills_core.api.gateway import GatewayOperation, RemoteDataGateway
        from bills_core.config import RetryPolicy

        delays = []
        policy = RetryPolicy(max_attempts=4, backoff_base_seconds=1.0,
                             backoff_factor=2.0, backoff_max_seconds=3.0)
        gw = RemoteDataGateway(backend, monitor, policy, sleep=delays.append)
        backend.reachable = False
        backend.fail_next = _transient(4)

        gw.execute(GatewayOperation.read_accounts(OWNER))
        gw.shutdown()

        assert delays == [1.0, 2.0, 3.0]

    def test_non_transient_errors_are_not_retried(self, backend, gateway, monitor):
        from bills_core.api.gateway import GatewayOperation
        from bills_core.errors import ValidationError

        backend.fail_next = [ValidationError("bad row")]

        result = gateway.execute(GatewayOperation.read_accounts(OWNER))

        assert not result.success
        assert result.error_code == "VAL_001"
        assert backend.calls.count("fetch_accounts") == 1
        assert not monitor.is_offline

    def test_timeout_counts_as_transient(self, monitor):
        from bills_core.api.gateway import GatewayOperation, RemoteDataGateway
        from bills_core.config import RetryPolicy
        from bills_core.errors import TransientNetworkError

        class SlowBackend(FakeBackend):
            def fetch_accounts(self, owner_id):
                time.sleep(0.5)
                return []

        slow = SlowBackend()
        policy = RetryPolicy(max_attempts=1, backoff_base_seconds=0.0, request_timeout_seconds=0.05)
        gw = RemoteDataGateway(slow, None, policy, sleep=lambda s: None)

        result = gw.execute(GatewayOperation.read_accounts(OWNER))
        gw.shutdown()

        assert not result.success
        assert isinstance(result.exception, TransientNetworkError)


class TestGatewayOwnership:
    """Test ownership checks on record operations"""

    def test_unknown_id_is_not_found(self, backend, gateway):
        from bills_core.api.gateway import GatewayOperation
        from bills_core.errors import NotFoundError

        result = gateway.execute(GatewayOperation.mark_paid(OWNER, "missing"))

        assert isinstance(result.exception, NotFoundError)
        assert "update_account" not in backend.calls

    def test_foreign_record_is_permission_denied(self, backend, gateway):
        from bills_core.api.gateway import GatewayOperation
        from bills_core.errors import PermissionDeniedError

        backend.rows = {"a1": make_row("a1", "2025-03-10", owner_id=OTHER_OWNER)}

        result = gateway.execute(GatewayOperation.delete(OWNER, "a1"))

        assert isinstance(result.exception, PermissionDeniedError)
        assert backend.calls.count("get_owner") == 1
        assert "a1" in backend.rows


class TestGatewayOperations:
    """Test payload handling per operation kind"""

    def test_mark_paid_sets_status_and_payment_date(self, backend, gateway):
        from bills_core.api.gateway import GatewayOperation
        from bills_core.models.account import AccountStatus

        backend.rows = {"a1": make_row("a1", "2025-03-10")}

        result = gateway.execute(GatewayOperation.mark_paid(OWNER, "a1"))

        assert result.data.status == AccountStatus.PAID
        assert result.data.payment_date == NOW

    def test_update_serializes_domain_values(self, backend, gateway):
        from datetime import date
        from decimal import Decimal

        from bills_core.api.gateway import GatewayOperation
        from bills_core.models.account import AccountCategory

        backend.rows = {"a1": make_row("a1", "2025-03-10")}
        changes = {"amount": Decimal("12.50"), "due_date": date(2025, 4, 1),
                   "category": AccountCategory.CARD}

        result = gateway.execute(GatewayOperation.update(OWNER, "a1", changes))

        assert backend.rows["a1"]["amount"] == "12.50"
        assert backend.rows["a1"]["due_date"] == "2025-04-01"
        assert backend.rows["a1"]["category"] == "card"
        assert result.data.category == AccountCategory.CARD

    def test_success_reports_to_monitor(self, backend, gateway, monitor):
        from bills_core.api.gateway import GatewayOperation

        gateway.execute(GatewayOperation.read_accounts(OWNER))

        assert monitor.is_online
