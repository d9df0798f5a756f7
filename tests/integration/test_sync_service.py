# =============================================================================
# tests/integration/test_sync_service.py
# Integration Tests for AccountSyncService (gateway + monitor + cache + queue)
# =============================================================================

from datetime import date

import pytest

from conftest import OTHER_OWNER, OWNER, make_account, make_row


def _seed_cache(cache, accounts, owner_id=OWNER):
    from bills_core.offline.cache_manager import CacheKey

    cache.save(CacheKey.ACCOUNTS, {"owner_id": owner_id, "accounts": [a.to_row() for a in accounts]})


NEW_ACCOUNT = {"name": "Rent", "amount": "900.00", "due_date": "2025-03-20", "category": "fixed"}


class TestSessionStart:
    """Test cache-first session start"""

    def test_online_start_replaces_cache_with_remote(self, backend, cache, service):
        _seed_cache(cache, [make_account("old", date(2025, 3, 20))])
        backend.rows = {
            "r1": make_row("r1", "2025-03-25"),
            "r2": make_row("r2", "2025-03-18"),
        }

        result = service.start_session(OWNER)

        assert result.metadata["source"] == "remote"
        assert [a.id for a in service.accounts] == ["r2", "r1"]
        assert not service.degraded

    def test_offline_start_uses_cache(self, backend, cache, service):
        _seed_cache(cache, [make_account(f"c{i}", date(2025, 3, 20 + i)) for i in range(3)])
        backend.reachable = False

        result = service.start_session(OWNER)

        assert result.metadata["source"] == "cache"
        assert len(service.accounts) == 3
        assert service.degraded
        assert service.is_offline
        assert backend.remote_calls == []

    def test_cache_of_another_user_is_ignored(self, backend, cache, service):
        _seed_cache(cache, [make_account("x", date(2025, 3, 20), owner_id=OTHER_OWNER)],
                    owner_id=OTHER_OWNER)
        backend.reachable = False

        service.start_session(OWNER)

        assert service.accounts == []

    def test_fetch_failure_keeps_cached_set(self, backend, cache, service):
        from bills_core.errors import ValidationError

        _seed_cache(cache, [make_account("c1", date(2025, 3, 20))])
        backend.fail_next = [ValidationError("bad query")]

        result = service.start_session(OWNER)

        assert result.metadata["source"] == "cache"
        assert [a.id for a in service.accounts] == ["c1"]
        assert service.degraded

    def test_start_sweeps_overdue_accounts(self, backend, service):
        from bills_core.models.account import AccountStatus

        backend.rows = {"r1": make_row("r1", "2025-03-01")}

        service.start_session(OWNER)

        assert service.accounts[0].status == AccountStatus.OVERDUE
        assert [op.account_id for op in service.queue.pending()] == ["r1"]

    def test_same_day_restart_still_sweeps_fetched_rows(self, backend, cache, service):
        from bills_core.models.account import AccountStatus
        from bills_core.offline.cache_manager import CacheKey

        cache.save(CacheKey.SWEEP_LAST_RUN, "2025-03-15")
        backend.rows = {"r1": make_row("r1", "2025-03-01")}

        service.start_session(OWNER)

        assert service.accounts[0].status == AccountStatus.OVERDUE
        assert service.report(3, 2025).total_overdue == service.accounts[0].amount
        assert [op.account_id for op in service.queue.pending()] == ["r1"]

    def test_offline_start_sweeps_cached_rows(self, backend, cache, service):
        from bills_core.models.account import AccountStatus
        from bills_core.offline.cache_manager import CacheKey

        cache.save(CacheKey.SWEEP_LAST_RUN, "2025-03-15")
        _seed_cache(cache, [make_account("c1", date(2025, 3, 1))])
        backend.reachable = False

        service.start_session(OWNER)

        assert service.accounts[0].status == AccountStatus.OVERDUE

    def test_daily_sweep_runs_once_per_day(self, backend, service):
        backend.rows = {"r1": make_row("r1", "2025-03-20")}
        service.start_session(OWNER)

        assert service.daily_sweep().skipped


class TestOfflineReads:
    """Test reads across an outage"""

    def test_offline_read_then_reconnect(self, backend, cache, service):
        _seed_cache(cache, [make_account(f"c{i}", date(2025, 3, 20 + i)) for i in range(3)])
        backend.reachable = False
        service.start_session(OWNER)

        offline = service.read_accounts()

        assert offline.metadata["source"] == "cache"
        assert len(offline.data) == 3
        assert "fetch_accounts" not in backend.calls

        backend.rows = {f"r{i}": make_row(f"r{i}", f"2025-03-2{i}") for i in range(4)}
        backend.reachable = True

        online = service.on_network_regained()

        assert online.success
        assert sorted(a.id for a in service.accounts) == ["r0", "r1", "r2", "r3"]
        assert not service.degraded

    def test_writes_are_refused_while_offline(self, backend, service):
        from bills_core.errors import OfflineError

        backend.reachable = False
        service.start_session(OWNER)
        service.monitor.join_scheduler(timeout=2)

        result = service.add_account(NEW_ACCOUNT)

        assert isinstance(result.exception, OfflineError)
        assert "insert_account" not in backend.calls
        assert service.accounts == []

    def test_filter_changes_work_offline(self, backend, cache, service):
        from bills_core.models.account import AccountStatus
        from bills_core.offline.cache_manager import CacheKey

        backend.reachable = False
        service.start_session(OWNER)

        result = service.set_filter(status="paid")

        assert result.success
        assert service.filter.status == AccountStatus.PAID
        assert cache.read(CacheKey.FILTER)["status"] == "paid"


class TestCommands:
    """Test account commands end to end"""

    @pytest.fixture
    def started(self, backend, service):
        backend.rows = {"a1": make_row("a1", "2025-03-20", amount="50.00")}
        service.start_session(OWNER)
        return service

    def test_add_account(self, backend, started):
        from bills_core.models.account import AccountStatus

        result = started.add_account(NEW_ACCOUNT)

        assert result.success
        assert result.data.id == "new-1"
        assert result.data.status == AccountStatus.OPEN
        assert backend.rows["new-1"]["owner_id"] == OWNER
        assert [a.id for a in started.accounts] == ["a1", "new-1"]

    def test_past_due_account_is_created_overdue(self, backend, started):
        from bills_core.models.account import AccountStatus

        result = started.add_account({**NEW_ACCOUNT, "due_date": "2025-03-01"})

        assert result.data.status == AccountStatus.OVERDUE
        assert backend.rows["new-1"]["status"] == "overdue"

    def test_invalid_account_makes_no_remote_call(self, backend, started):
        calls_before = list(backend.calls)

        result = started.add_account({**NEW_ACCOUNT, "amount": "-5"})

        assert result.error_code == "VAL_001"
        assert backend.calls == calls_before

    def test_huge_amount_is_rejected_as_validation_error(self, backend, started):
        calls_before = list(backend.calls)

        result = started.add_account({**NEW_ACCOUNT, "amount": 10**30})

        assert result.error_code == "VAL_001"
        assert "amount" in result.exception.field_errors
        assert backend.calls == calls_before

    def test_update_moving_due_date_back_flips_status(self, backend, started):
        from bills_core.models.account import AccountStatus

        result = started.update_account("a1", {"due_date": "2025-03-10"})

        assert result.data.status == AccountStatus.OVERDUE
        assert backend.rows["a1"]["status"] == "overdue"

    def test_mark_paid(self, backend, started):
        from bills_core.models.account import AccountStatus

        result = started.mark_paid("a1")

        assert result.data.status == AccountStatus.PAID
        assert started.report(3, 2025).total_paid == result.data.amount

    def test_mark_paid_twice_is_a_no_op(self, backend, started):
        started.mark_paid("a1")
        updates = backend.calls.count("update_account")

        result = started.mark_paid("a1")

        assert result.success
        assert result.metadata == {"unchanged": True}
        assert backend.calls.count("update_account") == updates

    def test_mark_paid_unknown_id_makes_no_remote_call(self, backend, started):
        from bills_core.errors import NotFoundError

        calls_before = list(backend.calls)

        result = started.mark_paid("missing")

        assert isinstance(result.exception, NotFoundError)
        assert backend.calls == calls_before

    def test_stale_id_is_removed_locally(self, backend, started):
        from bills_core.errors import NotFoundError

        del backend.rows["a1"]

        result = started.delete_account("a1")

        assert isinstance(result.exception, NotFoundError)
        assert started.accounts == []

    def test_delete_account(self, backend, started):
        result = started.delete_account("a1")

        assert result.success
        assert "a1" not in backend.rows
        assert started.accounts == []

    def test_denied_update_leaves_local_state_untouched(self, backend, cache, started):
        from bills_core.errors import PermissionDeniedError
        from bills_core.offline.cache_manager import CacheKey

        cached_before = cache.read(CacheKey.ACCOUNTS)
        backend.fail_next = [PermissionDeniedError()]

        result = started.update_account("a1", {"amount": "75.00"})

        assert result.error_code == "AUTH_001"
        assert result.error == "You do not have permission to change this account."
        assert str(started.accounts[0].amount) == "50.00"
        assert backend.rows["a1"]["amount"] == "50.00"
        assert cache.read(CacheKey.ACCOUNTS) == cached_before

    def test_add_with_retries_exhausted_goes_offline(self, backend, cache, started):
        from bills_core.errors import TransientNetworkError
        from bills_core.offline.cache_manager import CacheKey

        cached_before = cache.read(CacheKey.ACCOUNTS)
        backend.reachable = False
        backend.fail_next = [TransientNetworkError("connection reset") for _ in range(3)]

        result = started.add_account(NEW_ACCOUNT)

        assert result.error_code == "NET_001"
        assert result.error == "Could not reach the server. Check your internet connection."
        assert backend.calls.count("insert_account") == 3
        assert "new-1" not in backend.rows
        assert [a.id for a in started.accounts] == ["a1"]
        assert cache.read(CacheKey.ACCOUNTS) == cached_before
        assert started.is_offline

    def test_mark_paid_with_retries_exhausted_keeps_account_open(self, backend, cache, started):
        from bills_core.errors import TransientNetworkError
        from bills_core.models.account import AccountStatus
        from bills_core.offline.cache_manager import CacheKey

        backend.reachable = False
        backend.fail_next = [TransientNetworkError("timed out") for _ in range(3)]

        result = started.mark_paid("a1")

        assert result.error_code == "NET_001"
        assert started.accounts[0].status == AccountStatus.OPEN
        assert started.accounts[0].payment_date is None
        assert backend.rows["a1"]["status"] == "open"
        assert cache.read(CacheKey.ACCOUNTS)["accounts"][0]["status"] == "open"
        assert started.report(3, 2025).total_paid == 0

    def test_commands_are_audited(self, started):
        from bills_core.offline.cache_manager import CacheKey

        started.add_account(NEW_ACCOUNT)
        started.mark_paid("new-1")

        events = [e["type"] for e in started.cache.read(CacheKey.AUDIT_LOG)]
        assert events == ["ACCOUNT_ADDED", "ACCOUNT_PAID"]

    def test_commands_require_a_session(self, service):
        result = service.add_account(NEW_ACCOUNT)

        assert result.error_code == "AUTH_002"


class TestConcurrentCommands:
    """Test commands running while another one waits on the backend"""

    def test_slow_write_does_not_block_other_accounts(self, backend, service):
        import threading

        from bills_core.models.account import AccountStatus

        backend.rows = {
            "a1": make_row("a1", "2025-03-20"),
            "a2": make_row("a2", "2025-03-22"),
        }
        service.start_session(OWNER)

        entered = threading.Event()
        release = threading.Event()
        update = backend.update_account

        def slow_update(account_id, owner_id, changes):
            if account_id == "a1":
                entered.set()
                release.wait(1)
            return update(account_id, owner_id, changes)

        backend.update_account = slow_update
        results = {}
        worker = threading.Thread(target=lambda: results.update(a1=service.mark_paid("a1")))
        worker.start()
        assert entered.wait(1)

        other = service.mark_paid("a2")
        snapshot = service.snapshot()
        release.set()
        worker.join(timeout=2)

        assert other.success
        statuses = {a.id: a.status for a in snapshot.accounts}
        assert statuses == {"a1": AccountStatus.OPEN, "a2": AccountStatus.PAID}
        assert results["a1"].success
        assert all(a.status == AccountStatus.PAID for a in service.accounts)


class TestSubscriptionsAndSession:
    """Test notifications and logout"""

    def test_subscribers_receive_snapshots(self, backend, service):
        snapshots = []
        unsubscribe = service.subscribe(snapshots.append)
        backend.rows = {"a1": make_row("a1", "2025-03-20")}

        service.start_session(OWNER)
        count = len(snapshots)
        service.set_filter(status="open")
        unsubscribe()
        service.set_filter(status="paid")

        assert count >= 1
        assert len(snapshots) == count + 1
        assert [a.id for a in snapshots[-1].filtered] == ["a1"]

    def test_subscriber_errors_are_contained(self, service):
        def broken(snapshot):
            raise RuntimeError("render failed")

        service.subscribe(broken)

        assert service.set_filter(month=4).success

    def test_end_session_clears_account_data(self, backend, cache, service):
        from bills_core.offline.cache_manager import CacheKey

        backend.rows = {"a1": make_row("a1", "2025-03-20")}
        service.start_session(OWNER)
        service.set_filter(status="open")

        service.end_session()

        assert service.owner_id is None
        assert service.accounts == []
        assert not cache.exists(CacheKey.ACCOUNTS)
        assert cache.exists(CacheKey.FILTER)

    def test_on_focus_forces_sweep(self, backend, service):
        from bills_core.models.account import AccountStatus

        backend.rows = {"a1": make_row("a1", "2025-03-20")}
        service.start_session(OWNER)
        service._accounts = [make_account("late", date(2025, 3, 1))]

        result = service.on_focus()

        assert [a.id for a in result.changed] == ["late"]
        assert service.accounts[0].status == AccountStatus.OVERDUE

    def test_status(self, backend, service):
        service.start_session(OWNER)

        status = service.get_status()

        assert status["owner_id"] == OWNER
        assert status["connection"]["status"] == "online"
        assert status["last_sweep"] == "2025-03-15"
