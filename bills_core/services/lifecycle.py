# =============================================================================
# bills_core/services/lifecycle.py
# Account lifecycle rules: open / paid / overdue
# =============================================================================
"""
Status rules for accounts.

The pure functions take "today" explicitly so they are deterministic. The
LifecycleEngine adds the stateful parts: the once-a-day sweep marker and
handing changed records to the status update queue.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from bills_core.errors import NotFoundError
from bills_core.logging import get_logger
from bills_core.models.account import Account, AccountStatus
from bills_core.offline.cache_manager import CacheKey, LocalCache, NamespacedCache
from bills_core.offline.sync_engine import StatusUpdateQueue

logger = get_logger(__name__)


def derive_status(account: Account, today: date) -> AccountStatus:
    """Status an account should have on ``today``. Paid is terminal."""
    if account.is_paid:
        return AccountStatus.PAID
    if account.due_date < today:
        return AccountStatus.OVERDUE
    return AccountStatus.OPEN


def initial_status(due_date: date, today: date) -> AccountStatus:
    """Status of a newly created account."""
    return AccountStatus.OVERDUE if due_date < today else AccountStatus.OPEN


@dataclass
class SweepResult:
    """Outcome of a due-date sweep."""
    accounts: List[Account]
    changed: List[Account] = field(default_factory=list)
    skipped: bool = False


def apply_due_date_sweep(accounts: Iterable[Account], today: date) -> SweepResult:
    """
    Mark every open account due strictly before ``today`` as overdue.

    Paid and already-overdue accounts are left untouched, so running it
    again on the same input is a no-op.
    """
    swept: List[Account] = []
    changed: List[Account] = []
    for account in accounts:
        if account.status == AccountStatus.OPEN and account.due_date < today:
            account = account.with_changes(status=AccountStatus.OVERDUE)
            changed.append(account)
        swept.append(account)
    return SweepResult(accounts=swept, changed=changed)


class LifecycleEngine:
    """
    Stateful lifecycle operations.

    Usage:
        engine = LifecycleEngine(cache, queue)
        result = engine.run_sweep(accounts)
        paid = engine.mark_paid(accounts, account_id, owner_id)
    """

    def __init__(
        self,
        cache: LocalCache,
        queue: Optional[StatusUpdateQueue] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.queue = queue
        self._clock = clock
        self._last_run = NamespacedCache(cache, CacheKey.SWEEP_LAST_RUN)

    def today(self) -> date:
        return self._clock().date()

    @property
    def last_run(self) -> Optional[date]:
        raw = self._last_run.read()
        try:
            return date.fromisoformat(raw) if raw else None
        except (TypeError, ValueError):
            return None

    def run_sweep(self, accounts: Iterable[Account], force: bool = False) -> SweepResult:
        """
        Run the due-date sweep at most once per calendar day.

        Args:
            accounts: Current account set
            force: Run even if the sweep already ran today (window refocus)

        Returns:
            SweepResult; ``skipped`` is True when the daily sweep already ran
        """
        today = self.today()
        if not force and self.last_run == today:
            return SweepResult(accounts=list(accounts), skipped=True)

        result = apply_due_date_sweep(accounts, today)
        self._last_run.save(today.isoformat())

        if result.changed:
            logger.info(f"Due-date sweep marked {len(result.changed)} account(s) overdue")
        if self.queue is not None:
            for account in result.changed:
                self.queue.enqueue(account.id, account.owner_id, account.status)
        return result

    def mark_paid(
        self,
        accounts: Iterable[Account],
        account_id: str,
        owner_id: str,
        now: Optional[datetime] = None,
    ) -> Account:
        """
        Return the paid copy of ``account_id``.

        Raises:
            NotFoundError: If the account is unknown or owned by someone else
        """
        account = next((a for a in accounts if a.id == account_id), None)
        if account is None or account.owner_id != owner_id:
            raise NotFoundError(account_id=account_id)
        return account.with_changes(
            status=AccountStatus.PAID,
            payment_date=now or self._clock(),
        )

    def apply_due_date_change(self, account: Account, new_due: date, today: Optional[date] = None) -> Account:
        """
        Move the due date, flipping open and overdue as needed.
        Paid accounts keep their status.
        """
        today = today or self.today()
        updated = account.with_changes(due_date=new_due)
        if account.is_paid:
            return updated
        return updated.with_changes(status=initial_status(new_due, today))
