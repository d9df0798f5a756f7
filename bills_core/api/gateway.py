# =============================================================================
# bills_core/api/gateway.py
# Remote Data Gateway: every backend call goes through here
# =============================================================================
"""
RemoteDataGateway - wraps the remote backend with timeout, bounded retries
and exponential backoff, and reports outcomes to the connection manager.

Only transient failures (timeouts, connection errors, 5xx, 429) are retried.
Ownership, validation and not-found failures come back immediately.
"""

from __future__ import annotations
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from bills_core.config import RetryPolicy, get_settings
from bills_core.data.supabase_client import RemoteBackend, classify_exception
from bills_core.errors import (
    BillsError,
    NotFoundError,
    PermissionDeniedError,
    TransientNetworkError,
    handle_error,
)
from bills_core.logging import get_logger
from bills_core.models.account import Account, AccountStatus
from bills_core.services.base_service import ServiceResult

logger = get_logger(__name__)


class OperationKind(Enum):
    """Remote operations the sync core performs."""
    READ_ACCOUNTS = "read_accounts"
    INSERT_ACCOUNT = "insert_account"
    UPDATE_ACCOUNT = "update_account"
    DELETE_ACCOUNT = "delete_account"
    MARK_PAID = "mark_paid"


# Operations that touch an existing record and must pass the ownership check
OWNED_RECORD_KINDS = (
    OperationKind.UPDATE_ACCOUNT,
    OperationKind.DELETE_ACCOUNT,
    OperationKind.MARK_PAID,
)


@dataclass
class GatewayOperation:
    """A single remote request, scoped to the session owner."""
    kind: OperationKind
    owner_id: str
    account_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read_accounts(cls, owner_id: str) -> GatewayOperation:
        return cls(OperationKind.READ_ACCOUNTS, owner_id)

    @classmethod
    def insert(cls, account: Account) -> GatewayOperation:
        return cls(OperationKind.INSERT_ACCOUNT, account.owner_id, account.id, account.to_row())

    @classmethod
    def update(cls, owner_id: str, account_id: str, changes: Dict[str, Any]) -> GatewayOperation:
        return cls(OperationKind.UPDATE_ACCOUNT, owner_id, account_id, dict(changes))

    @classmethod
    def delete(cls, owner_id: str, account_id: str) -> GatewayOperation:
        return cls(OperationKind.DELETE_ACCOUNT, owner_id, account_id)

    @classmethod
    def mark_paid(cls, owner_id: str, account_id: str) -> GatewayOperation:
        return cls(OperationKind.MARK_PAID, owner_id, account_id)

    def describe(self) -> str:
        target = f" {self.account_id}" if self.account_id else ""
        return f"{self.kind.value}{target}"


class RemoteDataGateway:
    """
    Single entry point for remote reads and writes.

    Usage:
        gateway = RemoteDataGateway(SupabaseBackend(), monitor=connection_manager)
        result = gateway.execute(GatewayOperation.read_accounts(user_id))
        if result:
            accounts = result.data
    """

    def __init__(
        self,
        backend: RemoteBackend,
        monitor=None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            backend: Remote backend implementation
            monitor: ConnectionManager receiving success/failure reports
            policy: Retry/backoff/timeout settings
            sleep: Sleep function used between attempts
            clock: Time source for payment dates
        """
        self.backend = backend
        self.monitor = monitor
        self.policy = policy or get_settings().retry
        self._sleep = sleep
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="gateway")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def execute(self, operation: GatewayOperation) -> ServiceResult:
        """
        Run ``operation`` with bounded retries.

        Returns:
            ServiceResult with the payload (list of Account, Account or the
            deleted id) or the classified error in ``exception``
        """
        max_attempts = max(1, self.policy.max_attempts)
        last_error: Optional[BillsError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                data = self._run_with_timeout(operation)
            except Exception as e:
                error = classify_exception(e, operation=operation.kind.value)
                self._log_failure(operation, attempt, error)

                if not error.retryable:
                    return self._failed(operation, error, attempt)

                last_error = error
                if self.monitor is not None:
                    self.monitor.record_failure(str(error.message))
                if attempt < max_attempts:
                    self._sleep(self.policy.delay_for(attempt))
                continue

            if self.monitor is not None:
                self.monitor.record_success()
            if attempt > 1:
                logger.info(f"{operation.describe()} succeeded on attempt {attempt}")
            return ServiceResult.ok(data, metadata={"attempts": attempt})

        # Retries exhausted on a transient error
        if self.monitor is not None:
            self.monitor.mark_offline(f"{operation.describe()} failed after {max_attempts} attempts")
        return self._failed(operation, last_error, max_attempts)

    def shutdown(self) -> None:
        """Release the worker threads."""
        self._executor.shutdown(wait=False)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _run_with_timeout(self, operation: GatewayOperation) -> Any:
        future = self._executor.submit(self._perform, operation)
        # An expired future is classified as a transient timeout
        return future.result(timeout=self.policy.request_timeout_seconds)

    def _perform(self, operation: GatewayOperation) -> Any:
        kind = operation.kind

        if kind in OWNED_RECORD_KINDS:
            self._check_ownership(operation)

        if kind == OperationKind.READ_ACCOUNTS:
            rows = self.backend.fetch_accounts(operation.owner_id)
            return [Account.from_row(row) for row in rows]

        if kind == OperationKind.INSERT_ACCOUNT:
            return Account.from_row(self.backend.insert_account(operation.payload))

        if kind == OperationKind.UPDATE_ACCOUNT:
            row = self.backend.update_account(
                operation.account_id, operation.owner_id, _serialize(operation.payload)
            )
            return Account.from_row(row)

        if kind == OperationKind.DELETE_ACCOUNT:
            self.backend.delete_account(operation.account_id, operation.owner_id)
            return operation.account_id

        if kind == OperationKind.MARK_PAID:
            changes = {
                "status": AccountStatus.PAID.value,
                "payment_date": self._clock().isoformat(),
            }
            row = self.backend.update_account(operation.account_id, operation.owner_id, changes)
            return Account.from_row(row)

        raise ValueError(f"Unsupported operation: {kind}")

    def _check_ownership(self, operation: GatewayOperation) -> None:
        owner = self.backend.get_owner(operation.account_id)
        if owner is None:
            raise NotFoundError(account_id=operation.account_id)
        if owner != operation.owner_id:
            raise PermissionDeniedError(
                account_id=operation.account_id, owner_id=operation.owner_id
            )

    def _log_failure(self, operation: GatewayOperation, attempt: int, error: BillsError) -> None:
        level = "warning" if isinstance(error, TransientNetworkError) else "info"
        getattr(logger, level)(
            f"{operation.describe()} failed "
            f"(owner={operation.owner_id}, attempt {attempt}/{self.policy.max_attempts}): "
            f"[{error.code}] {error.message}"
        )

    @staticmethod
    def _failed(operation: GatewayOperation, error: BillsError, attempts: int) -> ServiceResult:
        context = {
            "operation": operation.kind.value,
            "account_id": operation.account_id,
            "owner_id": operation.owner_id,
            "attempts": attempts,
        }
        message = handle_error(error, log_error=False)
        return ServiceResult.from_exception(error, user_message=message, metadata=context)


def _serialize(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Convert domain values (enums, dates, Decimal) to their row form."""
    row: Dict[str, Any] = {}
    for name, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        row[name] = value
    return row

