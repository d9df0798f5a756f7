# =============================================================================
# bills_core/services/report_service.py
# Filtering, monthly reports and tabular export
# =============================================================================
"""
Filter & report aggregation.

``apply_filter`` and ``build_report`` are pure folds over the account set:
same input, same output, no hidden state. Reports are derived on demand
and never cached as a source of truth.
"""

from __future__ import annotations
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from bills_core.logging import AuditLog, get_logger
from bills_core.models.account import (
    Account,
    AccountCategory,
    AccountFilter,
    AccountStatus,
    Report,
)

logger = get_logger(__name__)


# =============================================================================
# FILTERING
# =============================================================================

def matches(account: Account, account_filter: AccountFilter) -> bool:
    """Conjunctive match; unset filter fields match everything."""
    f = account_filter
    if f.month is not None and account.due_date.month != f.month:
        return False
    if f.year is not None and account.due_date.year != f.year:
        return False
    if f.category is not None and account.category != f.category:
        return False
    if f.status is not None and account.status != f.status:
        return False
    return True


def apply_filter(accounts: Iterable[Account], account_filter: Optional[AccountFilter]) -> List[Account]:
    """Return the matching accounts, preserving input order."""
    if account_filter is None:
        return list(accounts)
    return [a for a in accounts if matches(a, account_filter)]


# =============================================================================
# REPORTS
# =============================================================================

def build_report(accounts: Iterable[Account], month: int, year: int) -> Report:
    """
    Totals by status and by category for accounts due in (month, year).

    Every category is present in ``by_category``, at zero when unused.
    """
    report = Report(month=month, year=year)
    for account in apply_filter(accounts, AccountFilter(month=month, year=year)):
        if account.status == AccountStatus.PAID:
            report.total_paid += account.amount
        elif account.status == AccountStatus.OVERDUE:
            report.total_overdue += account.amount
        else:
            report.total_open += account.amount
        report.by_category[account.category] += account.amount
        report.account_count += 1
    return report


# =============================================================================
# TABULAR EXPORT
# =============================================================================

ACCOUNT_COLUMNS = ["name", "amount", "due_date", "status", "category", "payment_date", "note"]


def accounts_to_dataframe(accounts: Iterable[Account]) -> pd.DataFrame:
    """One row per account, in the given order."""
    rows = [
        {
            "name": a.name,
            "amount": float(a.amount),
            "due_date": a.due_date.isoformat(),
            "status": a.status.value,
            "category": a.category.value,
            "payment_date": a.payment_date.date().isoformat() if a.payment_date else "",
            "note": a.note or "",
        }
        for a in accounts
    ]
    return pd.DataFrame(rows, columns=ACCOUNT_COLUMNS)


def report_to_dataframe(report: Report) -> pd.DataFrame:
    """Summary table: status totals, then one line per category."""
    rows: List[Tuple[str, str, Decimal]] = [
        ("status", AccountStatus.PAID.value, report.total_paid),
        ("status", AccountStatus.OPEN.value, report.total_open),
        ("status", AccountStatus.OVERDUE.value, report.total_overdue),
        ("status", "total", report.total),
    ]
    rows.extend(("category", c.value, report.by_category[c]) for c in AccountCategory)
    df = pd.DataFrame(rows, columns=["group", "label", "amount"])
    df["amount"] = df["amount"].astype(float)
    return df


def export_report_csv(
    accounts: Iterable[Account],
    report: Report,
    path: Path,
    audit: Optional[AuditLog] = None,
    user_id: Optional[str] = None,
) -> Tuple[Path, Path]:
    """
    Write the report month's accounts to ``path`` and the summary next to it
    (``<stem>_summary.csv``).

    Returns:
        (accounts_path, summary_path)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary_path = path.with_name(f"{path.stem}_summary{path.suffix or '.csv'}")

    month_accounts = apply_filter(accounts, AccountFilter(month=report.month, year=report.year))
    accounts_to_dataframe(month_accounts).to_csv(path, index=False)
    report_to_dataframe(report).to_csv(summary_path, index=False)

    logger.info(f"Exported {len(month_accounts)} accounts for {report.month:02d}/{report.year} to {path}")
    if audit is not None:
        audit.record(
            "REPORT_EXPORTED",
            user_id,
            month=report.month,
            year=report.year,
            accounts=len(month_accounts),
            file=str(path),
        )
    return path, summary_path
