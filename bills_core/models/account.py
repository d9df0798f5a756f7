# =============================================================================
# bills_core/models/account.py
# Domain model for payable bills ("accounts"), filters and reports
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field, replace, asdict
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from bills_core.errors import ValidationError

CENTS = Decimal("0.01")


class AccountStatus(Enum):
    """Lifecycle states of an account."""
    OPEN = "open"
    PAID = "paid"
    OVERDUE = "overdue"


class AccountCategory(Enum):
    """Fixed set of bill categories."""
    FIXED = "fixed"
    VARIABLE = "variable"
    CARD = "card"
    TAX = "tax"
    OTHER = "other"


def to_money(value: Any) -> Decimal:
    """Convert a number or numeric string to a 2-decimal ``Decimal``."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class Account:
    """
    A single payable bill.

    Attributes:
        id: Opaque unique identifier.
        owner_id: Identifier of the user who owns the account.
        name: Display name (1-100 chars).
        amount: Positive amount, two decimal places.
        due_date: Calendar due date.
        status: open / paid / overdue.
        category: fixed / variable / card / tax / other.
        payment_date: Set if and only if status is paid.
        note: Optional free text (up to 500 chars).
        created_at: Backend creation timestamp, when known.
    """
    id: str
    owner_id: str
    name: str
    amount: Decimal
    due_date: date
    status: AccountStatus = AccountStatus.OPEN
    category: AccountCategory = AccountCategory.OTHER
    payment_date: Optional[datetime] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == AccountStatus.PAID

    @property
    def is_overdue(self) -> bool:
        return self.status == AccountStatus.OVERDUE

    def with_changes(self, **changes) -> Account:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    def check_invariants(self, today: date) -> None:
        """
        Raise ValidationError if the status/payment-date rules are broken.

        - payment_date is present if and only if status is paid
        - overdue implies due_date < today
        """
        errors: Dict[str, list] = {}
        if self.is_paid and self.payment_date is None:
            errors.setdefault("payment_date", []).append("required when status is paid")
        if not self.is_paid and self.payment_date is not None:
            errors.setdefault("payment_date", []).append("only allowed when status is paid")
        if self.is_overdue and not self.due_date < today:
            errors.setdefault("status", []).append("overdue requires a past due date")
        if errors:
            raise ValidationError(f"Account {self.id} violates lifecycle rules", field_errors=errors)

    # ------------------------------------------------------------------
    # Persisted layout
    # ------------------------------------------------------------------

    def to_row(self) -> Dict[str, Any]:
        """Serialize to the backend/cache row layout."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "amount": str(self.amount),
            "due_date": self.due_date.isoformat(),
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "status": self.status.value,
            "category": self.category.value,
            "note": self.note,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Account:
        """Build an Account from a backend/cache row."""
        return cls(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            name=row["name"],
            amount=to_money(row["amount"]),
            due_date=_parse_date(row["due_date"]),
            status=AccountStatus(row.get("status") or AccountStatus.OPEN.value),
            category=AccountCategory(row.get("category") or AccountCategory.OTHER.value),
            payment_date=_parse_datetime(row.get("payment_date")),
            note=row.get("note") or None,
            created_at=_parse_datetime(row.get("created_at")),
        )

    def __str__(self) -> str:
        return f"{self.name}: {self.amount} ({self.status.value}) due {self.due_date}"


@dataclass
class AccountFilter:
    """Conjunctive filter; unset fields match everything."""
    month: Optional[int] = None
    year: Optional[int] = None
    category: Optional[AccountCategory] = None
    status: Optional[AccountStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "year": self.year,
            "category": self.category.value if self.category else None,
            "status": self.status.value if self.status else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AccountFilter:
        category = data.get("category")
        status = data.get("status")
        return cls(
            month=data.get("month"),
            year=data.get("year"),
            category=AccountCategory(category) if category else None,
            status=AccountStatus(status) if status else None,
        )

    @classmethod
    def for_month(cls, today: date) -> AccountFilter:
        """Default filter: the current month."""
        return cls(month=today.month, year=today.year)


def _zero_by_category() -> Dict[AccountCategory, Decimal]:
    return {category: Decimal("0.00") for category in AccountCategory}


@dataclass
class Report:
    """Totals by status and by category for one (month, year). Never persisted."""
    month: int
    year: int
    total_paid: Decimal = Decimal("0.00")
    total_open: Decimal = Decimal("0.00")
    total_overdue: Decimal = Decimal("0.00")
    by_category: Dict[AccountCategory, Decimal] = field(default_factory=_zero_by_category)
    account_count: int = 0

    @property
    def total(self) -> Decimal:
        return self.total_paid + self.total_open + self.total_overdue

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_paid"] = str(self.total_paid)
        data["total_open"] = str(self.total_open)
        data["total_overdue"] = str(self.total_overdue)
        data["total"] = str(self.total)
        data["by_category"] = {c.value: str(v) for c, v in self.by_category.items()}
        return data
