# =============================================================================
# bills_core/models/validation.py
# Input validation and sanitisation for account commands
# =============================================================================
"""
Validation runs before any remote call. Every rule failure is collected into
a single ValidationError so callers can show field-level messages.
"""

from __future__ import annotations
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from bills_core.errors import ValidationError
from bills_core.models.account import (
    AccountCategory,
    AccountFilter,
    AccountStatus,
    to_money,
)

NAME_MAX_LENGTH = 100
NOTE_MAX_LENGTH = 500
MAX_AMOUNT = Decimal("999999999999.99")
MIN_YEAR = 2000
MAX_YEAR = 2100

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EDITABLE_FIELDS = ("name", "amount", "due_date", "category", "note")

_DANGEROUS_BLOCKS = re.compile(
    r"<(script|style|iframe|object|embed|applet|base|link|meta)\b[^>]*>.*?</\1>",
    re.IGNORECASE | re.DOTALL,
)
_TAGS = re.compile(r"<[^>]*>")
_SCRIPT_FRAGMENTS = re.compile(r"javascript\s*:|on\w+\s*=|eval\s*\(|data\s*:", re.IGNORECASE)


def sanitize_text(value: Optional[str]) -> str:
    """Strip HTML tags and script fragments from user text."""
    if value is None:
        return ""
    text = _DANGEROUS_BLOCKS.sub("", str(value))
    text = _TAGS.sub("", text)
    text = _SCRIPT_FRAGMENTS.sub("", text)
    return text.strip()


class _Collector:
    def __init__(self):
        self.errors: Dict[str, List[str]] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, []).append(message)

    def raise_if_any(self, message: str) -> None:
        if self.errors:
            raise ValidationError(message, field_errors=self.errors)


def _check_name(value: Any, errors: _Collector) -> Optional[str]:
    if not isinstance(value, str):
        errors.add("name", "name is required")
        return None
    name = sanitize_text(value)
    if not name:
        errors.add("name", "name is required")
    elif len(name) > NAME_MAX_LENGTH:
        errors.add("name", f"name must be at most {NAME_MAX_LENGTH} characters")
    return name


def _check_amount(value: Any, errors: _Collector) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        errors.add("amount", "amount is required")
        return None
    try:
        raw = Decimal(repr(value) if isinstance(value, float) else str(value))
    except (InvalidOperation, ValueError):
        errors.add("amount", "amount must be a number")
        return None
    if not raw.is_finite() or raw <= 0:
        errors.add("amount", "amount must be positive")
        return None
    if raw > MAX_AMOUNT:
        errors.add("amount", f"amount must be at most {MAX_AMOUNT}")
        return None
    try:
        two_places = raw == raw.quantize(Decimal("0.01"))
    except InvalidOperation:
        two_places = False
    if not two_places:
        errors.add("amount", "amount must have at most two decimal places")
        return None
    return to_money(raw)


def _check_due_date(value: Any, errors: _Collector) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        errors.add("due_date", "due date must use the YYYY-MM-DD format")
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        errors.add("due_date", "due date is not a valid calendar date")
        return None


def _check_category(value: Any, errors: _Collector) -> Optional[AccountCategory]:
    if isinstance(value, AccountCategory):
        return value
    try:
        return AccountCategory(value)
    except ValueError:
        allowed = ", ".join(c.value for c in AccountCategory)
        errors.add("category", f"category must be one of: {allowed}")
        return None


def _check_note(value: Any, errors: _Collector) -> Optional[str]:
    if value is None:
        return None
    note = sanitize_text(value)
    if len(note) > NOTE_MAX_LENGTH:
        errors.add("note", f"note must be at most {NOTE_MAX_LENGTH} characters")
    return note or None


_CHECKS = {
    "name": _check_name,
    "amount": _check_amount,
    "due_date": _check_due_date,
    "category": _check_category,
    "note": _check_note,
}


def validate_new_account(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate the fields of a new account.

    Args:
        data: name, amount, due_date, category and optional note

    Returns:
        Cleaned values (sanitised strings, Decimal amount, date, enum)

    Raises:
        ValidationError: With every failing field listed
    """
    errors = _Collector()
    cleaned = {name: check(data.get(name), errors) for name, check in _CHECKS.items()}
    errors.raise_if_any("Invalid account data")
    return cleaned


def validate_account_update(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial update. Status and payment date are not editable here:
    they are owned by the lifecycle rules.

    Raises:
        ValidationError: On unknown, read-only or invalid fields
    """
    errors = _Collector()
    if not changes:
        errors.add("changes", "nothing to update")

    cleaned: Dict[str, Any] = {}
    for name, value in changes.items():
        if name in ("status", "payment_date"):
            errors.add(name, f"{name} cannot be edited directly")
            continue
        check = _CHECKS.get(name)
        if check is None:
            errors.add(name, "unknown field")
            continue
        cleaned[name] = check(value, errors)

    errors.raise_if_any("Invalid account update")
    return cleaned


def validate_login(email: Any, password: Any) -> str:
    """
    Check login input before calling the backend.

    Returns:
        The normalised email address
    """
    errors = _Collector()
    address = email.strip().lower() if isinstance(email, str) else ""
    if not EMAIL_PATTERN.match(address):
        errors.add("email", "invalid email address")
    if not isinstance(password, str) or not password:
        errors.add("password", "password is required")
    errors.raise_if_any("Invalid login")
    return address


def validate_filter(data: Dict[str, Any]) -> AccountFilter:
    """Validate filter fields and build an AccountFilter."""
    errors = _Collector()
    month = data.get("month")
    year = data.get("year")
    category = data.get("category")
    status = data.get("status")

    if month is not None and (not isinstance(month, int) or not 1 <= month <= 12):
        errors.add("month", "month must be between 1 and 12")
    if year is not None and (not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR):
        errors.add("year", f"year must be between {MIN_YEAR} and {MAX_YEAR}")
    if category is not None and not isinstance(category, AccountCategory):
        category = _check_category(category, errors)
    if status is not None and not isinstance(status, AccountStatus):
        try:
            status = AccountStatus(status)
        except ValueError:
            errors.add("status", "status must be one of: open, paid, overdue")

    errors.raise_if_any("Invalid filter")
    return AccountFilter(month=month, year=year, category=category, status=status)
