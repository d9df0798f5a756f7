# =============================================================================
# bills_core/errors/exceptions.py
# Custom Exception Hierarchy for the Bill Tracker sync core
# =============================================================================

from typing import Optional, Dict, Any, List


class BillsError(Exception):
    """
    Base exception for all bill tracker errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "BILLS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# NETWORK / REMOTE EXCEPTIONS
# =============================================================================

class TransientNetworkError(BillsError):
    """Timeout, DNS/connection failure, 5xx or rate limiting. Safe to retry."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        code: str = "NET_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if operation:
            details["operation"] = operation
        self.status_code = status_code

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class RateLimitedError(TransientNetworkError):
    """Raised when the backend answers 429"""

    def __init__(self, message: str = "Too many requests", **kwargs):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, code="NET_002", **kwargs)


class OfflineError(BillsError):
    """Raised locally when a mutation is attempted while offline"""

    def __init__(self, message: str = "The service is unreachable (offline mode)", **kwargs):
        super().__init__(message=message, code="NET_003", **kwargs)


class RemoteServiceError(BillsError):
    """Non-transient backend failure that fits no other category"""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message=message, code="REMOTE_001", details=details, **kwargs)


# =============================================================================
# OWNERSHIP / AUTH EXCEPTIONS
# =============================================================================

class PermissionDeniedError(BillsError):
    """Raised when operating on a record not owned by the session"""

    def __init__(
        self,
        message: str = "You do not have permission to modify this account",
        account_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if account_id:
            details["account_id"] = account_id
        if owner_id:
            details["owner_id"] = owner_id

        super().__init__(
            message=message,
            code="AUTH_001",
            details=details,
            **kwargs,
        )


class AuthenticationError(BillsError):
    """Raised for invalid credentials or a missing session"""

    def __init__(self, message: str = "Invalid email or password", **kwargs):
        super().__init__(message=message, code="AUTH_002", **kwargs)


# =============================================================================
# DATA EXCEPTIONS
# =============================================================================

class ValidationError(BillsError):
    """Raised when input fails validation. Carries field-level messages."""

    def __init__(
        self,
        message: str = "Invalid data",
        field_errors: Optional[Dict[str, List[str]]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.field_errors = field_errors or {}
        if self.field_errors:
            details["field_errors"] = self.field_errors

        super().__init__(
            message=message,
            code="VAL_001",
            details=details,
            **kwargs,
        )

    @classmethod
    def for_field(cls, field: str, error: str) -> "ValidationError":
        return cls(f"{field}: {error}", field_errors={field: [error]})

    def messages(self) -> List[str]:
        """Flatten field errors into ``"field: message"`` strings."""
        return [
            f"{field}: {error}"
            for field, errors in self.field_errors.items()
            for error in errors
        ]


class NotFoundError(BillsError):
    """Raised when an account id is unknown (stale id)"""

    def __init__(self, message: str = "Account not found", account_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if account_id:
            details["account_id"] = account_id
        self.account_id = account_id
        super().__init__(message=message, code="DATA_001", details=details, **kwargs)


# =============================================================================
# LOCAL STORAGE EXCEPTIONS
# =============================================================================

class CacheCorruptionError(BillsError):
    """Raised internally for unreadable cache entries; never escapes the cache"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        super().__init__(message=message, code="CACHE_001", details=details, **kwargs)


class StorageQuotaExceededError(BillsError):
    """Raised by a key-value store when a write would exceed its capacity"""

    def __init__(
        self,
        message: str = "Local storage is full",
        key: Optional[str] = None,
        capacity_bytes: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if capacity_bytes is not None:
            details["capacity_bytes"] = capacity_bytes
        super().__init__(message=message, code="CACHE_002", details=details, **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(BillsError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
