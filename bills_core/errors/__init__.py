# =============================================================================
# bills_core/errors/__init__.py
# Centralized Error Handling for the Bill Tracker sync core
# =============================================================================

from .exceptions import (
    BillsError,
    TransientNetworkError,
    RateLimitedError,
    OfflineError,
    RemoteServiceError,
    PermissionDeniedError,
    AuthenticationError,
    ValidationError,
    NotFoundError,
    CacheCorruptionError,
    StorageQuotaExceededError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    user_message_for,
    safe_execute,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "BillsError",
    "TransientNetworkError",
    "RateLimitedError",
    "OfflineError",
    "RemoteServiceError",
    "PermissionDeniedError",
    "AuthenticationError",
    "ValidationError",
    "NotFoundError",
    "CacheCorruptionError",
    "StorageQuotaExceededError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "user_message_for",
    "safe_execute",
    "ErrorContext",
]
