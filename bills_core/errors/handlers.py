# =============================================================================
# bills_core/errors/handlers.py
# Error Handling Utilities for the Bill Tracker sync core
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar, Any, Dict

from bills_core.logging import get_logger
from .exceptions import (
    BillsError,
    TransientNetworkError,
    RateLimitedError,
    OfflineError,
    PermissionDeniedError,
    AuthenticationError,
    ValidationError,
    NotFoundError,
    ConfigurationError,
)

logger = get_logger(__name__)

T = TypeVar("T")


# Order matters: subclasses before their parents
USER_MESSAGES = (
    (RateLimitedError, "Too many requests. Please wait a moment and try again."),
    (TransientNetworkError, "Could not reach the server. Check your internet connection."),
    (OfflineError, "Offline mode: changes are unavailable until the connection is back."),
    (PermissionDeniedError, "You do not have permission to change this account."),
    (AuthenticationError, "Invalid email or password."),
    (NotFoundError, "This account no longer exists."),
    (ConfigurationError, "The application is not configured correctly."),
)


def user_message_for(error: Exception) -> str:
    """Translate an error into text that can be shown to the user."""
    if isinstance(error, ValidationError):
        messages = error.messages()
        return "; ".join(messages) if messages else error.message
    for error_type, message in USER_MESSAGES:
        if isinstance(error, error_type):
            return message
    if isinstance(error, BillsError):
        return error.message
    return "Unexpected error. Please try again."


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message for the user (derived from the error if None)
        context: Extra context for the log record (operation, account id, owner...)

    Returns:
        The user-displayable message
    """
    message = user_message or user_message_for(error)

    if isinstance(error, BillsError):
        code = error.code
        details = {**error.details, **(context or {})}
        recoverable = error.recoverable
    else:
        code = "UNKNOWN"
        details = {**(context or {}), "traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        log = logger.warning if recoverable else logger.error
        log(
            f"[{code}] {getattr(error, 'message', str(error))}",
            extra={"details": details},
            exc_info=not isinstance(error, BillsError),
        )

    return message


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Args:
        func: Function to execute
        *args: Positional arguments to pass to func
        default: Default value to return on error
        error_message: Custom error message for the log
        reraise: Whether to reraise the exception after handling
        **kwargs: Keyword arguments to pass to func

    Returns:
        Function result or default value on error
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    Usage:
        with ErrorContext("Draining status updates", recoverable=True) as ctx:
            queue.drain_now()
        if ctx.error:
            ...
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None
        self.user_message: Optional[str] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if not isinstance(exc_val, Exception):
                return False
            self.error = exc_val
            if isinstance(exc_val, BillsError):
                self.user_message = handle_error(exc_val, context={"operation": self.operation})
            else:
                self.user_message = handle_error(
                    exc_val,
                    user_message=f"Error during: {self.operation}",
                    context={"operation": self.operation},
                )

            # Suppress exception if recoverable
            return self.recoverable

        logger.debug(f"Completed: {self.operation}")
        return False

