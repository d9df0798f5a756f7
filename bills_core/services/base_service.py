# =============================================================================
# bills_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any
from dataclasses import dataclass

from bills_core.logging import get_logger, LogContext
from bills_core.errors import handle_error, BillsError


@dataclass
class ServiceResult:
    """
    Standard result container for gateway calls and service commands.

    ``error`` is always user-displayable text; the original exception is
    kept in ``exception`` for callers that need to branch on its type.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    exception: Optional[Exception] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(
        cls,
        e: Exception,
        user_message: Optional[str] = None,
        metadata: Dict[str, Any] = None,
    ) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, BillsError):
            return cls(
                success=False,
                error=user_message or e.message,
                error_code=e.code,
                metadata={**e.details, **(metadata or {})},
                exception=e,
            )
        return cls(
            success=False,
            error=user_message or str(e),
            error_code="EXCEPTION",
            metadata=metadata,
            exception=e,
        )

    def unwrap(self) -> Any:
        """Return ``data`` or raise the stored exception."""
        if self.success:
            return self.data
        if self.exception is not None:
            raise self.exception
        raise BillsError(self.error or "Operation failed", code=self.error_code)


class BaseService(ABC):
    """
    Abstract base class for all services.

    Provides common functionality:
    - Logging
    - Error handling
    - Result standardization

    Usage:
        class MyService(BaseService):
            def do_something(self) -> ServiceResult:
                with self.log_operation("Doing something"):
                    return ServiceResult.ok(self._work())
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Refreshing accounts"):
                ...
        """
        return LogContext(self.logger, operation)

    def fail(self, error: Exception, **context) -> ServiceResult:
        """Log ``error`` with context and turn it into a failed result."""
        message = handle_error(error, context=context)
        return ServiceResult.from_exception(error, user_message=message, metadata=context)

