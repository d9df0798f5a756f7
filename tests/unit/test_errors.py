# =============================================================================
# tests/unit/test_errors.py
# Unit Tests for the error taxonomy and handlers
# =============================================================================

import pytest


class TestExceptions:
    """Test exception attributes"""

    def test_transient_errors_are_retryable(self):
        from bills_core.errors import (
            NotFoundError,
            RateLimitedError,
            TransientNetworkError,
            ValidationError,
        )

        assert TransientNetworkError("x").retryable
        assert RateLimitedError().retryable
        assert not NotFoundError().retryable
        assert not ValidationError().retryable

    def test_to_dict(self):
        from bills_core.errors import NotFoundError

        data = NotFoundError(account_id="a1").to_dict()

        assert data["error_type"] == "NotFoundError"
        assert data["code"] == "DATA_001"
        assert data["details"]["account_id"] == "a1"

    def test_validation_messages(self):
        from bills_core.errors import ValidationError

        error = ValidationError(field_errors={"amount": ["must be positive"], "name": ["required"]})

        assert error.messages() == ["amount: must be positive", "name: required"]
        assert ValidationError.for_field("month", "out of range").field_errors == {
            "month": ["out of range"]
        }


class TestUserMessages:
    """Test user-facing text"""

    def test_rate_limit_is_more_specific_than_transient(self):
        from bills_core.errors import RateLimitedError, TransientNetworkError, user_message_for

        assert user_message_for(RateLimitedError()) != user_message_for(TransientNetworkError("x"))

    def test_validation_lists_fields(self):
        from bills_core.errors import ValidationError, user_message_for

        error = ValidationError(field_errors={"amount": ["must be positive"]})

        assert user_message_for(error) == "amount: must be positive"

    def test_unknown_exception_gets_generic_text(self):
        from bills_core.errors import user_message_for

        assert user_message_for(KeyError("boom")) == "Unexpected error. Please try again."

    def test_handle_error_returns_custom_message(self):
        from bills_core.errors import OfflineError, handle_error

        assert handle_error(OfflineError(), user_message="later") == "later"


class TestHandlers:
    """Test safe_execute and ErrorContext"""

    def test_safe_execute_returns_default(self):
        from bills_core.errors import safe_execute

        def broken():
            raise ValueError("bad")

        assert safe_execute(broken, default=42) == 42

    def test_safe_execute_reraises(self):
        from bills_core.errors import safe_execute

        def broken():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            safe_execute(broken, reraise=True)

    def test_error_context_suppresses_recoverable(self):
        from bills_core.errors import ErrorContext, NotFoundError

        with ErrorContext("Removing account") as ctx:
            raise NotFoundError()

        assert isinstance(ctx.error, NotFoundError)
        assert ctx.user_message == "This account no longer exists."

    def test_error_context_propagates_unrecoverable(self):
        from bills_core.errors import ErrorContext

        with pytest.raises(RuntimeError):
            with ErrorContext("Draining", recoverable=False):
                raise RuntimeError("bad")


class TestServiceResult:
    """Test ServiceResult helpers"""

    def test_ok_is_truthy(self):
        from bills_core.services import ServiceResult

        result = ServiceResult.ok([1])

        assert result
        assert result.unwrap() == [1]

    def test_from_exception_keeps_details(self):
        from bills_core.errors import NotFoundError
        from bills_core.services import ServiceResult

        result = ServiceResult.from_exception(NotFoundError(account_id="a1"), metadata={"attempts": 1})

        assert not result
        assert result.error_code == "DATA_001"
        assert result.metadata == {"account_id": "a1", "attempts": 1}

    def test_unwrap_raises_stored_exception(self):
        from bills_core.errors import OfflineError
        from bills_core.services import ServiceResult

        with pytest.raises(OfflineError):
            ServiceResult.from_exception(OfflineError()).unwrap()

    def test_unwrap_without_exception(self):
        from bills_core.errors import BillsError
        from bills_core.services import ServiceResult

        with pytest.raises(BillsError):
            ServiceResult.fail("nope", error_code="X").unwrap()
