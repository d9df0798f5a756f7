# =============================================================================
# bills_core/services/__init__.py
# Service Layer for the Bill Tracker sync core
# =============================================================================
"""
Service Layer

The gateway builds on ``ServiceResult`` from this package, so only the base
types are re-exported here. Import the concrete services from their modules.

Usage Example:
-------------
    from bills_core.services.account_sync_service import get_sync_service

    service = get_sync_service()
    service.start_session(user_id)

    result = service.add_account({
        "name": "Electricity",
        "amount": "120.50",
        "due_date": "2025-03-10",
        "category": "fixed",
    })
    if not result:
        print(result.error)

    report = service.report()
"""

from .base_service import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
]
