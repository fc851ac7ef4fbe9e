"""
Refund services.

Usage:
    from refunds.services import RefundOrchestrator, RefundQueryService

    result = RefundOrchestrator().refund(order_return.id)
"""

from refunds.services.orchestrator import RefundOrchestrator
from refunds.services.query_service import RefundQueryService
from refunds.services.reconciliation import RefundReconciler

__all__ = [
    "RefundOrchestrator",
    "RefundQueryService",
    "RefundReconciler",
]
