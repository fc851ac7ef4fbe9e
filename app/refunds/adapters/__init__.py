"""
External service adapters for the refund service.

Usage:
    from refunds.adapters import StripeAdapter, RefundResult
"""

from refunds.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    RefundResult,
    StripeAdapter,
)

__all__ = [
    "IdempotencyKeyGenerator",
    "RefundResult",
    "StripeAdapter",
]
