"""
State enums for refund models.

Usage:
    from refunds.state_machines import RefundStatus, RefundSource
"""

from refunds.state_machines.states import (
    RefundSource,
    RefundStatus,
    WebhookEventStatus,
)

__all__ = [
    "RefundStatus",
    "RefundSource",
    "WebhookEventStatus",
]
