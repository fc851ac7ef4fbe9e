"""
Refund models.

Usage:
    from refunds.models import RefundLedgerEntry, WebhookEvent
"""

from refunds.models.ledger_entry import RefundLedgerEntry, RefundLedgerQuerySet
from refunds.models.webhook_event import WebhookEvent

__all__ = [
    "RefundLedgerEntry",
    "RefundLedgerQuerySet",
    "WebhookEvent",
]
