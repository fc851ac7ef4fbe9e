"""
State enums for refund models.

This module defines the state enums used by refund models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

RefundLedgerEntry States:
    pending → refunded                (gateway confirmed the refund)
    pending → failed                  (gateway declined or reported failure)
    pending/refunded → cancelled      (refund cancelled at the gateway)
    refunded → failed                 (gateway reported a late failure)

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed (Stripe retries the delivery)
"""

from django.db import models


class RefundStatus(models.TextChoices):
    """
    States for a RefundLedgerEntry.

    Only REFUNDED rows count towards the refunded total of an order.
    """

    PENDING = "pending", "Pending"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class RefundSource(models.TextChoices):
    """Where a ledger row originated."""

    ADMIN = "admin", "Admin"
    STRIPE_WEBHOOK = "stripe_webhook", "Stripe Webhook"
    MANUAL = "manual", "Manual"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
