"""
State enums for order models.

State Machines Overview:

Order Status:
    pending → confirmed → partially_refunded → refunded
    refunded/partially_refunded → confirmed (all refunds cancelled)
    pending → cancelled

Payment Status:
    pending → paid → partially_refunded → refunded
    refunded/partially_refunded → paid (all refunds cancelled)
    pending → failed

Return Status:
    requested → approved → completed
    requested → rejected
    completed → approved (refund cancelled or failed)

Order and Payment refund statuses are never transitioned directly; the refund
reconciler derives them from the ledger total every time it runs.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """States for the Order aggregate."""

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    """
    States for a Payment against an Order.

    Only PAID and PARTIALLY_REFUNDED payments can be refunded further.
    """

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class ReturnStatus(models.TextChoices):
    """
    States for the OrderReturn model lifecycle.

    Terminal states: REJECTED

    State Flow:
        REQUESTED → APPROVED → COMPLETED
        REQUESTED → REJECTED
        COMPLETED → APPROVED (compensating)
    """

    REQUESTED = "requested", "Requested"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    COMPLETED = "completed", "Completed"
