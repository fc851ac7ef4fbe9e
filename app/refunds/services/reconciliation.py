"""
Order and Payment status reconciliation against the refund ledger.

Order and Payment refund statuses are never set directly. They are always
recomputed from the sum of REFUNDED ledger rows:

    total == 0               -> Order CONFIRMED,          Payment PAID
    0 < total < amount       -> Order PARTIALLY_REFUNDED, Payment PARTIALLY_REFUNDED
    total >= amount          -> Order REFUNDED,           Payment REFUNDED
    total > amount           -> ReconciliationError (never clamped)

Recalculation is idempotent and safe to re-run at any time, which is how an
interrupted multi-step operation is resumed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from orders.models import SETTLED_PAYMENT_STATUSES, Order, Payment
from orders.state_machines import OrderStatus, PaymentStatus
from refunds.exceptions import ReconciliationError
from refunds.models import RefundLedgerEntry
from refunds.types import RecalculationResult

if TYPE_CHECKING:
    import uuid


class RefundReconciler(BaseService):
    """
    Recomputes Order/Payment status from the refund ledger.

    Usage:
        result = RefundReconciler.recalculate(order.id)
        if result is not None and result.is_full_refund:
            ...
    """

    @classmethod
    def recalculate(cls, order_id: uuid.UUID) -> RecalculationResult | None:
        """
        Recompute and persist the refund status of an order and its payment.

        Locks the Order and Payment rows for the duration. Joins the
        caller's transaction when one is open.

        Returns:
            RecalculationResult, or None when the order has no settled payment

        Raises:
            Order.DoesNotExist: If the order does not exist
            ReconciliationError: If the refunded total exceeds the payment
        """
        logger = cls.get_logger()

        with cls.atomic():
            order = Order.objects.select_for_update().get(id=order_id)
            payment = (
                Payment.objects.select_for_update()
                .filter(order_id=order_id, status__in=SETTLED_PAYMENT_STATUSES)
                .order_by("created_at", "id")
                .first()
            )
            if payment is None:
                logger.warning(
                    "No settled payment to reconcile",
                    extra={"order_id": str(order_id)},
                )
                return None

            total = RefundLedgerEntry.objects.refunded_total(order_id)
            if total > payment.amount_cents:
                logger.critical(
                    "Refunded total exceeds payment amount",
                    extra={
                        "order_id": str(order_id),
                        "payment_id": str(payment.id),
                        "total_refunded_cents": total,
                        "payment_amount_cents": payment.amount_cents,
                    },
                )
                raise ReconciliationError(
                    "Refunded total exceeds the payment amount.",
                    details={
                        "order_id": str(order_id),
                        "total_refunded_cents": total,
                        "payment_amount_cents": payment.amount_cents,
                    },
                )

            order_status, payment_status = cls.statuses_for(
                total, payment.amount_cents
            )

            if order.status != order_status:
                order.status = order_status
                order.save(update_fields=["status", "updated_at"])
            if payment.status != payment_status:
                payment.status = payment_status
                payment.save(update_fields=["status", "updated_at"])

        logger.info(
            "Order refund status recalculated",
            extra={
                "order_id": str(order_id),
                "total_refunded_cents": total,
                "payment_amount_cents": payment.amount_cents,
                "order_status": order_status,
                "payment_status": payment_status,
            },
        )

        return RecalculationResult(
            order_id=order.id,
            total_refunded_cents=total,
            payment_amount_cents=payment.amount_cents,
            order_status=order_status,
            payment_status=payment_status,
        )

    @staticmethod
    def statuses_for(total_cents: int, payment_cents: int) -> tuple[str, str]:
        """Map a refunded total to (order status, payment status)."""
        if total_cents >= payment_cents:
            return OrderStatus.REFUNDED, PaymentStatus.REFUNDED
        if total_cents > 0:
            return OrderStatus.PARTIALLY_REFUNDED, PaymentStatus.PARTIALLY_REFUNDED
        return OrderStatus.CONFIRMED, PaymentStatus.PAID
