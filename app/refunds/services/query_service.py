"""
Read-only queries over the refund ledger.

Usage:
    from refunds.services import RefundQueryService

    entries = RefundQueryService.list_entries({"status": "refunded"})
    summary = RefundQueryService.summarize_order(order.id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import Q, Sum

from core.services import BaseService, ServiceResult

from orders.models import Order
from refunds.filters import RefundLedgerFilter
from refunds.models import RefundLedgerEntry
from refunds.state_machines import RefundStatus
from refunds.types import OrderRefundSummary

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from django.db.models import QuerySet


class RefundQueryService(BaseService):
    """Listing and per-order totals for the refund ledger."""

    @classmethod
    def base_queryset(cls) -> QuerySet[RefundLedgerEntry]:
        """Ledger rows joined with return, item, order and customer."""
        return RefundLedgerEntry.objects.select_related(
            "order",
            "order__user",
            "order_return",
            "order_return__order_item",
        ).order_by("-created_at", "-id")

    @classmethod
    def list_entries(cls, params: Mapping[str, str]) -> ServiceResult[QuerySet]:
        """
        Filter ledger rows by query parameters.

        Supported: status, source, is_manual, order_id, user_id, date_from,
        date_to, amount_min, amount_max.

        Returns:
            ServiceResult with the filtered queryset, or VALIDATION_ERROR with
            field errors when a parameter is malformed
        """
        filterset = RefundLedgerFilter(params, queryset=cls.base_queryset())
        if not filterset.is_valid():
            return ServiceResult.failure(
                "Invalid filter parameters.",
                error_code="VALIDATION_ERROR",
                errors={field: list(errs) for field, errs in filterset.errors.items()},
            )
        return ServiceResult.success(filterset.qs)

    @classmethod
    def summarize_order(cls, order_id: uuid.UUID) -> ServiceResult[OrderRefundSummary]:
        """Per-status ledger totals for one order."""
        order = Order.objects.filter(id=order_id).first()
        if order is None:
            return ServiceResult.failure("Order not found.", error_code="NOT_FOUND")

        payment = order.get_settled_payment()
        totals = RefundLedgerEntry.objects.for_order(order_id).aggregate(
            refunded=Sum("amount_cents", filter=Q(status=RefundStatus.REFUNDED)),
            pending=Sum("amount_cents", filter=Q(status=RefundStatus.PENDING)),
            failed=Sum("amount_cents", filter=Q(status=RefundStatus.FAILED)),
            cancelled=Sum("amount_cents", filter=Q(status=RefundStatus.CANCELLED)),
        )

        return ServiceResult.success(
            OrderRefundSummary(
                order_id=order.id,
                payment_amount_cents=payment.amount_cents if payment else 0,
                refunded_cents=totals["refunded"] or 0,
                pending_cents=totals["pending"] or 0,
                failed_cents=totals["failed"] or 0,
                cancelled_cents=totals["cancelled"] or 0,
            )
        )


__all__ = ["RefundQueryService"]
