"""
Abstract payment gateway contract for refunds.

A gateway moves money back to the customer and nothing else: it never writes
ledger rows, returns, or Order/Payment statuses. The orchestrator records the
outcome.

The base class is a template method. ``refund()`` locates the refundable
payment, computes the amount and runs ``validate()``; subclasses implement
``_execute()`` to perform the remote call.

Usage:
    class MyGateway(PaymentGateway):
        name = "my_gateway"

        def _execute(self, payment, amount_cents, metadata, idempotency_key):
            ...
            return RefundResult(...)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from core.services import ServiceResult

from refunds.exceptions import GatewayError, PreconditionError

if TYPE_CHECKING:
    from orders.models import Order, OrderItem, Payment

    from refunds.adapters import RefundResult


logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    """
    Base class for refund gateways.

    Subclasses must set ``name`` and implement ``_execute``. Override
    ``validate`` to reject a refund before the remote call.

    Rejections and non-retryable errors become a failed ServiceResult, so a
    falsy result always means no money moved. Retryable GatewayErrors
    (timeouts, network errors, rate limits) propagate: the refund may have
    gone through, and only a retry with the same idempotency key is safe.
    """

    name: str = ""

    def refund(
        self,
        order: Order,
        item: OrderItem | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[RefundResult]:
        """
        Refund one item or every approved return of an order.

        Args:
            order: Order being refunded
            item: Item to refund; None refunds all approved returns
            metadata: String metadata sent to the gateway
            idempotency_key: Key making a retried call safe

        Returns:
            ServiceResult with the RefundResult on success

        Raises:
            GatewayError: When the error is retryable and the outcome unknown
        """
        payment = order.get_refundable_payment()
        if payment is None:
            logger.warning(
                "No refundable payment for order",
                extra={"order_id": str(order.id), "gateway": self.name},
            )
            return ServiceResult.failure(
                "No refundable payment found for this order.",
                error_code="NO_REFUNDABLE_PAYMENT",
            )

        amount_cents = self.compute_amount(order, item)
        log_context = {
            "order_id": str(order.id),
            "payment_id": str(payment.id),
            "amount_cents": amount_cents,
            "gateway": self.name,
        }

        try:
            if amount_cents <= 0:
                raise PreconditionError(
                    "Refund amount must be greater than zero.",
                    error_code="INVALID_REFUND_AMOUNT",
                )
            self.validate(order, payment, amount_cents)
            result = self._execute(
                payment,
                amount_cents,
                {**(metadata or {}), "processed_via": self.name},
                idempotency_key,
            )
        except GatewayError as e:
            if e.is_retryable:
                logger.warning(
                    f"Gateway refund outcome unknown: {e.message}",
                    extra={**log_context, "error_code": e.error_code},
                )
                raise
            logger.warning(
                f"Gateway refund rejected: {e.message}",
                extra={**log_context, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)
        except PreconditionError as e:
            logger.warning(
                f"Gateway refund rejected: {e.message}",
                extra={**log_context, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)
        except Exception as e:
            logger.error(
                f"Gateway refund failed unexpectedly: {e}",
                extra=log_context,
                exc_info=True,
            )
            return ServiceResult.failure(
                "Gateway refund failed.",
                error_code="GATEWAY_FAILED",
            )

        if result.amount_cents != amount_cents:
            logger.error(
                "Gateway refunded a different amount than requested",
                extra={**log_context, "refunded_cents": result.amount_cents},
            )
            return ServiceResult.failure(
                "Gateway refunded a different amount than requested.",
                error_code="GATEWAY_AMOUNT_MISMATCH",
            )

        logger.info(
            "Gateway refund succeeded",
            extra={**log_context, "gateway_refund_id": result.id},
        )
        return ServiceResult.success(result)

    @staticmethod
    def compute_amount(order: Order, item: OrderItem | None = None) -> int:
        """
        Amount to refund in minor units.

        The item's refund amount when given, otherwise the sum over every
        item of the order whose return is approved.
        """
        if item is not None:
            return item.refund_amount()
        return sum(
            order_return.order_item.refund_amount()
            for order_return in order.get_approved_returns()
        )

    def validate(self, order: Order, payment: Payment, amount_cents: int) -> None:
        """
        Hook for checks before the remote call.

        Raises:
            PreconditionError: To reject the refund
        """

    @abstractmethod
    def _execute(
        self,
        payment: Payment,
        amount_cents: int,
        metadata: dict[str, str],
        idempotency_key: str | None,
    ) -> RefundResult:
        """
        Perform the remote refund.

        Raises:
            GatewayError: If the gateway rejects or cannot be reached
        """
