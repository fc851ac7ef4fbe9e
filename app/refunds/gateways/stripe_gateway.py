"""
Stripe refund gateways.

StripeDirectGateway refunds whatever amount it is asked for.
StripeValidatingGateway additionally checks the refundable balance recorded
in the ledger and refuses to refund more than is left on the payment.

Both accept an adapter class for dependency injection:

    gateway = StripeValidatingGateway(stripe_adapter=mock_adapter)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from refunds.adapters import IdempotencyKeyGenerator, StripeAdapter
from refunds.exceptions import PreconditionError
from refunds.gateways.base import PaymentGateway
from refunds.models import RefundLedgerEntry

if TYPE_CHECKING:
    from orders.models import Order, Payment

    from refunds.adapters import RefundResult


class StripeDirectGateway(PaymentGateway):
    """Refund through Stripe without a balance check."""

    name = "stripe_direct"

    def __init__(self, stripe_adapter: type | None = None):
        self.stripe = stripe_adapter or StripeAdapter

    def _execute(
        self,
        payment: Payment,
        amount_cents: int,
        metadata: dict[str, str],
        idempotency_key: str | None,
    ) -> RefundResult:
        if not idempotency_key:
            # One-off key when no ledger ids are available
            idempotency_key = IdempotencyKeyGenerator.generate(
                "create_refund", uuid.uuid4()
            )
        return self.stripe.create_refund(
            payment_intent_id=payment.transaction_reference,
            amount_cents=amount_cents,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )


class StripeValidatingGateway(StripeDirectGateway):
    """
    Refund through Stripe after checking the remaining balance.

    Remaining balance is the payment amount minus the refunded ledger total,
    never below zero. Fails closed when the request exceeds it.
    """

    name = "stripe"

    def validate(self, order: Order, payment: Payment, amount_cents: int) -> None:
        refunded = RefundLedgerEntry.objects.refunded_total(order.id)
        remaining = max(payment.amount_cents - refunded, 0)
        if amount_cents > remaining:
            raise PreconditionError(
                "Refund amount exceeds the remaining refundable balance.",
                error_code="AMOUNT_EXCEEDS_BALANCE",
                details={
                    "amount_cents": amount_cents,
                    "remaining_cents": remaining,
                },
            )
