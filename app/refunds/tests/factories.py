"""
Factory Boy factories for refund test data.

Usage:
    from refunds.tests.factories import RefundLedgerEntryFactory

    entry = RefundLedgerEntryFactory(order=order, amount_cents=2500)
    refunded = RefundLedgerEntryFactory(
        order=order,
        status=RefundStatus.REFUNDED,
        gateway_refund_id="re_123",
    )
"""

import factory
from django.utils import timezone

from orders.tests.factories import OrderFactory
from refunds.adapters import RefundResult
from refunds.models import RefundLedgerEntry, WebhookEvent
from refunds.state_machines import RefundSource, RefundStatus, WebhookEventStatus


class RefundLedgerEntryFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating RefundLedgerEntry instances.

    Creates PENDING rows by default. The status is written directly, so
    any state can be set up without walking the FSM.
    """

    class Meta:
        model = RefundLedgerEntry

    order = factory.SubFactory(OrderFactory)
    order_return = None
    amount_cents = 2500
    status = RefundStatus.PENDING
    source = RefundSource.ADMIN
    gateway = "stripe"
    notes = "Refund processed via payment gateway"
    processed_at = factory.LazyAttribute(
        lambda o: timezone.now() if o.status == RefundStatus.REFUNDED else None
    )


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """Factory for creating WebhookEvent instances."""

    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n:08d}")
    event_type = "charge.refunded"
    payload = factory.LazyAttribute(
        lambda o: {
            "id": o.stripe_event_id,
            "type": o.event_type,
            "data": {"object": {}},
        }
    )
    status = WebhookEventStatus.PENDING


def make_refund_result(amount_cents, refund_id="re_test_123", status="succeeded"):
    """Build the RefundResult a mocked StripeAdapter.create_refund returns."""
    return RefundResult(
        id=refund_id,
        amount_cents=amount_cents,
        currency="gbp",
        status=status,
        payment_intent_id="pi_test_123",
        metadata={},
    )
