"""
Tests for order models.

Covers:
- OrderItem.refund_amount() quantity rules
- Refundable and settled payment lookups
- Approved return ordering
- OrderReturn state transitions
"""

import pytest
from django.db import IntegrityError
from django_fsm import TransitionNotAllowed

from orders.models import Payment
from orders.state_machines import PaymentStatus, ReturnStatus
from orders.tests.factories import (
    OrderFactory,
    OrderItemFactory,
    OrderReturnFactory,
    PaymentFactory,
)


@pytest.mark.django_db
class TestOrderItemRefundAmount:
    def test_without_return_covers_whole_line(self):
        item = OrderItemFactory(unit_price_cents=1500, quantity=3)

        assert item.refund_amount() == 4500

    def test_return_without_quantity_covers_whole_line(self):
        item = OrderItemFactory(unit_price_cents=1500, quantity=3)
        OrderReturnFactory(order_item=item, quantity=None)
        item.refresh_from_db()

        assert item.refund_amount() == 4500

    def test_partial_quantity(self):
        item = OrderItemFactory(unit_price_cents=1500, quantity=3)
        OrderReturnFactory(order_item=item, quantity=2)
        item.refresh_from_db()

        assert item.refund_amount() == 3000

    def test_returned_quantity_capped_at_purchased(self):
        item = OrderItemFactory(unit_price_cents=1500, quantity=2)
        OrderReturnFactory(order_item=item, quantity=5)
        item.refresh_from_db()

        assert item.refund_amount() == 3000


@pytest.mark.django_db
class TestOrderPayments:
    def test_refundable_payment_skips_pending_and_refunded(self):
        order = OrderFactory()
        PaymentFactory(order=order, status=PaymentStatus.PENDING)
        PaymentFactory(order=order, status=PaymentStatus.REFUNDED)
        paid = PaymentFactory(order=order, status=PaymentStatus.PAID)

        assert order.get_refundable_payment() == paid

    def test_refundable_payment_accepts_partially_refunded(self):
        order = OrderFactory()
        payment = PaymentFactory(order=order, status=PaymentStatus.PARTIALLY_REFUNDED)

        assert order.get_refundable_payment() == payment
        assert payment.is_refundable

    def test_no_refundable_payment(self):
        order = OrderFactory()
        PaymentFactory(order=order, status=PaymentStatus.REFUNDED)

        assert order.get_refundable_payment() is None

    def test_settled_payment_includes_refunded(self):
        order = OrderFactory()
        payment = PaymentFactory(order=order, status=PaymentStatus.REFUNDED)

        assert order.get_settled_payment() == payment

    def test_amount_must_be_positive(self):
        order = OrderFactory()

        with pytest.raises(IntegrityError):
            Payment.objects.create(order=order, amount_cents=0, status=PaymentStatus.PAID)


@pytest.mark.django_db
class TestApprovedReturns:
    def test_only_approved_returns_oldest_first(self):
        order = OrderFactory()
        first = OrderReturnFactory(
            order_item=OrderItemFactory(order=order), status=ReturnStatus.APPROVED
        )
        OrderReturnFactory(
            order_item=OrderItemFactory(order=order), status=ReturnStatus.REQUESTED
        )
        second = OrderReturnFactory(
            order_item=OrderItemFactory(order=order), status=ReturnStatus.APPROVED
        )
        OrderReturnFactory(status=ReturnStatus.APPROVED)  # other order

        assert list(order.get_approved_returns()) == [first, second]


@pytest.mark.django_db
class TestOrderReturnTransitions:
    def test_approve_sets_timestamp(self):
        order_return = OrderReturnFactory()

        order_return.approve()
        order_return.save()

        assert order_return.is_approved()
        assert order_return.approved_at is not None

    def test_complete_and_reopen(self):
        order_return = OrderReturnFactory(status=ReturnStatus.APPROVED)

        order_return.complete()
        assert order_return.status == ReturnStatus.COMPLETED
        assert order_return.completed_at is not None

        order_return.reopen()
        assert order_return.status == ReturnStatus.APPROVED
        assert order_return.completed_at is None

    def test_cannot_complete_requested_return(self):
        order_return = OrderReturnFactory()

        with pytest.raises(TransitionNotAllowed):
            order_return.complete()

    def test_rejected_is_terminal(self):
        order_return = OrderReturnFactory()
        order_return.reject()

        with pytest.raises(TransitionNotAllowed):
            order_return.approve()

    def test_order_property(self):
        order = OrderFactory()
        order_return = OrderReturnFactory(order_item=OrderItemFactory(order=order))

        assert order_return.order == order
