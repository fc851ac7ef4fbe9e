"""
Order aggregates consumed by the refund engine.

Models:
    Order: Aggregate root owned by a customer
    Payment: Money captured against an Order (one or more per Order)
    OrderItem: Line item of an Order
    OrderReturn: Customer return request for a single OrderItem

Usage:
    from orders.models import Order, OrderReturn

    order = Order.objects.prefetch_related("items__order_return").get(id=order_id)
    payment = order.get_refundable_payment()
    approved = order.get_approved_returns()

All monetary amounts are integers in minor currency units.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from orders.state_machines import OrderStatus, PaymentStatus, ReturnStatus

# Payments that still have money left to refund
REFUNDABLE_PAYMENT_STATUSES = (
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_REFUNDED,
)

# Payments whose status is derived from the refund ledger
SETTLED_PAYMENT_STATUSES = (
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
)


class Order(UUIDPrimaryKeyMixin, BaseModel):
    """
    Customer order.

    Fields:
        user: Customer who placed the order
        number: Human-facing order number
        status: Order status (refund statuses set by the refund reconciler)
        currency: ISO 4217 currency code (lowercase)
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
        help_text="Customer who placed the order",
    )

    number = models.CharField(
        max_length=32,
        unique=True,
        help_text="Human-facing order number",
    )

    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
        help_text="Current order status",
    )

    currency = models.CharField(
        max_length=3,
        default="gbp",
        help_text="ISO 4217 currency code (lowercase)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"

    def __str__(self) -> str:
        return f"Order({self.number}, {self.status})"

    def get_refundable_payment(self) -> Payment | None:
        """Return the first payment that can still be refunded, if any."""
        return (
            self.payments.filter(status__in=REFUNDABLE_PAYMENT_STATUSES)
            .order_by("created_at", "id")
            .first()
        )

    def get_settled_payment(self) -> Payment | None:
        """
        Return the first payment whose status tracks the refund ledger.

        Unlike get_refundable_payment() this includes fully refunded
        payments, so a cancelled refund can move them back to paid.
        """
        return (
            self.payments.filter(status__in=SETTLED_PAYMENT_STATUSES)
            .order_by("created_at", "id")
            .first()
        )

    def get_approved_returns(self) -> models.QuerySet[OrderReturn]:
        """Approved returns for this order in stable (oldest first) order."""
        return (
            OrderReturn.objects.filter(
                order_item__order=self,
                status=ReturnStatus.APPROVED,
            )
            .select_related("order_item")
            .order_by("created_at", "id")
        )


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money captured against an Order.

    Fields:
        order: The paid order
        amount_cents: Captured amount in smallest currency unit
        status: Payment status (refund statuses set by the refund reconciler)
        transaction_reference: Gateway payment reference (e.g. pi_xxx)
        gateway: Gateway that captured the payment
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Order this payment belongs to",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Captured amount in smallest currency unit (e.g., pence)",
    )

    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
        help_text="Current payment status",
    )

    transaction_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway payment reference (e.g., Stripe PaymentIntent ID)",
    )

    gateway = models.CharField(
        max_length=32,
        default="stripe",
        help_text="Gateway that captured this payment",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.status}, {self.amount_cents})"

    @property
    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_PAYMENT_STATUSES


class OrderItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    Line item of an Order.

    Fields:
        order: Parent order
        product_name: Product name at time of purchase
        unit_price_cents: Price per unit in smallest currency unit
        quantity: Units purchased
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="items",
        help_text="Parent order",
    )

    product_name = models.CharField(max_length=255)

    unit_price_cents = models.PositiveBigIntegerField(
        help_text="Price per unit in smallest currency unit",
    )

    quantity = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Order Item"
        verbose_name_plural = "Order Items"

    def __str__(self) -> str:
        return f"OrderItem({self.product_name} x{self.quantity})"

    def refund_amount(self) -> int:
        """
        Amount refundable for this item's return, in minor units.

        Unit price times the returned quantity, capped at the purchased
        quantity. A return without an explicit quantity covers the whole line.
        """
        order_return = getattr(self, "order_return", None)
        quantity = self.quantity
        if order_return is not None and order_return.quantity:
            quantity = min(order_return.quantity, self.quantity)
        return self.unit_price_cents * quantity


class OrderReturn(UUIDPrimaryKeyMixin, BaseModel):
    """
    Customer return request for one OrderItem.

    State Flow:
        REQUESTED -> APPROVED -> COMPLETED
        REQUESTED -> REJECTED
        COMPLETED -> APPROVED (refund cancelled or failed)

    Fields:
        order_item: The returned item
        status: Current FSM state
        quantity: Units returned (None means the full line)
        reason: Customer-supplied reason
        approved_at: When the return was approved
        completed_at: When the refund for this return was recorded
    """

    order_item = models.OneToOneField(
        OrderItem,
        on_delete=models.CASCADE,
        related_name="order_return",
        help_text="Item being returned",
    )

    status = FSMField(
        default=ReturnStatus.REQUESTED,
        choices=ReturnStatus.choices,
        db_index=True,
        help_text="Current state of the return (managed by FSM)",
    )

    quantity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Units returned; empty means the whole line",
    )

    reason = models.TextField(blank=True, default="")

    approved_at = models.DateTimeField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order Return"
        verbose_name_plural = "Order Returns"

    def __str__(self) -> str:
        return f"OrderReturn({self.id}, {self.status})"

    @property
    def order(self) -> Order:
        return self.order_item.order

    def is_approved(self) -> bool:
        return self.status == ReturnStatus.APPROVED

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=ReturnStatus.REQUESTED,
        target=ReturnStatus.APPROVED,
    )
    def approve(self):
        """Approve the return, making it eligible for refund."""
        self.approved_at = timezone.now()

    @transition(
        field=status,
        source=ReturnStatus.REQUESTED,
        target=ReturnStatus.REJECTED,
    )
    def reject(self):
        pass

    @transition(
        field=status,
        source=ReturnStatus.APPROVED,
        target=ReturnStatus.COMPLETED,
    )
    def complete(self):
        """
        Mark the return as refunded.

        Transition: APPROVED -> COMPLETED

        Only the refund engine calls this, after a refunded ledger row
        has been written for the return.
        """
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=ReturnStatus.COMPLETED,
        target=ReturnStatus.APPROVED,
    )
    def reopen(self):
        """
        Revert a completed return to approved.

        Transition: COMPLETED -> APPROVED

        Compensating transition used when the refund that completed the
        return is cancelled or fails at the gateway.
        """
        self.completed_at = None
