"""
Refund ledger model.

A RefundLedgerEntry records one refund attempt for one returned item, or a
single manual adjustment not tied to any return. The ledger is the source of
truth for how much of an order has been refunded: Order and Payment refund
statuses are recomputed from it after every change.

Rules:
    - amount_cents is always positive (database constraint)
    - rows are never deleted
    - the only mutation after creation is a status transition, with the
      reason appended to notes

Usage:
    from refunds.models import RefundLedgerEntry

    entry = RefundLedgerEntry.objects.create(
        order=order,
        order_return=order_return,
        amount_cents=4000,
        source=RefundSource.ADMIN,
    )
    entry.settle(gateway_refund_id="re_123")  # pending -> refunded
    entry.save()

    RefundLedgerEntry.objects.refunded_total(order.id)  # 4000
"""

from __future__ import annotations

from django.db import models
from django.db.models import Sum
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from refunds.state_machines import RefundSource, RefundStatus


class RefundLedgerQuerySet(models.QuerySet):
    def for_order(self, order_id) -> RefundLedgerQuerySet:
        return self.filter(order_id=order_id)

    def refunded(self) -> RefundLedgerQuerySet:
        return self.filter(status=RefundStatus.REFUNDED)

    def pending(self) -> RefundLedgerQuerySet:
        return self.filter(status=RefundStatus.PENDING)

    def total_cents(self) -> int:
        return self.aggregate(total=Sum("amount_cents"))["total"] or 0

    def refunded_total(self, order_id) -> int:
        """Sum of REFUNDED rows for an order, in minor units."""
        return self.for_order(order_id).refunded().total_cents()

    def for_gateway_refund(self, gateway_refund_id: str) -> RefundLedgerQuerySet:
        return self.filter(gateway_refund_id=gateway_refund_id)


class RefundLedgerEntry(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    One row of the refund ledger.

    State Flow:
        PENDING -> REFUNDED
        PENDING -> FAILED
        PENDING/REFUNDED -> CANCELLED
        REFUNDED -> FAILED

    Fields:
        order: Order being refunded
        order_return: Return this row refunds (empty for manual adjustments)
        amount_cents: Refund amount in smallest currency unit
        status: Current FSM state
        processed_at: When the refund was confirmed
        notes: Free-text audit trail; transitions append to it
        source: Where the row originated (admin, webhook, manual)
        is_manual: Row records a refund issued outside this service
        gateway: Gateway key that executed the refund
        gateway_refund_id: Gateway refund ID (re_xxx)
        metadata: Flexible JSON storage
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="refund_entries",
        help_text="Order being refunded",
    )

    order_return = models.ForeignKey(
        "orders.OrderReturn",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refund_entries",
        help_text="Return refunded by this row (empty for manual refunds)",
    )

    # ==========================================================================
    # Amount & State
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit (e.g., pence)",
    )

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        help_text="Current state of the ledger row (managed by FSM)",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund was confirmed",
    )

    # ==========================================================================
    # Audit
    # ==========================================================================

    notes = models.TextField(blank=True, default="")

    source = models.CharField(
        max_length=32,
        choices=RefundSource.choices,
        default=RefundSource.ADMIN,
        db_index=True,
    )

    is_manual = models.BooleanField(
        default=False,
        help_text="Refund was issued outside this service",
    )

    # ==========================================================================
    # Gateway
    # ==========================================================================

    gateway = models.CharField(max_length=32, blank=True, default="")

    gateway_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway refund ID (re_xxx); shared by rows of one bulk refund",
    )

    objects = RefundLedgerQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Ledger Entry"
        verbose_name_plural = "Refund Ledger Entries"
        indexes = [
            models.Index(fields=["order", "status"], name="refunds_ref_order_i_6c1f3e_idx"),
            models.Index(fields=["status", "created_at"], name="refunds_ref_status_9a2d41_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_ledger_amount_positive",
            ),
        ]
        permissions = [
            ("manage_refunds", "Can process, cancel and reconcile refunds"),
        ]

    def __str__(self) -> str:
        return f"RefundLedgerEntry({self.id}, {self.status}, {self.amount_cents})"

    def append_note(self, note: str) -> None:
        """
        Append to the audit notes.

        Note: Does not save - caller must save after calling.
        """
        self.notes = f"{self.notes} | {note}" if self.notes else note

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.REFUNDED,
    )
    def settle(self, gateway_refund_id: str | None = None):
        """
        Record that the gateway refunded this row.

        Transition: PENDING -> REFUNDED
        """
        self.processed_at = timezone.now()
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.REFUNDED],
        target=RefundStatus.FAILED,
    )
    def fail(self, reason: str):
        """
        Mark the refund as failed.

        Transition: PENDING/REFUNDED -> FAILED

        Args:
            reason: Failure reason appended to notes
        """
        self.append_note(reason)

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.REFUNDED],
        target=RefundStatus.CANCELLED,
    )
    def cancel(self, note: str):
        """
        Mark the refund as cancelled at the gateway.

        Transition: PENDING/REFUNDED -> CANCELLED
        """
        self.append_note(note)

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_refunded(self) -> bool:
        return self.status == RefundStatus.REFUNDED

    @property
    def is_pending(self) -> bool:
        return self.status == RefundStatus.PENDING
