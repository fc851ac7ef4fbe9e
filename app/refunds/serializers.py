"""
DRF serializers for the refund API.

Request serializers validate input for manual refunds and cancellations.
Response serializers render ledger rows, refund outcomes and order summaries.

All amounts are integers in minor currency units.
"""

from __future__ import annotations

from rest_framework import serializers

from refunds.models import RefundLedgerEntry
from refunds.state_machines import RefundSource


# =============================================================================
# Request Serializers
# =============================================================================


class ManualRefundSerializer(serializers.Serializer):
    """Input for recording a refund issued outside this service."""

    amount_cents = serializers.IntegerField(min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    source = serializers.ChoiceField(
        choices=RefundSource.choices,
        default=RefundSource.MANUAL,
    )
    gateway_refund_id = serializers.CharField(
        required=False, allow_blank=True, max_length=255
    )


class CancelRefundSerializer(serializers.Serializer):
    """
    Input for cancelling a refund.

    ledger_entry_ids or gateway_refund_id pick the rows explicitly; without
    them the most recent row with exactly amount_cents is cancelled.
    """

    amount_cents = serializers.IntegerField(min_value=1)
    ledger_entry_ids = serializers.ListField(
        child=serializers.UUIDField(),
        required=False,
        allow_empty=True,
    )
    gateway_refund_id = serializers.CharField(
        required=False, allow_blank=True, max_length=255
    )


# =============================================================================
# Response Serializers
# =============================================================================


class RefundLedgerEntrySerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.number", read_only=True)
    user_id = serializers.IntegerField(source="order.user_id", read_only=True)
    product_name = serializers.CharField(
        source="order_return.order_item.product_name",
        read_only=True,
        default=None,
    )

    class Meta:
        model = RefundLedgerEntry
        fields = [
            "id",
            "order",
            "order_number",
            "user_id",
            "order_return",
            "product_name",
            "amount_cents",
            "status",
            "source",
            "is_manual",
            "gateway",
            "gateway_refund_id",
            "notes",
            "processed_at",
            "created_at",
        ]
        read_only_fields = fields


class RecalculationSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    total_refunded_cents = serializers.IntegerField()
    payment_amount_cents = serializers.IntegerField()
    remaining_cents = serializers.IntegerField()
    is_full_refund = serializers.BooleanField()
    order_status = serializers.CharField()
    payment_status = serializers.CharField()


class RefundOutcomeSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    gateway_refund_id = serializers.CharField(allow_null=True)
    entries = RefundLedgerEntrySerializer(many=True)
    recalculation = RecalculationSerializer(allow_null=True)


class OrderRefundSummarySerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    payment_amount_cents = serializers.IntegerField()
    refunded_cents = serializers.IntegerField()
    pending_cents = serializers.IntegerField()
    failed_cents = serializers.IntegerField()
    cancelled_cents = serializers.IntegerField()
    remaining_cents = serializers.IntegerField()
