"""
Refund admin configuration.

Ledger rows and webhook events are read-only: every change to the ledger
goes through RefundOrchestrator so that statuses stay reconciled.
"""

from django.contrib import admin

from refunds.models import RefundLedgerEntry, WebhookEvent


class ReadOnlyAdminMixin:
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(RefundLedgerEntry)
class RefundLedgerEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for RefundLedgerEntry.

    Rows are never deleted or edited here.
    """

    list_display = [
        "id",
        "order",
        "order_return",
        "amount_cents",
        "status",
        "source",
        "is_manual",
        "gateway_refund_id",
        "created_at",
    ]
    list_filter = ["status", "source", "is_manual", "gateway"]
    search_fields = ["id", "order__number", "gateway_refund_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    list_select_related = ["order", "order_return"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "attempt_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("attempt_count", "processed_at", "error_message"),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
    )
