"""
Django admin configuration for order aggregates.

Refund-related statuses are owned by the refund reconciler, so they are
read-only here. Returns can be approved or rejected from the admin; refunds
themselves go through the refund API.
"""

from django.contrib import admin

from orders.models import Order, OrderItem, OrderReturn, Payment


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ["amount_cents", "status", "transaction_reference", "gateway"]
    readonly_fields = ["status"]


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ["product_name", "unit_price_cents", "quantity"]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ["number", "user", "status", "currency", "created_at"]
    list_filter = ["status", "currency"]
    search_fields = ["number", "user__email", "payments__transaction_reference"]
    readonly_fields = ["id", "status", "created_at", "updated_at"]
    inlines = [OrderItemInline, PaymentInline]


@admin.register(OrderReturn)
class OrderReturnAdmin(admin.ModelAdmin):
    list_display = ["id", "order_item", "status", "quantity", "created_at"]
    list_filter = ["status"]
    search_fields = ["id", "order_item__order__number"]
    readonly_fields = ["id", "status", "approved_at", "completed_at", "created_at"]
    actions = ["approve_returns", "reject_returns"]

    @admin.action(description="Approve selected returns")
    def approve_returns(self, request, queryset):
        for order_return in queryset.filter(status="requested"):
            order_return.approve()
            order_return.save()

    @admin.action(description="Reject selected returns")
    def reject_returns(self, request, queryset):
        for order_return in queryset.filter(status="requested"):
            order_return.reject()
            order_return.save()
