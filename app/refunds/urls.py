"""
URL configuration for the refunds app.

Routes:
    - GET  /                                          - Ledger listing
    - POST /returns/<return_id>/refund/<gateway>/     - Single-item refund
    - POST /orders/<order_id>/refund/<gateway>/       - Bulk refund
    - POST /orders/<order_id>/manual/                 - Manual refund
    - POST /orders/<order_id>/cancel/                 - Cancel a refund
    - POST /orders/<order_id>/recalculate/            - Recalculate status
    - GET  /orders/<order_id>/summary/                - Refund totals
    - POST /webhooks/stripe/                          - Stripe webhook endpoint

All routes are prefixed with /api/v1/refunds/ when included in the main URLconf.
"""

from django.urls import path

from refunds import views
from refunds.webhooks.views import stripe_webhook

app_name = "refunds"

urlpatterns = [
    path("", views.RefundLedgerListView.as_view(), name="ledger-list"),
    path(
        "returns/<uuid:target_id>/refund/<str:gateway>/",
        views.ReturnRefundView.as_view(),
        name="return-refund",
    ),
    path(
        "orders/<uuid:target_id>/refund/<str:gateway>/",
        views.OrderRefundView.as_view(),
        name="order-refund",
    ),
    path(
        "orders/<uuid:order_id>/manual/",
        views.ManualRefundView.as_view(),
        name="manual-refund",
    ),
    path(
        "orders/<uuid:order_id>/cancel/",
        views.CancelRefundView.as_view(),
        name="cancel-refund",
    ),
    path(
        "orders/<uuid:order_id>/recalculate/",
        views.RecalculateOrderView.as_view(),
        name="recalculate",
    ),
    path(
        "orders/<uuid:order_id>/summary/",
        views.OrderRefundSummaryView.as_view(),
        name="summary",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
