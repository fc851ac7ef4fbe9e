"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the webhook signature
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Dispatches the event to its handler in the request
4. Records the outcome on the WebhookEvent

Usage:
    # In urls.py
    from refunds.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from refunds.adapters import StripeAdapter
from refunds.exceptions import StripeInvalidRequestError
from refunds.models import WebhookEvent
from refunds.state_machines import WebhookEventStatus
from refunds.webhooks.handlers import dispatch_webhook


logger = logging.getLogger(__name__)

# Handler failures worth a Stripe redelivery; everything else is acknowledged.
# REFUND_IN_PROGRESS clears once our own pending refund settles.
RETRYABLE_ERROR_CODES = frozenset(
    {"LOCK_ACQUISITION_FAILED", "REFUND_ERROR", "REFUND_IN_PROGRESS"}
)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and process Stripe webhook events.

    Security:
    - Signature verification prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Processed events are acknowledged without reprocessing

    Returns:
        HttpResponse with status:
        - 200: Event processed, duplicate, or failed permanently
        - 400: Missing/invalid signature or payload
        - 500: Transient failure; Stripe will redeliver
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
        },
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"stripe_event_id": stripe_event_id},
        )
        return HttpResponse("Already processed", status=200)

    webhook_event.mark_processing()
    webhook_event.save()

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        logger.error(
            f"Webhook handler raised: {type(e).__name__}",
            extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
            exc_info=True,
        )
        webhook_event.mark_failed(str(e))
        webhook_event.save()
        return HttpResponse("Processing error", status=500)

    if result:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info(
            "Webhook processed successfully",
            extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
        )
        return HttpResponse("Processed", status=200)

    webhook_event.mark_failed(f"[{result.error_code}] {result.error}")
    webhook_event.save()
    logger.warning(
        f"Webhook processing failed: {result.error}",
        extra={
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
            "error_code": result.error_code,
        },
    )

    if result.error_code in RETRYABLE_ERROR_CODES:
        return HttpResponse("Retry later", status=500)
    return HttpResponse("Accepted", status=200)
