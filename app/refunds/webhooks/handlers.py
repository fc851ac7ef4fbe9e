"""
Webhook event handlers for Stripe refund events.

Handlers are registered by event type and translate gateway notifications
into RefundOrchestrator calls:

    charge.refunded         -> settle our pending rows, or record a refund
                               issued from the Stripe Dashboard
    refund.updated          -> cancel (status canceled) or fail (status failed)
    refund.failed           -> same as refund.updated
    charge.refund.updated   -> same as refund.updated

Every handler is idempotent: a refund already present in the ledger (by its
Stripe refund id) is skipped, so redelivered events change nothing.

Usage:
    from refunds.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Callable

from core.services import ServiceResult

from orders.models import Payment
from refunds.models import RefundLedgerEntry, WebhookEvent
from refunds.services import RefundOrchestrator
from refunds.state_machines import RefundSource
from refunds.types import GatewayPolicy, RefundMode, RefundOptions

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)

DASHBOARD_REFUND_NOTE = "Manual refund processed via Stripe Dashboard"

# Stripe refund statuses that mean money left (or is leaving) the account
RECORDABLE_REFUND_STATUSES = ("succeeded", "pending")


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Decorators can be stacked to register one handler for several types.

    Args:
        event_type: The Stripe event type (e.g., "charge.refunded")
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Events without a registered handler are acknowledged with success.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Helpers
# =============================================================================


def get_orchestrator() -> RefundOrchestrator:
    return RefundOrchestrator(options=RefundOptions(source=RefundSource.STRIPE_WEBHOOK))


def parse_ledger_entry_ids(metadata: dict[str, Any] | None) -> list[str]:
    """Ledger row ids we attached to the Stripe refund, ignoring malformed ones."""
    raw = (metadata or {}).get("ledger_entry_ids") or ""
    entry_ids = []
    for value in str(raw).split(","):
        value = value.strip()
        if not value:
            continue
        try:
            entry_ids.append(str(uuid.UUID(value)))
        except ValueError:
            logger.warning(
                "Ignoring malformed ledger entry id in refund metadata",
                extra={"value": value},
            )
    return entry_ids


def _find_payment(payment_intent_id: str | None, webhook_event: WebhookEvent) -> Payment | None:
    if not payment_intent_id:
        return None
    payment = (
        Payment.objects.select_related("order")
        .filter(transaction_reference=payment_intent_id)
        .order_by("created_at")
        .first()
    )
    if payment is None:
        logger.warning(
            "Payment not found for payment_intent",
            extra={
                "payment_intent_id": payment_intent_id,
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
    return payment


def _payment_not_found(payment_intent_id: str | None) -> ServiceResult:
    return ServiceResult.failure(
        f"Payment not found for intent: {payment_intent_id}",
        error_code="PAYMENT_NOT_FOUND",
    )


# =============================================================================
# Charge Refund Handlers
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Record refunds reported on a charge.

    For each refund object on the charge:
        - already in the ledger by refund id: skipped
        - carries our ledger_entry_ids: those pending rows are settled
        - approved returns add up to the refund amount: recorded as a
          bulk refund of those returns without calling the gateway
        - anything else: recorded as a manual refund

    When the event carries no refund list (the default since Stripe API
    2022-11-15), the charge's amount_refunded is reconciled against the
    ledger under the order lock, counting PENDING rows as recorded.
    """
    charge = webhook_event.data_object
    payment_intent_id = charge.get("payment_intent")

    payment = _find_payment(payment_intent_id, webhook_event)
    if payment is None:
        return _payment_not_found(payment_intent_id)

    orchestrator = get_orchestrator()
    refunds = (charge.get("refunds") or {}).get("data") or []

    if not refunds:
        return _record_refunded_total(orchestrator, payment, charge)

    recorded = []
    for refund in refunds:
        result = _record_gateway_refund(orchestrator, payment, refund)
        if not result:
            return result
        if result.data is not None:
            recorded.append(result.data)

    return ServiceResult.success(recorded)


def _record_gateway_refund(
    orchestrator: RefundOrchestrator,
    payment: Payment,
    refund: dict[str, Any],
) -> ServiceResult:
    refund_id = refund.get("id")
    status = refund.get("status")
    amount = refund.get("amount") or 0
    log_context = {
        "order_id": str(payment.order_id),
        "refund_id": refund_id,
        "refund_status": status,
        "amount_cents": amount,
    }

    if status not in RECORDABLE_REFUND_STATUSES:
        logger.info("Skipping refund in non-recordable status", extra=log_context)
        return ServiceResult.success(None)

    if refund_id and RefundLedgerEntry.objects.for_gateway_refund(refund_id).exists():
        logger.info("Refund already recorded, skipping", extra=log_context)
        return ServiceResult.success(None)

    entry_ids = parse_ledger_entry_ids(refund.get("metadata"))
    if entry_ids:
        logger.info("Settling pending ledger rows from webhook", extra=log_context)
        return orchestrator.settle_pending_entries(
            payment.order_id, entry_ids, refund_id, amount_cents=amount
        )

    approved_total = sum(
        order_return.order_item.refund_amount()
        for order_return in payment.order.get_approved_returns()
    )
    if approved_total and approved_total == amount:
        logger.info("Recording external refund of approved returns", extra=log_context)
        return orchestrator.refund(
            payment.order_id,
            mode=RefundMode.BULK,
            gateway_policy=GatewayPolicy.SKIP,
            source=RefundSource.STRIPE_WEBHOOK,
            gateway_refund_id=refund_id,
        )

    logger.info("Recording external refund as manual refund", extra=log_context)
    return orchestrator.create_manual_refund(
        payment.order_id,
        amount,
        notes=DASHBOARD_REFUND_NOTE,
        source=RefundSource.STRIPE_WEBHOOK,
        gateway_refund_id=refund_id,
    )


def _record_refunded_total(
    orchestrator: RefundOrchestrator,
    payment: Payment,
    charge: dict[str, Any],
) -> ServiceResult:
    amount_refunded = charge.get("amount_refunded") or 0
    logger.info(
        "Charge carries no refund list, reconciling its refunded total",
        extra={"order_id": str(payment.order_id), "amount_refunded": amount_refunded},
    )
    return orchestrator.reconcile_charge_total(payment.order_id, amount_refunded)


# =============================================================================
# Refund Status Handlers
# =============================================================================


@register_handler("refund.updated")
@register_handler("refund.failed")
@register_handler("charge.refund.updated")
def handle_refund_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Apply a refund status change reported by Stripe.

    canceled -> cancel the matching ledger rows
    failed   -> fail the matching ledger rows with Stripe's failure reason

    Other statuses need no ledger change.
    """
    refund = webhook_event.data_object
    refund_id = refund.get("id")
    status = refund.get("status")

    if status not in ("canceled", "failed"):
        logger.info(
            f"Refund status {status} needs no ledger change",
            extra={"stripe_event_id": webhook_event.stripe_event_id, "refund_id": refund_id},
        )
        return ServiceResult.success(None)

    payment_intent_id = refund.get("payment_intent")
    payment = _find_payment(payment_intent_id, webhook_event)
    if payment is None:
        return _payment_not_found(payment_intent_id)

    entry_ids = parse_ledger_entry_ids(refund.get("metadata"))
    # A refund id we never recorded would match nothing; let the
    # orchestrator fall back to amount matching instead.
    known_refund_id = (
        refund_id
        if refund_id and RefundLedgerEntry.objects.for_gateway_refund(refund_id).exists()
        else None
    )
    orchestrator = get_orchestrator()

    if status == "canceled":
        return orchestrator.cancel_refund(
            payment.order_id,
            refund.get("amount") or 0,
            ledger_entry_ids=entry_ids,
            gateway_refund_id=known_refund_id,
        )

    reason = refund.get("failure_reason") or "unknown"
    return orchestrator.fail_refund(
        payment.order_id,
        f"Refund failed in Stripe: {reason}",
        ledger_entry_ids=entry_ids,
        gateway_refund_id=known_refund_id,
    )
