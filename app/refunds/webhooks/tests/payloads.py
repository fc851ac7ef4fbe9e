"""Stripe event payload builders for webhook tests."""

PAYMENT_INTENT_ID = "pi_test_webhook_123"


def make_refund_object(
    refund_id="re_test_webhook",
    amount=4000,
    status="succeeded",
    metadata=None,
    failure_reason=None,
):
    refund = {
        "id": refund_id,
        "object": "refund",
        "amount": amount,
        "status": status,
        "payment_intent": PAYMENT_INTENT_ID,
        "metadata": metadata or {},
    }
    if failure_reason:
        refund["failure_reason"] = failure_reason
    return refund


def make_charge_object(refunds, amount_refunded=None):
    if amount_refunded is None:
        amount_refunded = sum(refund["amount"] for refund in refunds)
    return {
        "id": "ch_test_webhook",
        "object": "charge",
        "payment_intent": PAYMENT_INTENT_ID,
        "amount_refunded": amount_refunded,
        "refunds": {"object": "list", "data": refunds},
    }
