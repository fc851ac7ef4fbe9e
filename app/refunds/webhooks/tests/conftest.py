"""
Pytest fixtures for webhook tests.

Provides orders matching the payloads in payloads.py, a WebhookEvent
builder, and mocks for Redis and signature verification.
"""

from unittest.mock import MagicMock, patch

import pytest

from orders.state_machines import ReturnStatus
from orders.tests.factories import (
    OrderFactory,
    OrderItemFactory,
    OrderReturnFactory,
    PaymentFactory,
)
from refunds.models import WebhookEvent
from refunds.webhooks.tests.payloads import PAYMENT_INTENT_ID


# =============================================================================
# Order Fixtures
# =============================================================================


@pytest.fixture
def paid_order(db):
    """Order with a PAID payment of 10000 for PAYMENT_INTENT_ID."""
    order = OrderFactory()
    PaymentFactory(
        order=order, amount_cents=10000, transaction_reference=PAYMENT_INTENT_ID
    )
    return order


@pytest.fixture
def approved_return(paid_order):
    """Approved return for an item worth 4000."""
    item = OrderItemFactory(order=paid_order, unit_price_cents=4000)
    return OrderReturnFactory(order_item=item, status=ReturnStatus.APPROVED)


# =============================================================================
# Webhook Event Builders
# =============================================================================


@pytest.fixture
def make_webhook_event(db):
    """
    Build and store a WebhookEvent around a data object.

    Usage:
        event = make_webhook_event("refund.updated", make_refund_object(status="canceled"))
    """
    counter = {"n": 0}

    def _make(event_type, data_object):
        counter["n"] += 1
        event_id = f"evt_test_webhook_{counter['n']}"
        return WebhookEvent.objects.create(
            stripe_event_id=event_id,
            event_type=event_type,
            payload={
                "id": event_id,
                "type": event_type,
                "data": {"object": data_object},
            },
        )

    return _make


# =============================================================================
# Mocks
# =============================================================================


@pytest.fixture
def mock_redis_lock():
    """Mock Redis for distributed locking."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.eval.return_value = 1

    with patch("refunds.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture
def mock_stripe_verify_signature():
    """Accept any signature and return the posted JSON as the event."""
    with patch(
        "refunds.webhooks.views.StripeAdapter.verify_webhook_signature"
    ) as mock_verify:
        yield mock_verify
