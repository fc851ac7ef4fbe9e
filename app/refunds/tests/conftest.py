"""
Pytest fixtures for refund tests.

Orders come paid (one PAID payment of 10000) with items whose returns are
approved, so a refund can run without further setup. Redis and Stripe are
always mocked.

Usage:
    def test_refund_return(orchestrator, approved_return, mock_stripe_adapter):
        result = orchestrator.refund(approved_return.id)
        assert result.success
"""

from unittest.mock import MagicMock, patch

import pytest
from django.contrib.auth.models import Permission

from orders.state_machines import ReturnStatus
from orders.tests.factories import (
    OrderFactory,
    OrderItemFactory,
    OrderReturnFactory,
    PaymentFactory,
    UserFactory,
)
from refunds.gateways import StripeValidatingGateway
from refunds.services import RefundOrchestrator
from refunds.tests.factories import make_refund_result


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a customer."""
    return UserFactory()


@pytest.fixture
def refund_manager(db):
    """Create a staff user holding the manage_refunds permission."""
    manager = UserFactory(is_staff=True)
    manager.user_permissions.add(
        Permission.objects.get(
            codename="manage_refunds", content_type__app_label="refunds"
        )
    )
    return manager


# =============================================================================
# Order Fixtures
# =============================================================================


@pytest.fixture
def paid_order(db, user):
    """Order with a PAID payment of 10000 and no items."""
    order = OrderFactory(user=user)
    PaymentFactory(order=order, amount_cents=10000, transaction_reference="pi_test_123")
    return order


@pytest.fixture
def payment(paid_order):
    return paid_order.payments.get()


@pytest.fixture
def approved_return(paid_order):
    """Approved return for an item worth 4000."""
    item = OrderItemFactory(order=paid_order, unit_price_cents=2000, quantity=2)
    return OrderReturnFactory(order_item=item, status=ReturnStatus.APPROVED)


@pytest.fixture
def second_approved_return(paid_order, approved_return):
    """Approved return for an item worth 3000, created after approved_return."""
    item = OrderItemFactory(order=paid_order, unit_price_cents=3000, quantity=1)
    return OrderReturnFactory(order_item=item, status=ReturnStatus.APPROVED)


@pytest.fixture
def requested_return(paid_order):
    item = OrderItemFactory(order=paid_order, unit_price_cents=1500, quantity=1)
    return OrderReturnFactory(order_item=item, status=ReturnStatus.REQUESTED)


# =============================================================================
# Service Fixtures
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
def mock_stripe_adapter():
    """
    Mock StripeAdapter that refunds exactly what it is asked for.

    Override create_refund.side_effect to simulate Stripe errors.
    """
    adapter = MagicMock()
    adapter.create_refund.side_effect = lambda **kwargs: make_refund_result(
        kwargs["amount_cents"]
    )
    return adapter


@pytest.fixture
def gateway(mock_stripe_adapter):
    return StripeValidatingGateway(stripe_adapter=mock_stripe_adapter)


@pytest.fixture
def orchestrator(gateway, mock_redis_lock):
    """Orchestrator wired to the mocked Stripe gateway and Redis lock."""
    return RefundOrchestrator(gateway=gateway)
