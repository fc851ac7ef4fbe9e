"""
Refund gateways and the registry that selects them by route key.

Usage:
    from refunds.gateways import get_gateway

    gateway = get_gateway("stripe")
    result = gateway.refund(order, item=order_return.order_item)
"""

from __future__ import annotations

from refunds.exceptions import UnsupportedGatewayError
from refunds.gateways.base import PaymentGateway
from refunds.gateways.stripe_gateway import StripeDirectGateway, StripeValidatingGateway

GATEWAYS: dict[str, type[PaymentGateway]] = {
    StripeValidatingGateway.name: StripeValidatingGateway,
    StripeDirectGateway.name: StripeDirectGateway,
}


def get_gateway(key: str, **kwargs) -> PaymentGateway:
    """
    Build the gateway registered under ``key``.

    Raises:
        UnsupportedGatewayError: If no gateway is registered for the key
    """
    gateway_class = GATEWAYS.get(key)
    if gateway_class is None:
        supported = ", ".join(sorted(GATEWAYS))
        raise UnsupportedGatewayError(
            f"Unsupported payment gateway: {key}. Supported: {supported}",
            details={"gateway": key},
        )
    return gateway_class(**kwargs)


__all__ = [
    "GATEWAYS",
    "PaymentGateway",
    "StripeDirectGateway",
    "StripeValidatingGateway",
    "get_gateway",
]
