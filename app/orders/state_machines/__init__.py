"""
State enums for order aggregates.

Usage:
    from orders.state_machines import OrderStatus, PaymentStatus, ReturnStatus
"""

from orders.state_machines.states import OrderStatus, PaymentStatus, ReturnStatus

__all__ = [
    "OrderStatus",
    "PaymentStatus",
    "ReturnStatus",
]
