"""
Refund-specific exceptions.

Exception Hierarchy:
    RefundError (base for the refund domain)
    ├── PreconditionError - Refund rejected before any mutation
    │   └── RefundTargetNotFoundError - Return or order does not exist
    ├── UnsupportedGatewayError - Unknown gateway key
    ├── ReconciliationError - Ledger total inconsistent with the payment
    └── GatewayError - Remote refund call failed
        └── StripeError - Base for all Stripe errors
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient)
            ├── StripeAPIUnavailableError - API unavailable (transient)
            └── StripeTimeoutError - Request timeout (transient)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from refunds.exceptions import PreconditionError

    raise PreconditionError(
        "This return has not been approved for refund.",
        error_code="RETURN_NOT_APPROVED",
        details={"return_id": str(order_return.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Refund Domain Exceptions
# =============================================================================


class RefundError(BaseApplicationError):
    """Base exception for all refund operations."""

    default_error_code: str = "REFUND_ERROR"


class PreconditionError(RefundError):
    """
    Raised when a refund request is not eligible.

    Use for:
    - No paid or partially refunded payment on the order
    - Return not approved / no approved returns
    - Non-positive refund amount
    - Amount exceeding the remaining refundable balance
    - A refund for the same return already in flight

    Raised before any ledger, return or status mutation.
    """

    default_error_code: str = "REFUND_PRECONDITION_FAILED"


class RefundTargetNotFoundError(PreconditionError):
    """Raised when the return or order a refund targets does not exist."""

    default_error_code: str = "NOT_FOUND"


class UnsupportedGatewayError(RefundError):
    """Raised when a gateway key has no registered implementation."""

    default_error_code: str = "UNSUPPORTED_GATEWAY"


class ReconciliationError(RefundError):
    """
    Raised when the ledger is inconsistent with the payment.

    The refunded total exceeding the payment amount means a lock or
    ordering bug upstream. Never clamp it; log at CRITICAL and stop.
    """

    default_error_code: str = "RECONCILIATION_ERROR"


class GatewayError(RefundError):
    """
    Raised when the remote refund call fails or times out.

    Retryable errors leave the attempt's ledger rows PENDING so a retry
    resends the same idempotency key; the rest are recorded as FAILED rows.
    Either way the return stays approved.
    """

    default_error_code: str = "GATEWAY_FAILED"
    is_retryable: bool = True


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(GatewayError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
        is_retryable: Whether the operation can be retried
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Permanent: e.g. refund larger than the captured amount, unknown
    PaymentIntent, or a bad webhook signature.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeRateLimitError(StripeError):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Network errors and Stripe 5xx responses."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The refund may have succeeded on Stripe's side. Retrying with the same
    idempotency key returns the original refund instead of a second one.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another request is refunding, cancelling or reconciling the same order.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "RefundError",
    "PreconditionError",
    "RefundTargetNotFoundError",
    "UnsupportedGatewayError",
    "ReconciliationError",
    "GatewayError",
    "StripeError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    "LockAcquisitionError",
]
