"""
Type definitions for refund operations.

Call-time switches and immutable parameter/result objects shared by the
orchestrator, the reconciler and the API layer.

Usage:
    from refunds.types import GatewayPolicy, RefundMode

    orchestrator.refund(order.id, mode=RefundMode.BULK, gateway_policy=GatewayPolicy.SKIP)
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from refunds.state_machines import RefundSource

if TYPE_CHECKING:
    from refunds.models import RefundLedgerEntry


class RefundMode(str, enum.Enum):
    """
    What the target id of a refund call refers to.

    SINGLE_ITEM: an OrderReturn id; refunds exactly that return
    BULK: an Order id; refunds every approved return of the order
    """

    SINGLE_ITEM = "single_item"
    BULK = "bulk"


class GatewayPolicy(str, enum.Enum):
    """
    Whether the refund call moves money at the gateway.

    SKIP is for refunds the gateway has already executed (e.g. reported by
    a webhook); only the ledger and statuses are updated.
    """

    CALL = "call"
    SKIP = "skip"


@dataclass(frozen=True)
class RefundOptions:
    """
    Construction-time defaults for an orchestrator.

    Attributes:
        source: Default ledger source tag
        notes: Default ledger notes (None keeps the built-in messages)
    """

    source: str = RefundSource.ADMIN
    notes: str | None = None


@dataclass(frozen=True)
class RecalculationResult:
    """
    Outcome of recomputing an order's refund status from the ledger.

    Attributes:
        order_id: The reconciled order
        total_refunded_cents: Sum of REFUNDED ledger rows
        payment_amount_cents: Amount of the payment reconciled against
        order_status: Order status after reconciliation
        payment_status: Payment status after reconciliation
    """

    order_id: uuid.UUID
    total_refunded_cents: int
    payment_amount_cents: int
    order_status: str
    payment_status: str

    @property
    def is_full_refund(self) -> bool:
        return self.total_refunded_cents >= self.payment_amount_cents

    @property
    def remaining_cents(self) -> int:
        return max(self.payment_amount_cents - self.total_refunded_cents, 0)


@dataclass
class RefundOutcome:
    """
    Result of a successful refund, manual refund, cancel or fail operation.

    Attributes:
        order_id: Order the ledger rows belong to
        entries: Ledger rows created or transitioned by the operation
        gateway_refund_id: Gateway refund id (re_xxx) when known
        recalculation: Order/Payment status after the operation
    """

    order_id: uuid.UUID
    entries: list[RefundLedgerEntry] = field(default_factory=list)
    gateway_refund_id: str | None = None
    recalculation: RecalculationResult | None = None

    @property
    def amount_cents(self) -> int:
        return sum(entry.amount_cents for entry in self.entries)


@dataclass(frozen=True)
class OrderRefundSummary:
    """
    Per-status ledger totals for one order.

    All amounts are in minor currency units.
    """

    order_id: uuid.UUID
    payment_amount_cents: int
    refunded_cents: int
    pending_cents: int
    failed_cents: int
    cancelled_cents: int

    @property
    def remaining_cents(self) -> int:
        return max(self.payment_amount_cents - self.refunded_cents, 0)
