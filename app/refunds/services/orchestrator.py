"""
Refund orchestration.

RefundOrchestrator is the only writer of the refund ledger. It validates a
refund request, moves money through a PaymentGateway, records the outcome as
ledger rows, completes or reopens returns, and has the reconciler recompute
Order/Payment status after every change.

Refund phases (gateway called):
    1. Transaction: lock order and returns, validate, write PENDING rows
    2. Gateway call, outside any transaction
    3. Transaction: settle rows as REFUNDED and complete returns, or mark
       them FAILED; recalculate statuses

Every public operation runs under the order's distributed lock, so the
gateway call in phase 2 is serialized per order without holding database
row locks across the network. PENDING rows left behind by a crash between
phases 2 and 3 block a duplicate refund and are settled by the gateway's
webhook (see settle_pending_entries and reconcile_charge_total).

A retryable gateway error (timeout, network, rate limit) leaves the rows
PENDING and held for retry. Retrying the same refund reuses those rows and
therefore the same idempotency key, so the gateway never refunds twice.

Usage:
    from refunds.services import RefundOrchestrator
    from refunds.types import RefundMode

    orchestrator = RefundOrchestrator()
    result = orchestrator.refund(order_return.id)
    result = orchestrator.refund(order.id, mode=RefundMode.BULK)

    if not result:
        print(result.error, result.error_code)
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService, ServiceResult

from orders.models import REFUNDABLE_PAYMENT_STATUSES, Order, OrderReturn, Payment
from orders.state_machines import ReturnStatus
from refunds.adapters import IdempotencyKeyGenerator
from refunds.exceptions import (
    GatewayError,
    LockAcquisitionError,
    PreconditionError,
    ReconciliationError,
    RefundTargetNotFoundError,
)
from refunds.gateways import get_gateway
from refunds.locks import order_lock
from refunds.models import RefundLedgerEntry
from refunds.services.reconciliation import RefundReconciler
from refunds.state_machines import RefundSource, RefundStatus
from refunds.types import GatewayPolicy, RefundMode, RefundOptions, RefundOutcome

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable, Iterable
    from typing import Any

    from refunds.gateways import PaymentGateway
    from refunds.types import RecalculationResult


GATEWAY_FAILURE_MESSAGE = "Refund failed. Please try again later."
UNEXPECTED_ERROR_MESSAGE = "An error occurred while processing the refund."
GATEWAY_REFUND_NOTE = "Refund processed via payment gateway"
MANUAL_REFUND_NOTE = "Manual refund recorded"
EXTERNAL_REFUND_NOTE = "Refund made outside this service, recorded from the charge refunded total"


class RefundOrchestrator(BaseService):
    """
    Coordinates refunds, cancellations, failures and manual adjustments.

    The instance holds only its gateway and immutable defaults; every call
    takes its mode and policy as arguments, so one orchestrator can be shared.

    Args:
        gateway: Gateway used for CALL refunds (default: REFUND_DEFAULT_GATEWAY)
        options: Default ledger source and notes
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        options: RefundOptions | None = None,
    ):
        self.gateway = gateway or get_gateway(settings.REFUND_DEFAULT_GATEWAY)
        self.options = options or RefundOptions()

    # =========================================================================
    # Refund
    # =========================================================================

    def refund(
        self,
        target_id: uuid.UUID,
        mode: RefundMode = RefundMode.SINGLE_ITEM,
        gateway_policy: GatewayPolicy = GatewayPolicy.CALL,
        source: str | None = None,
        notes: str | None = None,
        gateway_refund_id: str | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Refund one approved return, or every approved return of an order.

        Args:
            target_id: OrderReturn id (SINGLE_ITEM) or Order id (BULK)
            mode: What target_id refers to
            gateway_policy: CALL moves money; SKIP only records a refund the
                gateway already made
            source: Ledger source tag (default from options)
            notes: Ledger notes (default from options)
            gateway_refund_id: Gateway refund id for SKIP refunds

        Returns:
            ServiceResult with the RefundOutcome on success. Failures carry
            the precondition message, or GATEWAY_FAILED when the gateway
            declined (rows recorded as FAILED) or its outcome is unknown
            (rows held PENDING for a retry with the same key).
        """
        mode = RefundMode(mode)
        gateway_policy = GatewayPolicy(gateway_policy)
        source = source or self.options.source
        notes = notes if notes is not None else self.options.notes

        log_context = {
            "target_id": str(target_id),
            "mode": mode.value,
            "gateway_policy": gateway_policy.value,
            "gateway": self.gateway.name,
            "source": source,
        }

        def run() -> ServiceResult[RefundOutcome]:
            order_id = self._resolve_order_id(target_id, mode)
            log_context["order_id"] = str(order_id)

            with order_lock(order_id):
                if gateway_policy is GatewayPolicy.SKIP:
                    outcome = self._refund_without_gateway(
                        order_id, target_id, mode, source, notes, gateway_refund_id
                    )
                else:
                    outcome = self._refund_with_gateway(
                        order_id, target_id, mode, source, notes
                    )

            self.get_logger().info(
                "Refund processed",
                extra={
                    **log_context,
                    "amount_cents": outcome.amount_cents,
                    "entry_count": len(outcome.entries),
                    "gateway_refund_id": outcome.gateway_refund_id,
                },
            )
            return ServiceResult.success(outcome)

        return self._run("refund", log_context, run)

    def _refund_with_gateway(
        self,
        order_id: uuid.UUID,
        target_id: uuid.UUID,
        mode: RefundMode,
        source: str,
        notes: str | None,
    ) -> RefundOutcome:
        logger = self.get_logger()

        # Phase 1: validate and reserve, or pick up an attempt held for retry
        with self.atomic():
            order, returns = self._lock_targets(order_id, target_id, mode)
            held = self._held_entries(returns)
            amounts = self._validate(order, returns, held=held)
            if held:
                entries = held
                logger.info(
                    "Retrying held refund attempt",
                    extra={
                        "order_id": str(order.id),
                        "ledger_entry_ids": [str(entry.id) for entry in held],
                    },
                )
            else:
                entries = [
                    RefundLedgerEntry.objects.create(
                        order=order,
                        order_return=order_return,
                        amount_cents=amount,
                        source=source,
                        gateway=self.gateway.name,
                        notes=notes or GATEWAY_REFUND_NOTE,
                    )
                    for order_return, amount in zip(returns, amounts)
                ]

        entry_ids = [entry.id for entry in entries]
        joined_ids = ",".join(str(entry_id) for entry_id in entry_ids)
        log_context = {
            "order_id": str(order.id),
            "ledger_entry_ids": [str(entry_id) for entry_id in entry_ids],
            "gateway": self.gateway.name,
        }

        # Phase 2: gateway call, no transaction open. The key follows the
        # first row of the attempt, so a retry of held rows reuses it.
        item = returns[0].order_item if mode is RefundMode.SINGLE_ITEM else None
        try:
            result = self.gateway.refund(
                order,
                item=item,
                metadata={"order_id": str(order.id), "ledger_entry_ids": joined_ids},
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_refund", entry_ids[0]
                ),
            )
        except GatewayError as e:
            with self.atomic():
                self._hold_for_retry(entry_ids, joined_ids, e)
            logger.warning(
                "Gateway refund outcome unknown; rows held for retry",
                extra={**log_context, "error": e.message, "error_code": e.error_code},
            )
            raise GatewayError(
                GATEWAY_FAILURE_MESSAGE,
                details={
                    "reason": e.message,
                    "gateway_error_code": e.error_code,
                    "retryable": True,
                },
            ) from e

        # Phase 3: record the outcome
        if not result:
            with self.atomic():
                for entry in RefundLedgerEntry.objects.select_for_update().filter(
                    id__in=entry_ids, status=RefundStatus.PENDING
                ):
                    entry.fail(f"Refund failed: {result.error}")
                    entry.set_metadata("gateway_error_code", result.error_code)
                    entry.save()
                RefundReconciler.recalculate(order.id)

            logger.warning(
                "Gateway refund failed",
                extra={
                    **log_context,
                    "error": result.error,
                    "error_code": result.error_code,
                },
            )
            raise GatewayError(
                GATEWAY_FAILURE_MESSAGE,
                details={
                    "reason": result.error,
                    "gateway_error_code": result.error_code,
                    "retryable": False,
                },
            )

        refund_result = result.data
        try:
            with self.atomic():
                settled = self._settle_entries(entry_ids, refund_result.id)
                recalculation = RefundReconciler.recalculate(order.id)
        except Exception:
            logger.error(
                "Gateway refunded but settlement failed; awaiting webhook reconciliation",
                extra={**log_context, "gateway_refund_id": refund_result.id},
                exc_info=True,
            )
            raise

        return RefundOutcome(
            order_id=order.id,
            entries=settled,
            gateway_refund_id=refund_result.id,
            recalculation=recalculation,
        )

    def _refund_without_gateway(
        self,
        order_id: uuid.UUID,
        target_id: uuid.UUID,
        mode: RefundMode,
        source: str,
        notes: str | None,
        gateway_refund_id: str | None,
    ) -> RefundOutcome:
        with self.atomic():
            if self._already_recorded(gateway_refund_id):
                return RefundOutcome(order_id=order_id, gateway_refund_id=gateway_refund_id)
            order, returns = self._lock_targets(order_id, target_id, mode)
            amounts = self._validate(order, returns)
            entries = []
            for order_return, amount in zip(returns, amounts):
                entries.append(
                    self._record_refunded(
                        order,
                        order_return,
                        amount,
                        source=source,
                        notes=notes or GATEWAY_REFUND_NOTE,
                        gateway_refund_id=gateway_refund_id,
                    )
                )
            recalculation = RefundReconciler.recalculate(order.id)

        return RefundOutcome(
            order_id=order.id,
            entries=entries,
            gateway_refund_id=gateway_refund_id,
            recalculation=recalculation,
        )

    # =========================================================================
    # Webhook Recovery
    # =========================================================================

    def settle_pending_entries(
        self,
        order_id: uuid.UUID,
        ledger_entry_ids: Iterable[uuid.UUID | str],
        gateway_refund_id: str,
        amount_cents: int | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Record a gateway-confirmed refund against the rows that requested it.

        PENDING rows are settled. Rows already marked FAILED (the gateway
        declined, yet a refund went through) get a REFUNDED replacement row
        for the same amount. When ``amount_cents`` is given and none of the
        named rows can take the refund, it is still recorded as an
        unattached row and logged at CRITICAL: money the gateway moved is
        never left out of the ledger.

        Returns:
            ServiceResult with the RefundOutcome, or REFUND_NOT_FOUND when
            none of the rows can be settled and no amount was given
        """
        ledger_entry_ids = [str(entry_id) for entry_id in ledger_entry_ids]
        log_context = {
            "order_id": str(order_id),
            "ledger_entry_ids": ledger_entry_ids,
            "gateway_refund_id": gateway_refund_id,
            "amount_cents": amount_cents,
        }

        def run() -> ServiceResult[RefundOutcome]:
            self._require_order(order_id)
            with order_lock(order_id):
                with self.atomic():
                    if self._already_recorded(gateway_refund_id):
                        # Settled by the synchronous path while we waited
                        return ServiceResult.success(
                            RefundOutcome(
                                order_id=order_id, gateway_refund_id=gateway_refund_id
                            )
                        )
                    order = Order.objects.select_for_update().get(id=order_id)
                    settled = self._settle_entries(ledger_entry_ids, gateway_refund_id)
                    settled += self._replace_failed_entries(
                        order, ledger_entry_ids, gateway_refund_id
                    )
                    if not settled:
                        if amount_cents is None or RefundLedgerEntry.objects.filter(
                            order_id=order_id,
                            id__in=ledger_entry_ids,
                            status=RefundStatus.CANCELLED,
                        ).exists():
                            return ServiceResult.failure(
                                "No pending refund found for the gateway refund.",
                                error_code="REFUND_NOT_FOUND",
                            )
                        settled = [
                            self._record_unmatched(
                                order,
                                amount_cents,
                                gateway_refund_id,
                                note=(
                                    "Gateway refund for entries "
                                    f"{', '.join(ledger_entry_ids)} matched no pending row"
                                ),
                            )
                        ]
                    recalculation = RefundReconciler.recalculate(order_id)

            self.get_logger().info(
                "Pending refund entries settled from gateway",
                extra={**log_context, "entry_count": len(settled)},
            )
            return ServiceResult.success(
                RefundOutcome(
                    order_id=order_id,
                    entries=settled,
                    gateway_refund_id=gateway_refund_id,
                    recalculation=recalculation,
                )
            )

        return self._run("settle_pending_entries", log_context, run)

    def reconcile_charge_total(
        self,
        order_id: uuid.UUID,
        amount_refunded: int,
    ) -> ServiceResult[RefundOutcome]:
        """
        Bring the ledger up to the refunded total the gateway reports.

        Used when a charge event carries its refunded total but not the
        refunds themselves. PENDING rows count as already recorded: those
        the uncovered amount can pay for are settled (oldest first), and
        only what is left beyond every PENDING row is recorded as a refund
        made outside this service.

        Returns:
            ServiceResult with the RefundOutcome; no entries when the
            ledger already accounts for the total
        """
        log_context = {"order_id": str(order_id), "amount_refunded": amount_refunded}

        def run() -> ServiceResult[RefundOutcome]:
            self._require_order(order_id)
            with order_lock(order_id):
                with self.atomic():
                    order = Order.objects.select_for_update().get(id=order_id)
                    uncovered = amount_refunded - RefundLedgerEntry.objects.refunded_total(
                        order_id
                    )
                    pending = (
                        RefundLedgerEntry.objects.select_for_update()
                        .for_order(order_id)
                        .pending()
                        .order_by("created_at", "id")
                    )
                    changed = []
                    still_pending = 0
                    for entry in pending:
                        if entry.amount_cents <= uncovered:
                            changed += self._settle_entries([entry.id], "")
                            uncovered -= entry.amount_cents
                        else:
                            still_pending += entry.amount_cents
                    external = uncovered - still_pending
                    if external > 0:
                        changed += self._record_manual(
                            order,
                            external,
                            source=RefundSource.STRIPE_WEBHOOK,
                            notes=EXTERNAL_REFUND_NOTE,
                        )
                    if not changed:
                        self.get_logger().info(
                            "Charge refund total already recorded", extra=log_context
                        )
                        return ServiceResult.success(RefundOutcome(order_id=order_id))
                    recalculation = RefundReconciler.recalculate(order_id)

            self.get_logger().info(
                "Charge refund total reconciled",
                extra={**log_context, "entry_count": len(changed)},
            )
            return ServiceResult.success(
                RefundOutcome(
                    order_id=order_id, entries=changed, recalculation=recalculation
                )
            )

        return self._run("reconcile_charge_total", log_context, run)

    def _replace_failed_entries(
        self,
        order: Order,
        ledger_entry_ids: list[str],
        gateway_refund_id: str,
    ) -> list[RefundLedgerEntry]:
        failed = RefundLedgerEntry.objects.select_for_update().filter(
            order_id=order.id, id__in=ledger_entry_ids, status=RefundStatus.FAILED
        )
        replacements = []
        for entry in failed:
            note = f"Refund confirmed by payment gateway after failed entry {entry.id}"
            order_return = None
            if entry.order_return_id:
                order_return = OrderReturn.objects.select_for_update().get(
                    id=entry.order_return_id
                )
            if order_return is not None and order_return.status != ReturnStatus.APPROVED:
                # The return was refunded again since; this is a second refund
                replacement = self._record_unmatched(
                    order, entry.amount_cents, gateway_refund_id, note=note
                )
            else:
                replacement = self._record_refunded(
                    order,
                    order_return,
                    entry.amount_cents,
                    source=RefundSource.STRIPE_WEBHOOK,
                    notes=note,
                    gateway_refund_id=gateway_refund_id,
                )
            replacement.gateway = entry.gateway
            replacement.save(update_fields=["gateway", "updated_at"])
            replacements.append(replacement)
        return replacements

    def _record_unmatched(
        self,
        order: Order,
        amount: int,
        gateway_refund_id: str,
        note: str,
    ) -> RefundLedgerEntry:
        """Record a confirmed gateway refund no ledger row was waiting for."""
        self.get_logger().critical(
            "Gateway refunded money no ledger row accounts for",
            extra={
                "order_id": str(order.id),
                "amount_cents": amount,
                "gateway_refund_id": gateway_refund_id,
            },
        )
        return self._record_refunded(
            order,
            None,
            amount,
            source=RefundSource.STRIPE_WEBHOOK,
            notes=note,
            gateway_refund_id=gateway_refund_id,
            is_manual=True,
        )

    # =========================================================================
    # Cancel / Fail
    # =========================================================================

    def cancel_refund(
        self,
        order_id: uuid.UUID,
        amount: int,
        ledger_entry_ids: Iterable[uuid.UUID | str] | None = None,
        gateway_refund_id: str | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Reverse a refund the gateway reports as cancelled.

        Matching, first applicable wins:
            1. ledger_entry_ids (carried in gateway metadata)
            2. gateway_refund_id
            3. The most recent REFUNDED or PENDING row of the order with
               exactly ``amount``, created within
               REFUND_CANCELLATION_WINDOW_HOURS

        An explicit identifier that matches nothing does not fall back to
        the amount heuristic. Matched rows become CANCELLED, their completed
        returns go back to APPROVED and statuses are recalculated.

        Returns:
            ServiceResult with the RefundOutcome, or REFUND_NOT_FOUND (after
            recalculating) when no row matched
        """
        ledger_entry_ids = [str(entry_id) for entry_id in ledger_entry_ids or []]
        log_context = {
            "order_id": str(order_id),
            "amount_cents": amount,
            "ledger_entry_ids": ledger_entry_ids,
            "gateway_refund_id": gateway_refund_id,
        }

        def run() -> ServiceResult[RefundOutcome]:
            self._require_order(order_id)
            with order_lock(order_id):
                with self.atomic():
                    entries = self._match_cancellable(
                        order_id, amount, ledger_entry_ids, gateway_refund_id
                    )
                    note = f"Refund cancelled in payment gateway on {timezone.now().isoformat()}"
                    for entry in entries:
                        entry.cancel(note)
                        entry.save()
                        self._reopen_return(entry)
                    recalculation = RefundReconciler.recalculate(order_id)

            if not entries:
                self.get_logger().warning(
                    "No refund matched the gateway cancellation", extra=log_context
                )
                return ServiceResult.failure(
                    "No matching refund found to cancel.",
                    error_code="REFUND_NOT_FOUND",
                )

            self.get_logger().info(
                "Refund cancelled",
                extra={**log_context, "entry_count": len(entries)},
            )
            return ServiceResult.success(
                RefundOutcome(
                    order_id=order_id,
                    entries=entries,
                    gateway_refund_id=gateway_refund_id,
                    recalculation=recalculation,
                )
            )

        return self._run("cancel_refund", log_context, run)

    def _match_cancellable(
        self,
        order_id: uuid.UUID,
        amount: int,
        ledger_entry_ids: list[str],
        gateway_refund_id: str | None,
    ) -> list[RefundLedgerEntry]:
        candidates = RefundLedgerEntry.objects.select_for_update().filter(
            order_id=order_id,
            status__in=[RefundStatus.REFUNDED, RefundStatus.PENDING],
        )
        if ledger_entry_ids:
            return list(candidates.filter(id__in=ledger_entry_ids))
        if gateway_refund_id:
            return list(candidates.filter(gateway_refund_id=gateway_refund_id))

        window = timedelta(hours=settings.REFUND_CANCELLATION_WINDOW_HOURS)
        entry = (
            candidates.filter(
                amount_cents=amount,
                created_at__gte=timezone.now() - window,
            )
            .order_by("-created_at")
            .first()
        )
        return [entry] if entry is not None else []

    def fail_refund(
        self,
        order_id: uuid.UUID,
        reason: str,
        ledger_entry_ids: Iterable[uuid.UUID | str] | None = None,
        gateway_refund_id: str | None = None,
    ) -> ServiceResult[list[RefundLedgerEntry]]:
        """
        Mark refunds the gateway reports as failed.

        Explicit ledger_entry_ids or gateway_refund_id select PENDING or
        REFUNDED rows; without them every PENDING row of the order is
        failed. The reason is appended to the notes, completed returns go
        back to APPROVED and statuses are recalculated.

        Returns:
            ServiceResult with the changed rows, or REFUND_NOT_FOUND when no
            row changed
        """
        ledger_entry_ids = [str(entry_id) for entry_id in ledger_entry_ids or []]
        log_context = {
            "order_id": str(order_id),
            "reason": reason,
            "ledger_entry_ids": ledger_entry_ids,
            "gateway_refund_id": gateway_refund_id,
        }

        def run() -> ServiceResult[list[RefundLedgerEntry]]:
            self._require_order(order_id)
            with order_lock(order_id):
                with self.atomic():
                    entries = RefundLedgerEntry.objects.select_for_update().filter(
                        order_id=order_id
                    )
                    if ledger_entry_ids or gateway_refund_id:
                        entries = entries.filter(
                            status__in=[RefundStatus.PENDING, RefundStatus.REFUNDED]
                        )
                        if ledger_entry_ids:
                            entries = entries.filter(id__in=ledger_entry_ids)
                        else:
                            entries = entries.filter(gateway_refund_id=gateway_refund_id)
                    else:
                        entries = entries.filter(status=RefundStatus.PENDING)

                    changed = []
                    for entry in entries:
                        entry.fail(reason)
                        entry.save()
                        self._reopen_return(entry)
                        changed.append(entry)
                    RefundReconciler.recalculate(order_id)

            if not changed:
                self.get_logger().warning(
                    "No refund matched the gateway failure", extra=log_context
                )
                return ServiceResult.failure(
                    "No matching refund found to fail.",
                    error_code="REFUND_NOT_FOUND",
                )

            self.get_logger().info(
                "Refund marked as failed",
                extra={**log_context, "entry_count": len(changed)},
            )
            return ServiceResult.success(changed)

        return self._run("fail_refund", log_context, run)

    # =========================================================================
    # Manual Refunds
    # =========================================================================

    def create_manual_refund(
        self,
        order_id: uuid.UUID,
        amount: int,
        notes: str | None = None,
        source: str = RefundSource.MANUAL,
        gateway_refund_id: str | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Record a refund that was issued outside this service.

        The amount is spread over the order's approved returns, oldest
        first: each return takes up to its own refund amount and the last
        one absorbs whatever is left. Consumed returns are completed. With
        no approved returns a single manual row, unattached to any return,
        records the whole amount.

        Rejected while any refund of the order is PENDING, and when the
        amount exceeds what is left after refunded rows.

        Returns:
            ServiceResult with the RefundOutcome
        """
        log_context = {
            "order_id": str(order_id),
            "amount_cents": amount,
            "source": source,
            "gateway_refund_id": gateway_refund_id,
        }

        def run() -> ServiceResult[RefundOutcome]:
            if amount <= 0:
                raise PreconditionError(
                    "Refund amount must be greater than zero.",
                    error_code="INVALID_AMOUNT",
                )
            self._require_order(order_id)

            with order_lock(order_id):
                with self.atomic():
                    order = Order.objects.select_for_update().get(id=order_id)
                    if self._already_recorded(gateway_refund_id):
                        return ServiceResult.success(
                            RefundOutcome(
                                order_id=order_id, gateway_refund_id=gateway_refund_id
                            )
                        )
                    payment = self._lock_refundable_payment(order)
                    if RefundLedgerEntry.objects.for_order(order.id).pending().exists():
                        raise PreconditionError(
                            "A refund for this order is already in progress.",
                            error_code="REFUND_IN_PROGRESS",
                            details={"order_id": str(order.id)},
                        )
                    self._check_balance(order, payment, amount)
                    entries = self._record_manual(
                        order,
                        amount,
                        source=source,
                        notes=notes,
                        gateway_refund_id=gateway_refund_id,
                    )
                    recalculation = RefundReconciler.recalculate(order.id)

            self.get_logger().info(
                "Manual refund recorded",
                extra={**log_context, "entry_count": len(entries)},
            )
            return ServiceResult.success(
                RefundOutcome(
                    order_id=order_id,
                    entries=entries,
                    gateway_refund_id=gateway_refund_id,
                    recalculation=recalculation,
                )
            )

        return self._run("create_manual_refund", log_context, run)

    def _record_manual(
        self,
        order: Order,
        amount: int,
        source: str,
        notes: str | None,
        gateway_refund_id: str | None = None,
    ) -> list[RefundLedgerEntry]:
        """Record REFUNDED rows for money the gateway moved without us."""
        returns = [
            order_return
            for order_return in order.get_approved_returns().select_for_update()
            if not order_return.refund_entries.pending().exists()
        ]
        if returns:
            return self._distribute(
                order, returns, amount, source, notes, gateway_refund_id
            )
        return [
            self._record_refunded(
                order,
                None,
                amount,
                source=source,
                notes=notes or MANUAL_REFUND_NOTE,
                gateway_refund_id=gateway_refund_id,
                is_manual=True,
            )
        ]

    def _distribute(
        self,
        order: Order,
        returns: list[OrderReturn],
        amount: int,
        source: str,
        notes: str | None,
        gateway_refund_id: str | None,
    ) -> list[RefundLedgerEntry]:
        entries = []
        remaining = amount
        last_index = len(returns) - 1
        for index, order_return in enumerate(returns):
            if remaining <= 0:
                break
            if index == last_index:
                share = remaining
            else:
                share = min(order_return.order_item.refund_amount(), remaining)
            if share <= 0:
                continue
            entries.append(
                self._record_refunded(
                    order,
                    order_return,
                    share,
                    source=source,
                    notes=notes or GATEWAY_REFUND_NOTE,
                    gateway_refund_id=gateway_refund_id,
                )
            )
            remaining -= share
        return entries

    # =========================================================================
    # Recalculation
    # =========================================================================

    def recalculate_order_status(
        self, order_id: uuid.UUID
    ) -> ServiceResult[RecalculationResult | None]:
        """Recompute Order/Payment status from the ledger under the order lock."""
        log_context = {"order_id": str(order_id)}

        def run() -> ServiceResult[RecalculationResult | None]:
            self._require_order(order_id)
            with order_lock(order_id):
                return ServiceResult.success(RefundReconciler.recalculate(order_id))

        return self._run("recalculate_order_status", log_context, run)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _run(
        self,
        operation: str,
        log_context: dict[str, Any],
        func: Callable[[], ServiceResult],
    ) -> ServiceResult:
        """Run an operation, converting domain errors to failed results."""
        logger = self.get_logger()
        try:
            return func()
        except PreconditionError as e:
            logger.info(
                f"{operation} rejected: {e.message}",
                extra={**log_context, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)
        except GatewayError as e:
            return ServiceResult.from_exception(e)
        except LockAcquisitionError as e:
            logger.warning(
                f"{operation} could not acquire the order lock",
                extra=log_context,
            )
            return ServiceResult.from_exception(e)
        except ReconciliationError as e:
            # Already logged at CRITICAL by the reconciler
            return ServiceResult.from_exception(e)
        except Exception:
            logger.error(
                f"Unexpected error during {operation}",
                extra=log_context,
                exc_info=True,
            )
            return ServiceResult.failure(
                UNEXPECTED_ERROR_MESSAGE,
                error_code="REFUND_ERROR",
            )

    @staticmethod
    def _already_recorded(gateway_refund_id: str | None) -> bool:
        return bool(gateway_refund_id) and RefundLedgerEntry.objects.for_gateway_refund(
            gateway_refund_id
        ).exists()

    @staticmethod
    def _require_order(order_id: uuid.UUID) -> None:
        if not Order.objects.filter(id=order_id).exists():
            raise RefundTargetNotFoundError(
                "Order not found.",
                details={"order_id": str(order_id)},
            )

    @classmethod
    def _resolve_order_id(cls, target_id: uuid.UUID, mode: RefundMode) -> uuid.UUID:
        if mode is RefundMode.SINGLE_ITEM:
            order_id = (
                OrderReturn.objects.filter(id=target_id)
                .values_list("order_item__order_id", flat=True)
                .first()
            )
            if order_id is None:
                raise RefundTargetNotFoundError(
                    "Return not found.",
                    details={"return_id": str(target_id)},
                )
            return order_id

        cls._require_order(target_id)
        return target_id

    @staticmethod
    def _lock_targets(
        order_id: uuid.UUID,
        target_id: uuid.UUID,
        mode: RefundMode,
    ) -> tuple[Order, list[OrderReturn]]:
        """Lock the order and the returns to refund, re-checking approval."""
        order = Order.objects.select_for_update().get(id=order_id)

        if mode is RefundMode.SINGLE_ITEM:
            order_return = (
                OrderReturn.objects.select_for_update()
                .select_related("order_item")
                .get(id=target_id)
            )
            if not order_return.is_approved():
                raise PreconditionError(
                    "This return has not been approved for refund.",
                    error_code="RETURN_NOT_APPROVED",
                    details={"return_id": str(order_return.id)},
                )
            return order, [order_return]

        returns = list(order.get_approved_returns().select_for_update())
        if not returns:
            raise PreconditionError(
                "One or more items have not been approved for refund.",
                error_code="NO_APPROVED_RETURNS",
                details={"order_id": str(order.id)},
            )
        return order, returns

    @staticmethod
    def _lock_refundable_payment(order: Order) -> Payment:
        payment = (
            Payment.objects.select_for_update()
            .filter(order=order, status__in=REFUNDABLE_PAYMENT_STATUSES)
            .order_by("created_at", "id")
            .first()
        )
        if payment is None:
            raise PreconditionError(
                "No refundable payment found for this order.",
                error_code="NO_REFUNDABLE_PAYMENT",
                details={"order_id": str(order.id)},
            )
        return payment

    @staticmethod
    def _held_entries(returns: list[OrderReturn]) -> list[RefundLedgerEntry]:
        """
        PENDING rows of an attempt held for retry, in their original order.

        Only returned when they are the whole attempt and cover exactly
        these returns; any other PENDING row is a refund in flight.
        """
        pending = list(
            RefundLedgerEntry.objects.select_for_update().filter(
                order_return__in=returns, status=RefundStatus.PENDING
            )
        )
        if not pending:
            return []
        attempt = pending[0].get_metadata("held_attempt")
        if not attempt or any(e.get_metadata("held_attempt") != attempt for e in pending):
            return []
        attempt_ids = attempt.split(",")
        if len(attempt_ids) != len(pending) or {
            e.order_return_id for e in pending
        } != {order_return.id for order_return in returns}:
            return []
        by_id = {str(e.id): e for e in pending}
        if set(by_id) != set(attempt_ids):
            return []
        return [by_id[entry_id] for entry_id in attempt_ids]

    @staticmethod
    def _hold_for_retry(
        entry_ids: list[uuid.UUID],
        joined_ids: str,
        error: GatewayError,
    ) -> None:
        """Keep an attempt with an unknown outcome PENDING for a same-key retry."""
        entries = RefundLedgerEntry.objects.select_for_update().filter(
            id__in=entry_ids, status=RefundStatus.PENDING
        )
        for entry in entries:
            entry.append_note(f"Gateway outcome unknown: {error.message}")
            entry.set_metadata("held_attempt", joined_ids)
            entry.set_metadata("gateway_error_code", error.error_code)
            entry.save()

    def _validate(
        self,
        order: Order,
        returns: list[OrderReturn],
        held: list[RefundLedgerEntry] | None = None,
    ) -> list[int]:
        """
        Check a refund can go ahead and return the per-return amounts.

        ``held`` rows belong to the attempt being retried: they neither
        block the refund nor count against the balance a second time.

        Raises:
            PreconditionError: No refundable payment, a non-positive amount,
                a refund already in flight, or not enough balance left
        """
        payment = self._lock_refundable_payment(order)
        held = held or []
        held_ids = [entry.id for entry in held]

        amounts = []
        for order_return in returns:
            amount = order_return.order_item.refund_amount()
            if amount <= 0:
                raise PreconditionError(
                    "Refund amount must be greater than zero.",
                    error_code="INVALID_REFUND_AMOUNT",
                    details={"return_id": str(order_return.id), "amount_cents": amount},
                )
            amounts.append(amount)

        in_flight = (
            RefundLedgerEntry.objects.filter(
                order_return__in=returns, status=RefundStatus.PENDING
            )
            .exclude(id__in=held_ids)
            .exists()
        )
        if in_flight or (held and sum(e.amount_cents for e in held) != sum(amounts)):
            raise PreconditionError(
                "A refund for this return is already in progress.",
                error_code="REFUND_IN_PROGRESS",
                details={"order_id": str(order.id)},
            )

        self._check_balance(order, payment, sum(amounts), exclude=held_ids)
        return amounts

    @staticmethod
    def _check_balance(
        order: Order,
        payment: Payment,
        amount: int,
        exclude: list[uuid.UUID] | None = None,
    ) -> None:
        """Reject amounts above the payment less REFUNDED and PENDING rows."""
        entries = RefundLedgerEntry.objects.for_order(order.id).exclude(
            id__in=exclude or []
        )
        committed = entries.refunded().total_cents() + entries.pending().total_cents()
        remaining = max(payment.amount_cents - committed, 0)
        if amount > remaining:
            raise PreconditionError(
                "Refund amount exceeds the remaining refundable balance.",
                error_code="AMOUNT_EXCEEDS_BALANCE",
                details={"amount_cents": amount, "remaining_cents": remaining},
            )

    def _record_refunded(
        self,
        order: Order,
        order_return: OrderReturn | None,
        amount: int,
        source: str,
        notes: str,
        gateway_refund_id: str | None = None,
        is_manual: bool = False,
    ) -> RefundLedgerEntry:
        """Write a REFUNDED row and complete its return."""
        entry = RefundLedgerEntry(
            order=order,
            order_return=order_return,
            amount_cents=amount,
            source=source,
            notes=notes,
            is_manual=is_manual,
        )
        entry.settle(gateway_refund_id)
        entry.save()

        if order_return is not None and order_return.status == ReturnStatus.APPROVED:
            order_return.complete()
            order_return.save()
        return entry

    @staticmethod
    def _settle_entries(
        entry_ids: Iterable[uuid.UUID | str],
        gateway_refund_id: str,
    ) -> list[RefundLedgerEntry]:
        """
        Settle PENDING rows and complete their returns.

        Rows already REFUNDED without a gateway refund id (settled from a
        charge total) take ``gateway_refund_id`` and count as settled.
        """
        matching = Q(status=RefundStatus.PENDING)
        if gateway_refund_id:
            matching |= Q(
                status=RefundStatus.REFUNDED,
                gateway_refund_id__in=["", gateway_refund_id],
            )
        entries = RefundLedgerEntry.objects.select_for_update().filter(
            matching, id__in=list(entry_ids)
        )
        settled = []
        for entry in entries:
            if entry.is_refunded:
                if not entry.gateway_refund_id:
                    entry.gateway_refund_id = gateway_refund_id
                    entry.save(update_fields=["gateway_refund_id", "updated_at"])
                settled.append(entry)
                continue
            entry.settle(gateway_refund_id)
            entry.save()
            if entry.order_return_id:
                order_return = OrderReturn.objects.select_for_update().get(
                    id=entry.order_return_id
                )
                if order_return.status == ReturnStatus.APPROVED:
                    order_return.complete()
                    order_return.save()
            settled.append(entry)
        return settled

    @staticmethod
    def _reopen_return(entry: RefundLedgerEntry) -> None:
        """Send a completed return back to APPROVED once nothing refunds it."""
        if not entry.order_return_id:
            return
        order_return = OrderReturn.objects.select_for_update().get(
            id=entry.order_return_id
        )
        if order_return.status != ReturnStatus.COMPLETED:
            return
        if order_return.refund_entries.refunded().exists():
            return
        order_return.reopen()
        order_return.save()
