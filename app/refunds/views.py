"""
DRF views for the refund API.

Endpoints:
    GET  /api/v1/refunds/                                   - List ledger rows
    POST /api/v1/refunds/returns/<return_id>/refund/<gw>/   - Refund one return
    POST /api/v1/refunds/orders/<order_id>/refund/<gw>/     - Refund all approved returns
    POST /api/v1/refunds/orders/<order_id>/manual/          - Record a manual refund
    POST /api/v1/refunds/orders/<order_id>/cancel/          - Cancel a refund
    POST /api/v1/refunds/orders/<order_id>/recalculate/     - Recalculate order status
    GET  /api/v1/refunds/orders/<order_id>/summary/         - Per-status totals

Security:
    - All endpoints require authentication and the refunds.manage_refunds
      permission
    - The Stripe webhook lives in refunds.webhooks.views
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from refunds.exceptions import UnsupportedGatewayError
from refunds.gateways import get_gateway
from refunds.pagination import RefundLedgerPagination
from refunds.permissions import CanManageRefunds
from refunds.serializers import (
    CancelRefundSerializer,
    ManualRefundSerializer,
    OrderRefundSummarySerializer,
    RecalculationSerializer,
    RefundLedgerEntrySerializer,
    RefundOutcomeSerializer,
)
from refunds.services import RefundOrchestrator, RefundQueryService
from refunds.types import RefundMode

logger = logging.getLogger(__name__)

REFUND_SUCCESS_MESSAGE = "Refund processed successfully."

ERROR_STATUS_CODES = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "REFUND_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "LOCK_ACQUISITION_FAILED": status.HTTP_409_CONFLICT,
    "GATEWAY_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "RECONCILIATION_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "REFUND_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def failure_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult with the status code for its error code."""
    return Response(
        result.to_response(),
        status=ERROR_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def outcome_response(result: ServiceResult, message: str) -> Response:
    if not result:
        return failure_response(result)
    return Response(
        {
            "success": True,
            "message": message,
            "data": RefundOutcomeSerializer(result.data).data,
        },
        status=status.HTTP_200_OK,
    )


class RefundPermissionMixin:
    permission_classes = [IsAuthenticated, CanManageRefunds]


# =============================================================================
# Listing
# =============================================================================


@extend_schema(
    operation_id="list_refund_entries",
    summary="List refund ledger entries",
    tags=["Refunds"],
    parameters=[
        OpenApiParameter("status", str),
        OpenApiParameter("source", str),
        OpenApiParameter("is_manual", bool),
        OpenApiParameter("order_id", str),
        OpenApiParameter("user_id", int),
        OpenApiParameter("date_from", str, description="ISO 8601 datetime"),
        OpenApiParameter("date_to", str, description="ISO 8601 datetime"),
        OpenApiParameter("amount_min", int),
        OpenApiParameter("amount_max", int),
        OpenApiParameter("per_page", int, description="Rows per page (max 100)"),
    ],
)
class RefundLedgerListView(RefundPermissionMixin, generics.ListAPIView):
    """Paginated, filterable listing of refund ledger rows."""

    serializer_class = RefundLedgerEntrySerializer
    pagination_class = RefundLedgerPagination

    def list(self, request, *args, **kwargs):
        result = RefundQueryService.list_entries(request.query_params)
        if not result:
            return failure_response(result)

        page = self.paginate_queryset(result.data)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)


# =============================================================================
# Refunds
# =============================================================================


class GatewayRefundView(RefundPermissionMixin, APIView):
    """Base for refunds routed to a gateway by the URL's gateway key."""

    mode: RefundMode = RefundMode.SINGLE_ITEM

    def post(self, request, target_id, gateway):
        try:
            orchestrator = RefundOrchestrator(gateway=get_gateway(gateway))
        except UnsupportedGatewayError as e:
            return Response(
                ServiceResult.from_exception(e).to_response(),
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = orchestrator.refund(target_id, mode=self.mode)
        return outcome_response(result, REFUND_SUCCESS_MESSAGE)


@extend_schema(
    operation_id="refund_return",
    summary="Refund one approved return",
    tags=["Refunds"],
    request=None,
    responses={200: RefundOutcomeSerializer},
)
class ReturnRefundView(GatewayRefundView):
    mode = RefundMode.SINGLE_ITEM


@extend_schema(
    operation_id="refund_order",
    summary="Refund every approved return of an order",
    tags=["Refunds"],
    request=None,
    responses={200: RefundOutcomeSerializer},
)
class OrderRefundView(GatewayRefundView):
    mode = RefundMode.BULK


@extend_schema(
    operation_id="create_manual_refund",
    summary="Record a refund issued outside this service",
    tags=["Refunds"],
    request=ManualRefundSerializer,
    responses={200: RefundOutcomeSerializer},
)
class ManualRefundView(RefundPermissionMixin, APIView):
    def post(self, request, order_id):
        serializer = ManualRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundOrchestrator().create_manual_refund(
            order_id,
            data["amount_cents"],
            notes=data.get("notes") or None,
            source=data["source"],
            gateway_refund_id=data.get("gateway_refund_id") or None,
        )
        return outcome_response(result, "Manual refund recorded successfully.")


@extend_schema(
    operation_id="cancel_refund",
    summary="Cancel a refund",
    tags=["Refunds"],
    request=CancelRefundSerializer,
    responses={200: RefundOutcomeSerializer},
)
class CancelRefundView(RefundPermissionMixin, APIView):
    def post(self, request, order_id):
        serializer = CancelRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundOrchestrator().cancel_refund(
            order_id,
            data["amount_cents"],
            ledger_entry_ids=data.get("ledger_entry_ids"),
            gateway_refund_id=data.get("gateway_refund_id") or None,
        )
        return outcome_response(result, "Refund cancelled successfully.")


# =============================================================================
# Status
# =============================================================================


@extend_schema(
    operation_id="recalculate_order_refund_status",
    summary="Recalculate order and payment status from the ledger",
    tags=["Refunds"],
    request=None,
    responses={200: RecalculationSerializer},
)
class RecalculateOrderView(RefundPermissionMixin, APIView):
    def post(self, request, order_id):
        result = RefundOrchestrator().recalculate_order_status(order_id)
        if not result:
            return failure_response(result)

        data = RecalculationSerializer(result.data).data if result.data else None
        return Response({"success": True, "data": data}, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="get_order_refund_summary",
    summary="Refund totals for an order",
    tags=["Refunds"],
    responses={200: OrderRefundSummarySerializer},
)
class OrderRefundSummaryView(RefundPermissionMixin, APIView):
    def get(self, request, order_id):
        result = RefundQueryService.summarize_order(order_id)
        if not result:
            return failure_response(result)
        return Response(
            {"success": True, "data": OrderRefundSummarySerializer(result.data).data},
            status=status.HTTP_200_OK,
        )
