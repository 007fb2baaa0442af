"""
Admin-only views for seller settlement and payment operations.

- Payout ledger of paid orders still owed to sellers
- Mark one order, or every payable order of a seller, as paid out
- Confirm or reject seller withdrawal requests
- Enqueue a stale-reservation sweep and run a ledger audit

Security: every endpoint verifies the admin role from the database (never trust token)
"""

import logging
import uuid

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, OpenApiTypes, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.permissions import IsAdminRole
from payment_system.api.serializers.request_serializers import (
    PayoutRequestSerializer,
    ReconcileRequestSerializer,
    WithdrawalSettleRequestSerializer,
)
from payment_system.api.serializers.response_serializers import (
    ErrorResponseSerializer,
    LedgerEntrySerializer,
    PayoutLedgerResponseSerializer,
    ReconcileQueuedResponseSerializer,
    SellerPayoutResponseSerializer,
    SettledOrderResponseSerializer,
)
from payment_system.Tasks.reconciliation_tasks import release_stale_reservations_task
from utils.api_responses import error_response

logger = logging.getLogger(__name__)


def _invalid(serializer) -> Response:
    return Response({"error": "validation_error", "detail": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)


# ===============================================================================
# PAYOUT LEDGER
# ===============================================================================


@extend_schema(
    operation_id="admin_payout_ledger",
    summary="Admin: Payout ledger",
    description="""
    **What it returns:**
    - Paid, not yet settled orders (newest first, paginated)
    - Total amount owed to sellers and a per-seller breakdown
    """,
    parameters=[
        OpenApiParameter(name="seller_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY),
        OpenApiParameter(name="page", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
        OpenApiParameter(name="page_size", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
    ],
    responses={
        200: OpenApiResponse(response=PayoutLedgerResponseSerializer, description="Payout ledger"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Admin access required"),
    },
    tags=["Admin - Payouts"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated, IsAdminRole])
def payout_ledger(request):
    try:
        page = int(request.query_params.get("page", 1))
        page_size = int(request.query_params.get("page_size", 20))
    except ValueError:
        return Response(
            {"error": "validation_error", "detail": "page and page_size must be integers"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    result = container.payout_service().payout_ledger(page, page_size, request.query_params.get("seller_id"))
    if not result.ok:
        return error_response(result)
    return Response(PayoutLedgerResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="admin_mark_order_paid_out",
    summary="Admin: Mark an order as paid out",
    request=PayoutRequestSerializer,
    responses={
        200: OpenApiResponse(response=SettledOrderResponseSerializer, description="Order settled"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Order not paid or cancelled"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Already settled / balance short"),
    },
    tags=["Admin - Payouts"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsAdminRole])
def mark_order_paid_out(request, order_id):
    serializer = PayoutRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    result = container.payout_service().mark_order_paid_out(order_id, request.user, serializer.validated_data["notes"])
    if not result.ok:
        return error_response(result)
    return Response(SettledOrderResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="admin_mark_seller_paid_out",
    summary="Admin: Settle every payable order of a seller",
    description="Orders that cannot be settled are reported under `skipped`; the rest still go through.",
    request=PayoutRequestSerializer,
    responses={
        200: OpenApiResponse(response=SellerPayoutResponseSerializer, description="Seller settled"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Unknown seller"),
    },
    tags=["Admin - Payouts"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsAdminRole])
def mark_seller_paid_out(request, seller_id):
    serializer = PayoutRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    result = container.payout_service().mark_seller_paid_out(
        seller_id, request.user, serializer.validated_data["notes"]
    )
    if not result.ok:
        return error_response(result)
    return Response(SellerPayoutResponseSerializer(result.value).data, status=status.HTTP_200_OK)


# ===============================================================================
# WITHDRAWALS
# ===============================================================================


@extend_schema(
    operation_id="admin_confirm_withdrawal",
    summary="Admin: Confirm a withdrawal",
    request=WithdrawalSettleRequestSerializer,
    responses={
        200: OpenApiResponse(response=LedgerEntrySerializer, description="Withdrawal completed"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Withdrawal not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Withdrawal already settled"),
    },
    tags=["Admin - Withdrawals"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsAdminRole])
def confirm_withdrawal(request, entry_id):
    serializer = WithdrawalSettleRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    result = container.ledger_service().confirm_withdrawal(
        entry_id, request.user, reference=serializer.validated_data["reference"]
    )
    if not result.ok:
        return error_response(result)
    return Response(LedgerEntrySerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="admin_reject_withdrawal",
    summary="Admin: Reject a withdrawal",
    description="The withdrawn amount returns to the seller's available balance.",
    request=WithdrawalSettleRequestSerializer,
    responses={
        200: OpenApiResponse(response=LedgerEntrySerializer, description="Withdrawal failed and refunded"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Withdrawal not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Withdrawal already settled"),
    },
    tags=["Admin - Withdrawals"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsAdminRole])
def reject_withdrawal(request, entry_id):
    serializer = WithdrawalSettleRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    result = container.ledger_service().reject_withdrawal(entry_id, request.user, reason=serializer.validated_data["reason"])
    if not result.ok:
        return error_response(result)
    return Response(LedgerEntrySerializer(result.value).data, status=status.HTTP_200_OK)


# ===============================================================================
# OPERATIONS
# ===============================================================================


@extend_schema(
    operation_id="admin_reconcile_reservations",
    summary="Admin: Enqueue a stale-reservation sweep",
    request=ReconcileRequestSerializer,
    responses={
        202: OpenApiResponse(response=ReconcileQueuedResponseSerializer, description="Sweep queued"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid parameters"),
    },
    tags=["Admin - Operations"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsAdminRole])
def reconcile_reservations(request):
    serializer = ReconcileRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    params = serializer.validated_data
    task = release_stale_reservations_task.delay(
        threshold_minutes=params.get("threshold_minutes"),
        dry_run=params["dry_run"],
        batch_size=params.get("batch_size"),
    )
    logger.info(f"Admin {request.user.pk} queued stale reservation sweep {task.id} ({params})")
    return Response({"task_id": str(task.id), "status": "queued"}, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    operation_id="admin_ledger_audit",
    summary="Admin: Audit seller ledgers",
    description="""
    **What it returns:**
    - Sellers whose stored totals differ from a replay of their ledger
    - Paid orders with no ledger credit, and their total
    - Orders flagged as credited that have no sale entry
    """,
    parameters=[OpenApiParameter(name="seller_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY)],
    responses={200: OpenApiResponse(description="Audit report")},
    tags=["Admin - Operations"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated, IsAdminRole])
def ledger_audit(request):
    seller_id = request.query_params.get("seller_id")
    if seller_id:
        try:
            seller_id = uuid.UUID(seller_id)
        except ValueError:
            return Response(
                {"error": "validation_error", "detail": "seller_id must be a UUID"}, status=status.HTTP_400_BAD_REQUEST
            )

    result = container.ledger_service().audit(seller_id or None)
    if not result.ok:
        return error_response(result)
    return Response(result.value, status=status.HTTP_200_OK)
