from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.permissions import IsSeller
from payment_system.api.serializers.request_serializers import WithdrawalRequestSerializer
from payment_system.api.serializers.response_serializers import (
    ErrorResponseSerializer,
    LedgerEntrySerializer,
    LedgerHistoryResponseSerializer,
    SellerBalanceResponseSerializer,
)
from utils.api_responses import error_response


@extend_schema(
    operation_id="payments_seller_balance",
    summary="Get the seller's balance",
    description="""
    **What it returns:**
    - Available balance, lifetime earnings, credited order count
    - Amount held by pending withdrawals and total withdrawn
    """,
    responses={
        200: OpenApiResponse(response=SellerBalanceResponseSerializer, description="Balance retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Seller access required"),
    },
    tags=["Payments - Seller"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated, IsSeller])
def seller_balance(request):
    result = container.ledger_service().get_balance(request.user)
    if not result.ok:
        return error_response(result)
    return Response(SellerBalanceResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="payments_seller_transactions",
    summary="List the seller's ledger entries",
    parameters=[
        OpenApiParameter(name="type", type=str, description="sale | withdrawal | fee | adjustment"),
        OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
        OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
    ],
    responses={
        200: OpenApiResponse(response=LedgerHistoryResponseSerializer, description="Entries retrieved"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Unknown entry type"),
    },
    tags=["Payments - Seller"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated, IsSeller])
def seller_transactions(request):
    try:
        page = int(request.query_params.get("page", 1))
        page_size = int(request.query_params.get("page_size", 20))
    except ValueError:
        return Response(
            {"error": "validation_error", "detail": "page and page_size must be integers"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    result = container.ledger_service().transaction_history(
        request.user, request.query_params.get("type"), page, page_size
    )
    if not result.ok:
        return error_response(result)
    return Response(LedgerHistoryResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="payments_seller_withdraw",
    summary="Request a withdrawal",
    description="""
    **What it receives:**
    - `amount`: positive amount, at most the available balance
    - `notes` (optional)

    **What it returns:**
    - The pending withdrawal entry; an admin confirms or rejects it
    """,
    request=WithdrawalRequestSerializer,
    responses={
        201: OpenApiResponse(response=LedgerEntrySerializer, description="Withdrawal requested"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid amount"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Insufficient balance"),
    },
    tags=["Payments - Seller"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated, IsSeller])
def request_withdrawal(request):
    serializer = WithdrawalRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {"error": "validation_error", "detail": serializer.errors}, status=status.HTTP_400_BAD_REQUEST
        )

    result = container.ledger_service().request_withdrawal(
        request.user, serializer.validated_data["amount"], serializer.validated_data["notes"]
    )
    if not result.ok:
        return error_response(result)
    return Response(LedgerEntrySerializer(result.value).data, status=status.HTTP_201_CREATED)
