from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from marketplace.api.serializers import (
    CheckoutResponseSerializer,
    CheckoutStatusResponseSerializer,
    ErrorResponseSerializer,
    OrderListResponseSerializer,
    PaymentRetryResponseSerializer,
    PaymentStatusResponseSerializer,
)
from marketplace.ordering.api.serializers.order_serializers import (
    CancelOrderRequestSerializer,
    CheckoutRequestSerializer,
    OrderSerializer,
    OrderStatusUpdateRequestSerializer,
    PaymentRetryRequestSerializer,
)
from marketplace.ordering.domain.services.checkout_service import CheckoutService
from marketplace.ordering.domain.services.order_service import OrderService
from utils.api_responses import error_response


def _invalid(serializer) -> Response:
    return Response({"error": "validation_error", "detail": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)


class OrderViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def get_service(self) -> OrderService:
        return container.order_service()

    def get_checkout_service(self) -> CheckoutService:
        return container.checkout_service()

    @extend_schema(
        operation_id="orders_list",
        summary="List the user's orders",
        description="""
        **What it receives:**
        - Authentication token
        - `as_role`: `buyer` (default) or `seller`
        - Optional status filter and pagination parameters

        **What it returns:**
        - Paginated list of orders, newest first
        """,
        parameters=[
            OpenApiParameter(name="as_role", type=str, description="buyer | seller"),
            OpenApiParameter(name="status", type=str, description="Filter by order status"),
            OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
            OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
        ],
        responses={
            200: OpenApiResponse(response=OrderListResponseSerializer, description="Orders retrieved successfully"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid query parameters"),
        },
        tags=["Marketplace - Orders"],
    )
    def list(self, request):
        try:
            page = int(request.query_params.get("page", 1))
            page_size = int(request.query_params.get("page_size", 20))
        except ValueError:
            return Response(
                {"error": "validation_error", "detail": "page and page_size must be integers"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = self.get_service().list_orders(
            request.user,
            request.query_params.get("as_role", "buyer"),
            request.query_params.get("status"),
            page,
            page_size,
        )
        if not result.ok:
            return error_response(result)

        response_data = dict(result.value)
        response_data["results"] = OrderSerializer(result.value["results"], many=True).data
        return Response(response_data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_retrieve",
        summary="Get order details",
        description="Visible to the order's buyer, its seller and admins.",
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Order retrieved successfully"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Orders"],
    )
    def retrieve(self, request, pk=None):
        result = self.get_service().get_order(pk, request.user)
        if not result.ok:
            return error_response(result)
        return Response(OrderSerializer(result.value).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_checkout",
        summary="Check out the cart",
        description="""
        **What it receives:**
        - `shipping_address`: street and city required; building, room, landmarks optional
        - `phone_number`: M-Pesa number that receives the STK push
        - `notes` (optional)

        **What it does:**
        - Creates one pending order per purchasable cart item and reserves each product
        - Clears the cart and asks the gateway to charge the grand total
        - Items that are unavailable or the buyer's own are skipped and reported

        **What it returns:**
        - Checkout session id, orders, per-seller totals, skipped items and the
          gateway correlation id; poll the checkout status until it settles
        """,
        request=CheckoutRequestSerializer,
        responses={
            201: OpenApiResponse(response=CheckoutResponseSerializer, description="Checkout created, payment requested"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Bad address/phone or nothing to buy"),
            502: OpenApiResponse(response=ErrorResponseSerializer, description="Payment gateway unavailable"),
        },
        tags=["Marketplace - Orders"],
    )
    def create(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid(serializer)

        data = serializer.validated_data
        result = self.get_checkout_service().checkout(
            request.user,
            dict(data["shipping_address"]),
            data["phone_number"],
            notes=data["notes"],
            test_mode_requested=data["test_mode"],
        )
        if not result.ok:
            return error_response(result)

        return Response(CheckoutResponseSerializer(result.value).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="orders_update_status",
        summary="Move an order through its lifecycle",
        description="""
        **Transitions:** pending -> confirmed | cancelled, confirmed -> shipped | cancelled,
        shipped -> delivered | cancelled.

        Sellers (or admins) drive forward transitions; buyers may only cancel a pending order.
        """,
        request=OrderStatusUpdateRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Status updated"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not allowed for this actor"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
            409: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid transition"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = OrderStatusUpdateRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid(serializer)

        result = self.get_service().update_status(
            pk, request.user, serializer.validated_data["status"], reason=serializer.validated_data.get("reason", "")
        )
        if not result.ok:
            return error_response(result)
        return Response(OrderSerializer(result.value).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_cancel",
        summary="Cancel an order",
        description="Cancelling releases the reserved product in the same transaction.",
        request=CancelOrderRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Order cancelled"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not allowed to cancel"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
            409: OpenApiResponse(response=ErrorResponseSerializer, description="Order can no longer be cancelled"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelOrderRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid(serializer)

        result = self.get_service().cancel_order(pk, request.user, reason=serializer.validated_data.get("reason", ""))
        if not result.ok:
            return error_response(result)
        return Response(OrderSerializer(result.value).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_pay",
        summary="Send a new M-Pesa prompt for an unpaid order",
        description="""
        **What it receives:**
        - `phone_number`: M-Pesa number that receives the new STK push

        **What it does:**
        - Charges every still-pending order of the same checkout in one prompt
        - The earlier prompt stays valid; whichever is paid first settles the orders

        **What it returns:**
        - The new gateway correlation id and the amount requested
        """,
        request=PaymentRetryRequestSerializer,
        responses={
            200: OpenApiResponse(response=PaymentRetryResponseSerializer, description="Payment prompt sent"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid phone number or amount"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the buyer"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
            409: OpenApiResponse(response=ErrorResponseSerializer, description="Order already paid or closed"),
            502: OpenApiResponse(response=ErrorResponseSerializer, description="Payment gateway unavailable"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        serializer = PaymentRetryRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid(serializer)

        result = self.get_checkout_service().retry_payment(pk, request.user, serializer.validated_data["phone_number"])
        if not result.ok:
            return error_response(result)
        return Response(PaymentRetryResponseSerializer(result.value).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_payment_status",
        summary="Get an order's payment status",
        responses={
            200: OpenApiResponse(response=PaymentStatusResponseSerializer, description="Payment status"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["get"], url_path="payment-status")
    def payment_status(self, request, pk=None):
        result = self.get_service().payment_status(pk, request.user)
        if not result.ok:
            return error_response(result)
        return Response(PaymentStatusResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="checkout_status",
    summary="Poll a checkout",
    description="""
    **What it returns:**
    - Every order of the checkout with its status and payment status
    - Grand total and the overall state: `pending`, `paid`, `failed` or `partial`
    """,
    responses={
        200: OpenApiResponse(response=CheckoutStatusResponseSerializer, description="Checkout status"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Checkout not found"),
    },
    tags=["Marketplace - Orders"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def checkout_status(request, checkout_session_id):
    result = container.order_service().checkout_status(checkout_session_id, request.user)
    if not result.ok:
        return error_response(result)

    return Response(CheckoutStatusResponseSerializer(result.value).data, status=status.HTTP_200_OK)
