from decimal import Decimal

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from marketplace.api.serializers import CartResponseSerializer
from marketplace.cart.domain.models.cart import CartItem


class CartViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _cart_payload(self, user) -> dict:
        items = list(CartItem.objects.filter(cart__user=user).select_related("product").order_by("added_at"))
        return {
            "items": [
                {
                    "product_id": item.product_id,
                    "product_name": item.product.name,
                    "seller_id": item.product.seller_id,
                    "unit_price": item.product.price,
                    "quantity": item.quantity,
                    "line_total": item.line_total,
                    "available": item.is_purchasable_by(user),
                }
                for item in items
            ],
            "total_items": sum(item.quantity for item in items),
            "total_amount": sum((item.line_total for item in items), Decimal("0")),
        }

    @extend_schema(
        operation_id="cart_get",
        summary="Get user's shopping cart",
        description="""
        **What it returns:**
        - Cart items with current price and whether each can still be checked out
        - Item count and cart total
        """,
        responses={200: OpenApiResponse(response=CartResponseSerializer, description="Cart retrieved successfully")},
        tags=["Marketplace - Cart"],
    )
    def list(self, request):
        return Response(CartResponseSerializer(self._cart_payload(request.user)).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="cart_clear",
        summary="Remove every item from the cart",
        request=None,
        responses={200: OpenApiResponse(response=CartResponseSerializer, description="Cart cleared")},
        tags=["Marketplace - Cart"],
    )
    @action(detail=False, methods=["post"])
    def clear(self, request):
        CartItem.objects.filter(cart__user=request.user).delete()
        return Response(CartResponseSerializer(self._cart_payload(request.user)).data, status=status.HTTP_200_OK)
