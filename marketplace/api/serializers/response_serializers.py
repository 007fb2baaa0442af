"""
Response serializers for API documentation (drf-spectacular).
"""

from rest_framework import serializers

from marketplace.ordering.api.serializers.order_serializers import OrderSerializer, OrderSummarySerializer


class ErrorResponseSerializer(serializers.Serializer):
    """Standard error response"""

    error = serializers.CharField(help_text="Error code, e.g. invalid_transition")
    detail = serializers.CharField(help_text="Human readable message")
    data = serializers.DictField(required=False, help_text="Structured context, e.g. skipped cart items")


# ==============================================================================
# Cart
# ==============================================================================


class CartItemResponseSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    product_name = serializers.CharField()
    seller_id = serializers.UUIDField()
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    available = serializers.BooleanField()


class CartResponseSerializer(serializers.Serializer):
    items = CartItemResponseSerializer(many=True)
    total_items = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)


# ==============================================================================
# Checkout
# ==============================================================================


class SkippedItemSerializer(serializers.Serializer):
    product_id = serializers.CharField()
    title = serializers.CharField()
    reason = serializers.ChoiceField(choices=["unavailable", "own_product", "reservation_conflict"])


class CheckoutResponseSerializer(serializers.Serializer):
    checkout_session_id = serializers.CharField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    order_ids = serializers.ListField(child=serializers.CharField())
    orders = OrderSerializer(many=True)
    seller_totals = serializers.DictField(child=serializers.DecimalField(max_digits=12, decimal_places=2))
    skipped = SkippedItemSerializer(many=True)
    payment_correlation_id = serializers.CharField(allow_null=True)
    customer_message = serializers.CharField(allow_blank=True)
    test_mode = serializers.BooleanField()


class PaymentRetryResponseSerializer(serializers.Serializer):
    checkout_session_id = serializers.CharField()
    order_ids = serializers.ListField(child=serializers.CharField())
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_correlation_id = serializers.CharField()
    customer_message = serializers.CharField(allow_blank=True)


class CheckoutStatusResponseSerializer(serializers.Serializer):
    checkout_session_id = serializers.CharField()
    state = serializers.ChoiceField(choices=["pending", "paid", "failed", "partial"])
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_correlation_id = serializers.CharField(allow_null=True)
    orders = OrderSummarySerializer(many=True)


# ==============================================================================
# Orders
# ==============================================================================


class OrderListResponseSerializer(serializers.Serializer):
    results = OrderSerializer(many=True)
    count = serializers.IntegerField()
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    num_pages = serializers.IntegerField()


class PaymentStatusResponseSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    order_number = serializers.CharField()
    status = serializers.CharField()
    payment_status = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    mpesa_phone_number = serializers.CharField(allow_blank=True)
    mpesa_receipt_number = serializers.CharField(allow_blank=True)
    payment_correlation_id = serializers.CharField(allow_null=True)
    paid_at = serializers.DateTimeField(allow_null=True)
