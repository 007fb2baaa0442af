from rest_framework import serializers

from marketplace.ordering.domain.models.order import Order


class OrderPartySerializer(serializers.Serializer):
    id = serializers.UUIDField()
    username = serializers.CharField()


class OrderSerializer(serializers.ModelSerializer):
    buyer = OrderPartySerializer(read_only=True)
    seller = OrderPartySerializer(read_only=True)
    product_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "buyer",
            "seller",
            "product_id",
            "product_name",
            "quantity",
            "unit_price",
            "total_price",
            "status",
            "payment_status",
            "checkout_session_id",
            "payment_correlation_id",
            "shipping_address",
            "notes",
            "mpesa_receipt_number",
            "paid_at",
            "payout_status",
            "created_at",
            "updated_at",
            "confirmed_at",
            "shipped_at",
            "delivered_at",
            "cancelled_at",
            "cancellation_reason",
        ]
        read_only_fields = fields


class OrderSummarySerializer(serializers.ModelSerializer):
    """Per-order line in a checkout status answer"""

    class Meta:
        model = Order
        fields = ["id", "order_number", "product_name", "total_price", "status", "payment_status", "seller"]
        read_only_fields = fields


class ShippingAddressSerializer(serializers.Serializer):
    street = serializers.CharField(max_length=200)
    city = serializers.CharField(max_length=100)
    building = serializers.CharField(max_length=100, required=False, allow_blank=True)
    room = serializers.CharField(max_length=50, required=False, allow_blank=True)
    landmarks = serializers.CharField(max_length=300, required=False, allow_blank=True)


class CheckoutRequestSerializer(serializers.Serializer):
    shipping_address = ShippingAddressSerializer()
    phone_number = serializers.CharField(max_length=20, help_text="M-Pesa number, e.g. 0712345678 or 254712345678")
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")
    test_mode = serializers.BooleanField(
        required=False, default=False, help_text="Ignored unless the server runs with PAYMENT_TEST_MODE"
    )


class OrderStatusUpdateRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)
    reason = serializers.ChoiceField(choices=Order.CANCELLATION_REASON_CHOICES, required=False, allow_blank=True)


class CancelOrderRequestSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=Order.CANCELLATION_REASON_CHOICES, required=False, allow_blank=True)


class PaymentRetryRequestSerializer(serializers.Serializer):
    phone_number = serializers.CharField(max_length=20, help_text="M-Pesa number that receives the new prompt")
