from rest_framework import serializers

from marketplace.ordering.domain.models.order import Order
from payment_system.domain.models.seller_balance import LedgerEntry


# ==============================================================================
# Seller ledger
# ==============================================================================


class SellerBalanceResponseSerializer(serializers.Serializer):
    seller_id = serializers.CharField()
    current_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_earnings = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_orders = serializers.IntegerField()
    pending_withdrawals = serializers.DecimalField(max_digits=12, decimal_places=2)
    withdrawn_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    updated_at = serializers.DateTimeField(allow_null=True)


class LedgerEntrySerializer(serializers.ModelSerializer):
    order_id = serializers.UUIDField(source="order.id", read_only=True, allow_null=True)
    order_number = serializers.CharField(source="order.order_number", read_only=True, allow_null=True)

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "entry_type",
            "amount",
            "status",
            "description",
            "order_id",
            "order_number",
            "metadata",
            "created_at",
            "settled_at",
        ]
        read_only_fields = fields


class LedgerHistoryResponseSerializer(serializers.Serializer):
    results = LedgerEntrySerializer(many=True)
    count = serializers.IntegerField()
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    num_pages = serializers.IntegerField()


# ==============================================================================
# Admin payouts
# ==============================================================================


class PayableOrderSerializer(serializers.ModelSerializer):
    seller_username = serializers.CharField(source="seller.username", read_only=True)
    buyer_username = serializers.CharField(source="buyer.username", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "seller",
            "seller_username",
            "buyer_username",
            "product_name",
            "total_price",
            "status",
            "payment_status",
            "mpesa_receipt_number",
            "paid_at",
            "seller_paid",
            "ledger_error",
            "payout_status",
            "created_at",
        ]
        read_only_fields = fields


class SellerPayoutTotalSerializer(serializers.Serializer):
    seller_id = serializers.CharField()
    username = serializers.CharField()
    orders = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class PayoutLedgerResponseSerializer(serializers.Serializer):
    results = PayableOrderSerializer(many=True)
    count = serializers.IntegerField()
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    num_pages = serializers.IntegerField()
    pending_payout_total = serializers.DecimalField(max_digits=14, decimal_places=2)
    sellers = SellerPayoutTotalSerializer(many=True)


class SettledOrderResponseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = ["id", "order_number", "seller", "total_price", "payout_status", "payout_at", "payout_by", "payout_notes"]
        read_only_fields = fields


class SellerPayoutResponseSerializer(serializers.Serializer):
    seller_id = serializers.CharField()
    paid_order_ids = serializers.ListField(child=serializers.CharField())
    skipped = serializers.ListField(child=serializers.DictField())
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2)


# ==============================================================================
# Callback / operations
# ==============================================================================


class CallbackAckSerializer(serializers.Serializer):
    ResultCode = serializers.IntegerField()
    ResultDesc = serializers.CharField()


class ReconcileQueuedResponseSerializer(serializers.Serializer):
    task_id = serializers.CharField()
    status = serializers.CharField()


class ErrorResponseSerializer(serializers.Serializer):
    error = serializers.CharField()
    detail = serializers.CharField(required=False)
