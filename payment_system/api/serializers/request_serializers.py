from decimal import Decimal

from rest_framework import serializers


class WithdrawalRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        help_text="Amount to withdraw from the available balance",
    )
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")


class WithdrawalSettleRequestSerializer(serializers.Serializer):
    reference = serializers.CharField(
        required=False, allow_blank=True, max_length=100, default="", help_text="Transfer reference (confirm)"
    )
    reason = serializers.CharField(
        required=False, allow_blank=True, max_length=500, default="", help_text="Rejection reason (reject)"
    )


class PayoutRequestSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")


class ReconcileRequestSerializer(serializers.Serializer):
    threshold_minutes = serializers.IntegerField(
        required=False, min_value=1, help_text="Staleness threshold (default RESERVATION_STALE_AFTER_MINUTES)"
    )
    batch_size = serializers.IntegerField(required=False, min_value=1, max_value=5000)
    dry_run = serializers.BooleanField(required=False, default=False)
