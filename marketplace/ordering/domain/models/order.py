import secrets
import time
import uuid

from django.contrib.auth import get_user_model
from django.db import models

from marketplace.catalog.domain.models.catalog import Product

User = get_user_model()


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    TERMINAL = (DELIVERED, CANCELLED, REFUNDED)
    # Orders that still hold (or have consumed) their product
    ACTIVE = (PENDING, CONFIRMED, SHIPPED)
    # Orders whose sale did not stand
    VOID = (CANCELLED, REFUNDED)


class OrderPaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class CancellationReason:
    BUYER_REQUEST = "buyer-request"
    SELLER_REQUEST = "seller-request"
    PAYMENT_FAILED = "payment-failed"
    PAYMENT_TIMEOUT = "payment-timeout"
    OTHER = "other"


class PayoutStatus:
    UNPAID = "unpaid"
    PAID = "paid"


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class Order(models.Model):
    """
    One order per cart line item. Orders created by the same checkout share a
    ``checkout_session_id``; the gateway's request id lands in
    ``payment_correlation_id`` and is how the payment callback finds them.
    """

    STATUS_CHOICES = [
        (OrderStatus.PENDING, "Pending"),
        (OrderStatus.CONFIRMED, "Confirmed"),
        (OrderStatus.SHIPPED, "Shipped"),
        (OrderStatus.DELIVERED, "Delivered"),
        (OrderStatus.CANCELLED, "Cancelled"),
        (OrderStatus.REFUNDED, "Refunded"),
    ]

    PAYMENT_STATUS_CHOICES = [
        (OrderPaymentStatus.PENDING, "Pending"),
        (OrderPaymentStatus.COMPLETED, "Completed"),
        (OrderPaymentStatus.FAILED, "Failed"),
        (OrderPaymentStatus.REFUNDED, "Refunded"),
    ]

    CANCELLATION_REASON_CHOICES = [
        (CancellationReason.BUYER_REQUEST, "Buyer request"),
        (CancellationReason.SELLER_REQUEST, "Seller request"),
        (CancellationReason.PAYMENT_FAILED, "Payment failed"),
        (CancellationReason.PAYMENT_TIMEOUT, "Payment timed out"),
        (CancellationReason.OTHER, "Other"),
    ]

    PAYOUT_STATUS_CHOICES = [
        (PayoutStatus.UNPAID, "Unpaid"),
        (PayoutStatus.PAID, "Paid"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=40, unique=True, default=generate_order_number, editable=False)

    buyer = models.ForeignKey(User, on_delete=models.PROTECT, related_name="orders")
    seller = models.ForeignKey(User, on_delete=models.PROTECT, related_name="sales")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="orders")

    # Snapshot at time of purchase
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=OrderStatus.PENDING)
    payment_status = models.CharField(
        max_length=20, choices=PAYMENT_STATUS_CHOICES, default=OrderPaymentStatus.PENDING
    )

    # Correlation
    checkout_session_id = models.CharField(max_length=64, db_index=True)
    payment_correlation_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)

    # Delivery
    shipping_address = models.JSONField(default=dict)
    notes = models.TextField(blank=True)

    # Payment details
    mpesa_phone_number = models.CharField(max_length=20, blank=True)
    mpesa_receipt_number = models.CharField(max_length=50, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Ledger guard: set in the same transaction that writes the sale entry
    seller_paid = models.BooleanField(default=False)
    seller_paid_at = models.DateTimeField(null=True, blank=True)
    # Paid but the ledger credit failed; cleared only by an operator
    ledger_error = models.TextField(blank=True)

    # Admin payout settlement
    payout_status = models.CharField(max_length=10, choices=PAYOUT_STATUS_CHOICES, default=PayoutStatus.UNPAID)
    payout_at = models.DateTimeField(null=True, blank=True)
    payout_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    payout_notes = models.TextField(blank=True)

    # Lifecycle timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="cancelled_orders"
    )
    cancellation_reason = models.CharField(max_length=20, choices=CANCELLATION_REASON_CHOICES, blank=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"
        indexes = [
            models.Index(fields=["seller", "status"]),
            models.Index(fields=["buyer", "-created_at"]),
            models.Index(fields=["product", "status"]),
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["payment_status", "payout_status"]),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.TERMINAL

    @property
    def is_paid_but_uncredited(self) -> bool:
        return self.payment_status == OrderPaymentStatus.COMPLETED and not self.seller_paid

    def __str__(self):
        return f"Order {self.order_number}"


class PaymentRequest(models.Model):
    """
    One STK push sent for an order.

    A buyer may ask for a fresh prompt while an older one is still on their
    phone; the older correlation id stays here so a late success for it still
    finds the order.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="payment_requests")
    correlation_id = models.CharField(max_length=100, db_index=True)
    phone_number = models.CharField(max_length=20)
    # Whole charge of the prompt, shared by every order of the checkout
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"
        constraints = [
            models.UniqueConstraint(fields=["order", "correlation_id"], name="unique_payment_request_per_order"),
        ]

    def __str__(self):
        return f"{self.correlation_id} for order {self.order_id}"
