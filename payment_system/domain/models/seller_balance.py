import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import models

from payment_system.domain.exceptions import LedgerImmutableError


User = get_user_model()


class SellerBalance(models.Model):
    """
    Running totals for a seller. Every column is derivable by replaying the
    seller's ledger entries; LedgerService keeps the two in step inside one
    transaction and ``audit`` reports any drift.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    seller = models.OneToOneField(User, on_delete=models.PROTECT, related_name="seller_balance")

    current_balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_orders = models.PositiveIntegerField(default=0)
    pending_withdrawals = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    withdrawn_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "payment_system"
        indexes = [models.Index(fields=["-current_balance"])]

    def __str__(self):
        return f"Balance for {self.seller}: {self.current_balance}"


class LedgerEntryQuerySet(models.QuerySet):
    """Entries are append-only: rows are never deleted and only settlement columns change."""

    def delete(self):
        raise LedgerImmutableError("Ledger entries cannot be deleted")

    def update(self, **kwargs):
        illegal = set(kwargs) - set(LedgerEntry.MUTABLE_FIELDS)
        if illegal:
            raise LedgerImmutableError(f"Ledger entry fields are immutable: {sorted(illegal)}")
        return super().update(**kwargs)


class LedgerEntry(models.Model):
    TYPE_SALE = "sale"
    TYPE_WITHDRAWAL = "withdrawal"
    TYPE_FEE = "fee"
    TYPE_ADJUSTMENT = "adjustment"

    STATUS_AVAILABLE = "available"
    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"

    TYPE_CHOICES = [
        (TYPE_SALE, "Sale"),
        (TYPE_WITHDRAWAL, "Withdrawal"),
        (TYPE_FEE, "Fee"),
        (TYPE_ADJUSTMENT, "Adjustment"),
    ]

    STATUS_CHOICES = [
        (STATUS_AVAILABLE, "Available"),  # Sale proceeds not yet paid out
        (STATUS_PENDING, "Pending"),  # Withdrawal awaiting confirmation
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    MUTABLE_FIELDS = ("status", "metadata", "settled_at")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    balance = models.ForeignKey(SellerBalance, on_delete=models.PROTECT, related_name="entries")
    entry_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    # Always positive except for adjustments, which carry their sign
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    order = models.ForeignKey(
        "marketplace.Order", on_delete=models.PROTECT, null=True, blank=True, related_name="ledger_entries"
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_AVAILABLE)
    description = models.CharField(max_length=255, blank=True)
    # e.g. "sale:<order id>"; written together with the effect it guards
    idempotency_key = models.CharField(max_length=100, unique=True, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    settled_at = models.DateTimeField(null=True, blank=True)

    objects = LedgerEntryQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        app_label = "payment_system"
        indexes = [
            models.Index(fields=["balance", "-created_at"]),
            models.Index(fields=["balance", "entry_type", "status"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or set(update_fields) - set(self.MUTABLE_FIELDS):
                raise LedgerImmutableError("Only status, metadata and settled_at may change on a ledger entry")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise LedgerImmutableError("Ledger entries cannot be deleted")

    def __str__(self):
        return f"{self.entry_type} {self.amount} ({self.status})"
