import uuid

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

User = get_user_model()


def validate_whole_shillings(value):
    """M-Pesa charges whole shillings only."""
    if value is not None and value != value.to_integral_value():
        raise ValidationError("Price must be a whole number of shillings.", code="fractional_price")


class ProductStatus:
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class Product(models.Model):
    STATUS_CHOICES = [
        (ProductStatus.AVAILABLE, "Available"),
        (ProductStatus.RESERVED, "Reserved"),  # Held by a pending checkout
        (ProductStatus.SOLD, "Sold"),
    ]

    CONDITION_CHOICES = [
        ("new", "New"),
        ("like_new", "Like New"),
        ("good", "Good"),
        ("fair", "Fair"),
        ("poor", "Poor"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    condition = models.CharField(max_length=20, choices=CONDITION_CHOICES, default="good")

    seller = models.ForeignKey(User, on_delete=models.CASCADE, related_name="products")
    price = models.DecimalField(
        max_digits=10, decimal_places=2, validators=[MinValueValidator(1), validate_whole_shillings]
    )

    # Availability is owned by InventoryService; save() never writes these two columns
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ProductStatus.AVAILABLE)
    status_changed_at = models.DateTimeField(auto_now_add=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    INVENTORY_FIELDS = ("status", "status_changed_at")

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"
        indexes = [
            models.Index(fields=["seller", "status"]),
            models.Index(fields=["status", "status_changed_at"]),  # Stale reservation sweep
            models.Index(fields=["is_active", "status", "-created_at"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            self._check_price_unchanged()
            update_fields = kwargs.get("update_fields")
            if update_fields is None:
                update_fields = [f.name for f in self._meta.concrete_fields if not f.primary_key]
            kwargs["update_fields"] = [f for f in update_fields if f not in self.INVENTORY_FIELDS]
        super().save(*args, **kwargs)

    def _check_price_unchanged(self):
        previous = type(self).objects.filter(pk=self.pk).values_list("price", flat=True).first()
        if previous is not None and previous != self.price and self.orders.exists():
            raise ValidationError({"price": "Price cannot change once the product has been ordered."})

    @property
    def is_available(self) -> bool:
        return self.is_active and self.status == ProductStatus.AVAILABLE

    def __str__(self):
        return self.name
