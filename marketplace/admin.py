from django.contrib import admin
from django.utils.html import format_html

from .models import Cart, CartItem, Order, PaymentRequest, Product


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    fields = ("product", "quantity", "added_at")
    readonly_fields = ("added_at",)


class PaymentRequestInline(admin.TabularInline):
    model = PaymentRequest
    extra = 0
    fields = ("correlation_id", "phone_number", "amount", "created_at")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "seller", "price", "status", "status_changed_at", "is_active", "created_at")
    list_filter = ("status", "is_active", "condition", "created_at")
    search_fields = ("name", "description", "seller__username")
    # Availability moves only through the inventory service
    readonly_fields = ("id", "status", "status_changed_at", "created_at", "updated_at")

    fieldsets = (
        ("Basic Information", {"fields": ("id", "name", "description", "condition")}),
        ("Seller & Pricing", {"fields": ("seller", "price")}),
        ("Availability", {"fields": ("is_active", "status", "status_changed_at")}),
        ("Timestamps", {"fields": ("created_at", "updated_at"), "classes": ("collapse",)}),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("seller")


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("user", "item_count", "updated_at")
    search_fields = ("user__username", "user__email")
    inlines = [CartItemInline]

    def item_count(self, obj):
        return obj.items.count()

    item_count.short_description = "Items"


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Orders are read-only here; status changes go through the order service."""

    list_display = (
        "order_number",
        "buyer",
        "seller",
        "total_price",
        "status_badge",
        "payment_status",
        "seller_paid",
        "uncredited",
        "payout_status",
        "created_at",
    )
    list_filter = ("status", "payment_status", "seller_paid", "payout_status", "created_at")
    search_fields = (
        "order_number",
        "checkout_session_id",
        "payment_correlation_id",
        "mpesa_receipt_number",
        "buyer__username",
        "seller__username",
    )
    readonly_fields = [field.name for field in Order._meta.fields]
    inlines = [PaymentRequestInline]

    fieldsets = (
        ("Order", {"fields": ("id", "order_number", "buyer", "seller", "product", "product_name")}),
        ("Pricing", {"fields": ("quantity", "unit_price", "total_price")}),
        ("Status", {"fields": ("status", "payment_status", "cancellation_reason", "cancelled_by")}),
        (
            "Payment",
            {
                "fields": (
                    "checkout_session_id",
                    "payment_correlation_id",
                    "mpesa_phone_number",
                    "mpesa_receipt_number",
                    "paid_at",
                )
            },
        ),
        ("Seller ledger", {"fields": ("seller_paid", "seller_paid_at", "ledger_error")}),
        ("Payout", {"fields": ("payout_status", "payout_at", "payout_by", "payout_notes")}),
        ("Delivery", {"fields": ("shipping_address", "notes")}),
        (
            "Timestamps",
            {
                "fields": (
                    "created_at",
                    "updated_at",
                    "confirmed_at",
                    "shipped_at",
                    "delivered_at",
                    "cancelled_at",
                ),
                "classes": ("collapse",),
            },
        ),
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        colors = {
            "pending": "orange",
            "confirmed": "blue",
            "shipped": "purple",
            "delivered": "green",
            "cancelled": "red",
            "refunded": "gray",
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>', colors.get(obj.status, "black"), obj.status
        )

    status_badge.short_description = "Status"

    def uncredited(self, obj):
        return obj.is_paid_but_uncredited

    uncredited.boolean = True
    uncredited.short_description = "Paid, not credited"
