from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import LedgerEntry, SellerBalance


class LedgerEntryInline(admin.TabularInline):
    model = LedgerEntry
    extra = 0
    can_delete = False
    fields = ("entry_type", "amount", "status", "order", "description", "created_at", "settled_at")
    readonly_fields = fields
    ordering = ("-created_at",)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SellerBalance)
class SellerBalanceAdmin(admin.ModelAdmin):
    """Read-only view of seller balances; money moves only through the ledger service"""

    list_display = [
        "seller",
        "current_balance",
        "total_earnings",
        "total_orders",
        "pending_withdrawals",
        "withdrawn_total",
        "updated_at",
    ]
    search_fields = ["seller__username", "seller__email"]
    readonly_fields = [
        "id",
        "seller",
        "current_balance",
        "total_earnings",
        "total_orders",
        "pending_withdrawals",
        "withdrawn_total",
        "created_at",
        "updated_at",
    ]
    inlines = [LedgerEntryInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = ["id_short", "seller_link", "entry_type", "amount", "status_badge", "order", "created_at"]
    list_filter = ["entry_type", "status", "created_at"]
    search_fields = ["idempotency_key", "order__order_number", "balance__seller__username", "description"]
    readonly_fields = [
        "id",
        "balance",
        "entry_type",
        "amount",
        "order",
        "status",
        "description",
        "idempotency_key",
        "metadata",
        "created_at",
        "settled_at",
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def id_short(self, obj):
        return str(obj.id)[:8] + "..."

    id_short.short_description = "ID"

    def seller_link(self, obj):
        balance_url = reverse("admin:payment_system_sellerbalance_change", args=[obj.balance_id])
        return format_html('<a href="{}">{}</a>', balance_url, obj.balance.seller)

    seller_link.short_description = "Seller"

    def status_badge(self, obj):
        colors = {
            LedgerEntry.STATUS_AVAILABLE: "green",
            LedgerEntry.STATUS_PENDING: "orange",
            LedgerEntry.STATUS_COMPLETED: "blue",
            LedgerEntry.STATUS_FAILED: "red",
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>', colors.get(obj.status, "black"), obj.status
        )

    status_badge.short_description = "Status"
