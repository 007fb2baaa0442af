from django.urls import path

from payment_system.api.views import admin_views, callback_views, seller_views

app_name = "payment_system"

urlpatterns = [
    # Gateway webhook
    path("mpesa/callback/", callback_views.MpesaCallbackView.as_view(), name="mpesa_callback"),
    # Seller balance
    path("balance/", seller_views.seller_balance, name="seller_balance"),
    path("balance/transactions/", seller_views.seller_transactions, name="seller_transactions"),
    path("balance/withdraw/", seller_views.request_withdrawal, name="request_withdrawal"),
    # Admin endpoints
    path("admin/payouts/", admin_views.payout_ledger, name="admin_payout_ledger"),
    path("admin/payouts/orders/<uuid:order_id>/", admin_views.mark_order_paid_out, name="admin_mark_order_paid_out"),
    path(
        "admin/payouts/sellers/<uuid:seller_id>/", admin_views.mark_seller_paid_out, name="admin_mark_seller_paid_out"
    ),
    path(
        "admin/withdrawals/<uuid:entry_id>/confirm/", admin_views.confirm_withdrawal, name="admin_confirm_withdrawal"
    ),
    path("admin/withdrawals/<uuid:entry_id>/reject/", admin_views.reject_withdrawal, name="admin_reject_withdrawal"),
    path("admin/reconcile/", admin_views.reconcile_reservations, name="admin_reconcile"),
    path("admin/ledger-audit/", admin_views.ledger_audit, name="admin_ledger_audit"),
]
