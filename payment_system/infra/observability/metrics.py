from prometheus_client import Counter, Gauge, Histogram


# Callback Metrics
payment_callbacks_total = Counter(
    "payment_callbacks_total", "Gateway callbacks received by outcome", ["outcome"]
)
payment_callback_orders_total = Counter(
    "payment_callback_orders_total", "Per-order results of callback processing", ["result"]
)
payment_volume_total = Counter("payment_volume_total", "Total payment volume confirmed (KES)", ["status"])

# Ledger Metrics
ledger_credits_total = Counter("ledger_credits_total", "Seller ledger credit attempts", ["result"])
paid_but_uncredited_total = Counter(
    "ledger_paid_but_uncredited_total", "Paid orders whose ledger credit failed and needs an operator"
)
payout_volume_total = Counter("payout_volume_total", "Total payout volume settled (KES)", ["status"])
withdrawals_total = Counter("ledger_withdrawals_total", "Seller withdrawal requests", ["status"])

# Reconciler Metrics
reservations_released_total = Counter(
    "reconciler_reservations_released_total", "Stale reservations released by the reconciler"
)
reconciler_orders_expired_total = Counter(
    "reconciler_orders_expired_total", "Pending orders cancelled for payment timeout"
)
reconciler_errors_total = Counter("reconciler_errors_total", "Per-record reconciler failures")
reconciler_run_seconds = Histogram(
    "reconciler_run_seconds", "Duration of one reconciler sweep", buckets=[0.1, 0.5, 1, 5, 15, 60, float("inf")]
)
stale_reservations_found = Gauge("reconciler_stale_reservations_found", "Stale reservations seen in the last sweep")
refunds_required_total = Counter(
    "payment_refunds_required_total", "Payments that must be reversed by hand", ["source"]
)
