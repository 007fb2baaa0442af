from prometheus_client import Counter, Histogram


# Checkout Metrics
checkouts_total = Counter("marketplace_checkouts_total", "Checkout attempts by outcome", ["outcome"])
checkout_value = Histogram(
    "marketplace_checkout_value",
    "Checkout grand total distribution (KES)",
    buckets=[100, 500, 1000, 2000, 5000, 10000, 50000, float("inf")],
)
checkout_items_skipped_total = Counter(
    "marketplace_checkout_items_skipped_total", "Cart items skipped at checkout", ["reason"]
)

# Order Metrics
orders_placed_total = Counter("marketplace_orders_placed_total", "Orders created by checkout")
order_transitions_total = Counter(
    "marketplace_order_transitions_total", "Order status transitions", ["from_status", "to_status"]
)

# Inventory Metrics
reservation_conflicts_total = Counter(
    "marketplace_reservation_conflicts_total", "Reservation transitions rejected by compare-and-set", ["operation"]
)
