import logging

from infrastructure.events import get_event_bus
from payment_system.infra.observability.metrics import refunds_required_total


logger = logging.getLogger(__name__)


def handle_order_cancelled(event_data):
    """
    Handle order.cancelled event.
    A cancelled order that was already paid needs a manual M-Pesa reversal.
    """
    payload = event_data.get("payload", {})
    if payload.get("payment_status") != "completed":
        return

    refunds_required_total.labels(source="cancellation").inc()
    logger.warning(
        f"[Payment Listener] Order {payload.get('order_id')} cancelled after payment "
        f"(reason: {payload.get('reason')}); refund must be issued manually"
    )


def handle_payment_failed(event_data):
    payload = event_data.get("payload", {})
    logger.info(
        f"[Payment Listener] Payment {payload.get('correlation_id')} failed for orders "
        f"{payload.get('order_ids')}: {payload.get('reason')}"
    )


def register_payment_listeners():
    """Register all payment system event listeners."""
    event_bus = get_event_bus()
    event_bus.subscribe("order.cancelled", handle_order_cancelled)
    event_bus.subscribe("payment.failed", handle_payment_failed)
    logger.info("Payment system event listeners registered")
