from .order import CancellationReason, Order, OrderPaymentStatus, OrderStatus, PaymentRequest, PayoutStatus


__all__ = [
    "Order",
    "OrderStatus",
    "OrderPaymentStatus",
    "CancellationReason",
    "PayoutStatus",
    "PaymentRequest",
]
