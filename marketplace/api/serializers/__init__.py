# Marketplace API Serializers

# Import response serializers for API documentation
from .response_serializers import (
    CartResponseSerializer,
    CheckoutResponseSerializer,
    CheckoutStatusResponseSerializer,
    ErrorResponseSerializer,
    OrderListResponseSerializer,
    PaymentRetryResponseSerializer,
    PaymentStatusResponseSerializer,
    SkippedItemSerializer,
)


__all__ = [
    "ErrorResponseSerializer",
    "CartResponseSerializer",
    "SkippedItemSerializer",
    "CheckoutResponseSerializer",
    "CheckoutStatusResponseSerializer",
    "OrderListResponseSerializer",
    "PaymentStatusResponseSerializer",
    "PaymentRetryResponseSerializer",
]
