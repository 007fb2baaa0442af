from marketplace.cart.domain.models import Cart, CartItem
from marketplace.catalog.domain.models import Product, ProductStatus
from marketplace.ordering.domain.models import (
    CancellationReason,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    PaymentRequest,
    PayoutStatus,
)


__all__ = [
    "Product",
    "ProductStatus",
    "Cart",
    "CartItem",
    "Order",
    "OrderStatus",
    "OrderPaymentStatus",
    "CancellationReason",
    "PayoutStatus",
    "PaymentRequest",
]
