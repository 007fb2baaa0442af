"""
Marketplace Service Layer

Shared primitives for the domain services. The services themselves live with
their bounded context and are imported from there:

- marketplace.cart.domain.services.inventory_service.InventoryService
- marketplace.ordering.domain.services.order_service.OrderService
- marketplace.ordering.domain.services.checkout_service.CheckoutService

Usage:
    from infrastructure.container import container

    result = container.checkout_service().checkout(buyer, address, phone)
    if result.ok:
        session_id = result.value["checkout_session_id"]
    else:
        error = result.error
"""

from .base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    # Helper functions
    "service_ok",
    "service_err",
    # Error codes
    "ErrorCodes",
]
