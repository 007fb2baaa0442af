"""
Service Container
=================

Process-wide registry for the payment gateway and the domain services built
on it. Services are created on first use and shared, so the checkout, callback
and reconciler flows all see the same inventory and ledger instances.

Usage:
    from infrastructure.container import container

    result = container.checkout_service().checkout(buyer, address, phone)
"""

import logging
from typing import Callable, Optional

from .events import EventBus, get_event_bus
from .payments import PaymentFactory, PaymentGatewayInterface

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Singleton holding lazily built services."""

    _instance: Optional["ServiceContainer"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._payment = None
            cls._instance._services = {}
        return cls._instance

    def _cached(self, name: str, build: Callable):
        if name not in self._services:
            self._services[name] = build()
            logger.debug(f"Created {type(self._services[name]).__name__}")
        return self._services[name]

    def payment(self, backend: Optional[str] = None) -> PaymentGatewayInterface:
        """Gateway for ``backend`` ('mpesa' or 'mock'); the configured one when omitted."""
        if self._payment is None or backend is not None:
            self._payment = PaymentFactory.create(backend)
        return self._payment

    def event_bus(self) -> EventBus:
        return get_event_bus()

    def inventory_service(self):
        from marketplace.cart.domain.services.inventory_service import InventoryService

        return self._cached("inventory", InventoryService)

    def ledger_service(self):
        from payment_system.domain.services.ledger_service import LedgerService

        return self._cached("ledger", LedgerService)

    def order_service(self):
        from marketplace.ordering.domain.services.order_service import OrderService

        return self._cached(
            "order",
            lambda: OrderService(inventory_service=self.inventory_service(), ledger_service=self.ledger_service()),
        )

    def checkout_service(self):
        from marketplace.ordering.domain.services.checkout_service import CheckoutService

        # Gateway is looked up on every checkout
        return self._cached(
            "checkout",
            lambda: CheckoutService(
                inventory_service=self.inventory_service(),
                ledger_service=self.ledger_service(),
                gateway_provider=self.payment,
            ),
        )

    def callback_service(self):
        from payment_system.domain.services.callback_service import PaymentCallbackService

        return self._cached(
            "callback",
            lambda: PaymentCallbackService(
                inventory_service=self.inventory_service(),
                ledger_service=self.ledger_service(),
                order_service=self.order_service(),
            ),
        )

    def payout_service(self):
        from payment_system.domain.services.payout_service import PayoutService

        return self._cached("payout", lambda: PayoutService(ledger_service=self.ledger_service()))

    def reconciliation_service(self):
        from payment_system.domain.services.reconciliation_service import ReconciliationService

        return self._cached(
            "reconciliation",
            lambda: ReconciliationService(
                inventory_service=self.inventory_service(), order_service=self.order_service()
            ),
        )

    def reset(self):
        """Forget every cached gateway and service."""
        self._payment = None
        self._services = {}

    def configure_for_testing(self):
        self.reset()
        self._payment = PaymentFactory.create("mock")


container = ServiceContainer()


def get_payment_gateway() -> PaymentGatewayInterface:
    return container.payment()
