"""
Payment Gateway Factory
=======================

Factory pattern for creating payment gateway instances based on configuration.
"""

import logging
from typing import Literal

from django.conf import settings

from .interface import PaymentGatewayInterface
from .mock_provider import MockGateway
from .mpesa_provider import MpesaGateway

logger = logging.getLogger(__name__)

PaymentBackend = Literal["mpesa", "mock"]


class PaymentFactory:
    """
    Factory for creating payment gateway instances.

    Usage:
        # In settings.py
        INFRASTRUCTURE = {"PAYMENT_PROVIDER": "mpesa"}

        # In your code
        gateway = PaymentFactory.create()
    """

    @staticmethod
    def create(backend: PaymentBackend | None = None) -> PaymentGatewayInterface:
        """
        Create a payment gateway instance.

        Args:
            backend: 'mpesa' or 'mock'. If None, reads INFRASTRUCTURE["PAYMENT_PROVIDER"]

        Raises:
            ValueError: If backend type is invalid
        """
        backend_type = backend or getattr(settings, "INFRASTRUCTURE", {}).get("PAYMENT_PROVIDER", "mpesa")

        logger.info(f"Creating payment gateway: {backend_type}")

        if backend_type == "mpesa":
            return MpesaGateway()
        if backend_type == "mock":
            return MockGateway()
        raise ValueError(f"Invalid payment provider: {backend_type}. Supported: 'mpesa', 'mock'")
