"""
Payment Gateway Abstraction Layer
=================================

Provides a unified interface for the mobile-money gateway.
"""

from .factory import PaymentFactory
from .interface import (
    CallbackResult,
    GatewayError,
    InvalidCallbackPayload,
    InvalidPhoneNumber,
    PaymentException,
    PaymentGatewayInterface,
    PaymentInitiation,
    PaymentStatus,
    PaymentStatusResult,
)
from .mock_provider import MockGateway
from .mpesa_provider import MpesaGateway, parse_stk_callback
from .phone import normalize_phone

__all__ = [
    "PaymentGatewayInterface",
    "PaymentInitiation",
    "CallbackResult",
    "PaymentStatus",
    "PaymentStatusResult",
    "PaymentException",
    "GatewayError",
    "InvalidPhoneNumber",
    "InvalidCallbackPayload",
    "MpesaGateway",
    "MockGateway",
    "PaymentFactory",
    "normalize_phone",
    "parse_stk_callback",
]
