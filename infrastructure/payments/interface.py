"""
Payment Gateway Interface
=========================

Abstract base class defining the contract for the mobile-money gateway.

The gateway is asynchronous: ``initiate`` only tells us the provider accepted
the charge request. The outcome arrives later as a callback, which
``parse_callback`` turns into a ``CallbackResult``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class PaymentStatus(str, Enum):
    """Outcome of a charge as reported by the gateway."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PaymentInitiation:
    """
    The gateway's synchronous acceptance of a charge request.

    Attributes:
        correlation_id: Gateway request id (Daraja ``CheckoutRequestID``) used to
            match the asynchronous callback to orders
        merchant_request_id: Secondary gateway identifier
        amount: Whole-unit amount actually requested
        phone: Normalized MSISDN the prompt was sent to
        customer_message: Text the gateway suggests showing to the payer
    """

    correlation_id: str
    merchant_request_id: str
    amount: int
    phone: str
    customer_message: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CallbackResult:
    """
    A parsed asynchronous payment result.

    ``success`` is True only for result code 0. On success the receipt number,
    amount and confirmed phone are populated from the callback metadata.
    """

    correlation_id: str
    result_code: int
    result_desc: str
    merchant_request_id: str = ""
    receipt_number: Optional[str] = None
    amount: Optional[Decimal] = None
    phone: Optional[str] = None
    transaction_date: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result_code == 0


@dataclass
class PaymentStatusResult:
    """Result of an explicit status query for an initiated charge."""

    correlation_id: str
    status: PaymentStatus
    result_code: Optional[int] = None
    result_desc: str = ""


class PaymentException(Exception):
    """Base exception for payment operations."""

    pass


class GatewayError(PaymentException):
    """
    The gateway could not be reached, refused our credentials or rejected the
    request. ``retryable`` tells the caller whether repeating the same request
    later can succeed.
    """

    def __init__(self, message: str, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class InvalidPhoneNumber(PaymentException):
    """The payer phone number cannot be normalized to a valid MSISDN."""

    pass


class InvalidCallbackPayload(PaymentException):
    """A callback body is not shaped like a gateway result."""

    pass


class PaymentGatewayInterface(ABC):
    """
    Abstract interface for the mobile-money gateway.

    Concrete implementations:
        - MpesaGateway: Safaricom Daraja STK push
        - MockGateway: in-process stand-in for tests and local development
    """

    @abstractmethod
    def initiate(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        callback_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Request an asynchronous charge.

        Args:
            phone: Payer phone number in any accepted local or international format
            amount: Amount to charge in major currency units
            reference: Account reference shown to the payer
            callback_url: Where the gateway delivers the result (defaults to settings)
            description: Transaction description

        Returns:
            PaymentInitiation carrying the correlation id

        Raises:
            InvalidPhoneNumber: Before any network call if the phone is malformed
            GatewayError: If the gateway is unreachable or rejects the request
        """
        pass

    @abstractmethod
    def parse_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        """
        Parse an asynchronous result delivered to the callback URL.

        Raises:
            InvalidCallbackPayload: If the body is not a gateway result
        """
        pass

    @abstractmethod
    def query_status(self, correlation_id: str) -> PaymentStatusResult:
        """
        Ask the gateway for the current state of an initiated charge.

        Raises:
            GatewayError: If the query cannot be completed
        """
        pass
