"""
Mock Payment Gateway
====================

In-process gateway used by the test settings and local development. It
validates input exactly like the real gateway but never leaves the process.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .interface import (
    CallbackResult,
    GatewayError,
    PaymentGatewayInterface,
    PaymentInitiation,
    PaymentStatus,
    PaymentStatusResult,
)
from .mpesa_provider import parse_stk_callback, to_whole_amount
from .phone import normalize_phone

logger = logging.getLogger(__name__)


class MockGateway(PaymentGatewayInterface):
    """
    Records every initiation in ``requests``. Set ``fail_with`` to a
    GatewayError to make the next ``initiate`` call raise it.
    """

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.statuses: Dict[str, PaymentStatusResult] = {}
        self.fail_with: Optional[GatewayError] = None

    def initiate(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        callback_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentInitiation:
        msisdn = normalize_phone(phone)
        whole_amount = to_whole_amount(amount)

        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error

        correlation_id = f"ws_CO_MOCK_{uuid.uuid4().hex[:20]}"
        self.requests.append(
            {
                "phone": msisdn,
                "amount": whole_amount,
                "reference": reference,
                "callback_url": callback_url,
                "correlation_id": correlation_id,
            }
        )
        self.statuses[correlation_id] = PaymentStatusResult(correlation_id=correlation_id, status=PaymentStatus.PENDING)
        logger.info(f"Mock STK push accepted: reference={reference} amount={whole_amount}")
        return PaymentInitiation(
            correlation_id=correlation_id,
            merchant_request_id=f"mock-{uuid.uuid4().hex[:12]}",
            amount=whole_amount,
            phone=msisdn,
            customer_message="Success. Request accepted for processing",
        )

    def parse_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        return parse_stk_callback(payload)

    def query_status(self, correlation_id: str) -> PaymentStatusResult:
        if correlation_id not in self.statuses:
            raise GatewayError(f"Unknown CheckoutRequestID {correlation_id}", retryable=False)
        return self.statuses[correlation_id]

    def set_status(self, correlation_id: str, status: PaymentStatus, result_code: Optional[int] = None):
        self.statuses[correlation_id] = PaymentStatusResult(
            correlation_id=correlation_id, status=status, result_code=result_code
        )
