"""
M-Pesa Payment Gateway
======================

Concrete implementation of PaymentGatewayInterface over Safaricom's Daraja
STK push API.

Configuration (in settings.py):
    MPESA_BASE_URL: Daraja host (sandbox or production)
    MPESA_CONSUMER_KEY / MPESA_CONSUMER_SECRET: OAuth client credentials
    MPESA_SHORTCODE: Paybill shortcode receiving the funds
    MPESA_PASSKEY: Lipa na M-Pesa passkey used to derive the request password
    MPESA_CALLBACK_URL: Default URL for asynchronous results
    MPESA_TIMEOUT_SECONDS: Per-request HTTP timeout
"""

import base64
import logging
import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from django.utils import timezone
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from infrastructure.observability.tracing import add_span_attributes, get_tracer
from utils.logging_utils import mask_phone

from .interface import (
    CallbackResult,
    GatewayError,
    InvalidCallbackPayload,
    PaymentGatewayInterface,
    PaymentInitiation,
    PaymentStatus,
    PaymentStatusResult,
)
from .phone import normalize_phone

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Daraja answers a status query with this code while the payer has not acted yet
QUERY_STILL_PROCESSING = "500.001.1001"
# Daraja limits AccountReference to 12 characters
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13
# Refresh the OAuth token slightly before Daraja expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def daraja_timestamp() -> str:
    """Local (EAT) timestamp in the ``YYYYMMDDHHMMSS`` form Daraja expects."""
    return timezone.localtime().strftime("%Y%m%d%H%M%S")


def daraja_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def to_whole_amount(amount) -> int:
    """Daraja only charges whole shillings; a fractional amount is refused, never rounded."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise GatewayError(f"Invalid amount: {amount}", retryable=False) from e
    if not value.is_finite() or value != value.to_integral_value():
        raise GatewayError(f"Amount must be whole shillings, got {amount}", retryable=False)
    if value <= 0:
        raise GatewayError(f"Amount must be positive, got {amount}", retryable=False)
    return int(value)


def parse_stk_callback(payload: Dict[str, Any]) -> CallbackResult:
    """
    Parse a Daraja STK push result body.

    Expected shape::

        {"Body": {"stkCallback": {
            "MerchantRequestID": "...", "CheckoutRequestID": "...",
            "ResultCode": 0, "ResultDesc": "...",
            "CallbackMetadata": {"Item": [{"Name": "Amount", "Value": 1100}, ...]}
        }}}
    """
    try:
        callback = payload["Body"]["stkCallback"]
        correlation_id = str(callback["CheckoutRequestID"])
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidCallbackPayload(f"Malformed STK callback: {e}") from e

    items = {}
    metadata = callback.get("CallbackMetadata") or {}
    for item in metadata.get("Item") or []:
        if isinstance(item, dict) and "Name" in item:
            items[item["Name"]] = item.get("Value")

    amount = items.get("Amount")
    phone = items.get("PhoneNumber")
    transaction_date = items.get("TransactionDate")
    return CallbackResult(
        correlation_id=correlation_id,
        result_code=result_code,
        result_desc=str(callback.get("ResultDesc", "")),
        merchant_request_id=str(callback.get("MerchantRequestID", "")),
        receipt_number=items.get("MpesaReceiptNumber"),
        amount=Decimal(str(amount)) if amount is not None else None,
        phone=str(phone) if phone is not None else None,
        transaction_date=str(transaction_date) if transaction_date is not None else None,
    )


class MpesaGateway(PaymentGatewayInterface):
    """
    Daraja STK push client.

    Only the OAuth token fetch is retried automatically: it has no side effects.
    An STK push is never retried here because a duplicate request would send
    the payer a second prompt for the same checkout.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        shortcode: Optional[str] = None,
        passkey: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or getattr(settings, "MPESA_BASE_URL", "")).rstrip("/")
        self.consumer_key = consumer_key or getattr(settings, "MPESA_CONSUMER_KEY", "")
        self.consumer_secret = consumer_secret or getattr(settings, "MPESA_CONSUMER_SECRET", "")
        self.shortcode = str(shortcode or getattr(settings, "MPESA_SHORTCODE", ""))
        self.passkey = passkey or getattr(settings, "MPESA_PASSKEY", "")
        self.callback_url = callback_url or getattr(settings, "MPESA_CALLBACK_URL", "")
        self.timeout = timeout or getattr(settings, "MPESA_TIMEOUT_SECONDS", 15)
        self.session = session or requests.Session()

        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        if not (self.consumer_key and self.consumer_secret and self.shortcode and self.passkey):
            logger.warning("M-Pesa credentials are not fully configured")

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _fetch_token_api(self) -> requests.Response:
        """Internal method to request a token with retries."""
        return self.session.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
            timeout=self.timeout,
        )

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                response = self._fetch_token_api()
            except requests.RequestException as e:
                logger.error(f"M-Pesa token request failed: {str(e)}")
                raise GatewayError(f"M-Pesa authentication unreachable: {str(e)}") from e

            if response.status_code != 200:
                logger.error(f"M-Pesa token request rejected with HTTP {response.status_code}")
                raise GatewayError("M-Pesa authentication failed", status_code=response.status_code)

            try:
                data = response.json()
                token = data["access_token"]
                expires_in = int(data.get("expires_in", 3599))
            except (ValueError, KeyError, TypeError) as e:
                raise GatewayError("M-Pesa authentication returned an unreadable response") from e

            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return token

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expires_at = 0.0

    def _post(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        token = self._access_token()
        try:
            response = self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewayError(f"M-Pesa unreachable: {str(e)}") from e

        if response.status_code in (401, 403):
            # Token revoked or expired early; the next call fetches a fresh one
            self.invalidate_token()
        return response

    # ------------------------------------------------------------------
    # PaymentGatewayInterface
    # ------------------------------------------------------------------

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
        account_reference = str(reference)[:ACCOUNT_REFERENCE_MAX]
        timestamp = daraja_timestamp()

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": daraja_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_amount,
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": callback_url or self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": (description or "Payment")[:TRANSACTION_DESC_MAX],
        }

        with tracer.start_as_current_span("mpesa.stk_push") as span:
            add_span_attributes(span, reference=account_reference, amount=whole_amount)
            response = self._post("/mpesa/stkpush/v1/processrequest", payload)

            try:
                data = response.json()
            except ValueError:
                data = {}

            if response.status_code >= 500 or response.status_code in (401, 403, 429):
                logger.error(
                    f"STK push failed: reference={account_reference} phone={mask_phone(msisdn)} "
                    f"http={response.status_code}"
                )
                raise GatewayError(
                    data.get("errorMessage") or "M-Pesa is temporarily unavailable",
                    retryable=True,
                    status_code=response.status_code,
                )

            if response.status_code != 200 or str(data.get("ResponseCode")) != "0":
                message = data.get("errorMessage") or data.get("ResponseDescription") or "M-Pesa rejected the request"
                logger.error(
                    f"STK push rejected: reference={account_reference} phone={mask_phone(msisdn)} "
                    f"http={response.status_code} message={message}"
                )
                raise GatewayError(message, retryable=False, status_code=response.status_code)

            correlation_id = data.get("CheckoutRequestID")
            if not correlation_id:
                raise GatewayError("M-Pesa accepted the request without a CheckoutRequestID", retryable=False)

            add_span_attributes(span, correlation_id=correlation_id)

        logger.info(
            f"STK push accepted: reference={account_reference} amount={whole_amount} "
            f"phone={mask_phone(msisdn)} correlation_id={correlation_id}"
        )
        return PaymentInitiation(
            correlation_id=correlation_id,
            merchant_request_id=data.get("MerchantRequestID", ""),
            amount=whole_amount,
            phone=msisdn,
            customer_message=data.get("CustomerMessage", ""),
            raw=data,
        )

    def parse_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        return parse_stk_callback(payload)

    def query_status(self, correlation_id: str) -> PaymentStatusResult:
        timestamp = daraja_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": daraja_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": correlation_id,
        }

        with tracer.start_as_current_span("mpesa.stk_query") as span:
            add_span_attributes(span, correlation_id=correlation_id)
            response = self._post("/mpesa/stkpushquery/v1/query", payload)

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("M-Pesa status query returned an unreadable response") from e

        if data.get("errorCode") == QUERY_STILL_PROCESSING:
            return PaymentStatusResult(
                correlation_id=correlation_id,
                status=PaymentStatus.PENDING,
                result_desc=data.get("errorMessage", "The transaction is being processed"),
            )

        if "ResultCode" not in data:
            raise GatewayError(
                data.get("errorMessage") or "M-Pesa status query failed",
                retryable=response.status_code >= 500,
                status_code=response.status_code,
            )

        result_code = int(data["ResultCode"])
        return PaymentStatusResult(
            correlation_id=correlation_id,
            status=PaymentStatus.SUCCEEDED if result_code == 0 else PaymentStatus.FAILED,
            result_code=result_code,
            result_desc=data.get("ResultDesc", ""),
        )
