"""
Payment Infrastructure Tests
==============================

Unit tests for the M-Pesa gateway client and the gateway abstraction layer.
"""

import base64
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import SimpleTestCase, override_settings
from tenacity import wait_none

from infrastructure.payments import (
    GatewayError,
    InvalidCallbackPayload,
    InvalidPhoneNumber,
    MockGateway,
    MpesaGateway,
    PaymentFactory,
    PaymentGatewayInterface,
    PaymentStatus,
    normalize_phone,
    parse_stk_callback,
)


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


TOKEN_RESPONSE = {"access_token": "token-abc", "expires_in": "3599"}
ACCEPTED_RESPONSE = {
    "MerchantRequestID": "29115-34620561-1",
    "CheckoutRequestID": "ws_CO_191220191020363925",
    "ResponseCode": "0",
    "ResponseDescription": "Success. Request accepted for processing",
    "CustomerMessage": "Success. Request accepted for processing",
}


def success_callback(correlation_id="ws_CO_191220191020363925", amount=1100, receipt="NLJ7RT61SV"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": correlation_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": amount},
                        {"Name": "MpesaReceiptNumber", "Value": receipt},
                        {"Name": "Balance"},
                        {"Name": "TransactionDate", "Value": 20191219102115},
                        {"Name": "PhoneNumber", "Value": 254708374149},
                    ]
                },
            }
        }
    }


class PhoneNormalizationTest(SimpleTestCase):
    def test_accepts_local_and_international_formats(self):
        self.assertEqual(normalize_phone("0712345678"), "254712345678")
        self.assertEqual(normalize_phone("0112345678"), "254112345678")
        self.assertEqual(normalize_phone("712345678"), "254712345678")
        self.assertEqual(normalize_phone("+254 712 345 678"), "254712345678")
        self.assertEqual(normalize_phone("254712345678"), "254712345678")

    def test_rejects_malformed_numbers(self):
        for phone in ["", None, "12345", "0712", "255712345678", "07123456789", "abcdefghij"]:
            with self.subTest(phone=phone):
                with self.assertRaises(InvalidPhoneNumber):
                    normalize_phone(phone)


class PaymentInterfaceTest(SimpleTestCase):
    def test_interface_is_abstract(self):
        with self.assertRaises(TypeError):
            PaymentGatewayInterface()


class MpesaGatewayTest(SimpleTestCase):
    """Test MpesaGateway against a mocked HTTP session."""

    def setUp(self):
        self.session = MagicMock()
        self.session.get.return_value = _response(200, TOKEN_RESPONSE)
        self.gateway = MpesaGateway(
            base_url="https://sandbox.example.com/",
            consumer_key="key",
            consumer_secret="secret",
            shortcode="174379",
            passkey="passkey",
            callback_url="https://shop.example.com/callback",
            timeout=5,
            session=self.session,
        )

    @patch("infrastructure.payments.mpesa_provider.daraja_timestamp", return_value="20240101120000")
    def test_initiate_sends_stk_push(self, _timestamp):
        self.session.post.return_value = _response(200, ACCEPTED_RESPONSE)

        result = self.gateway.initiate("0708374149", Decimal("1100.00"), "a1b2c3d4e5f6a7b8", description="Order")

        self.assertEqual(result.correlation_id, "ws_CO_191220191020363925")
        self.assertEqual(result.amount, 1100)
        self.assertEqual(result.phone, "254708374149")

        url = self.session.post.call_args.args[0]
        payload = self.session.post.call_args.kwargs["json"]
        headers = self.session.post.call_args.kwargs["headers"]
        self.assertEqual(url, "https://sandbox.example.com/mpesa/stkpush/v1/processrequest")
        self.assertEqual(headers["Authorization"], "Bearer token-abc")
        self.assertEqual(payload["Amount"], 1100)
        self.assertEqual(payload["PartyA"], "254708374149")
        self.assertEqual(payload["PartyB"], "174379")
        self.assertEqual(payload["TransactionType"], "CustomerPayBillOnline")
        self.assertEqual(payload["AccountReference"], "a1b2c3d4e5f6")
        self.assertEqual(payload["CallBackURL"], "https://shop.example.com/callback")
        self.assertEqual(base64.b64decode(payload["Password"]).decode(), "174379passkey20240101120000")

    def test_token_is_cached_between_requests(self):
        self.session.post.return_value = _response(200, ACCEPTED_RESPONSE)

        self.gateway.initiate("0708374149", Decimal("10"), "ref1")
        self.gateway.initiate("0708374149", Decimal("10"), "ref2")

        self.assertEqual(self.session.get.call_count, 1)
        self.assertEqual(self.session.get.call_args.kwargs["auth"], ("key", "secret"))

    def test_invalid_phone_is_rejected_before_network(self):
        with self.assertRaises(InvalidPhoneNumber):
            self.gateway.initiate("12345", Decimal("10"), "ref")

        self.session.get.assert_not_called()
        self.session.post.assert_not_called()

    def test_non_positive_amount_is_rejected(self):
        with self.assertRaises(GatewayError) as ctx:
            self.gateway.initiate("0708374149", Decimal("0.2"), "ref")
        self.assertFalse(ctx.exception.retryable)
        self.session.post.assert_not_called()

    def test_fractional_amount_is_refused_not_rounded(self):
        with self.assertRaises(GatewayError) as ctx:
            self.gateway.initiate("0708374149", Decimal("1099.50"), "ref")

        self.assertFalse(ctx.exception.retryable)
        self.assertIn("whole shillings", str(ctx.exception))
        self.session.post.assert_not_called()

    def test_server_error_is_retryable(self):
        self.session.post.return_value = _response(503, {"errorMessage": "Service unavailable"})

        with self.assertRaises(GatewayError) as ctx:
            self.gateway.initiate("0708374149", Decimal("10"), "ref")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_rejected_request_is_not_retryable(self):
        self.session.post.return_value = _response(
            200, {"ResponseCode": "1", "ResponseDescription": "Invalid Access Token"}
        )

        with self.assertRaises(GatewayError) as ctx:
            self.gateway.initiate("0708374149", Decimal("10"), "ref")

        self.assertFalse(ctx.exception.retryable)
        self.assertIn("Invalid Access Token", str(ctx.exception))

    def test_network_failure_surfaces_as_retryable_gateway_error(self):
        self.session.post.side_effect = requests.ConnectionError("connection reset")

        with self.assertRaises(GatewayError) as ctx:
            self.gateway.initiate("0708374149", Decimal("10"), "ref")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.session.post.call_count, 1)

    def test_unauthorized_response_drops_cached_token(self):
        self.session.post.return_value = _response(401, {"errorMessage": "Invalid Access Token"})

        with self.assertRaises(GatewayError):
            self.gateway.initiate("0708374149", Decimal("10"), "ref")

        self.assertIsNone(self.gateway._token)

    def test_token_fetch_is_retried_on_connection_errors(self):
        self.session.get.side_effect = requests.ConnectionError("dns failure")

        with patch.object(MpesaGateway._fetch_token_api.retry, "wait", wait_none()):
            with self.assertRaises(GatewayError) as ctx:
                self.gateway.initiate("0708374149", Decimal("10"), "ref")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.session.get.call_count, 3)
        self.session.post.assert_not_called()

    def test_token_rejection_raises_gateway_error(self):
        self.session.get.return_value = _response(400, {"errorMessage": "Invalid credentials"})

        with self.assertRaises(GatewayError):
            self.gateway.initiate("0708374149", Decimal("10"), "ref")

    def test_query_status_still_processing(self):
        self.session.post.return_value = _response(
            500, {"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}
        )

        result = self.gateway.query_status("ws_CO_1")

        self.assertEqual(result.status, PaymentStatus.PENDING)

    def test_query_status_completed_and_cancelled(self):
        self.session.post.return_value = _response(200, {"ResultCode": "0", "ResultDesc": "processed"})
        self.assertEqual(self.gateway.query_status("ws_CO_1").status, PaymentStatus.SUCCEEDED)

        self.session.post.return_value = _response(200, {"ResultCode": "1032", "ResultDesc": "Cancelled by user"})
        result = self.gateway.query_status("ws_CO_1")
        self.assertEqual(result.status, PaymentStatus.FAILED)
        self.assertEqual(result.result_code, 1032)


class CallbackParsingTest(SimpleTestCase):
    def test_parse_success_callback(self):
        result = parse_stk_callback(success_callback())

        self.assertTrue(result.success)
        self.assertEqual(result.correlation_id, "ws_CO_191220191020363925")
        self.assertEqual(result.receipt_number, "NLJ7RT61SV")
        self.assertEqual(result.amount, Decimal("1100"))
        self.assertEqual(result.phone, "254708374149")
        self.assertEqual(result.transaction_date, "20191219102115")

    def test_parse_failure_callback(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "1",
                    "CheckoutRequestID": "ws_CO_2",
                    "ResultCode": 1032,
                    "ResultDesc": "Request cancelled by user",
                }
            }
        }

        result = parse_stk_callback(payload)

        self.assertFalse(result.success)
        self.assertEqual(result.result_code, 1032)
        self.assertIsNone(result.receipt_number)

    def test_malformed_callback_raises(self):
        for payload in [{}, {"Body": {}}, {"Body": {"stkCallback": {"ResultCode": 0}}}, None]:
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidCallbackPayload):
                    parse_stk_callback(payload)


class MockGatewayTest(SimpleTestCase):
    def test_records_requests_and_returns_correlation_id(self):
        gateway = MockGateway()

        result = gateway.initiate("0712345678", Decimal("1100"), "session")

        self.assertTrue(result.correlation_id.startswith("ws_CO_MOCK_"))
        self.assertEqual(gateway.requests[0]["amount"], 1100)
        self.assertEqual(gateway.query_status(result.correlation_id).status, PaymentStatus.PENDING)

    def test_fail_with_raises_once(self):
        gateway = MockGateway()
        gateway.fail_with = GatewayError("down")

        with self.assertRaises(GatewayError):
            gateway.initiate("0712345678", Decimal("10"), "ref")
        gateway.initiate("0712345678", Decimal("10"), "ref")

        self.assertEqual(len(gateway.requests), 1)


class PaymentFactoryTest(SimpleTestCase):
    def test_create_mpesa_gateway(self):
        self.assertIsInstance(PaymentFactory.create("mpesa"), MpesaGateway)

    def test_create_mock_gateway(self):
        self.assertIsInstance(PaymentFactory.create("mock"), MockGateway)

    @override_settings(INFRASTRUCTURE={"PAYMENT_PROVIDER": "mock"})
    def test_create_reads_settings(self):
        self.assertIsInstance(PaymentFactory.create(), MockGateway)

    def test_invalid_backend(self):
        with self.assertRaises(ValueError):
            PaymentFactory.create("stripe")
