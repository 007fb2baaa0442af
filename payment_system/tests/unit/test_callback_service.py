"""
Tests for PaymentCallbackService
"""

from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from infrastructure.container import container
from infrastructure.events import get_event_bus
from marketplace.models import CancellationReason, Order, OrderPaymentStatus, OrderStatus, Product, ProductStatus
from marketplace.services.base import ErrorCodes, service_err
from marketplace.tests.factories import OrderFactory, ProductFactory, SellerFactory, UserFactory, stk_callback
from payment_system.domain.services.callback_service import OrderOutcome
from payment_system.models import LedgerEntry, SellerBalance

CORRELATION_ID = "ws_CO_191220191020363925"


class CallbackTestCase(TestCase):
    def setUp(self):
        self.service = container.callback_service()
        self.gateway = container.payment()
        self.buyer = UserFactory()
        self.seller_a = SellerFactory()
        self.seller_b = SellerFactory()
        self.product_a = ProductFactory(seller=self.seller_a, price=Decimal("500.00"), status=ProductStatus.RESERVED)
        self.product_b = ProductFactory(seller=self.seller_b, price=Decimal("600.00"), status=ProductStatus.RESERVED)
        self.order_a = OrderFactory(buyer=self.buyer, product=self.product_a, payment_correlation_id=CORRELATION_ID)
        self.order_b = OrderFactory(buyer=self.buyer, product=self.product_b, payment_correlation_id=CORRELATION_ID)

    def deliver(self, payload):
        with self.captureOnCommitCallbacks(execute=True):
            return self.service.handle_payload(payload, self.gateway)

    def product_status(self, product):
        return Product.objects.values_list("status", flat=True).get(pk=product.pk)


class SuccessCallbackTest(CallbackTestCase):
    def test_success_settles_every_order_of_the_checkout(self):
        result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertTrue(result.ok)
        self.assertEqual(result.value.matched, 2)
        self.assertEqual(set(result.value.results.values()), {OrderOutcome.CONFIRMED})
        for order in (self.order_a, self.order_b):
            order.refresh_from_db()
            self.assertEqual(order.status, OrderStatus.CONFIRMED)
            self.assertEqual(order.payment_status, OrderPaymentStatus.COMPLETED)
            self.assertEqual(order.mpesa_receipt_number, "NLJ7RT61SV")
            self.assertIsNotNone(order.paid_at)
            self.assertTrue(order.seller_paid)
        self.assertEqual(self.product_status(self.product_a), ProductStatus.SOLD)
        self.assertEqual(self.product_status(self.product_b), ProductStatus.SOLD)
        self.assertEqual(SellerBalance.objects.get(seller=self.seller_a).current_balance, Decimal("500.00"))
        self.assertEqual(SellerBalance.objects.get(seller=self.seller_b).current_balance, Decimal("600.00"))

        bus = get_event_bus()
        self.assertEqual(len(bus.events_of_type("payment.succeeded")), 2)
        self.assertEqual(len(bus.events_of_type("ledger.seller_credited")), 2)

    def test_redelivery_changes_nothing(self):
        self.deliver(stk_callback(CORRELATION_ID))
        get_event_bus().clear()

        result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertEqual(set(result.value.results.values()), {OrderOutcome.ALREADY_FINAL})
        self.assertEqual(LedgerEntry.objects.filter(entry_type=LedgerEntry.TYPE_SALE).count(), 2)
        self.assertEqual(SellerBalance.objects.get(seller=self.seller_a).total_orders, 1)
        self.assertEqual(get_event_bus().events_of_type("payment.succeeded"), [])

    def test_payment_after_seller_confirmed(self):
        Order.objects.filter(pk=self.order_a.pk).update(status=OrderStatus.CONFIRMED)

        result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertEqual(result.value.results[str(self.order_a.pk)], OrderOutcome.PAYMENT_RECORDED)
        self.order_a.refresh_from_db()
        self.assertEqual(self.order_a.payment_status, OrderPaymentStatus.COMPLETED)
        self.assertTrue(self.order_a.seller_paid)
        self.assertEqual(self.product_status(self.product_a), ProductStatus.SOLD)

    def test_late_success_for_cancelled_order_needs_refund(self):
        Order.objects.filter(pk=self.order_a.pk).update(
            status=OrderStatus.CANCELLED, cancellation_reason=CancellationReason.PAYMENT_TIMEOUT
        )
        Product.objects.filter(pk=self.product_a.pk).update(status=ProductStatus.AVAILABLE)

        with self.assertLogs("payment_system", level="WARNING") as logs:
            result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertEqual(result.value.results[str(self.order_a.pk)], OrderOutcome.REFUND_REQUIRED)
        self.assertTrue(any("refund_required" in line for line in logs.output))
        self.order_a.refresh_from_db()
        self.assertEqual(self.order_a.status, OrderStatus.CANCELLED)
        self.assertEqual(self.order_a.payment_status, OrderPaymentStatus.COMPLETED)
        self.assertFalse(self.order_a.seller_paid)
        self.assertEqual(self.product_status(self.product_a), ProductStatus.AVAILABLE)
        self.assertEqual(result.value.results[str(self.order_b.pk)], OrderOutcome.CONFIRMED)

    def test_ledger_failure_keeps_payment_and_flags_order(self):
        credit_order = self.service.ledger_service.credit_order

        def flaky_credit(order_id):
            if order_id == self.order_a.pk:
                return service_err(ErrorCodes.LEDGER_WRITE_FAILED, "database is locked")
            return credit_order(order_id)

        with patch.object(self.service.ledger_service, "credit_order", side_effect=flaky_credit):
            result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertEqual(result.value.uncredited, [str(self.order_a.pk)])
        self.assertEqual(result.value.credited, [str(self.order_b.pk)])
        self.order_a.refresh_from_db()
        self.assertEqual(self.order_a.payment_status, OrderPaymentStatus.COMPLETED)
        self.assertFalse(self.order_a.seller_paid)
        self.assertIn("database is locked", self.order_a.ledger_error)

        repaired = container.ledger_service().batch_credit()
        self.assertEqual(repaired.value["credited"], [str(self.order_a.pk)])

    def test_one_order_failing_does_not_stop_the_batch(self):
        Product.objects.filter(pk=self.product_a.pk).update(status=ProductStatus.AVAILABLE)

        result = self.deliver(stk_callback(CORRELATION_ID))

        self.assertEqual(result.value.results[str(self.order_a.pk)], OrderOutcome.ERROR)
        self.assertEqual(len(result.value.errors), 1)
        self.assertEqual(result.value.results[str(self.order_b.pk)], OrderOutcome.CONFIRMED)
        self.order_a.refresh_from_db()
        self.assertEqual(self.order_a.payment_status, OrderPaymentStatus.PENDING)


class FailureCallbackTest(CallbackTestCase):
    def test_failure_cancels_and_releases(self):
        result = self.deliver(stk_callback(CORRELATION_ID, result_code=1032))

        self.assertEqual(set(result.value.results.values()), {OrderOutcome.CANCELLED})
        for order in (self.order_a, self.order_b):
            order.refresh_from_db()
            self.assertEqual(order.status, OrderStatus.CANCELLED)
            self.assertEqual(order.payment_status, OrderPaymentStatus.FAILED)
            self.assertEqual(order.cancellation_reason, CancellationReason.PAYMENT_FAILED)
        self.assertEqual(self.product_status(self.product_a), ProductStatus.AVAILABLE)
        self.assertEqual(self.product_status(self.product_b), ProductStatus.AVAILABLE)
        self.assertFalse(LedgerEntry.objects.exists())
        self.assertEqual(len(get_event_bus().events_of_type("payment.failed")), 2)

    def test_failure_after_success_is_ignored(self):
        self.deliver(stk_callback(CORRELATION_ID))

        result = self.deliver(stk_callback(CORRELATION_ID, result_code=1))

        self.assertEqual(set(result.value.results.values()), {OrderOutcome.ALREADY_FINAL})
        self.order_a.refresh_from_db()
        self.assertEqual(self.order_a.status, OrderStatus.CONFIRMED)
        self.assertEqual(self.product_status(self.product_a), ProductStatus.SOLD)

    def test_failure_for_buyer_cancelled_order_records_payment_state(self):
        container.order_service().cancel_order(self.order_a.pk, self.buyer)

        result = self.deliver(stk_callback(CORRELATION_ID, result_code=1032))

        self.assertEqual(result.value.results[str(self.order_a.pk)], OrderOutcome.FAILED_RECORDED)
        self.assertEqual(Order.objects.get(pk=self.order_a.pk).payment_status, OrderPaymentStatus.FAILED)


class UnusualCallbackTest(CallbackTestCase):
    def test_unknown_correlation_id_is_acknowledged(self):
        result = self.deliver(stk_callback("ws_CO_UNKNOWN"))

        self.assertTrue(result.ok)
        self.assertEqual(result.value.matched, 0)
        self.assertEqual(Order.objects.filter(payment_status=OrderPaymentStatus.PENDING).count(), 2)

    def test_malformed_body_is_rejected(self):
        result = self.service.handle_payload({"Body": {}}, self.gateway)

        self.assertFalse(result.ok)
        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)

    def test_pending_orders(self):
        self.assertEqual(len(self.service.pending_orders(CORRELATION_ID)), 2)
        self.assertIsNone(self.service.pending_orders("ws_CO_UNKNOWN"))
