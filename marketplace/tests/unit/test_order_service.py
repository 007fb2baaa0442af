from decimal import Decimal

from django.test import TestCase

from infrastructure.container import container
from infrastructure.events import get_event_bus
from marketplace.models import CancellationReason, Order, OrderPaymentStatus, OrderStatus, Product, ProductStatus
from marketplace.ordering.domain.state_machine import ActorRole
from marketplace.services import ErrorCodes
from marketplace.tests.factories import AdminFactory, OrderFactory, ProductFactory, SellerFactory, UserFactory
from payment_system.models import LedgerEntry, SellerBalance
from utils.transaction_utils import UnitOfWork


class OrderTransitionTest(TestCase):
    def setUp(self):
        self.service = container.order_service()
        self.buyer = UserFactory()
        self.seller = SellerFactory()
        self.product = ProductFactory(seller=self.seller, price=Decimal("250.00"), status=ProductStatus.RESERVED)
        self.order = OrderFactory(buyer=self.buyer, product=self.product)

    def _product_status(self):
        return Product.objects.values_list("status", flat=True).get(pk=self.product.pk)

    def test_seller_confirms_then_ships_then_delivers(self):
        for target in (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            result = self.service.update_status(self.order.pk, self.seller, target)
            self.assertTrue(result.ok, result.error_detail)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.DELIVERED)
        self.assertIsNotNone(self.order.confirmed_at)
        self.assertIsNotNone(self.order.shipped_at)
        self.assertIsNotNone(self.order.delivered_at)

    def test_invalid_transition_leaves_state_untouched(self):
        result = self.service.update_status(self.order.pk, self.seller, OrderStatus.DELIVERED)

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_buyer_cannot_ship(self):
        result = self.service.update_status(self.order.pk, self.buyer, OrderStatus.CONFIRMED)

        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_stranger_is_refused(self):
        result = self.service.update_status(self.order.pk, UserFactory(), OrderStatus.CANCELLED)

        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_unknown_status_and_order(self):
        self.assertEqual(
            self.service.update_status(self.order.pk, self.seller, "teleported").error, ErrorCodes.VALIDATION_ERROR
        )
        self.assertEqual(
            self.service.update_status("not-a-uuid", self.seller, OrderStatus.CONFIRMED).error,
            ErrorCodes.ORDER_NOT_FOUND,
        )

    def test_buyer_cancel_releases_reservation(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.service.cancel_order(self.order.pk, self.buyer)

        self.assertTrue(result.ok)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertEqual(self.order.cancellation_reason, CancellationReason.BUYER_REQUEST)
        self.assertEqual(self.order.cancelled_by, self.buyer)
        self.assertIsNotNone(self.order.cancelled_at)
        self.assertEqual(self._product_status(), ProductStatus.AVAILABLE)
        self.assertEqual(len(get_event_bus().events_of_type("order.cancelled")), 1)

    def test_cancelled_product_is_reservable_again(self):
        self.service.cancel_order(self.order.pk, self.buyer)

        result = container.inventory_service().reserve(self.product.pk)

        self.assertTrue(result.ok)

    def test_buyer_cannot_cancel_confirmed_order(self):
        self.service.update_status(self.order.pk, self.seller, OrderStatus.CONFIRMED)

        result = self.service.cancel_order(self.order.pk, self.buyer)

        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)
        self.assertEqual(self._product_status(), ProductStatus.RESERVED)

    def test_cancelling_twice_is_an_invalid_transition(self):
        self.service.cancel_order(self.order.pk, self.buyer)

        result = self.service.cancel_order(self.order.pk, self.buyer)

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)

    def test_admin_cancel_of_paid_order_reverses_credit(self):
        Product.objects.filter(pk=self.product.pk).update(status=ProductStatus.SOLD)
        Order.objects.filter(pk=self.order.pk).update(
            status=OrderStatus.CONFIRMED, payment_status=OrderPaymentStatus.COMPLETED
        )
        self.assertTrue(container.ledger_service().credit_order(self.order.pk).ok)

        result = self.service.cancel_order(self.order.pk, AdminFactory(), reason=CancellationReason.OTHER)

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(self._product_status(), ProductStatus.AVAILABLE)
        balance = SellerBalance.objects.get(seller=self.seller)
        self.assertEqual(balance.current_balance, Decimal("0.00"))
        reversal = LedgerEntry.objects.get(idempotency_key=f"reversal:{self.order.pk}")
        self.assertEqual(reversal.amount, Decimal("-250.00"))

    def test_apply_transition_compare_and_set(self):
        stale = Order.objects.get(pk=self.order.pk)
        Order.objects.filter(pk=self.order.pk).update(status=OrderStatus.CONFIRMED)

        with UnitOfWork("test") as uow:
            changed = self.service.apply_transition(stale, OrderStatus.CANCELLED, ActorRole.SYSTEM, uow)

        self.assertFalse(changed)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, OrderStatus.CONFIRMED)


class OrderQueryTest(TestCase):
    def setUp(self):
        self.service = container.order_service()
        self.buyer = UserFactory()
        self.seller = SellerFactory()
        self.orders = [OrderFactory(buyer=self.buyer, product=ProductFactory(seller=self.seller)) for _ in range(3)]

    def test_get_order_visibility(self):
        order = self.orders[0]

        self.assertTrue(self.service.get_order(order.pk, self.buyer).ok)
        self.assertTrue(self.service.get_order(order.pk, self.seller).ok)
        self.assertTrue(self.service.get_order(order.pk, AdminFactory()).ok)
        self.assertEqual(self.service.get_order(order.pk, UserFactory()).error, ErrorCodes.PERMISSION_DENIED)

    def test_list_orders_as_buyer_and_seller(self):
        as_buyer = self.service.list_orders(self.buyer, "buyer", page_size=2)
        as_seller = self.service.list_orders(self.seller, "seller")

        self.assertEqual(as_buyer.value["count"], 3)
        self.assertEqual(len(as_buyer.value["results"]), 2)
        self.assertEqual(as_buyer.value["num_pages"], 2)
        self.assertEqual(as_seller.value["count"], 3)
        self.assertEqual(self.service.list_orders(self.seller, "buyer").value["count"], 0)
        self.assertEqual(self.service.list_orders(self.buyer, "owner").error, ErrorCodes.VALIDATION_ERROR)

    def test_checkout_status_states(self):
        session = "session-1"
        Order.objects.filter(pk__in=[o.pk for o in self.orders[:2]]).update(checkout_session_id=session)

        self.assertEqual(self.service.checkout_status(session, self.buyer).value["state"], "pending")

        Order.objects.filter(checkout_session_id=session).update(payment_status=OrderPaymentStatus.COMPLETED)
        paid = self.service.checkout_status(session, self.buyer).value
        self.assertEqual(paid["state"], "paid")
        self.assertEqual(paid["total_amount"], sum(o.total_price for o in self.orders[:2]))

        Order.objects.filter(pk=self.orders[0].pk).update(payment_status=OrderPaymentStatus.FAILED)
        self.assertEqual(self.service.checkout_status(session, self.buyer).value["state"], "partial")

        self.assertEqual(
            self.service.checkout_status(session, UserFactory()).error, ErrorCodes.CHECKOUT_SESSION_NOT_FOUND
        )

    def test_payment_status(self):
        result = self.service.payment_status(self.orders[0].pk, self.buyer)

        self.assertEqual(result.value["payment_status"], OrderPaymentStatus.PENDING)
        self.assertEqual(result.value["amount"], self.orders[0].total_price)
