"""
Tests for LedgerService
"""

from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase

from marketplace.models import Order, OrderPaymentStatus, OrderStatus, ProductStatus
from marketplace.services.base import ErrorCodes
from marketplace.tests.factories import (
    AdminFactory,
    LedgerEntryFactory,
    OrderFactory,
    ProductFactory,
    SellerBalanceFactory,
    SellerFactory,
)
from payment_system.domain.exceptions import LedgerImmutableError
from payment_system.domain.services.ledger_service import LedgerService, replay_entries, sale_key
from payment_system.models import LedgerEntry, SellerBalance


def paid_order(seller, price="500.00", status=OrderStatus.CONFIRMED, **kwargs):
    product = ProductFactory(seller=seller, price=Decimal(price), status=ProductStatus.SOLD)
    return OrderFactory(product=product, status=status, payment_status=OrderPaymentStatus.COMPLETED, **kwargs)


class LedgerCreditTest(TestCase):
    def setUp(self):
        self.service = LedgerService()
        self.seller = SellerFactory()

    def test_credit_order_once(self):
        order = paid_order(self.seller)

        first = self.service.credit_order(order.pk)
        second = self.service.credit_order(order.pk)

        self.assertTrue(first.value["credited"])
        self.assertFalse(second.value["credited"])
        balance = SellerBalance.objects.get(seller=self.seller)
        self.assertEqual(balance.current_balance, Decimal("500.00"))
        self.assertEqual(balance.total_earnings, Decimal("500.00"))
        self.assertEqual(balance.total_orders, 1)
        self.assertEqual(LedgerEntry.objects.filter(idempotency_key=sale_key(order.pk)).count(), 1)
        order.refresh_from_db()
        self.assertTrue(order.seller_paid)
        self.assertIsNotNone(order.seller_paid_at)

    def test_credit_without_flag_is_still_single(self):
        order = paid_order(self.seller)

        self.service.credit(self.seller.pk, order.pk, order.total_price)
        repeat = self.service.credit(self.seller.pk, order.pk, order.total_price)

        self.assertFalse(repeat.value["created"])
        self.assertEqual(SellerBalance.objects.get(seller=self.seller).total_orders, 1)

    def test_credit_order_repairs_missing_flag(self):
        order = paid_order(self.seller)
        self.service.credit(self.seller.pk, order.pk, order.total_price)

        result = self.service.credit_order(order.pk)

        self.assertTrue(result.ok)
        self.assertFalse(result.value["credited"])
        self.assertTrue(Order.objects.get(pk=order.pk).seller_paid)
        self.assertEqual(SellerBalance.objects.get(seller=self.seller).current_balance, Decimal("500.00"))

    def test_unpaid_and_void_orders_are_not_credited(self):
        unpaid = OrderFactory(product=ProductFactory(seller=self.seller))
        cancelled = paid_order(self.seller, status=OrderStatus.CANCELLED)

        self.assertEqual(self.service.credit_order(unpaid.pk).error, ErrorCodes.NOT_PAID)
        self.assertEqual(self.service.credit_order(cancelled.pk).error, ErrorCodes.NOT_CREDITABLE)
        self.assertEqual(
            self.service.credit_order("00000000-0000-4000-8000-000000000000").error, ErrorCodes.ORDER_NOT_FOUND
        )
        self.assertFalse(LedgerEntry.objects.exists())

    def test_database_failure_is_reported_not_raised(self):
        order = paid_order(self.seller)

        with patch.object(LedgerEntry.objects, "create", side_effect=DatabaseError("disk I/O error")):
            result = self.service.credit_order(order.pk)

        self.assertEqual(result.error, ErrorCodes.LEDGER_WRITE_FAILED)
        self.assertIn("disk I/O error", result.error_detail)
        self.assertFalse(Order.objects.get(pk=order.pk).seller_paid)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_non_positive_credit_is_rejected(self):
        order = paid_order(self.seller)

        result = self.service.credit(self.seller.pk, order.pk, Decimal("0"))

        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)

    def test_batch_credit(self):
        orders = [paid_order(self.seller, price="100.00") for _ in range(3)]
        self.service.credit_order(orders[0].pk)
        Order.objects.filter(pk=orders[1].pk).update(ledger_error="ledger_write_failed: boom")
        paid_order(self.seller, status=OrderStatus.CANCELLED)
        other = paid_order(SellerFactory(), price="40.00")

        result = self.service.batch_credit(seller_id=self.seller.pk)

        self.assertEqual(set(result.value["credited"]), {str(orders[1].pk), str(orders[2].pk)})
        self.assertEqual(result.value["failed"], [])
        self.assertEqual(result.value["total_amount"], Decimal("200.00"))
        self.assertEqual(Order.objects.get(pk=orders[1].pk).ledger_error, "")
        self.assertFalse(Order.objects.get(pk=other.pk).seller_paid)
        self.assertEqual(SellerBalance.objects.get(seller=self.seller).current_balance, Decimal("300.00"))


class WithdrawalTest(TestCase):
    def setUp(self):
        self.service = LedgerService()
        self.seller = SellerFactory()
        self.admin = AdminFactory()
        self.service.credit_order(paid_order(self.seller, price="1000.00").pk)

    def _balance(self):
        return SellerBalance.objects.get(seller=self.seller)

    def test_request_holds_amount(self):
        result = self.service.request_withdrawal(self.seller, "400")

        self.assertTrue(result.ok)
        self.assertEqual(result.value.status, LedgerEntry.STATUS_PENDING)
        balance = self._balance()
        self.assertEqual(balance.current_balance, Decimal("600.00"))
        self.assertEqual(balance.pending_withdrawals, Decimal("400.00"))

    def test_request_more_than_balance(self):
        result = self.service.request_withdrawal(self.seller, "1000.01")

        self.assertEqual(result.error, ErrorCodes.INSUFFICIENT_BALANCE)
        self.assertEqual(self._balance().current_balance, Decimal("1000.00"))

    def test_invalid_amounts(self):
        self.assertEqual(self.service.request_withdrawal(self.seller, "abc").error, ErrorCodes.VALIDATION_ERROR)
        self.assertEqual(self.service.request_withdrawal(self.seller, "-5").error, ErrorCodes.VALIDATION_ERROR)

    def test_confirm_moves_pending_to_withdrawn(self):
        entry = self.service.request_withdrawal(self.seller, "400").value

        result = self.service.confirm_withdrawal(entry.pk, self.admin, reference="QKX81TZ")

        self.assertEqual(result.value.status, LedgerEntry.STATUS_COMPLETED)
        self.assertEqual(result.value.metadata["reference"], "QKX81TZ")
        balance = self._balance()
        self.assertEqual(balance.current_balance, Decimal("600.00"))
        self.assertEqual(balance.pending_withdrawals, Decimal("0.00"))
        self.assertEqual(balance.withdrawn_total, Decimal("400.00"))

    def test_reject_returns_amount(self):
        entry = self.service.request_withdrawal(self.seller, "400").value

        result = self.service.reject_withdrawal(entry.pk, self.admin, reason="wrong number")

        self.assertEqual(result.value.status, LedgerEntry.STATUS_FAILED)
        balance = self._balance()
        self.assertEqual(balance.current_balance, Decimal("1000.00"))
        self.assertEqual(balance.pending_withdrawals, Decimal("0.00"))

    def test_withdrawal_settles_once(self):
        entry = self.service.request_withdrawal(self.seller, "400").value
        self.service.confirm_withdrawal(entry.pk, self.admin)

        again = self.service.reject_withdrawal(entry.pk, self.admin)

        self.assertEqual(again.error, ErrorCodes.ALREADY_SETTLED)
        self.assertEqual(self._balance().withdrawn_total, Decimal("400.00"))

    def test_sale_entry_is_not_a_withdrawal(self):
        sale = LedgerEntry.objects.get(entry_type=LedgerEntry.TYPE_SALE)

        result = self.service.confirm_withdrawal(sale.pk, self.admin)

        self.assertEqual(result.error, ErrorCodes.LEDGER_ENTRY_NOT_FOUND)

    def test_transaction_history(self):
        self.service.request_withdrawal(self.seller, "100")

        everything = self.service.transaction_history(self.seller)
        withdrawals = self.service.transaction_history(self.seller, entry_type=LedgerEntry.TYPE_WITHDRAWAL)

        self.assertEqual(everything.value["count"], 2)
        self.assertEqual(withdrawals.value["count"], 1)
        self.assertEqual(
            self.service.transaction_history(self.seller, entry_type="gift").error, ErrorCodes.VALIDATION_ERROR
        )

    def test_balance_for_unknown_seller_is_zero(self):
        result = self.service.get_balance(SellerFactory())

        self.assertEqual(result.value["current_balance"], Decimal("0.00"))
        self.assertEqual(result.value["total_orders"], 0)
        self.assertIsNone(result.value["updated_at"])


class LedgerAuditTest(TestCase):
    def setUp(self):
        self.service = LedgerService()
        self.seller = SellerFactory()

    def test_clean_ledger_has_no_findings(self):
        self.service.credit_order(paid_order(self.seller).pk)
        self.service.request_withdrawal(self.seller, "50")

        result = self.service.audit()

        self.assertEqual(result.value["sellers_checked"], 1)
        self.assertEqual(result.value["drift"], [])
        self.assertEqual(result.value["paid_but_uncredited"], [])
        self.assertEqual(result.value["credited_without_entry"], [])

    def test_drift_and_uncredited_orders_are_reported(self):
        self.service.credit_order(paid_order(self.seller).pk)
        SellerBalance.objects.filter(seller=self.seller).update(current_balance=Decimal("999.00"))
        uncredited = paid_order(self.seller, price="75.00", ledger_error="ledger_write_failed: timeout")
        flagged = paid_order(self.seller, seller_paid=True)

        result = self.service.audit(seller_id=self.seller.pk)

        drift = result.value["drift"][0]["fields"]
        self.assertEqual(drift["current_balance"], {"stored": Decimal("999.00"), "replayed": Decimal("500.00")})
        self.assertEqual([o["order_id"] for o in result.value["paid_but_uncredited"]], [str(uncredited.pk)])
        self.assertEqual(result.value["uncredited_total"], Decimal("75.00"))
        self.assertEqual(result.value["credited_without_entry"], [str(flagged.pk)])

    def test_replay_rules(self):
        balance = SellerBalanceFactory()
        entries = [
            LedgerEntryFactory.build(balance=balance, amount=Decimal("300.00")),
            LedgerEntryFactory.build(
                balance=balance, entry_type=LedgerEntry.TYPE_WITHDRAWAL, amount=Decimal("50.00"),
                status=LedgerEntry.STATUS_PENDING,
            ),
            LedgerEntryFactory.build(
                balance=balance, entry_type=LedgerEntry.TYPE_WITHDRAWAL, amount=Decimal("100.00"),
                status=LedgerEntry.STATUS_COMPLETED,
            ),
            LedgerEntryFactory.build(
                balance=balance, entry_type=LedgerEntry.TYPE_WITHDRAWAL, amount=Decimal("999.00"),
                status=LedgerEntry.STATUS_FAILED,
            ),
            LedgerEntryFactory.build(balance=balance, entry_type=LedgerEntry.TYPE_FEE, amount=Decimal("10.00")),
            LedgerEntryFactory.build(
                balance=balance, entry_type=LedgerEntry.TYPE_ADJUSTMENT, amount=Decimal("-20.00"),
                status=LedgerEntry.STATUS_COMPLETED,
            ),
        ]

        totals = replay_entries(entries)

        self.assertEqual(totals["current_balance"], Decimal("120.00"))
        self.assertEqual(totals["total_earnings"], Decimal("300.00"))
        self.assertEqual(totals["total_orders"], 1)
        self.assertEqual(totals["pending_withdrawals"], Decimal("50.00"))
        self.assertEqual(totals["withdrawn_total"], Decimal("100.00"))


class LedgerImmutabilityTest(TestCase):
    def setUp(self):
        self.entry = LedgerEntryFactory()

    def test_amount_cannot_change(self):
        self.entry.amount = Decimal("1.00")
        with self.assertRaises(LedgerImmutableError):
            self.entry.save()
        with self.assertRaises(LedgerImmutableError):
            LedgerEntry.objects.filter(pk=self.entry.pk).update(amount=Decimal("1.00"))

    def test_entries_cannot_be_deleted(self):
        with self.assertRaises(LedgerImmutableError):
            self.entry.delete()
        with self.assertRaises(LedgerImmutableError):
            LedgerEntry.objects.all().delete()

    def test_settlement_columns_may_change(self):
        self.entry.status = LedgerEntry.STATUS_COMPLETED
        self.entry.save(update_fields=["status"])

        self.assertEqual(LedgerEntry.objects.get(pk=self.entry.pk).status, LedgerEntry.STATUS_COMPLETED)
