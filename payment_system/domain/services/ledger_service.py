"""
LedgerService - Seller Balance Ledger

Append-only earnings ledger per seller with a running balance kept beside it.
Each paid order contributes exactly one ``sale`` entry: the entry carries the
idempotency key ``sale:<order id>`` and is written in the same transaction
that sets ``Order.seller_paid``, so the guard and the effect it guards commit
together.

Balance arithmetic (``audit`` replays these rules):

    sale (not failed)         balance += amount, earnings += amount, orders += 1
    withdrawal pending        balance -= amount, pending_withdrawals += amount
    withdrawal completed      balance -= amount, withdrawn_total += amount
    withdrawal failed         no effect
    fee (not failed)          balance -= amount
    adjustment (not failed)   balance += amount (signed)
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.db.models import F, Sum
from django.utils import timezone

from marketplace.domain.events.base import publish_after_commit
from marketplace.ordering.domain.models.order import Order, OrderPaymentStatus, OrderStatus
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok
from payment_system.domain.events.definitions import SellerCreditedEvent
from payment_system.domain.exceptions import LedgerWriteError
from payment_system.domain.models.seller_balance import LedgerEntry, SellerBalance
from payment_system.infra.observability.metrics import ledger_credits_total, withdrawals_total
from utils.transaction_utils import UnitOfWork

User = get_user_model()

ZERO = Decimal("0.00")
BALANCE_FIELDS = ("current_balance", "total_earnings", "total_orders", "pending_withdrawals", "withdrawn_total")
MAX_PAGE_SIZE = 100


def sale_key(order_id) -> str:
    return f"sale:{order_id}"


def reversal_key(order_id) -> str:
    return f"reversal:{order_id}"


def payout_key(order_id) -> str:
    return f"payout:{order_id}"


def replay_entries(entries: Iterable[LedgerEntry]) -> dict:
    """Recompute every balance column from ledger entries alone."""
    totals = {
        "current_balance": ZERO,
        "total_earnings": ZERO,
        "total_orders": 0,
        "pending_withdrawals": ZERO,
        "withdrawn_total": ZERO,
    }
    for entry in entries:
        amount = entry.amount
        if entry.entry_type == LedgerEntry.TYPE_SALE:
            if entry.status != LedgerEntry.STATUS_FAILED:
                totals["current_balance"] += amount
                totals["total_earnings"] += amount
                totals["total_orders"] += 1
        elif entry.entry_type == LedgerEntry.TYPE_WITHDRAWAL:
            if entry.status == LedgerEntry.STATUS_PENDING:
                totals["current_balance"] -= amount
                totals["pending_withdrawals"] += amount
            elif entry.status == LedgerEntry.STATUS_COMPLETED:
                totals["current_balance"] -= amount
                totals["withdrawn_total"] += amount
        elif entry.entry_type == LedgerEntry.TYPE_FEE:
            if entry.status != LedgerEntry.STATUS_FAILED:
                totals["current_balance"] -= amount
        elif entry.entry_type == LedgerEntry.TYPE_ADJUSTMENT:
            if entry.status != LedgerEntry.STATUS_FAILED:
                totals["current_balance"] += amount
    return totals


def balance_to_dict(balance: Optional[SellerBalance]) -> dict:
    if balance is None:
        return {field: (0 if field == "total_orders" else ZERO) for field in BALANCE_FIELDS}
    return {field: getattr(balance, field) for field in BALANCE_FIELDS}


class LedgerService(BaseService):
    """
    Service for seller earnings, withdrawals and ledger audits.

    Methods that change money open their own ``UnitOfWork``. Called inside a
    caller's unit of work they run as a savepoint, so a failed credit can be
    rolled back without losing the caller's other writes.
    """

    # ------------------------------------------------------------------
    # Balance rows
    # ------------------------------------------------------------------

    def _lock_balance(self, seller_id) -> SellerBalance:
        balance, created = SellerBalance.objects.get_or_create(seller_id=seller_id)
        if created:
            self.logger.info(f"Created balance record for seller {seller_id}")
        return SellerBalance.objects.select_for_update().get(pk=balance.pk)

    def _apply_to_balance(self, balance: SellerBalance, **deltas) -> None:
        """Add ``deltas`` to balance columns with a single UPDATE."""
        updates = {field: F(field) + delta for field, delta in deltas.items()}
        updates["updated_at"] = timezone.now()
        SellerBalance.objects.filter(pk=balance.pk).update(**updates)

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    @BaseService.log_performance
    def credit(self, seller_id, order_id, amount: Decimal, description: str = "") -> ServiceResult[dict]:
        """
        Append a ``sale`` entry for ``order_id`` and add it to the seller's totals.

        Does not consult ``Order.seller_paid``; use ``credit_order`` for that.
        A second call for the same order finds the existing entry by its
        idempotency key and changes nothing.

        Returns:
            ServiceResult with {"entry_id", "created", "amount"}
        """
        amount = Decimal(amount)
        if amount <= 0:
            return service_err(ErrorCodes.VALIDATION_ERROR, "Credit amount must be positive")

        with UnitOfWork("ledger.credit") as uow:
            existing = LedgerEntry.objects.filter(idempotency_key=sale_key(order_id)).first()
            if existing is not None:
                self.logger.info(f"Sale entry for order {order_id} already exists ({existing.pk}); not crediting again")
                return service_ok({"entry_id": str(existing.pk), "created": False, "amount": existing.amount})

            balance = self._lock_balance(seller_id)
            entry = LedgerEntry.objects.create(
                balance=balance,
                entry_type=LedgerEntry.TYPE_SALE,
                amount=amount,
                order_id=order_id,
                status=LedgerEntry.STATUS_AVAILABLE,
                description=description or f"Sale for order {order_id}",
                idempotency_key=sale_key(order_id),
            )
            self._apply_to_balance(balance, current_balance=amount, total_earnings=amount, total_orders=1)
            publish_after_commit(uow, SellerCreditedEvent(str(seller_id), str(order_id), amount, str(entry.pk)))

        self.logger.info(f"Credited seller {seller_id} with {amount} for order {order_id}")
        return service_ok({"entry_id": str(entry.pk), "created": True, "amount": amount})

    @BaseService.log_performance
    def credit_order(self, order_id) -> ServiceResult[dict]:
        """
        Credit the seller of a paid order exactly once.

        The order row is locked, ``seller_paid`` is checked, and the sale entry
        and the flag are written in one savepoint. Database failures are
        returned as LEDGER_WRITE_FAILED, never retried here.

        Returns:
            ServiceResult with {"order_id", "credited", "entry_id", "amount"}
            or ORDER_NOT_FOUND / NOT_PAID / LEDGER_WRITE_FAILED
        """
        try:
            with UnitOfWork("ledger.credit_order"):
                try:
                    order = Order.objects.select_for_update().get(pk=order_id)
                except (Order.DoesNotExist, ValidationError):
                    return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")

                if order.seller_paid:
                    ledger_credits_total.labels(result="already_credited").inc()
                    return service_ok(
                        {"order_id": str(order.pk), "credited": False, "entry_id": None, "amount": order.total_price}
                    )
                if order.payment_status != OrderPaymentStatus.COMPLETED:
                    return service_err(
                        ErrorCodes.NOT_PAID, f"Order {order.order_number} payment is {order.payment_status}"
                    )
                if order.status in OrderStatus.VOID:
                    return service_err(
                        ErrorCodes.NOT_CREDITABLE, f"Order {order.order_number} is {order.status}; refund it instead"
                    )

                result = self.credit(
                    order.seller_id, order.pk, order.total_price, description=f"Sale {order.order_number}"
                )
                if not result.ok:
                    ledger_credits_total.labels(result="error").inc()
                    return service_err(ErrorCodes.LEDGER_WRITE_FAILED, result.error_detail)

                now = timezone.now()
                Order.objects.filter(pk=order.pk, seller_paid=False).update(
                    seller_paid=True, seller_paid_at=now, ledger_error="", updated_at=now
                )
        except DatabaseError as e:
            error = LedgerWriteError(order_id, e)
            ledger_credits_total.labels(result="error").inc()
            self.logger.error(str(error))
            return service_err(ErrorCodes.LEDGER_WRITE_FAILED, str(error))

        ledger_credits_total.labels(result="credited" if result.value["created"] else "repaired").inc()
        return service_ok(
            {
                "order_id": str(order.pk),
                "credited": result.value["created"],
                "entry_id": result.value["entry_id"],
                "amount": order.total_price,
            }
        )

    @BaseService.log_performance
    def batch_credit(self, seller_id=None) -> ServiceResult[dict]:
        """
        Credit every completed order that has not reached the ledger yet.

        Each order is credited on its own; one failure does not stop the rest.
        Orders flagged with ``ledger_error`` are included, which is how an
        operator clears them.

        Returns:
            ServiceResult with {"credited", "skipped", "failed", "total_amount"}
        """
        queryset = Order.objects.filter(payment_status=OrderPaymentStatus.COMPLETED, seller_paid=False).exclude(
            status__in=OrderStatus.VOID
        )
        if seller_id is not None:
            queryset = queryset.filter(seller_id=seller_id)

        credited, skipped, failed = [], [], []
        total_amount = ZERO
        for order_id in queryset.order_by("paid_at").values_list("pk", flat=True):
            result = self.credit_order(order_id)
            if not result.ok:
                failed.append({"order_id": str(order_id), "error": result.error})
            elif result.value["credited"]:
                credited.append(str(order_id))
                total_amount += result.value["amount"]
            else:
                skipped.append(str(order_id))

        self.logger.info(
            f"Batch credit seller={seller_id or 'all'}: credited={len(credited)} skipped={len(skipped)} "
            f"failed={len(failed)} amount={total_amount}"
        )
        return service_ok({"credited": credited, "skipped": skipped, "failed": failed, "total_amount": total_amount})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @BaseService.log_performance
    def get_balance(self, seller: User) -> ServiceResult[dict]:
        """Seller totals; zeros when the seller has never been credited."""
        balance = SellerBalance.objects.filter(seller=seller).first()
        data = balance_to_dict(balance)
        data["seller_id"] = str(seller.pk)
        data["updated_at"] = balance.updated_at if balance else None
        return service_ok(data)

    @BaseService.log_performance
    def transaction_history(
        self, seller: User, entry_type: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[dict]:
        """Ledger entries newest first, optionally filtered by type."""
        if entry_type and entry_type not in {choice for choice, _ in LedgerEntry.TYPE_CHOICES}:
            return service_err(ErrorCodes.VALIDATION_ERROR, f"Unknown entry type '{entry_type}'")

        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

        queryset = LedgerEntry.objects.filter(balance__seller=seller).select_related("order")
        if entry_type:
            queryset = queryset.filter(entry_type=entry_type)
        queryset = queryset.order_by("-created_at")

        total_count = queryset.count()
        offset = (page - 1) * page_size
        return service_ok(
            {
                "results": list(queryset[offset : offset + page_size]),
                "count": total_count,
                "page": page,
                "page_size": page_size,
                "num_pages": (total_count + page_size - 1) // page_size,
            }
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    @BaseService.log_performance
    def request_withdrawal(self, seller: User, amount, notes: str = "") -> ServiceResult[LedgerEntry]:
        """
        Reserve ``amount`` of the seller's balance for a withdrawal.

        The amount leaves ``current_balance`` immediately and sits in
        ``pending_withdrawals`` until an admin confirms or rejects it.
        """
        try:
            amount = Decimal(str(amount)).quantize(Decimal("0.01"))
        except (InvalidOperation, TypeError, ValueError):
            return service_err(ErrorCodes.VALIDATION_ERROR, "Amount must be a number")
        if amount <= 0:
            return service_err(ErrorCodes.VALIDATION_ERROR, "Amount must be positive")

        with UnitOfWork("ledger.request_withdrawal"):
            balance = self._lock_balance(seller.pk)
            if balance.current_balance < amount:
                withdrawals_total.labels(status="insufficient_balance").inc()
                return service_err(
                    ErrorCodes.INSUFFICIENT_BALANCE,
                    f"Insufficient balance: available {balance.current_balance}, requested {amount}",
                )

            entry = LedgerEntry.objects.create(
                balance=balance,
                entry_type=LedgerEntry.TYPE_WITHDRAWAL,
                amount=amount,
                status=LedgerEntry.STATUS_PENDING,
                description=f"Withdrawal request of {amount}",
                metadata={"notes": notes} if notes else {},
            )
            self._apply_to_balance(balance, current_balance=-amount, pending_withdrawals=amount)

        withdrawals_total.labels(status="requested").inc()
        self.logger.info(f"Seller {seller.pk} requested withdrawal of {amount} ({entry.pk})")
        return service_ok(entry)

    @BaseService.log_performance
    def confirm_withdrawal(self, entry_id, admin: User, reference: str = "") -> ServiceResult[LedgerEntry]:
        """``pending -> completed``: the money has left the platform."""
        return self._settle_withdrawal(entry_id, admin, LedgerEntry.STATUS_COMPLETED, reference=reference)

    @BaseService.log_performance
    def reject_withdrawal(self, entry_id, admin: User, reason: str = "") -> ServiceResult[LedgerEntry]:
        """``pending -> failed``: the amount returns to the seller's balance."""
        return self._settle_withdrawal(entry_id, admin, LedgerEntry.STATUS_FAILED, reason=reason)

    def _settle_withdrawal(
        self, entry_id, admin: User, status: str, reference: str = "", reason: str = ""
    ) -> ServiceResult[LedgerEntry]:
        with UnitOfWork("ledger.settle_withdrawal"):
            try:
                entry = (
                    LedgerEntry.objects.select_for_update()
                    .select_related("balance")
                    .get(pk=entry_id, entry_type=LedgerEntry.TYPE_WITHDRAWAL)
                )
            except (LedgerEntry.DoesNotExist, ValidationError):
                return service_err(ErrorCodes.LEDGER_ENTRY_NOT_FOUND, f"Withdrawal {entry_id} not found")

            if entry.status != LedgerEntry.STATUS_PENDING:
                return service_err(ErrorCodes.ALREADY_SETTLED, f"Withdrawal {entry_id} is already {entry.status}")

            balance = SellerBalance.objects.select_for_update().get(pk=entry.balance_id)
            now = timezone.now()
            metadata = dict(entry.metadata, settled_by=str(admin.pk))
            if reference:
                metadata["reference"] = reference
            if reason:
                metadata["reason"] = reason

            updated = LedgerEntry.objects.filter(pk=entry.pk, status=LedgerEntry.STATUS_PENDING).update(
                status=status, settled_at=now, metadata=metadata
            )
            if not updated:
                return service_err(ErrorCodes.ALREADY_SETTLED, f"Withdrawal {entry_id} was settled concurrently")

            if status == LedgerEntry.STATUS_COMPLETED:
                self._apply_to_balance(balance, pending_withdrawals=-entry.amount, withdrawn_total=entry.amount)
            else:
                self._apply_to_balance(balance, pending_withdrawals=-entry.amount, current_balance=entry.amount)

            entry.status, entry.settled_at, entry.metadata = status, now, metadata

        withdrawals_total.labels(status=status).inc()
        self.logger.info(f"Withdrawal {entry.pk} of {entry.amount} -> {status} by admin {admin.pk}")
        return service_ok(entry)

    def reverse_sale(self, order: Order, reason: str = "") -> ServiceResult[dict]:
        """
        Take a credited sale back out of the seller's balance.

        Appends a negative ``adjustment`` keyed ``reversal:<order id>``; the
        original sale entry stays. Runs in the caller's unit of work when
        cancelling a paid order.
        """
        with UnitOfWork("ledger.reverse_sale"):
            existing = LedgerEntry.objects.filter(idempotency_key=reversal_key(order.pk)).first()
            if existing is not None:
                return service_ok({"entry_id": str(existing.pk), "created": False, "amount": existing.amount})
            if not LedgerEntry.objects.filter(idempotency_key=sale_key(order.pk)).exists():
                return service_ok({"entry_id": None, "created": False, "amount": ZERO})

            balance = self._lock_balance(order.seller_id)
            amount = -order.total_price
            entry = LedgerEntry.objects.create(
                balance=balance,
                entry_type=LedgerEntry.TYPE_ADJUSTMENT,
                amount=amount,
                order=order,
                status=LedgerEntry.STATUS_COMPLETED,
                description=f"Reversal of sale {order.order_number}",
                idempotency_key=reversal_key(order.pk),
                metadata={"reason": reason} if reason else {},
                settled_at=timezone.now(),
            )
            self._apply_to_balance(balance, current_balance=amount)

        if balance.current_balance + amount < 0:
            self.logger.warning(
                f"Seller {order.seller_id} balance is negative after reversing {order.order_number}; "
                f"the sale was already paid out"
            )
        self.logger.info(f"Reversed sale {order.order_number} ({order.total_price}) for seller {order.seller_id}")
        return service_ok({"entry_id": str(entry.pk), "created": True, "amount": amount})

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def record_payout(self, order: Order, admin: Optional[User], notes: str = "") -> ServiceResult[LedgerEntry]:
        """
        Debit a settled order from the seller's balance.

        Must run inside the caller's unit of work with ``order`` locked and
        already credited. Moves the sale entry ``available -> completed`` and
        appends a completed ``withdrawal`` for the same amount.
        """
        balance = self._lock_balance(order.seller_id)
        if balance.current_balance < order.total_price:
            return service_err(
                ErrorCodes.INSUFFICIENT_BALANCE,
                f"Seller balance {balance.current_balance} does not cover payout of {order.total_price}",
            )

        now = timezone.now()
        LedgerEntry.objects.filter(idempotency_key=sale_key(order.pk), status=LedgerEntry.STATUS_AVAILABLE).update(
            status=LedgerEntry.STATUS_COMPLETED, settled_at=now
        )
        entry = LedgerEntry.objects.create(
            balance=balance,
            entry_type=LedgerEntry.TYPE_WITHDRAWAL,
            amount=order.total_price,
            order=order,
            status=LedgerEntry.STATUS_COMPLETED,
            description=f"Payout for {order.order_number}",
            idempotency_key=payout_key(order.pk),
            metadata={"admin_id": str(admin.pk) if admin else None, "notes": notes},
            settled_at=now,
        )
        self._apply_to_balance(balance, current_balance=-order.total_price, withdrawn_total=order.total_price)
        return service_ok(entry)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @BaseService.log_performance
    def audit(self, seller_id=None) -> ServiceResult[dict]:
        """
        Replay ledgers and compare with stored totals.

        Returns:
            ServiceResult with {"sellers_checked", "drift": [...],
            "paid_but_uncredited": [...], "credited_without_entry": [...]}
        """
        balances = SellerBalance.objects.all()
        if seller_id is not None:
            balances = balances.filter(seller_id=seller_id)

        drift = []
        checked = 0
        for balance in balances.iterator():
            checked += 1
            replayed = replay_entries(LedgerEntry.objects.filter(balance=balance).order_by("created_at"))
            stored = balance_to_dict(balance)
            mismatched = {
                field: {"stored": stored[field], "replayed": replayed[field]}
                for field in BALANCE_FIELDS
                if stored[field] != replayed[field]
            }
            if mismatched:
                drift.append({"seller_id": str(balance.seller_id), "fields": mismatched})

        orders = Order.objects.filter(payment_status=OrderPaymentStatus.COMPLETED).exclude(status__in=OrderStatus.VOID)
        if seller_id is not None:
            orders = orders.filter(seller_id=seller_id)

        uncredited = [
            {"order_id": str(o.pk), "order_number": o.order_number, "amount": o.total_price, "error": o.ledger_error}
            for o in orders.filter(seller_paid=False).order_by("paid_at")
        ]
        credited_ids = set(
            LedgerEntry.objects.filter(entry_type=LedgerEntry.TYPE_SALE, order__in=orders).values_list(
                "order_id", flat=True
            )
        )
        credited_without_entry = [
            str(pk) for pk in orders.filter(seller_paid=True).values_list("pk", flat=True) if pk not in credited_ids
        ]

        for item in drift:
            self.logger.error(f"Ledger drift for seller {item['seller_id']}: {item['fields']}")
        for item in uncredited:
            self.logger.error(f"paid_but_uncredited: order {item['order_number']} amount={item['amount']}")
        for pk in credited_without_entry:
            self.logger.error(f"Order {pk} is flagged seller_paid but has no sale entry")

        unsettled = orders.filter(seller_paid=False).aggregate(total=Sum("total_price"))["total"] or ZERO
        self.logger.info(
            f"Ledger audit: sellers={checked} drift={len(drift)} uncredited={len(uncredited)} "
            f"missing_entries={len(credited_without_entry)}"
        )
        return service_ok(
            {
                "sellers_checked": checked,
                "drift": drift,
                "paid_but_uncredited": uncredited,
                "uncredited_total": unsettled,
                "credited_without_entry": credited_without_entry,
            }
        )
