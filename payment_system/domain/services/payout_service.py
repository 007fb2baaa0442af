from decimal import Decimal
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db.models import Count, Sum
from django.utils import timezone

from marketplace.domain.events.base import publish_after_commit, publish_event
from marketplace.ordering.domain.models.order import Order, OrderPaymentStatus, OrderStatus, PayoutStatus
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok
from payment_system.domain.events.definitions import PayoutSettledEvent
from payment_system.domain.services.ledger_service import LedgerService
from payment_system.infra.observability.metrics import payout_volume_total
from utils.transaction_utils import UnitOfWork

User = get_user_model()

MAX_PAGE_SIZE = 100


def payable_orders():
    """Paid orders the platform still owes their seller."""
    return Order.objects.filter(
        payment_status=OrderPaymentStatus.COMPLETED, payout_status=PayoutStatus.UNPAID
    ).exclude(status__in=OrderStatus.VOID)


class PayoutService(BaseService):
    """
    Admin settlement of seller earnings.

    Settling an order marks it paid out, moves its sale entry to ``completed``
    and debits the seller's balance with a completed withdrawal. Orders that
    are already settled are never settled twice.
    """

    def __init__(self, ledger_service: LedgerService = None):
        super().__init__()
        self.ledger_service = ledger_service or LedgerService()

    @BaseService.log_performance
    def payout_ledger(self, page: int = 1, page_size: int = 20, seller_id=None) -> ServiceResult[Dict[str, Any]]:
        """
        Orders awaiting payout, newest first, with per-seller totals.

        Returns:
            ServiceResult with {"results", "count", "page", "page_size",
            "num_pages", "pending_payout_total", "sellers"}
        """
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

        queryset = payable_orders().select_related("seller", "buyer", "product")
        if seller_id is not None:
            queryset = queryset.filter(seller_id=seller_id)

        total_count = queryset.count()
        pending_total = queryset.aggregate(total=Sum("total_price"))["total"] or Decimal("0.00")
        sellers = list(
            queryset.order_by()
            .values("seller_id", "seller__username")
            .annotate(orders=Count("id"), amount=Sum("total_price"))
            .order_by("-amount")
        )

        offset = (page - 1) * page_size
        return service_ok(
            {
                "results": list(queryset.order_by("-created_at")[offset : offset + page_size]),
                "count": total_count,
                "page": page,
                "page_size": page_size,
                "num_pages": (total_count + page_size - 1) // page_size,
                "pending_payout_total": pending_total,
                "sellers": [
                    {
                        "seller_id": str(row["seller_id"]),
                        "username": row["seller__username"],
                        "orders": row["orders"],
                        "amount": row["amount"],
                    }
                    for row in sellers
                ],
            }
        )

    @BaseService.log_performance
    def mark_order_paid_out(self, order_id, admin: User, notes: str = "") -> ServiceResult[Order]:
        """
        Settle one order with its seller.

        Errors: ORDER_NOT_FOUND, NOT_PAID, NOT_CREDITABLE, ALREADY_SETTLED,
        INSUFFICIENT_BALANCE, LEDGER_WRITE_FAILED
        """
        with UnitOfWork("payout.mark_order") as uow:
            try:
                order = Order.objects.select_for_update().get(pk=order_id)
            except (Order.DoesNotExist, ValidationError):
                return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")

            result = self._settle(order, admin, notes)
            if not result.ok:
                uow.abort()
                return result

            publish_after_commit(
                uow,
                PayoutSettledEvent(str(order.seller_id), [str(order.pk)], order.total_price, str(admin.pk)),
            )

        payout_volume_total.labels(status="paid").inc(float(order.total_price))
        self.logger.info(f"Order {order.order_number} paid out to seller {order.seller_id} by admin {admin.pk}")
        return service_ok(order)

    @BaseService.log_performance
    def mark_seller_paid_out(self, seller_id, admin: User, notes: str = "") -> ServiceResult[Dict[str, Any]]:
        """
        Settle every payable order of one seller.

        Each order is settled in its own unit of work; orders that fail
        (already settled concurrently, balance short) are reported and the
        rest still go through.

        Returns:
            ServiceResult with {"seller_id", "paid_order_ids", "skipped",
            "total_amount"}
        """
        if not User.objects.filter(pk=seller_id).exists():
            return service_err(ErrorCodes.VALIDATION_ERROR, f"Seller {seller_id} not found")

        paid, skipped = [], []
        total = Decimal("0.00")
        for order_id in payable_orders().filter(seller_id=seller_id).order_by("paid_at").values_list("pk", flat=True):
            with UnitOfWork("payout.mark_seller_order") as uow:
                order = Order.objects.select_for_update().get(pk=order_id)
                result = self._settle(order, admin, notes)
                if not result.ok:
                    uow.abort()
                    skipped.append({"order_id": str(order_id), "reason": result.error})
                    continue
            paid.append(order)
            total += order.total_price

        if paid:
            publish_event(PayoutSettledEvent(str(seller_id), [str(o.pk) for o in paid], total, str(admin.pk)))
            payout_volume_total.labels(status="paid").inc(float(total))

        self.logger.info(
            f"Seller {seller_id} payout by admin {admin.pk}: paid={len(paid)} skipped={len(skipped)} total={total}"
        )
        return service_ok(
            {
                "seller_id": str(seller_id),
                "paid_order_ids": [str(o.pk) for o in paid],
                "skipped": skipped,
                "total_amount": total,
            }
        )

    def _settle(self, order: Order, admin: Optional[User], notes: str) -> ServiceResult[Order]:
        """Settle a locked order inside the caller's unit of work."""
        if order.payment_status != OrderPaymentStatus.COMPLETED:
            return service_err(ErrorCodes.NOT_PAID, "Cannot pay out an order that has not been paid")
        if order.status in OrderStatus.VOID:
            return service_err(ErrorCodes.NOT_CREDITABLE, f"Order {order.order_number} is {order.status}")
        if order.payout_status == PayoutStatus.PAID:
            return service_err(ErrorCodes.ALREADY_SETTLED, f"Seller already paid for order {order.order_number}")

        if not order.seller_paid:
            credit = self.ledger_service.credit_order(order.pk)
            if not credit.ok:
                return credit
            order.refresh_from_db()

        debit = self.ledger_service.record_payout(order, admin, notes)
        if not debit.ok:
            return debit

        now = timezone.now()
        updated = Order.objects.filter(pk=order.pk, payout_status=PayoutStatus.UNPAID).update(
            payout_status=PayoutStatus.PAID,
            payout_at=now,
            payout_by=admin,
            payout_notes=notes[:500],
            updated_at=now,
        )
        if not updated:
            return service_err(ErrorCodes.ALREADY_SETTLED, f"Order {order.order_number} was settled concurrently")

        order.payout_status, order.payout_at, order.payout_by, order.payout_notes = PayoutStatus.PAID, now, admin, notes[:500]
        return service_ok(order)
