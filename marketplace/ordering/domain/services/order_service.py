"""
OrderService - Order Lifecycle Management

Applies state machine transitions to orders and answers order queries for
buyers, sellers and admins. Cancelling an order releases its inventory in the
same transaction as the status change.
"""

import logging
from decimal import Decimal
from typing import Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.utils import timezone

from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.domain.events.base import publish_after_commit
from marketplace.domain.events.order_events import OrderCancelledEvent, OrderStatusChangedEvent
from marketplace.domain.exceptions import InvalidTransition, ReservationConflict, TransitionNotPermitted
from marketplace.infra.observability.metrics import order_transitions_total
from marketplace.ordering.domain.models.order import (
    CancellationReason,
    Order,
    OrderPaymentStatus,
    OrderStatus,
)
from marketplace.ordering.domain.state_machine import (
    ActorRole,
    authorize_transition,
    transition_timestamps,
    validate_transition,
)
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok
from utils.rbac import is_admin
from utils.transaction_utils import UnitOfWork

User = get_user_model()
logger = logging.getLogger(__name__)

VALID_CANCELLATION_REASONS = {choice for choice, _ in Order.CANCELLATION_REASON_CHOICES}
MAX_PAGE_SIZE = 100


class OrderService(BaseService):
    """
    Service for managing order lifecycle.
    """

    def __init__(self, inventory_service: InventoryService = None, ledger_service=None):
        super().__init__()
        self.inventory_service = inventory_service or InventoryService()
        if ledger_service is None:
            from payment_system.domain.services.ledger_service import LedgerService

            ledger_service = LedgerService()
        self.ledger_service = ledger_service

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        order: Order,
        target: str,
        role: str,
        uow: UnitOfWork,
        actor: Optional[User] = None,
        reason: str = "",
        extra_filter: Optional[dict] = None,
        extra_updates: Optional[dict] = None,
    ) -> bool:
        """
        Move ``order`` to ``target`` inside the caller's unit of work.

        The UPDATE is conditioned on the status the caller observed (plus
        ``extra_filter``), so a concurrent change makes this return False
        instead of overwriting it.

        Raises:
            InvalidTransition: ``target`` is not reachable from the current status
            TransitionNotPermitted: ``role`` may not drive this change
        """
        current = order.status
        validate_transition(current, target)
        authorize_transition(current, target, role)

        now = timezone.now()
        updates = {"status": target, "updated_at": now}
        updates.update(transition_timestamps(target, now))
        if target == OrderStatus.CANCELLED:
            updates["cancelled_by"] = actor
            updates["cancellation_reason"] = reason or CancellationReason.OTHER
        updates.update(extra_updates or {})

        updated = Order.objects.filter(pk=order.pk, status=current, **(extra_filter or {})).update(**updates)
        if not updated:
            self.logger.info(f"Order {order.pk} changed concurrently; {current} -> {target} not applied")
            return False

        for field, value in updates.items():
            setattr(order, field, value)

        if target == OrderStatus.CANCELLED:
            paid = order.payment_status == OrderPaymentStatus.COMPLETED
            release = self.inventory_service.release(order.product_id, include_sold=paid)
            if not release.ok:
                # Order rows PROTECT their product, so only corrupt data gets here
                raise ReservationConflict(order.product_id)
            if paid and order.seller_paid:
                reversal = self.ledger_service.reverse_sale(order, reason=updates["cancellation_reason"])
                if not reversal.ok:
                    raise RuntimeError(f"Could not reverse ledger credit for order {order.pk}: {reversal.error}")
            if paid:
                self.logger.warning(
                    f"refund_required: paid order {order.order_number} cancelled, "
                    f"amount={order.total_price} receipt={order.mpesa_receipt_number or '-'}"
                )

        order_transitions_total.labels(from_status=current, to_status=target).inc()
        actor_id = str(actor.pk) if actor is not None else None
        events = [OrderStatusChangedEvent(str(order.pk), current, target, actor_id)]
        if target == OrderStatus.CANCELLED:
            events.append(OrderCancelledEvent(str(order.pk), actor_id, updates["cancellation_reason"], order.payment_status))
        publish_after_commit(uow, *events)
        return True

    @BaseService.log_performance
    def update_status(self, order_id, user: User, target_status: str, reason: str = "") -> ServiceResult[Order]:
        """
        Drive an order transition on behalf of ``user``.

        Returns:
            ServiceResult with the updated Order, or ORDER_NOT_FOUND,
            PERMISSION_DENIED, INVALID_TRANSITION, VALIDATION_ERROR
        """
        if target_status not in {choice for choice, _ in Order.STATUS_CHOICES}:
            return service_err(ErrorCodes.VALIDATION_ERROR, f"Unknown order status '{target_status}'")
        if reason and reason not in VALID_CANCELLATION_REASONS:
            return service_err(ErrorCodes.VALIDATION_ERROR, f"Unknown cancellation reason '{reason}'")

        with UnitOfWork("order.update_status") as uow:
            try:
                order = Order.objects.select_for_update().get(pk=order_id)
            except (Order.DoesNotExist, ValidationError):
                return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")

            role = self._actor_role(order, user)
            if role is None:
                return service_err(ErrorCodes.PERMISSION_DENIED, "You are not a party to this order")

            if target_status == OrderStatus.CANCELLED and not reason:
                reason = CancellationReason.BUYER_REQUEST if role == ActorRole.BUYER else CancellationReason.OTHER

            try:
                changed = self.apply_transition(order, target_status, role, uow, actor=user, reason=reason)
            except InvalidTransition as e:
                return service_err(ErrorCodes.INVALID_TRANSITION, str(e))
            except TransitionNotPermitted as e:
                return service_err(ErrorCodes.PERMISSION_DENIED, str(e))

            if not changed:
                return service_err(ErrorCodes.INVALID_TRANSITION, "Order was modified concurrently, retry")

        self.logger.info(f"Order {order.order_number} -> {target_status} by {role} {user.pk}")
        return service_ok(order)

    def cancel_order(self, order_id, user: User, reason: str = "") -> ServiceResult[Order]:
        """Cancel an order and release its inventory."""
        return self.update_status(order_id, user, OrderStatus.CANCELLED, reason=reason)

    def _actor_role(self, order: Order, user: User) -> Optional[str]:
        if is_admin(user):
            return ActorRole.ADMIN
        if order.seller_id == user.pk:
            return ActorRole.SELLER
        if order.buyer_id == user.pk:
            return ActorRole.BUYER
        return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @BaseService.log_performance
    def get_order(self, order_id, user: User) -> ServiceResult[Order]:
        """Get an order visible to its buyer, its seller or an admin."""
        try:
            order = Order.objects.select_related("buyer", "seller", "product").get(pk=order_id)
        except (Order.DoesNotExist, ValidationError):
            return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")

        if self._actor_role(order, user) is None:
            return service_err(ErrorCodes.PERMISSION_DENIED, "You don't have permission to view this order")
        return service_ok(order)

    @BaseService.log_performance
    def list_orders(
        self, user: User, as_role: str = "buyer", status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[dict]:
        """
        List the user's orders as buyer or seller, newest first.

        Returns:
            ServiceResult with {"results", "count", "page", "page_size", "num_pages"}
        """
        if as_role not in ("buyer", "seller"):
            return service_err(ErrorCodes.VALIDATION_ERROR, "as_role must be 'buyer' or 'seller'")

        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

        queryset = Order.objects.select_related("product", "buyer", "seller")
        queryset = queryset.filter(buyer=user) if as_role == "buyer" else queryset.filter(seller=user)
        if status:
            queryset = queryset.filter(status=status)
        queryset = queryset.order_by("-created_at")

        offset = (page - 1) * page_size
        total_count = queryset.count()
        orders = list(queryset[offset : offset + page_size])

        return service_ok(
            {
                "results": orders,
                "count": total_count,
                "page": page,
                "page_size": page_size,
                "num_pages": (total_count + page_size - 1) // page_size,
            }
        )

    @BaseService.log_performance
    def checkout_status(self, checkout_session_id: str, user: User) -> ServiceResult[dict]:
        """
        Aggregate the orders of one checkout for status polling.

        Overall state: ``paid`` when every order is paid, ``failed`` when every
        order failed, ``pending`` while any payment is outstanding, otherwise
        ``partial``.
        """
        queryset = Order.objects.filter(checkout_session_id=checkout_session_id).select_related("product")
        if not is_admin(user):
            queryset = queryset.filter(buyer=user)
        orders = list(queryset.order_by("created_at"))
        if not orders:
            return service_err(ErrorCodes.CHECKOUT_SESSION_NOT_FOUND, f"Checkout {checkout_session_id} not found")

        payment_states = {o.payment_status for o in orders}
        if payment_states == {OrderPaymentStatus.COMPLETED}:
            state = "paid"
        elif payment_states == {OrderPaymentStatus.FAILED}:
            state = "failed"
        elif OrderPaymentStatus.PENDING in payment_states:
            state = "pending"
        else:
            state = "partial"

        return service_ok(
            {
                "checkout_session_id": checkout_session_id,
                "state": state,
                "total_amount": sum((o.total_price for o in orders), Decimal("0")),
                "payment_correlation_id": orders[0].payment_correlation_id,
                "orders": orders,
            }
        )

    @BaseService.log_performance
    def payment_status(self, order_id, user: User) -> ServiceResult[dict]:
        result = self.get_order(order_id, user)
        if not result.ok:
            return result

        order = result.value
        return service_ok(
            {
                "order_id": str(order.pk),
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "amount": order.total_price,
                "mpesa_phone_number": order.mpesa_phone_number,
                "mpesa_receipt_number": order.mpesa_receipt_number,
                "payment_correlation_id": order.payment_correlation_id,
                "paid_at": order.paid_at,
            }
        )
