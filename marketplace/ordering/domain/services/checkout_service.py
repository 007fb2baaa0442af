"""
CheckoutService - Cart to Orders

Turns a buyer's cart into one pending order per line item, reserves each
product, clears the cart and asks the gateway for a single charge covering
every order. All of it happens in one unit of work: if the gateway call fails
the orders, reservations and cart changes roll back together.
"""

import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.utils import timezone

from infrastructure.observability.tracing import add_span_attributes, get_tracer
from infrastructure.payments import GatewayError, InvalidPhoneNumber, PaymentGatewayInterface, normalize_phone
from marketplace.cart.domain.models.cart import Cart
from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.domain.events.base import publish_after_commit
from marketplace.domain.events.order_events import CheckoutCreatedEvent
from marketplace.infra.observability.metrics import (
    checkout_items_skipped_total,
    checkout_value,
    checkouts_total,
    orders_placed_total,
)
from marketplace.ordering.domain.models.order import Order, OrderPaymentStatus, OrderStatus, PaymentRequest
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok
from utils.logging_utils import mask_phone
from utils.transaction_utils import UnitOfWork

User = get_user_model()
tracer = get_tracer(__name__)

ADDRESS_REQUIRED_FIELDS = ("street", "city")
ADDRESS_OPTIONAL_FIELDS = ("building", "room", "landmarks")
# Daraja AccountReference is limited to 12 characters
PAYMENT_REFERENCE_LENGTH = 12


class SkipReason:
    UNAVAILABLE = "unavailable"
    OWN_PRODUCT = "own_product"
    RESERVATION_CONFLICT = "reservation_conflict"


@dataclass
class SkippedItem:
    product_id: str
    title: str
    reason: str


def validate_shipping_address(address) -> dict:
    """
    Return a cleaned address dict or raise ValueError naming the bad field.

    ``street`` and ``city`` are required; ``building``, ``room`` and
    ``landmarks`` are optional free text.
    """
    if not isinstance(address, dict):
        raise ValueError("shipping_address must be an object")

    cleaned = {}
    for field in ADDRESS_REQUIRED_FIELDS:
        value = str(address.get(field) or "").strip()
        if not value:
            raise ValueError(f"shipping_address.{field} is required")
        cleaned[field] = value
    for field in ADDRESS_OPTIONAL_FIELDS:
        value = str(address.get(field) or "").strip()
        if value:
            cleaned[field] = value
    return cleaned


class CheckoutService(BaseService):
    """
    Checkout orchestrator.

    Args:
        inventory_service: Reservation transitions
        ledger_service: Seller credits (test-mode checkouts only)
        gateway_provider: Callable returning the payment gateway, resolved per
            checkout so tests and settings overrides can swap it
    """

    def __init__(
        self,
        inventory_service: InventoryService = None,
        ledger_service=None,
        gateway_provider: Optional[Callable[[], PaymentGatewayInterface]] = None,
    ):
        super().__init__()
        self.inventory_service = inventory_service or InventoryService()
        if ledger_service is None:
            from payment_system.domain.services.ledger_service import LedgerService

            ledger_service = LedgerService()
        self.ledger_service = ledger_service
        if gateway_provider is None:
            from infrastructure.container import get_payment_gateway

            gateway_provider = get_payment_gateway
        self.gateway_provider = gateway_provider

    @property
    def test_mode(self) -> bool:
        return bool(getattr(settings, "PAYMENT_TEST_MODE", False))

    @BaseService.log_performance
    def checkout(
        self, buyer: User, shipping_address: dict, phone: str, notes: str = "", test_mode_requested: bool = False
    ) -> ServiceResult[dict]:
        """
        Check out the buyer's whole cart.

        Returns:
            ServiceResult with {"checkout_session_id", "total_amount",
            "order_ids", "orders", "seller_totals", "skipped",
            "payment_correlation_id", "customer_message", "test_mode"}

            Errors: VALIDATION_ERROR, INVALID_PHONE, CART_EMPTY,
            NOTHING_TO_CHECKOUT (value carries the skipped items), INVALID_AMOUNT,
            GATEWAY_ERROR (value carries ``retryable``)
        """
        try:
            address = validate_shipping_address(shipping_address)
        except ValueError as e:
            return service_err(ErrorCodes.VALIDATION_ERROR, str(e))

        try:
            msisdn = normalize_phone(phone)
        except InvalidPhoneNumber as e:
            return service_err(ErrorCodes.INVALID_PHONE, str(e))

        test_mode = self.test_mode
        if test_mode_requested and not test_mode:
            self.logger.warning(f"Buyer {buyer.pk} asked for a test-mode checkout; ignored, test mode is off")

        with tracer.start_as_current_span("checkout") as span:
            add_span_attributes(span, buyer_id=buyer.pk, test_mode=test_mode)
            try:
                with UnitOfWork("checkout") as uow:
                    result = self._checkout_in_unit_of_work(uow, buyer, address, msisdn, notes, test_mode)
                    if not result.ok:
                        uow.abort()
            except GatewayError as e:
                checkouts_total.labels(outcome="gateway_error").inc()
                self.logger.error(f"Checkout for buyer {buyer.pk} rolled back, gateway error: {e}")
                return service_err(ErrorCodes.GATEWAY_ERROR, str(e), value={"retryable": e.retryable})
            except InvalidPhoneNumber as e:
                checkouts_total.labels(outcome="invalid_phone").inc()
                return service_err(ErrorCodes.INVALID_PHONE, str(e))

            if result.ok:
                add_span_attributes(span, checkout_session_id=result.value["checkout_session_id"])

        checkouts_total.labels(outcome="ok" if result.ok else result.error).inc()
        return result

    def _checkout_in_unit_of_work(
        self, uow: UnitOfWork, buyer: User, address: dict, msisdn: str, notes: str, test_mode: bool
    ) -> ServiceResult[dict]:
        # Lock the cart so a double-submitted checkout waits for the first one
        cart = Cart.objects.select_for_update().filter(user=buyer).first()
        items = list(cart.items.select_related("product").order_by("added_at")) if cart else []
        if not items:
            return service_err(ErrorCodes.CART_EMPTY, "Cannot check out an empty cart")

        skipped: List[SkippedItem] = []
        eligible = []
        for item in items:
            product = item.product
            if product.seller_id == buyer.pk:
                skipped.append(SkippedItem(str(product.pk), product.name, SkipReason.OWN_PRODUCT))
            elif not product.is_available:
                skipped.append(SkippedItem(str(product.pk), product.name, SkipReason.UNAVAILABLE))
            else:
                eligible.append(item)

        checkout_session_id = uuid.uuid4().hex
        orders: List[Order] = []
        for item in eligible:
            product = item.product
            reservation = self.inventory_service.reserve(product.pk)
            if not reservation.ok:
                # Lost the race to a concurrent checkout
                skipped.append(SkippedItem(str(product.pk), product.name, SkipReason.RESERVATION_CONFLICT))
                continue

            orders.append(
                Order.objects.create(
                    buyer=buyer,
                    seller_id=product.seller_id,
                    product=product,
                    product_name=product.name,
                    quantity=item.quantity,
                    unit_price=product.price,
                    total_price=product.price * item.quantity,
                    checkout_session_id=checkout_session_id,
                    shipping_address=address,
                    notes=notes,
                    mpesa_phone_number=msisdn,
                )
            )

        for entry in skipped:
            checkout_items_skipped_total.labels(reason=entry.reason).inc()

        if not orders:
            return service_err(
                ErrorCodes.NOTHING_TO_CHECKOUT,
                "None of the items in your cart can be checked out",
                value={"skipped": [asdict(s) for s in skipped]},
            )

        seller_totals = OrderedDict()
        for order in orders:
            key = str(order.seller_id)
            seller_totals[key] = seller_totals.get(key, Decimal("0")) + order.total_price
        total_amount = sum(seller_totals.values(), Decimal("0"))

        if total_amount != total_amount.to_integral_value():
            # Rolls back the reservations; nothing is charged or credited
            return service_err(
                ErrorCodes.INVALID_AMOUNT,
                f"Order total {total_amount} is not a whole number of shillings and cannot be charged",
            )

        cart.items.all().delete()

        customer_message = ""
        if test_mode:
            correlation_id = f"TEST-{checkout_session_id}"
            self._complete_test_checkout(orders, correlation_id)
        else:
            initiation = self.gateway_provider().initiate(
                msisdn,
                total_amount,
                reference=checkout_session_id[:PAYMENT_REFERENCE_LENGTH],
                description="Campus order",
            )
            correlation_id = initiation.correlation_id
            customer_message = initiation.customer_message
            Order.objects.filter(pk__in=[o.pk for o in orders]).update(
                payment_correlation_id=correlation_id, updated_at=timezone.now()
            )
            for order in orders:
                order.payment_correlation_id = correlation_id
            self._record_payment_requests(orders, correlation_id, msisdn, total_amount)

        orders_placed_total.inc(len(orders))
        checkout_value.observe(float(total_amount))
        publish_after_commit(
            uow,
            CheckoutCreatedEvent(
                checkout_session_id, str(buyer.pk), [str(o.pk) for o in orders], total_amount, correlation_id
            ),
        )
        self.logger.info(
            f"Checkout {checkout_session_id}: buyer={buyer.pk} orders={len(orders)} total={total_amount} "
            f"skipped={len(skipped)} phone={mask_phone(msisdn)} test_mode={test_mode}"
        )

        return service_ok(
            {
                "checkout_session_id": checkout_session_id,
                "total_amount": total_amount,
                "order_ids": [str(o.pk) for o in orders],
                "orders": orders,
                "seller_totals": dict(seller_totals),
                "skipped": [asdict(s) for s in skipped],
                "payment_correlation_id": correlation_id,
                "customer_message": customer_message,
                "test_mode": test_mode,
            }
        )

    @BaseService.log_performance
    def retry_payment(self, order_id, buyer: User, phone: str) -> ServiceResult[dict]:
        """
        Send a fresh STK push for an unpaid checkout.

        Covers every order of ``order_id``'s checkout that is still
        ``pending/pending``; cancelled siblings are left out of the charge.
        The new correlation id replaces the old one only on orders whose
        payment is still pending, and the old one stays on record as a
        PaymentRequest so a late success for it is still applied.

        Returns:
            ServiceResult with {"checkout_session_id", "order_ids", "total_amount",
            "payment_correlation_id", "customer_message"}

            Errors: INVALID_PHONE, ORDER_NOT_FOUND, PERMISSION_DENIED,
            NOT_PAYABLE, INVALID_AMOUNT, GATEWAY_ERROR (value carries ``retryable``)
        """
        try:
            msisdn = normalize_phone(phone)
        except InvalidPhoneNumber as e:
            return service_err(ErrorCodes.INVALID_PHONE, str(e))

        try:
            with UnitOfWork("retry_payment") as uow:
                result = self._retry_payment_in_unit_of_work(order_id, buyer, msisdn)
                if not result.ok:
                    uow.abort()
        except GatewayError as e:
            self.logger.error(f"Payment retry for order {order_id} failed, gateway error: {e}")
            return service_err(ErrorCodes.GATEWAY_ERROR, str(e), value={"retryable": e.retryable})
        return result

    def _retry_payment_in_unit_of_work(self, order_id, buyer: User, msisdn: str) -> ServiceResult[dict]:
        try:
            order = Order.objects.get(pk=order_id)
        except (Order.DoesNotExist, ValidationError):
            return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")
        if order.buyer_id != buyer.pk:
            return service_err(ErrorCodes.PERMISSION_DENIED, "Only the buyer can pay for this order")
        if order.payment_status == OrderPaymentStatus.COMPLETED:
            return service_err(ErrorCodes.NOT_PAYABLE, f"Order {order.order_number} is already paid")
        if order.status != OrderStatus.PENDING or order.payment_status != OrderPaymentStatus.PENDING:
            return service_err(
                ErrorCodes.NOT_PAYABLE,
                f"Order {order.order_number} is {order.status} with payment {order.payment_status}",
            )

        orders = list(
            Order.objects.select_for_update()
            .filter(
                checkout_session_id=order.checkout_session_id,
                buyer=buyer,
                status=OrderStatus.PENDING,
                payment_status=OrderPaymentStatus.PENDING,
            )
            .order_by("created_at")
        )
        if order.pk not in {o.pk for o in orders}:
            return service_err(ErrorCodes.NOT_PAYABLE, f"Order {order.order_number} is no longer awaiting payment")

        total_amount = sum((o.total_price for o in orders), Decimal("0"))
        if total_amount != total_amount.to_integral_value():
            return service_err(
                ErrorCodes.INVALID_AMOUNT,
                f"Order total {total_amount} is not a whole number of shillings and cannot be charged",
            )

        previous = {o.pk: o.payment_correlation_id for o in orders}
        initiation = self.gateway_provider().initiate(
            msisdn,
            total_amount,
            reference=order.checkout_session_id[:PAYMENT_REFERENCE_LENGTH],
            description="Campus order",
        )

        for o in orders:
            if previous[o.pk]:
                PaymentRequest.objects.get_or_create(
                    order=o,
                    correlation_id=previous[o.pk],
                    defaults={"phone_number": o.mpesa_phone_number, "amount": total_amount},
                )
        updated = Order.objects.filter(
            pk__in=[o.pk for o in orders], status=OrderStatus.PENDING, payment_status=OrderPaymentStatus.PENDING
        ).update(
            payment_correlation_id=initiation.correlation_id, mpesa_phone_number=msisdn, updated_at=timezone.now()
        )
        if updated != len(orders):
            self.logger.warning(
                f"Payment retry {initiation.correlation_id}: {len(orders) - updated} order(s) settled meanwhile"
            )
        self._record_payment_requests(orders, initiation.correlation_id, msisdn, total_amount)

        self.logger.info(
            f"Payment retry for checkout {order.checkout_session_id}: orders={len(orders)} total={total_amount} "
            f"correlation_id={initiation.correlation_id} phone={mask_phone(msisdn)}"
        )
        return service_ok(
            {
                "checkout_session_id": order.checkout_session_id,
                "order_ids": [str(o.pk) for o in orders],
                "total_amount": total_amount,
                "payment_correlation_id": initiation.correlation_id,
                "customer_message": initiation.customer_message,
            }
        )

    @staticmethod
    def _record_payment_requests(orders: List[Order], correlation_id: str, msisdn: str, amount: Decimal) -> None:
        PaymentRequest.objects.bulk_create(
            [
                PaymentRequest(order=o, correlation_id=correlation_id, phone_number=msisdn, amount=amount)
                for o in orders
            ],
            ignore_conflicts=True,
        )

    def _complete_test_checkout(self, orders: List[Order], correlation_id: str) -> None:
        """Mark orders paid without the gateway (non-production only)."""
        now = timezone.now()
        Order.objects.filter(pk__in=[o.pk for o in orders]).update(
            status=OrderStatus.CONFIRMED,
            payment_status=OrderPaymentStatus.COMPLETED,
            payment_correlation_id=correlation_id,
            confirmed_at=now,
            paid_at=now,
            updated_at=now,
        )
        for order in orders:
            finalize = self.inventory_service.finalize_sold(order.product_id)
            if not finalize.ok:
                raise RuntimeError(f"Test checkout could not finalize product {order.product_id}: {finalize.error}")
            credit = self.ledger_service.credit_order(order.pk)
            if not credit.ok:
                raise RuntimeError(f"Test checkout could not credit order {order.pk}: {credit.error}")
            order.refresh_from_db()
        self.logger.warning(f"Test-mode checkout {correlation_id} completed without a gateway charge")
