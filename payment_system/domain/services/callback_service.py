"""
PaymentCallbackService - Gateway Result Processing

Applies the gateway's asynchronous result to every order that shares its
correlation id. Delivery is at-least-once and may be concurrent, so every
change is a compare-and-set on ``payment_status == pending``: a redelivered
callback finds nothing left to change.

Each order is processed in its own unit of work. One order failing does not
stop the rest of the batch; failed orders are listed in ``CallbackOutcome.errors``
and stay pending, so the caller can ask the gateway to redeliver.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.db.models import Q
from django.utils import timezone

from infrastructure.observability.tracing import add_span_attributes, get_tracer
from infrastructure.payments import CallbackResult, InvalidCallbackPayload, PaymentGatewayInterface
from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.domain.events.base import publish_after_commit
from marketplace.ordering.domain.models.order import CancellationReason, Order, OrderPaymentStatus, OrderStatus
from marketplace.ordering.domain.services.order_service import OrderService
from marketplace.ordering.domain.state_machine import ActorRole
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok
from payment_system.domain.events.definitions import PaymentFailedEvent, PaymentSucceededEvent
from payment_system.domain.services.ledger_service import LedgerService
from payment_system.infra.observability.metrics import (
    paid_but_uncredited_total,
    payment_callback_orders_total,
    payment_callbacks_total,
    payment_volume_total,
    refunds_required_total,
)
from utils.logging_utils import mask_phone
from utils.transaction_utils import UnitOfWork

tracer = get_tracer(__name__)


class OrderOutcome:
    CONFIRMED = "confirmed"
    PAYMENT_RECORDED = "payment_recorded"
    CANCELLED = "cancelled"
    FAILED_RECORDED = "failed_recorded"
    ALREADY_FINAL = "already_final"
    REFUND_REQUIRED = "refund_required"
    SUPERSEDED = "superseded"
    ERROR = "error"


@dataclass
class CallbackOutcome:
    correlation_id: str
    success: bool
    matched: int = 0
    results: Dict[str, str] = field(default_factory=dict)
    credited: List[str] = field(default_factory=list)
    uncredited: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def order_ids(self) -> List[str]:
        return list(self.results)

    def to_dict(self) -> dict:
        return asdict(self)


class PaymentCallbackService(BaseService):
    """
    Idempotent processor for gateway payment results.

    Success: ``pending/pending -> confirmed/completed``, product ``reserved ->
    sold``, seller credited once. Failure: ``pending -> cancelled`` with
    reason ``payment-failed``, payment ``failed``, product released.
    """

    def __init__(
        self,
        inventory_service: InventoryService = None,
        ledger_service: LedgerService = None,
        order_service: OrderService = None,
    ):
        super().__init__()
        self.inventory_service = inventory_service or InventoryService()
        self.ledger_service = ledger_service or LedgerService()
        self.order_service = order_service or OrderService(
            inventory_service=self.inventory_service, ledger_service=self.ledger_service
        )

    def handle_payload(self, payload: Dict[str, Any], gateway: PaymentGatewayInterface) -> ServiceResult[CallbackOutcome]:
        """Parse a raw callback body with ``gateway`` and process it."""
        try:
            result = gateway.parse_callback(payload)
        except InvalidCallbackPayload as e:
            payment_callbacks_total.labels(outcome="malformed").inc()
            self.logger.warning(f"Rejected malformed payment callback: {e}")
            return service_err(ErrorCodes.VALIDATION_ERROR, str(e))
        return self.process(result)

    @BaseService.log_performance
    def process(self, result: CallbackResult) -> ServiceResult[CallbackOutcome]:
        """
        Apply one gateway result.

        Returns:
            ServiceResult with a CallbackOutcome. An unmatched correlation id is
            still ``ok`` (``matched == 0``).
        """
        outcome = CallbackOutcome(correlation_id=result.correlation_id, success=result.success)

        with tracer.start_as_current_span("payment_callback.process") as span:
            add_span_attributes(
                span, correlation_id=result.correlation_id, result_code=result.result_code, success=result.success
            )
            order_ids = list(
                Order.objects.filter(
                    Q(payment_correlation_id=result.correlation_id)
                    | Q(payment_requests__correlation_id=result.correlation_id)
                )
                .distinct()
                .order_by("created_at")
                .values_list("pk", flat=True)
            )
            outcome.matched = len(order_ids)

            if not order_ids:
                payment_callbacks_total.labels(outcome="unmatched").inc()
                self.logger.warning(
                    f"Payment callback for unknown correlation id {result.correlation_id} "
                    f"(result_code={result.result_code}); acknowledged without changes"
                )
                return service_ok(outcome)

            for order_id in order_ids:
                try:
                    if result.success:
                        status = self._apply_success(order_id, result, outcome)
                    else:
                        status = self._apply_failure(order_id, result)
                except (DatabaseError, ValidationError, RuntimeError) as e:
                    status = OrderOutcome.ERROR
                    outcome.errors.append({"order_id": str(order_id), "error": str(e)})
                    span.record_exception(e)
                    self.logger.error(
                        f"Payment callback {result.correlation_id}: order {order_id} not updated: {e}", exc_info=True
                    )
                outcome.results[str(order_id)] = status
                payment_callback_orders_total.labels(result=status).inc()

            add_span_attributes(span, matched=outcome.matched, errors=len(outcome.errors))

        payment_callbacks_total.labels(outcome="success" if result.success else "failure").inc()
        self.logger.info(
            f"Payment callback {result.correlation_id}: success={result.success} matched={outcome.matched} "
            f"results={outcome.results} phone={mask_phone(result.phone)}"
        )
        return service_ok(outcome)

    # ------------------------------------------------------------------
    # Success
    # ------------------------------------------------------------------

    def _apply_success(self, order_id, result: CallbackResult, outcome: CallbackOutcome) -> str:
        with UnitOfWork("payment_callback.success") as uow:
            order = Order.objects.select_for_update().get(pk=order_id)
            if order.payment_status != OrderPaymentStatus.PENDING:
                if self._is_second_charge(order, result):
                    refunds_required_total.labels(source="duplicate_payment").inc()
                    self.logger.warning(
                        f"refund_required: order {order.order_number} already paid with receipt "
                        f"{order.mpesa_receipt_number}, charged again with {result.receipt_number}, "
                        f"amount={order.total_price}"
                    )
                    return OrderOutcome.REFUND_REQUIRED
                if order.payment_status != OrderPaymentStatus.COMPLETED:
                    self.logger.warning(
                        f"Success callback for order {order.order_number} whose payment is already "
                        f"{order.payment_status}; left unchanged"
                    )
                return OrderOutcome.ALREADY_FINAL

            now = timezone.now()
            payment_updates = {
                "payment_status": OrderPaymentStatus.COMPLETED,
                "mpesa_receipt_number": result.receipt_number or "",
                "paid_at": now,
            }

            if order.status in OrderStatus.VOID:
                # Buyer cancelled or the reservation timed out before the money arrived
                Order.objects.filter(pk=order.pk, payment_status=OrderPaymentStatus.PENDING).update(
                    updated_at=now, **payment_updates
                )
                self.logger.warning(
                    f"refund_required: payment {result.receipt_number or '-'} received for "
                    f"{order.status} order {order.order_number}, amount={order.total_price}"
                )
                return OrderOutcome.REFUND_REQUIRED

            if order.status == OrderStatus.PENDING:
                changed = self.order_service.apply_transition(
                    order,
                    OrderStatus.CONFIRMED,
                    ActorRole.SYSTEM,
                    uow,
                    extra_filter={"payment_status": OrderPaymentStatus.PENDING},
                    extra_updates=payment_updates,
                )
                status = OrderOutcome.CONFIRMED
            else:
                # Seller moved the order forward before the payment landed
                changed = Order.objects.filter(pk=order.pk, payment_status=OrderPaymentStatus.PENDING).update(
                    updated_at=now, **payment_updates
                )
                status = OrderOutcome.PAYMENT_RECORDED
            if not changed:
                return OrderOutcome.ALREADY_FINAL

            finalize = self.inventory_service.finalize_sold(order.product_id)
            if not finalize.ok:
                raise RuntimeError(f"Product {order.product_id} could not be marked sold: {finalize.error_detail}")

            payment_volume_total.labels(status="completed").inc(float(order.total_price))
            publish_after_commit(
                uow,
                PaymentSucceededEvent(result.correlation_id, [str(order.pk)], result.receipt_number, order.total_price),
            )

            credit = self.ledger_service.credit_order(order.pk)
            if credit.ok:
                outcome.credited.append(str(order.pk))
            else:
                self._flag_uncredited(order, credit)
                outcome.uncredited.append(str(order.pk))

        return status

    @staticmethod
    def _is_second_charge(order: Order, result: CallbackResult) -> bool:
        """A success carrying a different receipt than the one already recorded."""
        return (
            order.payment_status == OrderPaymentStatus.COMPLETED
            and bool(result.receipt_number)
            and bool(order.mpesa_receipt_number)
            and result.receipt_number != order.mpesa_receipt_number
        )

    def _flag_uncredited(self, order: Order, credit: ServiceResult) -> None:
        """Record a failed credit on the order for an operator; never retried here."""
        message = f"{credit.error}: {credit.error_detail}"
        Order.objects.filter(pk=order.pk).update(ledger_error=message[:1000], updated_at=timezone.now())
        paid_but_uncredited_total.inc()
        self.logger.error(
            f"paid_but_uncredited: order {order.order_number} seller={order.seller_id} "
            f"amount={order.total_price} error={message}"
        )

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    def _apply_failure(self, order_id, result: CallbackResult) -> str:
        with UnitOfWork("payment_callback.failure") as uow:
            order = Order.objects.select_for_update().get(pk=order_id)
            if order.payment_correlation_id != result.correlation_id:
                # A newer prompt is still open for this order
                self.logger.info(
                    f"Failure callback for superseded request {result.correlation_id} of order "
                    f"{order.order_number}; ignored"
                )
                return OrderOutcome.SUPERSEDED
            if order.payment_status != OrderPaymentStatus.PENDING:
                if order.payment_status == OrderPaymentStatus.COMPLETED:
                    self.logger.warning(
                        f"Failure callback (code {result.result_code}) for already paid order "
                        f"{order.order_number}; ignored"
                    )
                return OrderOutcome.ALREADY_FINAL

            failed = {"payment_status": OrderPaymentStatus.FAILED}
            if order.is_terminal:
                Order.objects.filter(pk=order.pk, payment_status=OrderPaymentStatus.PENDING).update(
                    updated_at=timezone.now(), **failed
                )
                status = OrderOutcome.FAILED_RECORDED
            else:
                changed = self.order_service.apply_transition(
                    order,
                    OrderStatus.CANCELLED,
                    ActorRole.SYSTEM,
                    uow,
                    reason=CancellationReason.PAYMENT_FAILED,
                    extra_filter={"payment_status": OrderPaymentStatus.PENDING},
                    extra_updates=failed,
                )
                if not changed:
                    return OrderOutcome.ALREADY_FINAL
                status = OrderOutcome.CANCELLED

            publish_after_commit(
                uow, PaymentFailedEvent(result.correlation_id, [str(order.pk)], result.result_code, result.result_desc)
            )

        self.logger.info(
            f"Order {order.order_number} payment failed (code {result.result_code}: {result.result_desc})"
        )
        return status

    def pending_orders(self, correlation_id: str) -> Optional[List[Order]]:
        """Orders of ``correlation_id`` still waiting for a result; None if the id is unknown."""
        orders = list(Order.objects.filter(payment_correlation_id=correlation_id))
        if not orders:
            return None
        return [o for o in orders if o.payment_status == OrderPaymentStatus.PENDING]
