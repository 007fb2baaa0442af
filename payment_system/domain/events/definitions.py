from decimal import Decimal
from typing import List, Optional

from marketplace.domain.events.base import DomainEvent


class PaymentSucceededEvent(DomainEvent):
    """Event: the gateway confirmed payment for the orders of one correlation id."""

    def __init__(self, correlation_id: str, order_ids: List[str], receipt_number: Optional[str], amount: Optional[Decimal]):
        super().__init__(
            event_type="payment.succeeded",
            payload={
                "correlation_id": correlation_id,
                "order_ids": order_ids,
                "receipt_number": receipt_number,
                "amount": str(amount) if amount is not None else None,
            },
        )


class PaymentFailedEvent(DomainEvent):
    """Event: the gateway reported the charge failed; orders were cancelled."""

    def __init__(self, correlation_id: str, order_ids: List[str], result_code: int, reason: str):
        super().__init__(
            event_type="payment.failed",
            payload={
                "correlation_id": correlation_id,
                "order_ids": order_ids,
                "result_code": result_code,
                "reason": reason,
            },
        )


class SellerCreditedEvent(DomainEvent):
    def __init__(self, seller_id: str, order_id: str, amount: Decimal, entry_id: str):
        super().__init__(
            event_type="ledger.seller_credited",
            payload={"seller_id": seller_id, "order_id": order_id, "amount": str(amount), "entry_id": entry_id},
        )


class PayoutSettledEvent(DomainEvent):
    """Event: an admin settled one or more orders with a seller."""

    def __init__(self, seller_id: str, order_ids: List[str], amount: Decimal, admin_id: Optional[str]):
        super().__init__(
            event_type="payout.settled",
            payload={"seller_id": seller_id, "order_ids": order_ids, "amount": str(amount), "admin_id": admin_id},
        )


class ReservationsReleasedEvent(DomainEvent):
    def __init__(self, product_ids: List[str], expired_order_ids: List[str]):
        super().__init__(
            event_type="reconciler.reservations_released",
            payload={"product_ids": product_ids, "expired_order_ids": expired_order_ids},
        )
