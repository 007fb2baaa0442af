from infrastructure.payments.interface import GatewayError, InvalidCallbackPayload, InvalidPhoneNumber


class PaymentError(Exception):
    """Base class for payment system exceptions."""

    pass


class LedgerWriteError(PaymentError):
    """Writing a seller credit failed after the payment itself was recorded."""

    def __init__(self, order_id, cause: Exception):
        self.order_id = order_id
        self.cause = cause
        super().__init__(f"Ledger credit for order {order_id} failed: {cause}")


class LedgerImmutableError(PaymentError):
    """An attempt to delete or rewrite a ledger entry."""

    pass


__all__ = [
    "PaymentError",
    "LedgerWriteError",
    "LedgerImmutableError",
    "GatewayError",
    "InvalidPhoneNumber",
    "InvalidCallbackPayload",
]
