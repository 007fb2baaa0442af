"""
Service layer primitives shared by the marketplace and payment apps.

Expected outcomes (an item already reserved, a transition that is not
allowed, a balance that is too small) come back as a ``ServiceResult``
carrying one of the ``ErrorCodes`` below. Exceptions are reserved for
broken invariants and infrastructure failures.
"""

import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of a service call.

    ``value`` may be set on failures too, e.g. the skipped cart lines of a
    checkout that found nothing purchasable.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None


def service_ok(value: T = None) -> ServiceResult[T]:
    return ServiceResult(ok=True, value=value)


def service_err(error: str, error_detail: str = "", value: Any = None) -> ServiceResult:
    """Build a failed result; the detail defaults to the error code itself."""
    return ServiceResult(ok=False, value=value, error=error, error_detail=error_detail or error)


class BaseService:
    """Gives each service a logger named after its module and class."""

    def __init__(self):
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @staticmethod
    def log_performance(func: Callable) -> Callable:
        """Log duration and outcome of a service method.

        Failed results are logged at WARNING with their error code; exceptions
        are logged with traceback and re-raised.
        """

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            name = f"{self.__class__.__name__}.{func.__name__}"
            started = time.perf_counter()
            try:
                result = func(self, *args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - started) * 1000
                self.logger.error(f"{name} raised after {elapsed_ms:.1f}ms: {e}", exc_info=True)
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            if isinstance(result, ServiceResult) and not result.ok:
                self.logger.warning(f"{name} -> {result.error} ({elapsed_ms:.1f}ms)")
            else:
                self.logger.info(f"{name} ok ({elapsed_ms:.1f}ms)")
            return result

        return wrapper


class ErrorCodes:
    """Error codes returned by the order, ledger and payout services.

    ``utils.api_responses`` maps each code to an HTTP status.
    """

    # Checkout
    CART_EMPTY = "cart_empty"
    NOTHING_TO_CHECKOUT = "nothing_to_checkout"
    INVALID_PHONE = "invalid_phone"
    INVALID_AMOUNT = "invalid_amount"
    GATEWAY_ERROR = "gateway_error"

    # Inventory
    PRODUCT_NOT_FOUND = "product_not_found"
    RESERVATION_CONFLICT = "reservation_conflict"

    # Orders
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_TRANSITION = "invalid_transition"
    NOT_PAYABLE = "not_payable"
    CHECKOUT_SESSION_NOT_FOUND = "checkout_session_not_found"

    # Ledger and payouts
    ALREADY_SETTLED = "already_settled"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_PAID = "not_paid"
    NOT_CREDITABLE = "not_creditable"
    LEDGER_ENTRY_NOT_FOUND = "ledger_entry_not_found"
    LEDGER_WRITE_FAILED = "ledger_write_failed"

    PERMISSION_DENIED = "permission_denied"
    VALIDATION_ERROR = "validation_error"
