from rest_framework import status
from rest_framework.response import Response

from marketplace.services.base import ErrorCodes

ERROR_STATUS = {
    ErrorCodes.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.INVALID_PHONE: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.INVALID_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.CART_EMPTY: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.NOTHING_TO_CHECKOUT: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.NOT_PAID: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.NOT_CREDITABLE: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCodes.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCodes.PRODUCT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCodes.CHECKOUT_SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCodes.LEDGER_ENTRY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCodes.ALREADY_SETTLED: status.HTTP_409_CONFLICT,
    ErrorCodes.INSUFFICIENT_BALANCE: status.HTTP_409_CONFLICT,
    ErrorCodes.RESERVATION_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCodes.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCodes.NOT_PAYABLE: status.HTTP_409_CONFLICT,
    ErrorCodes.GATEWAY_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def error_response(result) -> Response:
    """Render a failed ServiceResult as ``{"error", "detail"}`` with its HTTP status."""
    body = {"error": result.error, "detail": result.error_detail}
    if result.value is not None:
        body["data"] = result.value
    return Response(body, status=ERROR_STATUS.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR))
