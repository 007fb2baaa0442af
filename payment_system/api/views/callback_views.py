import logging

from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from infrastructure.container import container
from payment_system.api.permissions import IsAllowedCallbackSource, client_ip
from payment_system.api.serializers.response_serializers import CallbackAckSerializer
from utils.logging_utils import sanitize_payload

logger = logging.getLogger(__name__)

ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}
RETRY = {"ResultCode": 1, "ResultDesc": "Temporarily unable to process, retry"}


@method_decorator(csrf_exempt, name="dispatch")
class MpesaCallbackView(APIView):
    """
    Receives STK push results from the gateway.

    Malformed, unmatched and already-applied payloads are acknowledged. When
    an order could not be written the answer is 503 so the gateway redelivers;
    every update is guarded on ``payment_status == pending``, so the retry only
    applies what is still missing.
    """

    authentication_classes = []
    permission_classes = [AllowAny, IsAllowedCallbackSource]

    @extend_schema(
        operation_id="payments_mpesa_callback",
        summary="M-Pesa STK push callback",
        description="""
        **What it receives:**
        - Daraja `Body.stkCallback` payload (MerchantRequestID, CheckoutRequestID,
          ResultCode, ResultDesc, CallbackMetadata)

        **What it returns:**
        - `{"ResultCode": 0, "ResultDesc": "Accepted"}`, including for malformed,
          unmatched or redelivered payloads
        - 503 when an order could not be updated, so the gateway redelivers
        """,
        request=None,
        responses={
            200: OpenApiResponse(response=CallbackAckSerializer, description="Callback acknowledged"),
            403: OpenApiResponse(description="Source address not allow-listed"),
            503: OpenApiResponse(response=CallbackAckSerializer, description="Storage failure, redeliver"),
        },
        tags=["Payments - Webhooks"],
    )
    def post(self, request):
        payload = request.data if isinstance(request.data, dict) else {}
        stk = payload.get("Body", {}).get("stkCallback", {}) if isinstance(payload.get("Body"), dict) else {}
        logger.info(
            f"Payment callback from {client_ip(request)}: "
            f"{sanitize_payload(stk, ('MerchantRequestID', 'CheckoutRequestID', 'ResultCode', 'ResultDesc'))}"
        )

        result = container.callback_service().handle_payload(payload, container.payment())
        if not result.ok:
            logger.warning(f"Payment callback not applied ({result.error}): {result.error_detail}")
        elif result.value.errors:
            logger.error(
                f"Payment callback {result.value.correlation_id} failed for "
                f"{len(result.value.errors)} order(s), asking for redelivery: {result.value.errors}"
            )
            return Response(RETRY, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(ACK, status=status.HTTP_200_OK)
