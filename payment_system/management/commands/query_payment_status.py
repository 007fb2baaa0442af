import logging

from django.core.management.base import BaseCommand, CommandError

from infrastructure.container import container
from infrastructure.payments import CallbackResult, GatewayError, PaymentStatus


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Asks the gateway for the result of an STK push and optionally applies a definite result."

    def add_arguments(self, parser):
        parser.add_argument("correlation_id", help="Gateway CheckoutRequestID stored on the orders")
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Feed a succeeded or failed result to the callback processor",
        )
        parser.add_argument("--receipt", default=None, help="M-Pesa receipt number to record when applying success")

    def handle(self, *args, **options):
        correlation_id = options["correlation_id"]
        callback_service = container.callback_service()

        pending = callback_service.pending_orders(correlation_id)
        if pending is None:
            raise CommandError(f"No orders carry correlation id {correlation_id}")
        self.stdout.write(f"{len(pending)} order(s) still awaiting payment for {correlation_id}")

        try:
            status = container.payment().query_status(correlation_id)
        except GatewayError as e:
            raise CommandError(f"Gateway query failed: {e}")

        self.stdout.write(f"Gateway status: {status.status.value} (code={status.result_code}) {status.result_desc}")

        if not options["apply"]:
            return
        if status.status == PaymentStatus.PENDING:
            self.stdout.write(self.style.WARNING("Result not final yet; nothing applied."))
            return

        result = CallbackResult(
            correlation_id=correlation_id,
            result_code=status.result_code if status.result_code is not None else 1,
            result_desc=status.result_desc or "Applied from status query",
            receipt_number=options["receipt"],
        )
        logger.warning(f"Operator applying queried result for {correlation_id}: {status.status.value}")
        outcome = callback_service.process(result).value
        self.stdout.write(self.style.SUCCESS(f"Applied: {outcome.results}"))
        if outcome.errors:
            raise CommandError(f"{len(outcome.errors)} order(s) could not be updated: {outcome.errors}")
