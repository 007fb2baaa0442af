import json
import logging
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError

from infrastructure.container import container


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Cancels timed-out pending orders and releases stale product reservations."

    def add_arguments(self, parser):
        parser.add_argument(
            "--hours",
            type=float,
            default=None,
            help="Age in hours after which a reservation is stale (default: RESERVATION_STALE_AFTER_MINUTES)",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=None,
            help="Maximum records handled per pass (default: RECONCILER_BATCH_SIZE)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be released without keeping any change",
        )
        parser.add_argument("--json", action="store_true", help="Print the full report as JSON")

    def handle(self, *args, **options):
        hours = options["hours"]
        if hours is not None and hours <= 0:
            raise CommandError("--hours must be positive")

        threshold = timedelta(hours=hours) if hours is not None else None
        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("Dry run: no changes will be kept."))

        result = container.reconciliation_service().release_stale_reservations(
            threshold=threshold, dry_run=options["dry_run"], batch_size=options["batch_size"]
        )
        report = result.value

        if options["json"]:
            self.stdout.write(json.dumps(report.to_dict(), indent=2, default=str))
            return

        self.stdout.write(f"Cutoff: {report.cutoff.isoformat()}")
        self.stdout.write(f"Stale pending orders found: {report.stale_orders_found}")
        for order_id in report.expired_order_ids:
            self.stdout.write(f"  Expired order {order_id}")
        self.stdout.write(f"Stale reservations found: {report.stale_products_found}")
        for product_id in report.released_product_ids:
            self.stdout.write(f"  Released product {product_id}")
        for item in report.skipped:
            self.stdout.write(self.style.WARNING(f"  Skipped {item}"))
        for item in report.errors:
            self.stdout.write(self.style.ERROR(f"  Error {item}"))

        style = self.style.ERROR if report.errors else self.style.SUCCESS
        self.stdout.write(style(f"Done: {report.summary()}"))
