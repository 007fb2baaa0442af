import logging

from django.core.management.base import BaseCommand, CommandError

from infrastructure.container import container


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Replays seller ledgers against stored balances and lists paid orders missing their credit."

    def add_arguments(self, parser):
        parser.add_argument("--seller", default=None, help="Audit a single seller (user id)")
        parser.add_argument(
            "--fix-credits",
            action="store_true",
            help="Credit paid-but-uncredited orders (clears their ledger error)",
        )

    def handle(self, *args, **options):
        ledger = container.ledger_service()
        seller_id = options["seller"]

        if options["fix_credits"]:
            result = ledger.batch_credit(seller_id)
            if not result.ok:
                raise CommandError(result.error_detail)
            batch = result.value
            self.stdout.write(
                self.style.SUCCESS(
                    f"Credited {len(batch['credited'])} orders ({batch['total_amount']}), "
                    f"{len(batch['skipped'])} already credited"
                )
            )
            for failure in batch["failed"]:
                self.stdout.write(self.style.ERROR(f"  Could not credit {failure['order_id']}: {failure['error']}"))

        report = ledger.audit(seller_id).value
        self.stdout.write(f"Sellers checked: {report['sellers_checked']}")

        for item in report["drift"]:
            self.stdout.write(self.style.ERROR(f"Drift for seller {item['seller_id']}:"))
            for field, values in item["fields"].items():
                self.stdout.write(f"    {field}: stored={values['stored']} replayed={values['replayed']}")

        for item in report["paid_but_uncredited"]:
            self.stdout.write(
                self.style.WARNING(
                    f"Paid but uncredited: {item['order_number']} amount={item['amount']} {item['error'] or ''}"
                )
            )
        for order_id in report["credited_without_entry"]:
            self.stdout.write(self.style.ERROR(f"Flagged as credited without a sale entry: {order_id}"))

        problems = len(report["drift"]) + len(report["paid_but_uncredited"]) + len(report["credited_without_entry"])
        if problems:
            raise CommandError(f"Ledger audit found {problems} problem(s)")
        self.stdout.write(self.style.SUCCESS("Ledgers are consistent."))
