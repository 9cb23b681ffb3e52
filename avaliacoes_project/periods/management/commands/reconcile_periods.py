from django.core.management.base import BaseCommand
from django.utils import timezone

from periods.services.lifecycle import preview_reconciliation, reconcile_periods


class Command(BaseCommand):
    help = "Advance evaluation periods to the status their dates call for"

    def add_arguments(self, parser):
        parser.add_argument(
            "--preview",
            action="store_true",
            help="List stale periods without changing anything",
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options["preview"]:
            stale = preview_reconciliation(now=now)
            if not stale:
                self.stdout.write("All periods are up to date.")
            for row in stale:
                self.stdout.write(
                    f"#{row['id']} {row['name']}: "
                    f"{row['current_status']} -> {row['expected_status']}"
                )
            return

        result = reconcile_periods(now=now)

        for item in result.deferred:
            self.stdout.write(
                self.style.WARNING(
                    f"Period #{item['id']} {item['name']} was not activated: "
                    "another period is active"
                )
            )

        self.stdout.write(
            self.style.SUCCESS(
                f"[{now:%Y-%m-%d %H:%M:%S}] {result.changed} period(s) changed "
                f"({len(result.activated)} activated, {len(result.finished)} finished)"
            )
        )
