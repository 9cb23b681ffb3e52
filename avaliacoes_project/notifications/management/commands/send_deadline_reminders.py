"""
Run one full sweep now.

Same work as a scheduler tick: reconcile periods, create today's
reminders, deliver what is due and generate notifications. Every step
is idempotent, so it is safe to run from cron alongside the scheduler.
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from notifications.services.sweep import run_sweep


class Command(BaseCommand):
    help = "Run one reminder/notification sweep and print the report"

    def handle(self, *args, **options):
        now = timezone.now()

        self.stdout.write(
            self.style.NOTICE(
                f"[{now:%Y-%m-%d %H:%M:%S}] Starting evaluation sweep"
            )
        )

        report = run_sweep()

        self.stdout.write(
            self.style.SUCCESS(
                f"[{now:%Y-%m-%d %H:%M:%S}] Completed: "
                f"{report.reconciled} period(s) reconciled, "
                f"{report.created} reminder(s) created, "
                f"{report.sent} sent, "
                f"{report.failed} failed, "
                f"{report.notifications} notification(s)"
            )
        )
