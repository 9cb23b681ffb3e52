from django.conf import settings
from django.core.management.base import BaseCommand

from notifications.services.inbox import purge_old_notifications


class Command(BaseCommand):
    help = "Delete read notifications older than the retention period"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=getattr(settings, "NOTIFICATION_RETENTION_DAYS", 90),
            help="Retention in days (unread notifications are always kept)",
        )

    def handle(self, *args, **options):
        deleted = purge_old_notifications(days=options["days"])
        self.stdout.write(
            self.style.SUCCESS(f"Deleted {deleted} read notification(s).")
        )
