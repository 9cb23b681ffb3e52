from apscheduler.schedulers.blocking import BlockingScheduler
from django.core.management.base import BaseCommand

from notifications.scheduler import SweepScheduler


class Command(BaseCommand):
    help = "Run the periodic sweep scheduler in the foreground"

    def add_arguments(self, parser):
        parser.add_argument(
            "--sweep-now",
            action="store_true",
            help="Run one sweep before the first scheduled tick",
        )

    def handle(self, *args, **options):
        scheduler = SweepScheduler(scheduler_class=BlockingScheduler)

        if options["sweep_now"]:
            report = scheduler.force_sweep()
            self.stdout.write(f"Initial sweep: {report.as_dict()}")

        self.stdout.write(self.style.SUCCESS("Scheduler running. Press Ctrl+C to stop."))
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            pass
        finally:
            scheduler.stop()
            self.stdout.write("Scheduler stopped.")
