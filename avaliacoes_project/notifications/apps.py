from django.apps import AppConfig
from django.conf import settings
import os


class NotificationsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "notifications"

    sweep_scheduler = None

    def ready(self):
        # --------------------------------------------------
        # DEV / PROD TOGGLE
        # --------------------------------------------------
        if not getattr(settings, "ENABLE_SCHEDULER", False):
            return

        # Prevent duplicate scheduler from Django autoreload
        if os.environ.get("RUN_MAIN") != "true":
            return

        from .scheduler import SweepScheduler

        self.sweep_scheduler = SweepScheduler()
        self.sweep_scheduler.start()
