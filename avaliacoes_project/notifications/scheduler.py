import logging

from apscheduler.schedulers.background import BackgroundScheduler
from django.conf import settings
from django.db import close_old_connections

from notifications.services.inbox import purge_old_notifications
from notifications.services.sweep import run_sweep
from reminders.services import ReminderScheduler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "evaluation_sweep"
PURGE_JOB_ID = "purge_read_notifications"


class SweepScheduler:
    """
    Periodic sweep driver around APScheduler.

    The host process owns the instance: the run_scheduler command, or
    NotificationsConfig.ready() under the development server.
    Stopping only halts future ticks; a sweep already running finishes.
    """

    def __init__(self, reminder_scheduler=None, scheduler_class=BackgroundScheduler):
        self.reminders = reminder_scheduler or ReminderScheduler.from_settings()
        self.scheduler_class = scheduler_class
        self._scheduler = None

    @property
    def running(self):
        return self._scheduler is not None

    def start(self):
        # --------------------------------------------
        # SAFETY LOCK (NO DOUBLE START)
        # --------------------------------------------
        if self._scheduler is not None:
            logger.info("Sweep scheduler already running, skipping start")
            return

        interval = self.reminders.config.sweep_interval_minutes
        logger.info("Starting sweep scheduler (every %d minutes)", interval)

        self._scheduler = self.scheduler_class(timezone=settings.TIME_ZONE)

        self._scheduler.add_job(
            self._tick,
            trigger="interval",
            minutes=interval,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,      # Prevent overlapping runs
            coalesce=True,        # Merge missed runs if server was down
        )

        self._scheduler.add_job(
            self._purge,
            trigger="interval",
            hours=24,
            id=PURGE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.start()

    def stop(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Sweep scheduler stopped")

    def force_sweep(self):
        """Run a sweep now, whether or not ticks are enabled."""
        return run_sweep(self.reminders)

    def _tick(self):
        if not self.reminders.config.ativo:
            logger.info("Reminder scheduler inactive (ATIVO=False), skipping tick")
            return

        close_old_connections()
        try:
            run_sweep(self.reminders)
        finally:
            close_old_connections()

    def _purge(self):
        close_old_connections()
        try:
            purge_old_notifications(clock=self.reminders.clock)
        finally:
            close_old_connections()
