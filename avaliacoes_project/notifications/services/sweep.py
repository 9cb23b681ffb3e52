"""
One full sweep: periods, reminders, deliveries, notifications.
"""

import logging

from notifications.services.generation import generate_notifications
from reminders.services import ReminderScheduler

logger = logging.getLogger(__name__)


def run_sweep(reminder_scheduler=None):
    """
    Safe to run at any time and from several processes at once:
    every step is idempotent and deliveries are claimed before sending.
    """
    reminder_scheduler = reminder_scheduler or ReminderScheduler.from_settings()

    report = reminder_scheduler.sweep()
    report.notifications = generate_notifications(
        clock=reminder_scheduler.clock,
        lookahead=reminder_scheduler.config.lookahead,
    )

    logger.info(
        "Sweep finished: %d period(s) reconciled, %d reminder(s) created, "
        "%d sent, %d failed, %d notification(s)",
        report.reconciled, report.created, report.sent, report.failed,
        report.notifications,
    )
    return report
