"""
Notification generation.

One unread notification per (recipient, evaluation, type): generation
skips evaluations that already have one, so repeated runs create
nothing new until the user reads it. Recipients who opted out, paused
their notifications or asked for a higher minimum urgency are skipped.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.urls import reverse

from core.clock import resolve_clock
from evaluations.models import Evaluation
from notifications.models import Notification
from notifications.services.preferences import preference_for, preferences_for
from notifications.services.urgency import UrgencyPolicy, classify, days_remaining

logger = logging.getLogger(__name__)


def _default_lookahead():
    scheduler = getattr(settings, "REMINDER_SCHEDULER", {}) or {}
    return timedelta(days=scheduler.get("LOOKAHEAD_DAYS", 30))


def evaluation_link(evaluation):
    return reverse("api:evaluation-detail", args=[evaluation.pk])


def _day_word(days):
    return "day" if abs(days) == 1 else "days"


def _content(evaluation, classification):
    days = classification.days_remaining
    attendant = evaluation.evaluated.name
    period = evaluation.period.name

    if classification.is_overdue:
        late = abs(days)
        return (
            "Evaluation overdue",
            f'Your evaluation of {attendant} for "{period}" is '
            f"{late} {_day_word(late)} overdue.",
        )
    if days == 0:
        return (
            "Evaluation due today",
            f'Your evaluation of {attendant} for "{period}" is due today.',
        )
    return (
        f"Evaluation due in {days} {_day_word(days)}",
        f'Your evaluation of {attendant} for "{period}" '
        f"is due in {days} {_day_word(days)}.",
    )


def _create_unread(**values):
    """Create an unread notification; False if one already exists."""
    try:
        with transaction.atomic():
            Notification.objects.create(status=Notification.Status.UNREAD, **values)
    except IntegrityError:
        return False
    return True


def generate_notifications(now=None, clock=None, policy=None, lookahead=None) -> int:
    """
    Create pending/overdue notifications for every PENDING evaluation
    whose deadline is within the lookahead window. Returns how many
    were created.
    """
    now = resolve_clock(clock, now).now()
    policy = policy or UrgencyPolicy.from_settings()
    lookahead = lookahead or _default_lookahead()

    evaluations = list(
        Evaluation.objects
        .pending_with_deadline(until=now + lookahead)
        .select_related("evaluated", "period")
    )
    preferences = preferences_for(e.evaluator_id for e in evaluations)

    created = 0
    for evaluation in evaluations:
        classification = classify(days_remaining(evaluation.deadline_at, now), policy)
        if not preferences[evaluation.evaluator_id].accepts(classification.urgency, now):
            continue

        already_unread = Notification.objects.filter(
            recipient_id=evaluation.evaluator_id,
            evaluation=evaluation,
            type=classification.type,
            status=Notification.Status.UNREAD,
        ).exists()
        if already_unread:
            continue

        title, message = _content(evaluation, classification)
        if _create_unread(
            recipient_id=evaluation.evaluator_id,
            evaluation=evaluation,
            type=classification.type,
            urgency=classification.urgency,
            title=title,
            message=message,
            action_url=evaluation_link(evaluation),
            deadline=evaluation.deadline_at,
            created_at=now,
        ):
            created += 1

    if created:
        logger.info("Generated %d notification(s) at %s", created, now.isoformat())
    return created


def notify_reminder_delivered(reminder, now, policy=None):
    """In-app copy of a delivered reminder e-mail."""
    evaluation = reminder.evaluation
    if evaluation is None:
        return False

    classification = classify(
        days_remaining(evaluation.deadline, now), policy or UrgencyPolicy.from_settings()
    )
    if not preference_for(reminder.user_id).accepts(classification.urgency, now):
        return False
    title, message = _content(evaluation, classification)

    return _create_unread(
        recipient_id=reminder.user_id,
        evaluation=evaluation,
        type=Notification.Type.REMINDER,
        urgency=classification.urgency,
        title=f"Reminder: {title}",
        message=message,
        action_url=evaluation_link(evaluation),
        deadline=evaluation.deadline,
        created_at=now,
    )
