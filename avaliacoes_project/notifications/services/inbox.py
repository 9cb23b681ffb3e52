"""
Reading and acknowledging notifications.

Users only ever see and acknowledge their own notifications.
"""

import logging
from datetime import timedelta

from django.conf import settings

from accounts.permissions import as_capabilities
from core.clock import resolve_clock
from core.exceptions import NotFoundError, PermissionDenied, ValidationError
from evaluations.models import Evaluation
from notifications.models import Notification
from notifications.services.urgency import UrgencyPolicy, classify, days_remaining

logger = logging.getLogger(__name__)


def _require_login(caps):
    if caps.user_id is None:
        raise PermissionDenied("Authentication required.")


def _apply_filters(qs, type=None, urgency=None, status=None):
    if type:
        if type not in Notification.Type.values:
            raise ValidationError({"type": "Invalid notification type."})
        qs = qs.filter(type=type)
    if urgency:
        if urgency not in Notification.Urgency.values:
            raise ValidationError({"urgency": "Invalid urgency."})
        qs = qs.filter(urgency=urgency)
    if status:
        if status not in Notification.Status.values:
            raise ValidationError({"status": "Invalid status."})
        qs = qs.filter(status=status)
    return qs


def list_notifications(actor, *, type=None, urgency=None, status=None):
    caps = as_capabilities(actor)
    _require_login(caps)

    qs = Notification.objects.filter(recipient_id=caps.user_id)
    return _apply_filters(qs, type=type, urgency=urgency, status=status)


def mark_as_read(actor, notification_id, clock=None):
    caps = as_capabilities(actor)
    _require_login(caps)

    notification = Notification.objects.filter(
        pk=notification_id, recipient_id=caps.user_id
    ).first()
    if notification is None:
        raise NotFoundError("Notification not found.")

    if not notification.is_read:
        notification.status = Notification.Status.READ
        notification.read_at = resolve_clock(clock).now()
        notification.save(update_fields=["status", "read_at"])
    return notification


def mark_all_as_read(actor, *, type=None, urgency=None, clock=None) -> int:
    caps = as_capabilities(actor)
    _require_login(caps)

    qs = Notification.objects.filter(
        recipient_id=caps.user_id, status=Notification.Status.UNREAD
    )
    qs = _apply_filters(qs, type=type, urgency=urgency)
    return qs.update(
        status=Notification.Status.READ,
        read_at=resolve_clock(clock).now(),
    )


def purge_old_notifications(days=None, now=None, clock=None) -> int:
    """
    Delete READ notifications created more than `days` ago.
    Unread notifications are kept regardless of age.
    """
    if days is None:
        days = getattr(settings, "NOTIFICATION_RETENTION_DAYS", 90)
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise ValidationError({"days": "Days must be a non-negative integer."})

    cutoff = resolve_clock(clock, now).now() - timedelta(days=days)
    deleted, _ = Notification.objects.filter(
        status=Notification.Status.READ,
        created_at__lt=cutoff,
    ).delete()

    if deleted:
        logger.info("Purged %d read notification(s) older than %d days", deleted, days)
    return deleted


def pending_statistics(user=None, now=None, clock=None, policy=None):
    """
    Counts of pending evaluations per urgency tier. `due_soon` counts
    those not yet overdue within the policy's medium horizon.
    """
    now = resolve_clock(clock, now).now()
    policy = policy or UrgencyPolicy.from_settings()

    qs = Evaluation.objects.pending_with_deadline()
    if user is not None:
        qs = qs.filter(evaluator=user)

    stats = {
        "total": 0,
        "by_urgency": {urgency: 0 for urgency in Notification.Urgency.values},
        "overdue": 0,
        "due_soon": 0,
    }
    for deadline in qs.values_list("deadline_at", flat=True):
        classification = classify(days_remaining(deadline, now), policy)
        stats["total"] += 1
        stats["by_urgency"][classification.urgency] += 1
        if classification.is_overdue:
            stats["overdue"] += 1
        elif classification.days_remaining <= policy.medium_max_days:
            stats["due_soon"] += 1
    return stats
