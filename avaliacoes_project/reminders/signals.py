"""
Keep reminders in line with deadlines.

When an evaluation's due_at or a period's end moves, the unsent future
reminders of the affected PENDING evaluations are regenerated once the
transaction commits.
"""

import logging

from django.db import transaction
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from evaluations.models import Evaluation
from periods.models import Period

logger = logging.getLogger(__name__)


def _reschedule(evaluation_ids):
    from reminders.services import current_scheduler

    scheduler = current_scheduler()
    if not scheduler.config.ativo:
        return
    for evaluation_id in evaluation_ids:
        scheduler.reschedule_evaluation(evaluation_id)


# ============================================================
# PRE_SAVE: TRACK DEADLINE CHANGES
# ============================================================

@receiver(pre_save, sender=Evaluation)
def track_evaluation_due_change(sender, instance, **kwargs):
    if not instance.pk:
        instance._due_at_changed = False
        return

    old_due_at = (
        Evaluation.objects.filter(pk=instance.pk)
        .values_list("due_at", flat=True)
        .first()
    )
    instance._due_at_changed = old_due_at != instance.due_at


@receiver(pre_save, sender=Period)
def track_period_end_change(sender, instance, **kwargs):
    if not instance.pk:
        instance._end_changed = False
        return

    old_end = Period.objects.filter(pk=instance.pk).values_list("end", flat=True).first()
    instance._end_changed = old_end is not None and old_end != instance.end


# ============================================================
# POST_SAVE: RESCHEDULE
# ============================================================

@receiver(post_save, sender=Evaluation)
def reschedule_on_due_change(sender, instance, created, **kwargs):
    if created or not getattr(instance, "_due_at_changed", False):
        return
    if instance.status != Evaluation.Status.PENDING:
        return

    logger.info("Deadline of evaluation %s changed; rescheduling reminders", instance.pk)
    evaluation_id = instance.pk
    transaction.on_commit(lambda: _reschedule([evaluation_id]))


@receiver(post_save, sender=Period)
def reschedule_on_period_end_change(sender, instance, created, **kwargs):
    if created or not getattr(instance, "_end_changed", False):
        return

    # Evaluations with their own due_at do not follow the period end.
    evaluation_ids = list(
        instance.evaluations
        .filter(status=Evaluation.Status.PENDING, due_at__isnull=True)
        .values_list("id", flat=True)
    )
    if not evaluation_ids:
        return

    logger.info(
        "End of period %s changed; rescheduling reminders for %d evaluation(s)",
        instance.pk, len(evaluation_ids),
    )
    transaction.on_commit(lambda: _reschedule(evaluation_ids))
