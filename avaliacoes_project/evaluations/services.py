"""
Evaluation assignment guard.

Every write checks, in order: input, period status (after
reconciliation), the evaluation window, the evaluated attendant and
finally uniqueness of (evaluator, evaluated, period). The database
constraint is the authority on uniqueness; the early check only gives
a nicer error.
"""

import logging
from dataclasses import dataclass, field

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.models import Attendant
from accounts.permissions import as_capabilities
from core import audit
from core.clock import resolve_clock
from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from evaluations.models import MAX_COMMENT_LENGTH, MAX_SCORE, MIN_SCORE, Evaluation
from periods.models import Period
from periods.services.lifecycle import reconcile_periods

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "You have already evaluated this attendant in this period."


@dataclass
class AssignmentResult:
    created: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    def as_dict(self):
        return {"created": self.created, "skipped": self.skipped}


# ============================================================
# VALIDATION
# ============================================================

def _validate_score(score, required=True):
    if score is None:
        if required:
            raise ValidationError({"score": "Score is required."})
        return None
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError({"score": "Score must be an integer."})
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(
            {"score": f"Score must be between {MIN_SCORE} and {MAX_SCORE}."}
        )
    return score


def _validate_comment(comment):
    if comment is None:
        return ""
    if not isinstance(comment, str):
        raise ValidationError({"comment": "Comment must be text."})
    if len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            {"comment": f"Comment must have at most {MAX_COMMENT_LENGTH} characters."}
        )
    return comment


def _ensure_period_open(period, now, bypass_window):
    if period.status != Period.Status.ACTIVE:
        raise ValidationError(
            f"Evaluations can only be submitted while the period is active "
            f"(period '{period.name}' is {period.get_status_display().lower()})."
        )
    if not bypass_window and not period.contains(now):
        raise ValidationError(
            f"The period '{period.name}' is outside its evaluation window."
        )


def _lock_period(period_id):
    """Lock the period row so a concurrent cancel waits for this write."""
    period = Period.objects.select_for_update().filter(pk=period_id).first()
    if period is None:
        raise NotFoundError("Period not found.")
    return period


def _load_active_attendant(evaluated_id):
    evaluated = Attendant.objects.filter(pk=evaluated_id).first()
    if evaluated is None:
        raise NotFoundError("Attendant not found.")
    if evaluated.status != Attendant.Status.ACTIVE:
        raise ValidationError(
            f"Attendant '{evaluated.name}' is not active and cannot be evaluated."
        )
    return evaluated


def _visible_to(caps):
    qs = Evaluation.objects.select_related("evaluator", "evaluated", "period")
    if caps.is_elevated:
        return qs
    return qs.filter(Q(evaluator_id=caps.user_id) | Q(evaluated__user_id=caps.user_id))


def _require_login(caps):
    if caps.user_id is None:
        raise PermissionDenied("Authentication required.")


# ============================================================
# OPERATIONS
# ============================================================

def create_evaluation(actor, *, evaluated_id, period_id, score, comment="", clock=None):
    """Submit a COMPLETED evaluation as the acting user."""
    caps = as_capabilities(actor)
    _require_login(caps)

    score = _validate_score(score)
    comment = _validate_comment(comment)

    now = resolve_clock(clock).now()
    reconcile_periods(now=now)

    with transaction.atomic():
        period = _lock_period(period_id)
        _ensure_period_open(period, now, caps.bypass_evaluation_window)
        evaluated = _load_active_attendant(evaluated_id)

        exists = Evaluation.objects.filter(
            evaluator_id=caps.user_id,
            evaluated=evaluated,
            period=period,
        ).exists()
        if exists:
            raise ConflictError(DUPLICATE_MESSAGE)

        try:
            with transaction.atomic():
                evaluation = Evaluation.objects.create(
                    evaluator_id=caps.user_id,
                    evaluated=evaluated,
                    period=period,
                    score=score,
                    comment=comment,
                    status=Evaluation.Status.COMPLETED,
                    evaluation_date=now,
                )
        except IntegrityError:
            raise ConflictError(DUPLICATE_MESSAGE)

        audit.record(
            audit.EvaluationCreated(
                entity_id=evaluation.pk,
                period_id=period.pk,
                evaluated_id=evaluated.pk,
                status=evaluation.status,
            ),
            user=actor,
            at=now,
        )

    logger.info(
        "Evaluation %s created by user %s for attendant %s in period %s",
        evaluation.pk, caps.user_id, evaluated.pk, period.pk,
    )
    return evaluation


def update_evaluation(
    actor,
    evaluation_id,
    *,
    score=None,
    comment=None,
    status=None,
    due_at=None,
    clock=None,
):
    """
    Edit an evaluation.

    Elevated roles may edit any evaluation at any time. The evaluator
    may edit their own evaluation only while it is PENDING, only inside
    the period window, and may only move it to COMPLETED. Nobody edits
    evaluations of a canceled period.
    """
    caps = as_capabilities(actor)
    _require_login(caps)

    if score is None and comment is None and status is None and due_at is None:
        raise ValidationError("At least one field must be provided.")

    score = _validate_score(score, required=False)
    if comment is not None:
        comment = _validate_comment(comment)
    if status is not None and status not in Evaluation.Status.values:
        raise ValidationError({"status": "Invalid status."})
    if due_at is not None and timezone.is_naive(due_at):
        raise ValidationError({"due_at": "Deadline must include a time zone."})

    now = resolve_clock(clock).now()
    reconcile_periods(now=now)

    period_id = (
        Evaluation.objects.filter(pk=evaluation_id)
        .values_list("period_id", flat=True)
        .first()
    )
    if period_id is None:
        raise NotFoundError("Evaluation not found.")

    with transaction.atomic():
        # Period before evaluation, the same order update_period uses.
        period = _lock_period(period_id)
        evaluation = Evaluation.objects.select_for_update().filter(pk=evaluation_id).first()
        if evaluation is None:
            raise NotFoundError("Evaluation not found.")
        evaluation.period = period

        if period.status == Period.Status.CANCELED:
            raise ValidationError(
                f"The period '{period.name}' is canceled; its evaluations cannot be changed."
            )

        if not caps.is_elevated:
            if evaluation.evaluator_id != caps.user_id:
                raise PermissionDenied("You can only edit your own evaluations.")
            if not evaluation.is_pending:
                raise PermissionDenied("Only pending evaluations can be edited.")
            if status not in (None, Evaluation.Status.COMPLETED):
                raise PermissionDenied("You can only complete a pending evaluation.")
            if due_at is not None:
                raise PermissionDenied("Only managers can change a deadline.")
            _ensure_period_open(evaluation.period, now, bypass_window=False)

        changes = {}
        if score is not None:
            changes["score"] = score
        if comment is not None:
            changes["comment"] = comment
        if due_at is not None:
            changes["due_at"] = due_at
        if status is not None:
            changes["status"] = status

        final_status = changes.get("status", evaluation.status)
        final_score = changes.get("score", evaluation.score)
        if final_status == Evaluation.Status.COMPLETED and final_score is None:
            raise ValidationError({"score": "A score is required to complete an evaluation."})
        if (
            final_status == Evaluation.Status.COMPLETED
            and evaluation.status != Evaluation.Status.COMPLETED
        ):
            changes["evaluation_date"] = now

        field_changes = audit.diff(evaluation, changes)
        if not field_changes:
            return evaluation

        for name, value in changes.items():
            setattr(evaluation, name, value)
        evaluation.save()

        audit.record(
            audit.EvaluationUpdated(entity_id=evaluation.pk, changes=field_changes),
            user=actor,
            at=now,
        )

    logger.info(
        "Evaluation %s updated by user %s (%s)",
        evaluation.pk, caps.user_id, ", ".join(c.field for c in field_changes),
    )
    return evaluation


def delete_evaluation(actor, evaluation_id, clock=None):
    caps = as_capabilities(actor)
    caps.require("manage_evaluations", "Only managers can delete evaluations.")

    now = resolve_clock(clock).now()

    with transaction.atomic():
        evaluation = Evaluation.objects.select_for_update().filter(pk=evaluation_id).first()
        if evaluation is None:
            raise NotFoundError("Evaluation not found.")

        # Sent reminders are history and stay behind detached.
        evaluation.reminders.filter(sent=False).delete()

        pk = evaluation.pk
        period_id = evaluation.period_id
        evaluated_id = evaluation.evaluated_id
        evaluation.delete()

        audit.record(
            audit.EvaluationDeleted(
                entity_id=pk, period_id=period_id, evaluated_id=evaluated_id
            ),
            user=actor,
            at=now,
        )

    logger.info("Evaluation %s deleted by user %s", pk, caps.user_id)


def assign_evaluations(actor, *, period_id, evaluator_id, evaluated_ids, due_at=None, clock=None):
    """
    Create PENDING evaluations for `evaluator_id`, one per attendant.

    Existing (evaluator, evaluated, period) rows and inactive attendants
    are skipped, so assigning the same list twice is harmless.
    """
    caps = as_capabilities(actor)
    caps.require("manage_evaluations", "Only managers can assign evaluations.")

    if not evaluated_ids:
        raise ValidationError({"evaluated_ids": "Choose at least one attendant."})
    if due_at is not None and timezone.is_naive(due_at):
        raise ValidationError({"due_at": "Deadline must include a time zone."})

    now = resolve_clock(clock).now()
    reconcile_periods(now=now)

    result = AssignmentResult()

    with transaction.atomic():
        period = _lock_period(period_id)
        if period.status not in Period.NON_TERMINAL:
            raise ValidationError("Evaluations can only be assigned in planned or active periods.")

        evaluator = get_user_model().objects.filter(pk=evaluator_id, is_active=True).first()
        if evaluator is None:
            raise NotFoundError("Evaluator not found.")

        attendants = {a.pk: a for a in Attendant.objects.filter(pk__in=evaluated_ids)}
        missing = set(evaluated_ids) - set(attendants)
        if missing:
            raise NotFoundError(
                f"Attendant(s) not found: {', '.join(str(i) for i in sorted(missing))}."
            )

        for evaluated_id in evaluated_ids:
            attendant = attendants[evaluated_id]
            if attendant.status != Attendant.Status.ACTIVE:
                result.skipped.append(evaluated_id)
                continue

            try:
                with transaction.atomic():
                    evaluation, created = Evaluation.objects.get_or_create(
                        evaluator=evaluator,
                        evaluated=attendant,
                        period=period,
                        defaults={
                            "status": Evaluation.Status.PENDING,
                            "due_at": due_at,
                        },
                    )
            except IntegrityError:
                created = False

            if not created:
                result.skipped.append(evaluated_id)
                continue

            result.created.append(evaluation.pk)
            audit.record(
                audit.EvaluationCreated(
                    entity_id=evaluation.pk,
                    period_id=period.pk,
                    evaluated_id=attendant.pk,
                    status=evaluation.status,
                ),
                user=actor,
                at=now,
            )

    logger.info(
        "Assigned %d evaluation(s) to user %s in period %s (%d skipped)",
        len(result.created), evaluator.pk, period.pk, len(result.skipped),
    )
    return result


def get_evaluation(actor, evaluation_id, clock=None):
    caps = as_capabilities(actor)
    _require_login(caps)
    reconcile_periods(clock=clock)

    evaluation = _visible_to(caps).filter(pk=evaluation_id).first()
    if evaluation is None:
        raise NotFoundError("Evaluation not found.")
    return evaluation


def list_evaluations(
    actor,
    *,
    period_id=None,
    status=None,
    evaluator_id=None,
    evaluated_id=None,
    clock=None,
):
    """Attendants only see evaluations they gave or received."""
    caps = as_capabilities(actor)
    _require_login(caps)
    reconcile_periods(clock=clock)

    qs = _visible_to(caps)
    if period_id:
        qs = qs.filter(period_id=period_id)
    if status:
        qs = qs.filter(status=status)
    if evaluator_id:
        qs = qs.filter(evaluator_id=evaluator_id)
    if evaluated_id:
        qs = qs.filter(evaluated_id=evaluated_id)
    return qs
