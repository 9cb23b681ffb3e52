"""
Period state machine.

PLANNED -> ACTIVE     when now is inside [start, end] and no other
                      period is ACTIVE
ACTIVE  -> FINISHED   when now > end
PLANNED/ACTIVE -> CANCELED   only with zero COMPLETED evaluations;
                             its PENDING evaluations are canceled too

A PLANNED period whose window passes without it ever activating stays
PLANNED: it never ran, so there is nothing to finish.

Transitions happen here only: either in `reconcile_periods` or in an
administrative `update_period`, which re-validates the same rules.
Call `reconcile_periods` before anything that reads or depends on
period status.
"""

import logging
from dataclasses import dataclass, field

from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts.permissions import as_capabilities
from core import audit
from core.clock import resolve_clock
from core.exceptions import ConflictError, NotFoundError, ValidationError
from periods.models import Period
from periods.services.conflicts import (
    ConflictingPeriod,
    Window,
    find_conflicts,
    window_of,
)

logger = logging.getLogger(__name__)

Status = Period.Status

MAX_NAME_LENGTH = 120


@dataclass
class ReconcileResult:
    activated: list = field(default_factory=list)
    finished: list = field(default_factory=list)
    deferred: list = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.activated) + len(self.finished)

    def as_dict(self):
        return {
            "changed": self.changed,
            "activated": self.activated,
            "finished": self.finished,
            "deferred": self.deferred,
        }


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str = ""
    conflicts: tuple = ()

    def raise_if_denied(self):
        if self.allowed:
            return
        if self.conflicts:
            raise ConflictError(
                self.reason, [c.as_dict() for c in self.conflicts]
            )
        raise ValidationError(self.reason)


# ============================================================
# RECONCILIATION
# ============================================================

def expected_status(period, now):
    """Status the period should have at `now`, ignoring conflicts."""
    if period.is_terminal:
        return period.status
    if now > period.end:
        if period.status == Status.ACTIVE:
            return Status.FINISHED
        return Status.PLANNED
    if period.start <= now:
        return Status.ACTIVE
    return Status.PLANNED


def preview_reconciliation(now=None, clock=None):
    """Periods whose stored status is stale at `now`. Read-only."""
    now = resolve_clock(clock, now).now()
    stale = []
    for period in Period.objects.exclude(status=Status.CANCELED):
        should_be = expected_status(period, now)
        if should_be != period.status:
            stale.append({
                "id": period.pk,
                "name": period.name,
                "current_status": period.status,
                "expected_status": should_be,
            })
    return stale


@transaction.atomic
def reconcile_periods(now=None, clock=None) -> ReconcileResult:
    """
    Bring every period's status in line with `now`.

    Safe to call concurrently and repeatedly: rows are locked while
    being changed and a second call at the same instant changes nothing.
    """
    now = resolve_clock(clock, now).now()
    result = ReconcileResult()

    # Finish first so an expiring period frees the ACTIVE slot.
    expired = (
        Period.objects
        .select_for_update()
        .filter(status=Status.ACTIVE, end__lt=now)
        .order_by("start", "id")
    )
    for period in expired:
        _apply_status(period, Status.FINISHED, now, automatic=True)
        result.finished.append(period.pk)

    candidates = (
        Period.objects
        .select_for_update()
        .filter(status=Status.PLANNED, start__lte=now, end__gte=now)
        .order_by("start", "id")
    )
    for period in candidates:
        blockers = _active_blockers(period)
        if blockers:
            _defer_activation(period, blockers)
            result.deferred.append({
                "id": period.pk,
                "name": period.name,
                "blocked_by": [b.as_dict() for b in blockers],
            })
            continue

        _apply_status(period, Status.ACTIVE, now, automatic=True)
        result.activated.append(period.pk)

    if result.changed or result.deferred:
        logger.info(
            "Period reconciliation at %s: %d activated, %d finished, %d deferred",
            now.isoformat(), len(result.activated), len(result.finished),
            len(result.deferred),
        )
    return result


def reconcile_period(period_id, now=None, clock=None):
    """
    Reconcile one period. Returns (period, changed).

    Activation still honours the one-ACTIVE rule against all periods.
    """
    now = resolve_clock(clock, now).now()
    with transaction.atomic():
        period = (
            Period.objects.select_for_update().filter(pk=period_id).first()
        )
        if period is None:
            raise NotFoundError("Period not found.")

        target = expected_status(period, now)
        if target == period.status:
            return period, False

        if period.status == Status.ACTIVE and target == Status.FINISHED:
            _apply_status(period, Status.FINISHED, now, automatic=True)
            return period, True

        if period.status == Status.PLANNED and target == Status.ACTIVE:
            blockers = _active_blockers(period)
            if blockers:
                _defer_activation(period, blockers)
                return period, False
            _apply_status(period, Status.ACTIVE, now, automatic=True)
            return period, True

    return period, False


def _active_blockers(period):
    """Other ACTIVE periods. Any one of them blocks activation."""
    return [
        ConflictingPeriod.from_period(p)
        for p in Period.objects.filter(status=Status.ACTIVE).exclude(pk=period.pk)
    ]


def _defer_activation(period, blockers):
    note = "Activation blocked by active period(s): " + ", ".join(
        f"{b.name} (#{b.id})" for b in blockers
    )
    note = note[:255]

    if not period.needs_attention or period.attention_note != note:
        period.needs_attention = True
        period.attention_note = note
        period.save(update_fields=["needs_attention", "attention_note", "updated_at"])

    logger.warning(
        "Period %s (%s) is due to start but %s; manual resolution required",
        period.pk, period.name, note.lower(),
    )


def _apply_status(period, new_status, now, automatic, user=None):
    old_status = period.status
    period.status = new_status
    update_fields = ["status", "updated_at"]

    if new_status == Status.ACTIVE and period.needs_attention:
        period.needs_attention = False
        period.attention_note = ""
        update_fields += ["needs_attention", "attention_note"]

    period.save(update_fields=update_fields)

    canceled = 0
    if new_status == Status.CANCELED:
        canceled = period.evaluations.filter(status="PENDING").update(
            status="CANCELED", updated_at=now
        )

    audit.record(
        audit.PeriodStatusChanged(
            entity_id=period.pk,
            old_status=old_status,
            new_status=new_status,
            automatic=automatic,
        ),
        user=user,
        at=now,
    )
    logger.info(
        "Period %s (%s): %s -> %s%s",
        period.pk, period.name, old_status, new_status,
        " (automatic)" if automatic else "",
    )
    if canceled:
        logger.info(
            "Period %s canceled: %d pending evaluation(s) canceled with it",
            period.pk, canceled,
        )


# ============================================================
# TRANSITION RULES
# ============================================================

def can_transition(period, new_status, now=None, window=None, clock=None) -> TransitionCheck:
    """
    Check whether `period` may move to `new_status`.

    `window` lets callers validate against dates that are about to be
    saved instead of the stored ones.
    """
    now = resolve_clock(clock, now).now()
    window = window or window_of(period)

    if new_status == period.status:
        return TransitionCheck(True)

    if period.is_terminal:
        return TransitionCheck(
            False, f"A {period.get_status_display().lower()} period cannot change status."
        )

    if new_status == Status.ACTIVE:
        if now > window.end:
            return TransitionCheck(False, "A period that has already ended cannot be activated.")

        overlapping = find_conflicts(window, exclude_id=period.pk)
        active = [
            c for c in _active_blockers(period)
            if c.id not in {o.id for o in overlapping}
        ]
        conflicts = tuple(overlapping + active)
        if conflicts:
            return TransitionCheck(
                False,
                "The period conflicts with other active or planned periods.",
                conflicts,
            )
        return TransitionCheck(True)

    if new_status == Status.CANCELED:
        completed = period.evaluations.filter(status="COMPLETED").count()
        if completed:
            return TransitionCheck(
                False,
                f"The period cannot be canceled: it has {completed} completed evaluation(s).",
            )
        return TransitionCheck(True)

    if new_status == Status.FINISHED:
        if period.status != Status.ACTIVE:
            return TransitionCheck(False, "Only an active period can be finished.")
        return TransitionCheck(True)

    return TransitionCheck(
        False,
        f"A period cannot go back from {period.status} to {new_status}.",
    )


# ============================================================
# ADMINISTRATIVE OPERATIONS
# ============================================================

def _validate_window(start, end):
    errors = {}
    if start is None:
        errors["start"] = "Start is required."
    elif timezone.is_naive(start):
        errors["start"] = "Start must include a time zone."
    if end is None:
        errors["end"] = "End is required."
    elif timezone.is_naive(end):
        errors["end"] = "End must include a time zone."
    if errors:
        raise ValidationError(errors)
    if end <= start:
        raise ValidationError({"end": "End must be after start."})


def _validate_name(name):
    name = (name or "").strip()
    if not name:
        raise ValidationError({"name": "Name is required."})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError({"name": f"Name must have at most {MAX_NAME_LENGTH} characters."})
    return name


def _ensure_unique_name(name, exclude_id=None):
    qs = Period.objects.filter(name=name)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    existing = qs.first()
    if existing:
        raise ConflictError(
            "A period with this name already exists.",
            [ConflictingPeriod.from_period(existing).as_dict()],
        )


def get_period(actor, period_id, clock=None):
    caps = as_capabilities(actor)
    caps.require("manage_periods", "You are not allowed to view evaluation periods.")
    reconcile_periods(clock=clock)

    period = Period.objects.filter(pk=period_id).first()
    if period is None:
        raise NotFoundError("Period not found.")
    return period


def list_periods(actor, status=None, clock=None):
    caps = as_capabilities(actor)
    caps.require("manage_periods", "You are not allowed to view evaluation periods.")
    reconcile_periods(clock=clock)

    qs = Period.objects.all()
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-start", "-id")


def create_period(actor, *, name, start, end, description="", clock=None):
    caps = as_capabilities(actor)
    caps.require("manage_periods", "You are not allowed to create evaluation periods.")

    name = _validate_name(name)
    _validate_window(start, end)

    clock = resolve_clock(clock)
    now = clock.now()
    if end <= now:
        raise ValidationError({"end": "A new period must end in the future."})
    reconcile_periods(now=now)

    with transaction.atomic():
        _ensure_unique_name(name)

        conflicts = find_conflicts(Window(start, end))
        if conflicts:
            raise ConflictError(
                "The dates conflict with other active or planned periods.",
                [c.as_dict() for c in conflicts],
            )

        try:
            with transaction.atomic():
                period = Period.objects.create(
                    name=name,
                    description=description or "",
                    start=start,
                    end=end,
                    status=Status.PLANNED,
                    created_by_id=caps.user_id,
                )
        except IntegrityError:
            raise ConflictError("A period with this name already exists.")

        audit.record(
            audit.PeriodCreated(entity_id=period.pk, name=name, start=start, end=end),
            user=actor,
            at=now,
        )

    reconcile_periods(now=now)
    period.refresh_from_db()
    return period


def update_period(actor, period_id, *, clock=None, **changes):
    """
    Administrative edit. Accepts name, description, start, end, status.

    Date edits on a non-terminal period are checked for overlap against
    every other non-terminal period; status changes go through
    `can_transition` with the edited window.
    """
    caps = as_capabilities(actor)
    caps.require("manage_periods", "You are not allowed to update evaluation periods.")

    allowed = {"name", "description", "start", "end", "status"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}.")
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        raise ValidationError("At least one field must be provided.")

    if "status" in changes and changes["status"] not in Status.values:
        raise ValidationError({"status": "Invalid status."})

    now = resolve_clock(clock).now()
    reconcile_periods(now=now)

    with transaction.atomic():
        period = Period.objects.select_for_update().filter(pk=period_id).first()
        if period is None:
            raise NotFoundError("Period not found.")

        if "name" in changes:
            changes["name"] = _validate_name(changes["name"])
            if changes["name"] != period.name:
                _ensure_unique_name(changes["name"], exclude_id=period.pk)

        dates_changed = "start" in changes or "end" in changes
        new_window = Window(
            start=changes.get("start", period.start),
            end=changes.get("end", period.end),
        )

        if dates_changed:
            if period.is_terminal:
                raise ValidationError(
                    "Dates of a finished or canceled period cannot be changed."
                )
            _validate_window(new_window.start, new_window.end)

            conflicts = find_conflicts(new_window, exclude_id=period.pk)
            if conflicts:
                raise ConflictError(
                    "The dates conflict with other active or planned periods.",
                    [c.as_dict() for c in conflicts],
                )

        new_status = changes.pop("status", period.status)
        if new_status != period.status:
            can_transition(period, new_status, now=now, window=new_window).raise_if_denied()

        field_changes = audit.diff(period, changes)
        for name, value in changes.items():
            setattr(period, name, value)
        if field_changes:
            period.save()
            audit.record(
                audit.PeriodUpdated(entity_id=period.pk, changes=field_changes),
                user=actor,
                at=now,
            )

        if new_status != period.status:
            _apply_status(period, new_status, now, automatic=False, user=actor)

    if dates_changed:
        reconcile_periods(now=now)
        period.refresh_from_db()
    return period


def delete_period(actor, period_id, clock=None):
    caps = as_capabilities(actor)
    caps.require("delete_periods", "Only administrators can delete evaluation periods.")

    now = resolve_clock(clock).now()
    reconcile_periods(now=now)

    with transaction.atomic():
        period = Period.objects.select_for_update().filter(pk=period_id).first()
        if period is None:
            raise NotFoundError("Period not found.")

        count = period.evaluations.count()
        if count:
            raise ConflictError(
                f"The period cannot be deleted: it has {count} evaluation(s)."
            )

        name = period.name
        pk = period.pk
        period.delete()
        audit.record(audit.PeriodDeleted(entity_id=pk, name=name), user=actor, at=now)

    logger.info("Period %s (%s) deleted", pk, name)
