"""
Reminder scheduling and delivery.

A sweep:
  1. reconciles periods,
  2. materialises today's reminders for PENDING evaluations,
  3. delivers every due, unsent reminder it can claim.

Reminders are unique per (evaluation, user, type, calendar day), so
running a sweep twice creates nothing new. Delivery claims each
reminder with a conditional UPDATE before sending so that two sweeps
running at once never send the same reminder twice.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from django.apps import apps
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from accounts.permissions import as_capabilities
from core import audit
from core.clock import SystemClock
from core.exceptions import ConflictError, NotFoundError, ValidationError
from evaluations.models import Evaluation
from notifications.services.generation import notify_reminder_delivered
from notifications.services.preferences import preference_for, record_delivery
from periods.models import Period
from periods.services.lifecycle import reconcile_periods
from reminders.calendar import DeliveryCalendar
from reminders.config import ReminderConfig
from reminders.mail import DeliveryResult, DjangoMailTransport
from reminders.models import Reminder

logger = logging.getLogger(__name__)

SKIPPED_NOTE = "skipped: evaluation is no longer pending"
OPTED_OUT_NOTE = "skipped: recipient turned off reminder e-mails"
PAUSED_NOTE = "skipped: recipient paused notifications"

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"
NOT_CLAIMED = "not_claimed"


@dataclass
class SweepReport:
    created: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    reconciled: int = 0
    notifications: int = 0

    def as_dict(self):
        return asdict(self)


class ReminderScheduler:
    """
    Reminder service object. Construct one per host process (or per
    request) with the config, clock and transport it should use.
    """

    def __init__(self, config=None, clock=None, transport=None):
        self.config = config or ReminderConfig.from_settings()
        self.clock = clock or SystemClock()
        self.transport = transport or DjangoMailTransport(timeout=self.config.mail_timeout)

    @classmethod
    def from_settings(cls, clock=None, transport=None):
        return cls(config=ReminderConfig.from_settings(), clock=clock, transport=transport)

    # ============================================================
    # SWEEP
    # ============================================================

    def sweep(self) -> SweepReport:
        now = self.clock.now()
        report = SweepReport()

        report.reconciled = reconcile_periods(now=now).changed
        report.created = self.generate_reminders(now)

        for reminder_id in self._due_reminder_ids(now):
            outcome = self._attempt(reminder_id, now)
            if outcome == SENT:
                report.sent += 1
            elif outcome == FAILED:
                report.failed += 1
            elif outcome == SKIPPED:
                report.skipped += 1

        logger.info(
            "Reminder sweep at %s: %d created, %d sent, %d failed, %d skipped",
            now.isoformat(), report.created, report.sent, report.failed, report.skipped,
        )
        return report

    def generate_reminders(self, now=None) -> int:
        now = now or self.clock.now()
        calendar = DeliveryCalendar.for_config(self.config)

        evaluations = Evaluation.objects.pending_with_deadline(
            until=now + self.config.lookahead
        )
        created = 0
        for evaluation in evaluations:
            created += self._materialise(evaluation, evaluation.deadline_at, now, calendar)
        return created

    def reminder_days(self, deadline, now, calendar=None):
        """
        (type, day) pairs that fall on today's local date.

        Offsets count back from the deadline's local day; a blocked day
        rolls forward and is dropped if it rolls past the deadline day.
        Once the deadline has passed, every eligible day gets a `due`.
        """
        calendar = calendar or DeliveryCalendar.for_config(self.config)
        today = timezone.localdate(now)

        if deadline < now:
            if calendar.is_eligible(today):
                return [(Reminder.Type.DUE, today)]
            return []

        deadline_day = timezone.localdate(deadline)
        days = []
        for offset in self.config.dias_antecedencia:
            candidate = deadline_day - timedelta(days=offset)
            rolled = calendar.roll_forward(candidate, limit=deadline_day)
            if rolled == today and (Reminder.Type.REMINDER, today) not in days:
                days.append((Reminder.Type.REMINDER, today))
        return days

    def scheduled_at(self, day):
        return timezone.make_aware(datetime.combine(day, self.config.send_time))

    def _materialise(self, evaluation, deadline, now, calendar):
        created = 0
        for kind, day in self.reminder_days(deadline, now, calendar):
            if self._ensure_reminder(evaluation, kind, day):
                created += 1
        return created

    def _ensure_reminder(self, evaluation, kind, day, created_by=None, notes=""):
        try:
            with transaction.atomic():
                _, created = Reminder.objects.get_or_create(
                    evaluation=evaluation,
                    user_id=evaluation.evaluator_id,
                    type=kind,
                    scheduled_date=day,
                    defaults={
                        "scheduled_at": self.scheduled_at(day),
                        "created_by": created_by,
                        "notes": notes,
                    },
                )
        except IntegrityError:
            # Another sweep inserted it first.
            return False
        return created

    # ============================================================
    # DELIVERY
    # ============================================================

    def _due_reminder_ids(self, now):
        return list(
            Reminder.objects
            .filter(sent=False, permanently_failed=False, scheduled_at__lte=now)
            .order_by("scheduled_at", "id")
            .values_list("id", flat=True)
        )

    def _claim(self, reminder_id, now):
        token = uuid.uuid4().hex
        expired = now - self.config.claim_ttl
        claimed = (
            Reminder.objects
            .filter(pk=reminder_id, sent=False, permanently_failed=False)
            .filter(Q(claimed_at__isnull=True) | Q(claimed_at__lt=expired))
            .update(claimed_at=now, claim_token=token)
        )
        return token if claimed else None

    def _attempt(self, reminder_id, now):
        token = self._claim(reminder_id, now)
        if token is None:
            return NOT_CLAIMED

        reminder = (
            Reminder.objects
            .select_related("user", "evaluation__period", "evaluation__evaluated")
            .get(pk=reminder_id)
        )

        evaluation = reminder.evaluation
        if evaluation is None or not evaluation.is_pending:
            return self._close_unsent(reminder_id, now, SKIPPED_NOTE)

        preference = preference_for(reminder.user_id)
        if preference.is_paused(now):
            return self._close_unsent(reminder_id, now, PAUSED_NOTE)
        if not preference.accepts_email(now):
            return self._close_unsent(reminder_id, now, OPTED_OUT_NOTE)

        subject, body = render_reminder(reminder, now)
        result = self.transport.send(reminder.user.email, subject, body)
        self._record_attempt(reminder, result, now)
        return SENT if result.success else FAILED

    def _close_unsent(self, reminder_id, now, note):
        Reminder.objects.filter(pk=reminder_id, sent=False).update(
            sent=True,
            sent_at=now,
            last_error=note,
            claimed_at=None,
            claim_token="",
        )
        logger.info("Reminder %s closed without sending: %s", reminder_id, note)
        return SKIPPED

    @transaction.atomic
    def _record_attempt(self, reminder, result: DeliveryResult, now):
        common = dict(
            attempts=F("attempts") + 1,
            last_attempt_at=now,
            claimed_at=None,
            claim_token="",
        )

        if result.success:
            Reminder.objects.filter(pk=reminder.pk, sent=False).update(
                sent=True, sent_at=now, last_error=None, **common
            )
            record_delivery(reminder.user_id, now)
            notify_reminder_delivered(reminder, now)
            logger.info(
                "Sent %s reminder %s to user %s",
                reminder.type, reminder.pk, reminder.user_id,
            )
            return

        Reminder.objects.filter(pk=reminder.pk).update(last_error=result.error, **common)
        attempts = Reminder.objects.values_list("attempts", flat=True).get(pk=reminder.pk)

        if attempts >= self.config.max_attempts:
            Reminder.objects.filter(pk=reminder.pk).update(permanently_failed=True)
            logger.warning(
                "Reminder %s failed permanently after %d attempts: %s",
                reminder.pk, attempts, result.error,
            )
        else:
            logger.warning(
                "Reminder %s delivery failed (attempt %d of %d): %s",
                reminder.pk, attempts, self.config.max_attempts, result.error,
            )

    # ============================================================
    # RESCHEDULING & CONFIGURATION
    # ============================================================

    def reschedule_evaluation(self, evaluation_id, user=None):
        """
        Drop future unsent reminders of one evaluation and regenerate
        them from the current configuration and deadline.
        """
        now = self.clock.now()

        with transaction.atomic():
            evaluation = (
                Evaluation.objects
                .select_related("period")
                .filter(pk=evaluation_id)
                .first()
            )
            if evaluation is None:
                raise NotFoundError("Evaluation not found.")

            removed, _ = evaluation.reminders.filter(
                sent=False, scheduled_at__gt=now, created_by__isnull=True
            ).delete()

            created = 0
            if evaluation.is_pending and evaluation.period.status != Period.Status.CANCELED:
                calendar = DeliveryCalendar.for_config(self.config)
                created = self._materialise(evaluation, evaluation.deadline, now, calendar)

            if removed or created:
                audit.record(
                    audit.RemindersRescheduled(
                        entity_id=evaluation.pk, removed=removed, created=created
                    ),
                    user=user,
                    at=now,
                )

        logger.info(
            "Rescheduled reminders for evaluation %s: %d removed, %d created",
            evaluation_id, removed, created,
        )
        return {"removed": removed, "created": created}

    def update_config(self, **changes):
        """
        Validate and apply configuration changes. Raises FatalConfigError
        and keeps the current configuration when a value is invalid.
        """
        new_config = self.config.replace(**changes)
        self.config = new_config
        if isinstance(self.transport, DjangoMailTransport):
            self.transport.timeout = new_config.mail_timeout

        logger.info("Reminder configuration updated: %s", ", ".join(sorted(changes)))

        if not new_config.ativo:
            return {"removed": 0, "created": 0}

        now = self.clock.now()
        with transaction.atomic():
            removed, _ = Reminder.objects.filter(
                sent=False, scheduled_at__gt=now, created_by__isnull=True
            ).delete()
            created = self.generate_reminders(now)
        return {"removed": removed, "created": created}

    # ============================================================
    # MANUAL ACTIONS (MANAGERS)
    # ============================================================

    def _load_for_action(self, actor, reminder_id, lock=True):
        as_capabilities(actor).require(
            "manage_reminders", "Only managers can manage reminders."
        )
        qs = Reminder.objects.select_for_update() if lock else Reminder.objects
        reminder = qs.filter(pk=reminder_id).first()
        if reminder is None:
            raise NotFoundError("Reminder not found.")
        return reminder

    def create_manual_reminder(self, actor, *, evaluation_id, scheduled_at, type=Reminder.Type.REMINDER, notes=""):
        caps = as_capabilities(actor)
        caps.require("manage_reminders", "Only managers can create reminders.")

        if scheduled_at is None or timezone.is_naive(scheduled_at):
            raise ValidationError({"scheduled_at": "A time-zone aware date and time is required."})
        if type not in Reminder.Type.values:
            raise ValidationError({"type": "Invalid reminder type."})

        evaluation = Evaluation.objects.filter(pk=evaluation_id).first()
        if evaluation is None:
            raise NotFoundError("Evaluation not found.")

        day = timezone.localdate(scheduled_at)
        duplicate = Reminder.objects.filter(
            evaluation=evaluation,
            user_id=evaluation.evaluator_id,
            type=type,
            scheduled_date=day,
        ).exists()
        if duplicate:
            raise ConflictError("A reminder for this evaluation is already scheduled on that day.")

        try:
            with transaction.atomic():
                reminder = Reminder.objects.create(
                    evaluation=evaluation,
                    user_id=evaluation.evaluator_id,
                    type=type,
                    scheduled_at=scheduled_at,
                    notes=notes or "",
                    created_by_id=caps.user_id,
                )
        except IntegrityError:
            raise ConflictError("A reminder for this evaluation is already scheduled on that day.")

        logger.info("Manual reminder %s created by user %s", reminder.pk, caps.user_id)
        return reminder

    def resend(self, actor, reminder_id):
        """Immediate delivery attempt (reenviar)."""
        reminder = self._load_for_action(actor, reminder_id, lock=False)
        if reminder.sent:
            raise ConflictError("This reminder has already been sent.")
        if reminder.permanently_failed:
            raise ValidationError("This reminder failed permanently; reschedule it first.")

        outcome = self._attempt(reminder.pk, self.clock.now())
        if outcome == NOT_CLAIMED:
            raise ConflictError("This reminder is being delivered right now.")

        reminder.refresh_from_db()
        return reminder

    def mark_sent(self, actor, reminder_id):
        now = self.clock.now()
        with transaction.atomic():
            reminder = self._load_for_action(actor, reminder_id)
            if reminder.sent:
                raise ConflictError("This reminder has already been sent.")
            if reminder.claimed_at and reminder.claimed_at >= now - self.config.claim_ttl:
                raise ConflictError("This reminder is being delivered right now.")

            reminder.sent = True
            reminder.sent_at = now
            reminder.claimed_at = None
            reminder.claim_token = ""
            reminder.save(update_fields=["sent", "sent_at", "claimed_at", "claim_token"])

        logger.info("Reminder %s marked as sent manually", reminder.pk)
        return reminder

    def reschedule_reminder(self, actor, reminder_id, new_at):
        """Move an unsent reminder; clears its attempts and failure state."""
        if new_at is None or timezone.is_naive(new_at):
            raise ValidationError({"scheduled_at": "A time-zone aware date and time is required."})

        with transaction.atomic():
            reminder = self._load_for_action(actor, reminder_id)
            if reminder.sent:
                raise ConflictError("Sent reminders cannot be rescheduled.")

            clash = Reminder.objects.filter(
                evaluation_id=reminder.evaluation_id,
                user_id=reminder.user_id,
                type=reminder.type,
                scheduled_date=timezone.localdate(new_at),
            ).exclude(pk=reminder.pk)
            if clash.exists():
                raise ConflictError("A reminder for this evaluation is already scheduled on that day.")

            reminder.scheduled_at = new_at
            reminder.attempts = 0
            reminder.permanently_failed = False
            reminder.last_error = None
            reminder.claimed_at = None
            reminder.claim_token = ""
            try:
                with transaction.atomic():
                    reminder.save()
            except IntegrityError:
                raise ConflictError("A reminder for this evaluation is already scheduled on that day.")

        logger.info("Reminder %s rescheduled to %s", reminder.pk, new_at.isoformat())
        return reminder

    def delete_reminder(self, actor, reminder_id):
        with transaction.atomic():
            reminder = self._load_for_action(actor, reminder_id)
            if reminder.sent:
                raise ConflictError("Sent reminders cannot be deleted.")
            reminder.delete()
        logger.info("Reminder %s deleted", reminder_id)

    def purge_stale_unsent(self, actor, now=None) -> int:
        """Delete unsent reminders scheduled on a day that has passed."""
        as_capabilities(actor).require("manage_reminders", "Only managers can manage reminders.")
        today = timezone.localdate(now or self.clock.now())
        deleted, _ = Reminder.objects.filter(sent=False, scheduled_date__lt=today).delete()
        if deleted:
            logger.info("Purged %d stale unsent reminder(s)", deleted)
        return deleted

    def purge_sent(self, actor, before) -> int:
        """Administrative purge of delivery history."""
        as_capabilities(actor).require("purge_reminders", "Only administrators can purge sent reminders.")
        if before is None or timezone.is_naive(before):
            raise ValidationError({"before": "A time-zone aware date and time is required."})
        deleted, _ = Reminder.objects.filter(sent=True, sent_at__lt=before).delete()
        logger.info("Purged %d sent reminder(s) older than %s", deleted, before.isoformat())
        return deleted

    # ============================================================
    # READ SIDE
    # ============================================================

    def list_reminders(self, actor, *, sent=None, evaluation_id=None, failed=None):
        as_capabilities(actor).require("manage_reminders", "Only managers can view reminders.")
        qs = Reminder.objects.select_related("user", "evaluation")
        if sent is not None:
            qs = qs.filter(sent=sent)
        if evaluation_id:
            qs = qs.filter(evaluation_id=evaluation_id)
        if failed is not None:
            qs = qs.filter(permanently_failed=failed)
        return qs

    def statistics(self, upcoming=5):
        now = self.clock.now()
        qs = Reminder.objects.all()

        last_sent = qs.filter(sent=True).order_by("-sent_at").first()
        next_deliveries = list(
            qs.filter(sent=False, permanently_failed=False, scheduled_at__gt=now)
            .order_by("scheduled_at", "id")[:upcoming]
        )

        return {
            "total": qs.count(),
            "sent": qs.filter(sent=True).count(),
            "pending": qs.filter(sent=False, permanently_failed=False).count(),
            "retrying": qs.filter(sent=False, permanently_failed=False, attempts__gt=0).count(),
            "failed": qs.filter(permanently_failed=True, sent=False).count(),
            "next_deliveries": [
                {"id": r.pk, "evaluation_id": r.evaluation_id, "scheduled_at": r.scheduled_at.isoformat()}
                for r in next_deliveries
            ],
            "last_sent_at": last_sent.sent_at.isoformat() if last_sent and last_sent.sent_at else None,
            "config": self.config.as_dict(),
        }


# ============================================================
# E-MAIL CONTENT
# ============================================================

def render_reminder(reminder, now):
    evaluation = reminder.evaluation
    deadline = timezone.localtime(evaluation.deadline)
    attendant = evaluation.evaluated.name
    period = evaluation.period.name

    if reminder.type == Reminder.Type.DUE:
        subject = f"Overdue: evaluation of {attendant}"
        lead = (
            f'Your evaluation of {attendant} for the period "{period}" '
            f"was due on {deadline:%A, %d %B %Y at %H:%M} and is still pending."
        )
    else:
        subject = f"Reminder: evaluation of {attendant}"
        lead = (
            f'Your evaluation of {attendant} for the period "{period}" '
            f"is due on {deadline:%A, %d %B %Y at %H:%M}."
        )

    name = reminder.user.get_full_name() or reminder.user.username
    body = (
        f"Hello {name},\n\n"
        f"{lead}\n\n"
        "Please complete it as soon as possible.\n"
    )
    return subject, body


def current_scheduler():
    """
    The running sweep scheduler's service when this process hosts one,
    so callers share its clock and any configuration changed at runtime;
    otherwise a fresh service built from settings.
    """
    sweep_scheduler = apps.get_app_config("notifications").sweep_scheduler
    if sweep_scheduler is not None:
        return sweep_scheduler.reminders
    return ReminderScheduler.from_settings()
