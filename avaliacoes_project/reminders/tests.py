from datetime import date, datetime, timedelta
from unittest import mock

from django.apps import apps
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from accounts.models import Attendant
from core.clock import FixedClock
from core.exceptions import (
    ConflictError,
    FatalConfigError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from core.models import AuditLog
from evaluations.models import Evaluation
from notifications.models import Notification, NotificationPreference
from notifications.scheduler import SweepScheduler
from periods.models import Period
from reminders.calendar import DeliveryCalendar
from reminders.config import ReminderConfig
from reminders.mail import DeliveryResult, DjangoMailTransport, MailTransport
from reminders.models import Holiday, Reminder
from reminders.services import (
    OPTED_OUT_NOTE,
    PAUSED_NOTE,
    SKIPPED_NOTE,
    ReminderScheduler,
    render_reminder,
)


def at(*args):
    return timezone.make_aware(datetime(*args))


class RecordingTransport(MailTransport):
    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.outbox = []

    def send(self, to, subject, body):
        self.outbox.append((to, subject, body))
        if self.fail_with:
            return DeliveryResult.failed(self.fail_with)
        return DeliveryResult.ok()


# ============================================================
# CONFIGURATION & CALENDAR
# ============================================================

class ReminderConfigTests(SimpleTestCase):
    def test_defaults(self):
        config = ReminderConfig()
        self.assertEqual(config.dias_antecedencia, (7, 3, 1))
        self.assertEqual(config.send_time.hour, 9)
        self.assertEqual(config.claim_ttl, timedelta(minutes=10))

    def test_offsets_are_normalised(self):
        config = ReminderConfig(dias_antecedencia=[1, 7, 3, 7])
        self.assertEqual(config.dias_antecedencia, (7, 3, 1))

    def test_invalid_values(self):
        invalid = [
            dict(dias_antecedencia=5),
            dict(dias_antecedencia=[3, -1]),
            dict(dias_antecedencia=["7"]),
            dict(horario_envio="9:00"),
            dict(horario_envio="24:00"),
            dict(ativo="yes"),
            dict(max_attempts=0),
            dict(mail_timeout=True),
        ]
        for kwargs in invalid:
            with self.subTest(**kwargs):
                with self.assertRaises(FatalConfigError):
                    ReminderConfig(**kwargs)

    def test_from_settings(self):
        config = ReminderConfig.from_settings(
            {"DIAS_ANTECEDENCIA": [2], "HORARIO_ENVIO": "08:30", "ATIVO": False}
        )
        self.assertEqual(config.dias_antecedencia, (2,))
        self.assertEqual(config.horario_envio, "08:30")
        self.assertFalse(config.ativo)

        with self.assertRaises(FatalConfigError):
            ReminderConfig.from_settings({"DAYS_BEFORE": [2]})

    def test_replace_leaves_original_untouched(self):
        config = ReminderConfig()
        changed = config.replace(horario_envio="10:15")
        self.assertEqual(config.horario_envio, "09:00")
        self.assertEqual(changed.horario_envio, "10:15")

        with self.assertRaises(FatalConfigError):
            config.replace(colour="blue")

    def test_as_dict_uses_setting_names(self):
        data = ReminderConfig().as_dict()
        self.assertEqual(data["DIAS_ANTECEDENCIA"], [7, 3, 1])
        self.assertEqual(data["HORARIO_ENVIO"], "09:00")


class DeliveryCalendarTests(SimpleTestCase):
    def test_weekends_roll_to_monday(self):
        calendar = DeliveryCalendar(include_weekends=False, include_holidays=False, holidays=set())
        self.assertEqual(calendar.roll_forward(date(2024, 1, 6)), date(2024, 1, 8))
        self.assertEqual(calendar.roll_forward(date(2024, 1, 5)), date(2024, 1, 5))

    def test_weekends_allowed(self):
        calendar = DeliveryCalendar(include_weekends=True, include_holidays=False, holidays=set())
        self.assertEqual(calendar.roll_forward(date(2024, 1, 6)), date(2024, 1, 6))

    def test_holidays(self):
        holidays = {date(2024, 1, 8)}
        blocked = DeliveryCalendar(include_weekends=False, include_holidays=False, holidays=holidays)
        allowed = DeliveryCalendar(include_weekends=False, include_holidays=True, holidays=holidays)

        self.assertEqual(blocked.roll_forward(date(2024, 1, 6)), date(2024, 1, 9))
        self.assertEqual(allowed.roll_forward(date(2024, 1, 6)), date(2024, 1, 8))

    def test_limit(self):
        calendar = DeliveryCalendar(include_weekends=False, include_holidays=False, holidays=set())
        self.assertIsNone(calendar.roll_forward(date(2024, 1, 6), limit=date(2024, 1, 7)))


# ============================================================
# SCHEDULING & DELIVERY
# ============================================================

class ReminderTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.evaluator = User.objects.create_user(
            username="eva", password="x", email="eva@example.com", first_name="Eva"
        )
        self.manager = User.objects.create_user(username="mgr", password="x", role="MANAGER")
        self.admin = User.objects.create_user(username="root", password="x", role="ADMIN")

        self.attendant = Attendant.objects.create(name="Ana")
        self.period = Period.objects.create(
            name="January",
            start=at(2024, 1, 1),
            end=at(2024, 1, 31, 23, 59),
            status=Period.Status.ACTIVE,
        )
        # Deadline is Wednesday 2024-01-10 18:00 local.
        self.evaluation = Evaluation.objects.create(
            evaluator=self.evaluator,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
            due_at=at(2024, 1, 10, 18),
        )

        self.clock = FixedClock(at(2024, 1, 3, 9))
        self.transport = RecordingTransport()
        self.scheduler = self.make_scheduler()

    def make_scheduler(self, **config):
        return ReminderScheduler(
            config=ReminderConfig(**config),
            clock=self.clock,
            transport=self.transport,
        )

    def reminder(self, scheduled_at, **kwargs):
        kwargs.setdefault("evaluation", self.evaluation)
        kwargs.setdefault("user", self.evaluator)
        return Reminder.objects.create(scheduled_at=scheduled_at, **kwargs)


class SweepTests(ReminderTestCase):
    def test_creates_one_reminder_for_today_and_delivers_it(self):
        report = self.scheduler.sweep()

        self.assertEqual(report.created, 1)
        self.assertEqual(report.sent, 1)

        reminder = Reminder.objects.get()
        self.assertEqual(reminder.scheduled_at, at(2024, 1, 3, 9))
        self.assertEqual(reminder.type, Reminder.Type.REMINDER)
        self.assertTrue(reminder.sent)
        self.assertEqual(reminder.sent_at, self.clock.now())
        self.assertEqual(reminder.attempts, 1)

        to, subject, body = self.transport.outbox[0]
        self.assertEqual(to, "eva@example.com")
        self.assertIn("Ana", subject)

    def test_rerunning_the_sweep_creates_nothing(self):
        self.scheduler.sweep()
        report = self.scheduler.sweep()

        self.assertEqual(report.created, 0)
        self.assertEqual(report.sent, 0)
        self.assertEqual(Reminder.objects.count(), 1)
        self.assertEqual(len(self.transport.outbox), 1)

    def test_no_reminder_on_days_without_an_offset(self):
        self.clock.set(at(2024, 1, 5, 9))
        report = self.scheduler.sweep()

        self.assertEqual(report.created, 0)
        self.assertFalse(Reminder.objects.exists())

    def test_reminder_waits_for_send_time(self):
        self.clock.set(at(2024, 1, 3, 7))
        report = self.scheduler.sweep()

        self.assertEqual(report.created, 1)
        self.assertEqual(report.sent, 0)
        self.assertFalse(Reminder.objects.get().sent)

    def test_weekend_offset_rolls_to_monday(self):
        # 3 days before the deadline is Sunday 2024-01-07.
        self.clock.set(at(2024, 1, 8, 9))
        self.assertEqual(self.scheduler.sweep().created, 1)
        self.assertEqual(Reminder.objects.get().scheduled_date, date(2024, 1, 8))

    def test_holiday_offset_rolls_forward(self):
        Holiday.objects.create(date=date(2024, 1, 9), name="Local holiday")

        self.clock.set(at(2024, 1, 9, 9))
        self.assertEqual(self.scheduler.sweep().created, 0)

        self.clock.set(at(2024, 1, 10, 9))
        self.assertEqual(self.scheduler.sweep().created, 1)

    def test_overdue_evaluation_gets_a_due_reminder(self):
        self.clock.set(at(2024, 1, 11, 9))
        self.scheduler.sweep()

        reminder = Reminder.objects.get()
        self.assertEqual(reminder.type, Reminder.Type.DUE)
        self.assertTrue(self.transport.outbox[0][1].startswith("Overdue"))

    def test_no_due_reminder_on_weekend(self):
        self.clock.set(at(2024, 1, 13, 9))
        self.assertEqual(self.scheduler.sweep().created, 0)

    def test_deadline_outside_lookahead_is_ignored(self):
        scheduler = self.make_scheduler(lookahead_days=5)
        self.assertEqual(scheduler.sweep().created, 0)

    def test_completed_and_canceled_evaluations_get_nothing(self):
        self.evaluation.status = Evaluation.Status.COMPLETED
        self.evaluation.score = 4
        self.evaluation.save()
        self.assertEqual(self.scheduler.sweep().created, 0)

    def test_canceled_period_gets_nothing(self):
        Period.objects.filter(pk=self.period.pk).update(status=Period.Status.CANCELED)
        self.assertEqual(self.scheduler.sweep().created, 0)

    def test_offset_rolled_past_the_deadline_is_dropped(self):
        calendar = DeliveryCalendar(include_weekends=False, include_holidays=False, holidays=set())
        # Deadline Sunday: the 1-day offset is Saturday and rolls to Monday.
        days = self.scheduler.reminder_days(
            at(2024, 1, 14, 18), at(2024, 1, 13, 9), calendar
        )
        self.assertEqual(days, [])

    def test_delivery_notification_created(self):
        self.scheduler.sweep()

        notification = Notification.objects.get(type=Notification.Type.REMINDER)
        self.assertEqual(notification.recipient, self.evaluator)
        self.assertEqual(notification.evaluation, self.evaluation)
        self.assertEqual(notification.urgency, Notification.Urgency.LOW)


class DeliveryFailureTests(ReminderTestCase):
    def setUp(self):
        super().setUp()
        self.transport.fail_with = "SMTP server unavailable"

    def test_failure_is_recorded_for_retry(self):
        report = self.scheduler.sweep()

        self.assertEqual(report.failed, 1)
        reminder = Reminder.objects.get()
        self.assertFalse(reminder.sent)
        self.assertEqual(reminder.attempts, 1)
        self.assertEqual(reminder.last_error, "SMTP server unavailable")
        self.assertEqual(reminder.last_attempt_at, self.clock.now())
        self.assertFalse(reminder.permanently_failed)
        self.assertIsNone(reminder.claimed_at)
        self.assertFalse(Notification.objects.exists())

    def test_permanent_failure_after_max_attempts(self):
        scheduler = self.make_scheduler(max_attempts=2)

        scheduler.sweep()
        self.clock.advance(hours=1)
        scheduler.sweep()

        reminder = Reminder.objects.get()
        self.assertEqual(reminder.attempts, 2)
        self.assertTrue(reminder.permanently_failed)

        self.clock.advance(hours=1)
        self.assertEqual(scheduler.sweep().failed, 0)
        self.assertEqual(len(self.transport.outbox), 2)

    def test_retry_succeeds_later(self):
        self.scheduler.sweep()
        self.transport.fail_with = None
        self.clock.advance(hours=1)

        self.assertEqual(self.scheduler.sweep().sent, 1)
        reminder = Reminder.objects.get()
        self.assertTrue(reminder.sent)
        self.assertEqual(reminder.attempts, 2)
        self.assertIsNone(reminder.last_error)


class ClaimTests(ReminderTestCase):
    def test_claimed_reminder_is_left_alone(self):
        reminder = self.reminder(at(2024, 1, 3, 8))
        Reminder.objects.filter(pk=reminder.pk).update(
            claimed_at=self.clock.now() - timedelta(minutes=2), claim_token="other"
        )

        report = self.scheduler.sweep()

        self.assertEqual(report.sent, 0)
        self.assertEqual(self.transport.outbox, [])
        reminder.refresh_from_db()
        self.assertFalse(reminder.sent)

    def test_expired_claim_is_taken_over(self):
        reminder = self.reminder(at(2024, 1, 3, 8))
        Reminder.objects.filter(pk=reminder.pk).update(
            claimed_at=self.clock.now() - timedelta(minutes=30), claim_token="crashed"
        )

        self.scheduler.sweep()

        reminder.refresh_from_db()
        self.assertTrue(reminder.sent)
        self.assertEqual(reminder.claim_token, "")

    def test_reminder_for_completed_evaluation_is_closed(self):
        reminder = self.reminder(at(2024, 1, 3, 8))
        Evaluation.objects.filter(pk=self.evaluation.pk).update(
            status=Evaluation.Status.COMPLETED, score=5
        )

        report = self.scheduler.sweep()

        self.assertEqual(report.skipped, 1)
        self.assertEqual(self.transport.outbox, [])
        reminder.refresh_from_db()
        self.assertTrue(reminder.sent)
        self.assertEqual(reminder.last_error, SKIPPED_NOTE)


class RecipientPreferenceTests(ReminderTestCase):
    def test_email_opt_out_closes_the_reminder_unsent(self):
        NotificationPreference.objects.create(user=self.evaluator, email_enabled=False)

        report = self.scheduler.sweep()

        self.assertEqual((report.created, report.sent, report.skipped), (1, 0, 1))
        self.assertEqual(self.transport.outbox, [])
        reminder = Reminder.objects.get()
        self.assertTrue(reminder.sent)
        self.assertEqual(reminder.attempts, 0)
        self.assertEqual(reminder.last_error, OPTED_OUT_NOTE)
        self.assertFalse(Notification.objects.exists())

    def test_paused_recipient_gets_nothing_while_the_pause_lasts(self):
        NotificationPreference.objects.create(
            user=self.evaluator,
            paused=True,
            paused_from=at(2024, 1, 2),
            paused_until=at(2024, 1, 5),
        )

        self.assertEqual(self.scheduler.sweep().skipped, 1)
        self.assertEqual(Reminder.objects.get().last_error, PAUSED_NOTE)
        self.assertEqual(self.transport.outbox, [])

    def test_pause_in_the_future_does_not_block_delivery(self):
        NotificationPreference.objects.create(
            user=self.evaluator,
            paused=True,
            paused_from=at(2024, 1, 20),
            paused_until=at(2024, 1, 25),
        )

        self.assertEqual(self.scheduler.sweep().sent, 1)
        self.assertEqual(len(self.transport.outbox), 1)

    def test_delivery_is_recorded_on_the_preferences(self):
        preference = NotificationPreference.objects.create(user=self.evaluator)

        self.scheduler.sweep()

        preference.refresh_from_db()
        self.assertEqual(preference.last_notified_at, self.clock.now())

    def test_in_app_copy_respects_minimum_urgency(self):
        NotificationPreference.objects.create(
            user=self.evaluator,
            minimum_urgency=NotificationPreference.MinimumUrgency.HIGH,
        )

        self.assertEqual(self.scheduler.sweep().sent, 1)
        self.assertEqual(len(self.transport.outbox), 1)
        self.assertFalse(Notification.objects.exists())


class RescheduleTests(ReminderTestCase):
    def test_regenerates_automatic_reminders_only(self):
        automatic = self.reminder(at(2024, 1, 9, 9))
        manual = self.reminder(at(2024, 1, 8, 9), created_by=self.manager)
        sent = self.reminder(at(2024, 1, 2, 9), sent=True, sent_at=at(2024, 1, 2, 9))

        result = self.scheduler.reschedule_evaluation(self.evaluation.pk, user=self.manager)

        self.assertEqual(result, {"removed": 1, "created": 1})
        self.assertFalse(Reminder.objects.filter(pk=automatic.pk).exists())
        self.assertTrue(Reminder.objects.filter(pk__in=[manual.pk, sent.pk]).count() == 2)

        entry = AuditLog.objects.get(action="reminders_rescheduled")
        self.assertEqual(entry.user, self.manager)
        self.assertEqual(entry.change.removed, 1)

    def test_unknown_evaluation(self):
        with self.assertRaises(NotFoundError):
            self.scheduler.reschedule_evaluation(999)

    def test_due_at_change_reschedules_after_commit(self):
        with mock.patch("reminders.signals._reschedule") as reschedule:
            with self.captureOnCommitCallbacks(execute=True):
                self.evaluation.due_at = at(2024, 1, 12, 18)
                self.evaluation.save()

        reschedule.assert_called_once_with([self.evaluation.pk])

    def test_period_end_change_reschedules_evaluations_without_own_deadline(self):
        follower = Evaluation.objects.create(
            evaluator=self.manager,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
        )

        with mock.patch("reminders.signals._reschedule") as reschedule:
            with self.captureOnCommitCallbacks(execute=True):
                self.period.end = at(2024, 1, 30, 18)
                self.period.save()

        reschedule.assert_called_once_with([follower.pk])

    def running(self, **config):
        """Install a running sweep scheduler for this process."""
        app_config = apps.get_app_config("notifications")
        patcher = mock.patch.object(
            app_config, "sweep_scheduler", SweepScheduler(self.make_scheduler(**config))
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_deadline_change_follows_the_running_scheduler(self):
        self.running(horario_envio="07:30")

        with self.captureOnCommitCallbacks(execute=True):
            # One day ahead of the Thursday deadline is today, Wednesday.
            self.evaluation.due_at = at(2024, 1, 4, 18)
            self.evaluation.save()

        reminder = Reminder.objects.get()
        self.assertEqual(reminder.type, Reminder.Type.REMINDER)
        self.assertEqual(reminder.scheduled_at, at(2024, 1, 3, 7, 30))

    def test_deadline_change_while_running_scheduler_is_inactive(self):
        self.running(ativo=False)

        with self.captureOnCommitCallbacks(execute=True):
            self.evaluation.due_at = at(2024, 1, 4, 18)
            self.evaluation.save()

        self.assertFalse(Reminder.objects.exists())

    def test_unrelated_save_does_not_reschedule(self):
        with mock.patch("reminders.signals._reschedule") as reschedule:
            with self.captureOnCommitCallbacks(execute=True):
                self.evaluation.comment = "halfway"
                self.evaluation.save()

        reschedule.assert_not_called()


class ConfigUpdateTests(ReminderTestCase):
    def test_invalid_change_keeps_previous_config(self):
        before = self.scheduler.config

        with self.assertRaises(FatalConfigError):
            self.scheduler.update_config(horario_envio="25:00")
        with self.assertRaises(FatalConfigError):
            self.scheduler.update_config(unknown=True)

        self.assertIs(self.scheduler.config, before)

    def test_change_regenerates_future_reminders(self):
        self.clock.set(at(2024, 1, 3, 7))
        self.scheduler.generate_reminders()
        self.assertEqual(Reminder.objects.count(), 1)

        result = self.scheduler.update_config(horario_envio="10:00")

        self.assertEqual(result, {"removed": 1, "created": 1})
        self.assertEqual(Reminder.objects.get().scheduled_at, at(2024, 1, 3, 10))

    def test_deactivating_leaves_reminders(self):
        self.clock.set(at(2024, 1, 3, 7))
        self.scheduler.generate_reminders()

        result = self.scheduler.update_config(ativo=False)

        self.assertEqual(result, {"removed": 0, "created": 0})
        self.assertEqual(Reminder.objects.count(), 1)


class ManualActionTests(ReminderTestCase):
    def test_create_manual_reminder(self):
        reminder = self.scheduler.create_manual_reminder(
            self.manager,
            evaluation_id=self.evaluation.pk,
            scheduled_at=at(2024, 1, 4, 14),
            notes="Asked by the coordinator",
        )
        self.assertEqual(reminder.created_by, self.manager)
        self.assertEqual(reminder.user, self.evaluator)

        with self.assertRaises(ConflictError):
            self.scheduler.create_manual_reminder(
                self.manager, evaluation_id=self.evaluation.pk, scheduled_at=at(2024, 1, 4, 16)
            )
        with self.assertRaises(ValidationError):
            self.scheduler.create_manual_reminder(
                self.manager, evaluation_id=self.evaluation.pk, scheduled_at=datetime(2024, 1, 6, 9)
            )

    def test_manual_actions_require_manager(self):
        reminder = self.reminder(at(2024, 1, 4, 9))
        with self.assertRaises(PermissionDenied):
            self.scheduler.create_manual_reminder(
                self.evaluator, evaluation_id=self.evaluation.pk, scheduled_at=at(2024, 1, 5, 9)
            )
        with self.assertRaises(PermissionDenied):
            self.scheduler.resend(self.evaluator, reminder.pk)
        with self.assertRaises(PermissionDenied):
            self.scheduler.list_reminders(self.evaluator)

    def test_resend_delivers_immediately(self):
        reminder = self.reminder(at(2024, 1, 4, 9))

        reminder = self.scheduler.resend(self.manager, reminder.pk)

        self.assertTrue(reminder.sent)
        self.assertEqual(len(self.transport.outbox), 1)
        with self.assertRaises(ConflictError):
            self.scheduler.resend(self.manager, reminder.pk)

    def test_mark_sent(self):
        reminder = self.reminder(at(2024, 1, 4, 9))

        reminder = self.scheduler.mark_sent(self.manager, reminder.pk)

        self.assertTrue(reminder.sent)
        self.assertEqual(self.transport.outbox, [])

    def test_reschedule_clears_failure_state(self):
        reminder = self.reminder(
            at(2024, 1, 3, 9), attempts=5, permanently_failed=True, last_error="boom"
        )

        reminder = self.scheduler.reschedule_reminder(self.manager, reminder.pk, at(2024, 1, 5, 11))

        self.assertEqual(reminder.scheduled_date, date(2024, 1, 5))
        self.assertEqual(reminder.attempts, 0)
        self.assertFalse(reminder.permanently_failed)
        self.assertIsNone(reminder.last_error)

    def test_reschedule_onto_an_occupied_day(self):
        self.reminder(at(2024, 1, 5, 9))
        other = self.reminder(at(2024, 1, 4, 9))
        with self.assertRaises(ConflictError):
            self.scheduler.reschedule_reminder(self.manager, other.pk, at(2024, 1, 5, 15))

    def test_sent_reminders_are_immutable(self):
        reminder = self.reminder(at(2024, 1, 2, 9), sent=True, sent_at=at(2024, 1, 2, 9))
        with self.assertRaises(ConflictError):
            self.scheduler.delete_reminder(self.manager, reminder.pk)
        with self.assertRaises(ConflictError):
            self.scheduler.reschedule_reminder(self.manager, reminder.pk, at(2024, 1, 5, 9))
        with self.assertRaises(ConflictError):
            self.scheduler.mark_sent(self.manager, reminder.pk)

    def test_delete_unsent(self):
        reminder = self.reminder(at(2024, 1, 4, 9))
        self.scheduler.delete_reminder(self.manager, reminder.pk)
        self.assertFalse(Reminder.objects.exists())

    def test_purges(self):
        stale = self.reminder(at(2024, 1, 2, 9))
        old_sent = self.reminder(at(2023, 12, 1, 9), sent=True, sent_at=at(2023, 12, 1, 9))
        self.reminder(at(2024, 1, 4, 9))

        self.assertEqual(self.scheduler.purge_stale_unsent(self.manager), 1)
        self.assertFalse(Reminder.objects.filter(pk=stale.pk).exists())

        with self.assertRaises(PermissionDenied):
            self.scheduler.purge_sent(self.manager, at(2024, 1, 1))
        self.assertEqual(self.scheduler.purge_sent(self.admin, at(2024, 1, 1)), 1)
        self.assertFalse(Reminder.objects.filter(pk=old_sent.pk).exists())
        self.assertEqual(Reminder.objects.count(), 1)

    def test_list_filters(self):
        self.reminder(at(2024, 1, 2, 9), sent=True, sent_at=at(2024, 1, 2, 9))
        failed = self.reminder(at(2024, 1, 3, 9), permanently_failed=True, attempts=5)

        self.assertEqual(self.scheduler.list_reminders(self.manager, sent=True).count(), 1)
        self.assertEqual(list(self.scheduler.list_reminders(self.manager, failed=True)), [failed])

    def test_statistics(self):
        self.reminder(at(2024, 1, 2, 9), sent=True, sent_at=at(2024, 1, 2, 9))
        self.reminder(at(2024, 1, 3, 8), attempts=2, last_error="timeout")
        upcoming = self.reminder(at(2024, 1, 9, 9))

        stats = self.scheduler.statistics()

        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["sent"], 1)
        self.assertEqual(stats["pending"], 2)
        self.assertEqual(stats["retrying"], 1)
        self.assertEqual(stats["failed"], 0)
        self.assertEqual([r["id"] for r in stats["next_deliveries"]], [upcoming.pk])
        self.assertEqual(parse_datetime(stats["last_sent_at"]), at(2024, 1, 2, 9))


class RenderReminderTests(ReminderTestCase):
    def test_reminder_and_due_content(self):
        reminder = self.reminder(at(2024, 1, 3, 9))
        subject, body = render_reminder(reminder, self.clock.now())
        self.assertEqual(subject, "Reminder: evaluation of Ana")
        self.assertIn("Hello Eva", body)
        self.assertIn('"January"', body)

        due = self.reminder(at(2024, 1, 11, 9), type=Reminder.Type.DUE)
        subject, body = render_reminder(due, at(2024, 1, 11, 9))
        self.assertEqual(subject, "Overdue: evaluation of Ana")
        self.assertIn("still pending", body)


# ============================================================
# MAIL TRANSPORT
# ============================================================

@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend")
class DjangoMailTransportTests(SimpleTestCase):
    def test_sends_through_django(self):
        result = DjangoMailTransport(timeout=5).send("eva@example.com", "Hi", "Body")

        self.assertTrue(result.success)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["eva@example.com"])

    def test_missing_address(self):
        result = DjangoMailTransport().send("", "Hi", "Body")
        self.assertFalse(result.success)
        self.assertIn("no e-mail address", result.error)

    def test_network_errors_become_failed_results(self):
        with mock.patch("reminders.mail.EmailMessage.send", side_effect=TimeoutError("timed out")):
            result = DjangoMailTransport().send("eva@example.com", "Hi", "Body")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "timed out")

    def test_unexpected_errors_are_contained(self):
        with mock.patch("reminders.mail.EmailMessage.send", side_effect=RuntimeError("boom")):
            with self.assertLogs("reminders.mail", level="ERROR"):
                result = DjangoMailTransport().send("eva@example.com", "Hi", "Body")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "boom")
