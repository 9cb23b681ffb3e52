from datetime import datetime, timedelta
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from accounts.models import Attendant
from core.clock import FixedClock
from core.exceptions import FatalConfigError, NotFoundError, PermissionDenied, ValidationError
from evaluations.models import Evaluation
from notifications.models import Notification, NotificationPreference
from notifications.scheduler import PURGE_JOB_ID, SWEEP_JOB_ID, SweepScheduler
from notifications.services import (
    UrgencyPolicy,
    classify,
    days_remaining,
    generate_notifications,
    get_preferences,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
    notifications_paused,
    notify_reminder_delivered,
    pause_notifications,
    pending_statistics,
    purge_old_notifications,
    reset_preferences,
    resume_notifications,
    update_preferences,
)
from periods.models import Period
from reminders.config import ReminderConfig
from reminders.mail import DeliveryResult, MailTransport
from reminders.models import Reminder
from reminders.services import ReminderScheduler


def at(*args):
    return timezone.make_aware(datetime(*args))


class UrgencyTests(SimpleTestCase):
    def test_tiers(self):
        cases = [
            (-1, "overdue", "high"),
            (0, "pending", "high"),
            (1, "pending", "high"),
            (2, "pending", "medium"),
            (3, "pending", "medium"),
            (5, "pending", "low"),
        ]
        for days, type_, urgency in cases:
            with self.subTest(days=days):
                result = classify(days)
                self.assertEqual((result.type, result.urgency), (type_, urgency))

    def test_days_remaining_rounds_up(self):
        now = at(2024, 1, 3, 9)
        self.assertEqual(days_remaining(at(2024, 1, 3, 10), now), 1)
        self.assertEqual(days_remaining(at(2024, 1, 5, 9), now), 2)
        self.assertEqual(days_remaining(at(2024, 1, 1, 9), now), -2)
        # Less than a day late still counts as due today.
        self.assertEqual(days_remaining(at(2024, 1, 3, 8), now), 0)

    def test_policy(self):
        policy = UrgencyPolicy(high_max_days=2, medium_max_days=7, overdue_urgency="overdue")
        self.assertEqual(classify(2, policy).urgency, "high")
        self.assertEqual(classify(6, policy).urgency, "medium")
        self.assertEqual(classify(-3, policy).urgency, "overdue")

    def test_invalid_policy(self):
        for kwargs in (
            dict(high_max_days=-1),
            dict(high_max_days=5, medium_max_days=2),
            dict(overdue_urgency="critical"),
        ):
            with self.subTest(**kwargs):
                with self.assertRaises(FatalConfigError):
                    UrgencyPolicy(**kwargs)

        with self.assertRaises(FatalConfigError):
            UrgencyPolicy.from_settings({"LOW_MAX_DAYS": 10})


class NotificationTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.evaluator = User.objects.create_user(username="eva", password="x")
        self.other = User.objects.create_user(username="otto", password="x")

        self.attendant = Attendant.objects.create(name="Ana")
        self.period = Period.objects.create(
            name="January",
            start=at(2024, 1, 1),
            end=at(2024, 1, 31, 23, 59),
            status=Period.Status.ACTIVE,
        )
        self.evaluation = Evaluation.objects.create(
            evaluator=self.evaluator,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
            due_at=at(2024, 1, 10, 18),
        )
        self.clock = FixedClock(at(2024, 1, 9, 9))

    def notify(self, recipient=None, **kwargs):
        kwargs.setdefault("type", Notification.Type.PENDING)
        kwargs.setdefault("title", "Evaluation due")
        kwargs.setdefault("message", "Please complete it.")
        return Notification.objects.create(recipient=recipient or self.evaluator, **kwargs)


class GenerationTests(NotificationTestCase):
    def test_pending_notification(self):
        self.assertEqual(generate_notifications(clock=self.clock), 1)

        notification = Notification.objects.get()
        self.assertEqual(notification.recipient, self.evaluator)
        self.assertEqual(notification.type, Notification.Type.PENDING)
        self.assertEqual(notification.urgency, Notification.Urgency.MEDIUM)
        self.assertEqual(notification.title, "Evaluation due in 2 days")
        self.assertEqual(notification.deadline, at(2024, 1, 10, 18))
        self.assertEqual(notification.action_url, f"/api/evaluations/{self.evaluation.pk}/")

    def test_generation_is_idempotent_until_read(self):
        generate_notifications(clock=self.clock)
        self.assertEqual(generate_notifications(clock=self.clock), 0)

        Notification.objects.update(status=Notification.Status.READ)
        self.assertEqual(generate_notifications(clock=self.clock), 1)
        self.assertEqual(Notification.objects.count(), 2)

    def test_overdue_notification(self):
        self.clock.set(at(2024, 1, 13, 9))
        generate_notifications(clock=self.clock)

        notification = Notification.objects.get()
        self.assertEqual(notification.type, Notification.Type.OVERDUE)
        self.assertEqual(notification.urgency, Notification.Urgency.HIGH)
        self.assertIn("2 days overdue", notification.message)

    def test_period_end_is_the_fallback_deadline(self):
        self.evaluation.due_at = None
        self.evaluation.save()

        self.clock.set(at(2024, 1, 25, 9))
        generate_notifications(clock=self.clock)
        self.assertEqual(Notification.objects.get().deadline, self.period.end)

    def test_far_deadlines_and_finished_work_are_skipped(self):
        self.assertEqual(
            generate_notifications(clock=self.clock, lookahead=timedelta(hours=12)), 0
        )

        self.evaluation.status = Evaluation.Status.COMPLETED
        self.evaluation.score = 3
        self.evaluation.save()
        self.assertEqual(generate_notifications(clock=self.clock), 0)

    def test_canceled_period_is_skipped(self):
        Period.objects.filter(pk=self.period.pk).update(status=Period.Status.CANCELED)
        self.assertEqual(generate_notifications(clock=self.clock), 0)

    def test_opted_out_recipient_is_skipped(self):
        update_preferences(self.evaluator, notifications_enabled=False)
        self.assertEqual(generate_notifications(clock=self.clock), 0)

    def test_minimum_urgency(self):
        update_preferences(self.evaluator, minimum_urgency="high")
        self.assertEqual(generate_notifications(clock=self.clock), 0)

        self.clock.set(at(2024, 1, 10, 9))
        self.assertEqual(generate_notifications(clock=self.clock), 1)
        self.assertEqual(Notification.objects.get().urgency, Notification.Urgency.HIGH)

    def test_paused_recipient_is_skipped_until_the_pause_ends(self):
        pause_notifications(self.evaluator, until=at(2024, 1, 9, 12), clock=self.clock)
        self.assertEqual(generate_notifications(clock=self.clock), 0)

        self.clock.set(at(2024, 1, 9, 13))
        self.assertEqual(generate_notifications(clock=self.clock), 1)

    @override_settings(NOTIFICATION_URGENCY={"HIGH_MAX_DAYS": 2})
    def test_reminder_copy_uses_the_configured_policy(self):
        reminder = Reminder.objects.create(
            evaluation=self.evaluation, user=self.evaluator, scheduled_at=self.clock.now()
        )

        notify_reminder_delivered(reminder, self.clock.now())

        notification = Notification.objects.get(type=Notification.Type.REMINDER)
        self.assertEqual(notification.urgency, Notification.Urgency.HIGH)


class InboxTests(NotificationTestCase):
    def test_users_see_their_own(self):
        mine = self.notify()
        self.notify(recipient=self.other)

        self.assertEqual(list(list_notifications(self.evaluator)), [mine])

    def test_filters(self):
        high = self.notify(urgency=Notification.Urgency.HIGH)
        self.notify(type=Notification.Type.REMINDER)

        self.assertEqual(list(list_notifications(self.evaluator, urgency="high")), [high])
        self.assertEqual(list_notifications(self.evaluator, type="reminder").count(), 1)
        with self.assertRaises(ValidationError):
            list_notifications(self.evaluator, status="archived")

    def test_mark_as_read(self):
        notification = self.notify()

        notification = mark_as_read(self.evaluator, notification.pk, clock=self.clock)

        self.assertTrue(notification.is_read)
        self.assertEqual(notification.read_at, self.clock.now())

    def test_cannot_read_someone_elses(self):
        notification = self.notify(recipient=self.other)
        with self.assertRaises(NotFoundError):
            mark_as_read(self.evaluator, notification.pk)

    def test_mark_all_as_read(self):
        self.notify(urgency=Notification.Urgency.HIGH)
        self.notify(type=Notification.Type.REMINDER, urgency=Notification.Urgency.LOW)
        self.notify(recipient=self.other)

        self.assertEqual(mark_all_as_read(self.evaluator, urgency="high", clock=self.clock), 1)
        self.assertEqual(mark_all_as_read(self.evaluator, clock=self.clock), 1)
        self.assertEqual(
            Notification.objects.filter(status=Notification.Status.UNREAD).count(), 1
        )

    def test_purge_keeps_unread_and_recent(self):
        now = at(2024, 6, 1)
        old_read = self.notify(status=Notification.Status.READ, created_at=now - timedelta(days=100))
        self.notify(
            type=Notification.Type.OVERDUE,
            status=Notification.Status.UNREAD,
            created_at=now - timedelta(days=100),
        )
        self.notify(
            type=Notification.Type.REMINDER,
            status=Notification.Status.READ,
            created_at=now - timedelta(days=10),
        )

        self.assertEqual(purge_old_notifications(days=90, now=now), 1)
        self.assertFalse(Notification.objects.filter(pk=old_read.pk).exists())
        self.assertEqual(Notification.objects.count(), 2)

        with self.assertRaises(ValidationError):
            purge_old_notifications(days=-1, now=now)

    def test_pending_statistics(self):
        soon = Attendant.objects.create(name="Bruno")
        Evaluation.objects.create(
            evaluator=self.evaluator,
            evaluated=soon,
            period=self.period,
            status=Evaluation.Status.PENDING,
            due_at=at(2024, 1, 7, 18),
        )
        Evaluation.objects.create(
            evaluator=self.other,
            evaluated=soon,
            period=self.period,
            status=Evaluation.Status.PENDING,
        )

        stats = pending_statistics(user=self.evaluator, clock=self.clock)
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["overdue"], 1)
        self.assertEqual(stats["due_soon"], 1)
        self.assertEqual(stats["by_urgency"]["high"], 1)
        self.assertEqual(stats["by_urgency"]["medium"], 1)

        everyone = pending_statistics(clock=self.clock)
        self.assertEqual(everyone["total"], 3)
        self.assertEqual(everyone["by_urgency"]["low"], 1)

    def test_due_soon_follows_the_medium_tier(self):
        Evaluation.objects.create(
            evaluator=self.evaluator,
            evaluated=Attendant.objects.create(name="Bruno"),
            period=self.period,
            status=Evaluation.Status.PENDING,
            due_at=at(2024, 1, 14, 18),
        )

        stats = pending_statistics(user=self.evaluator, clock=self.clock)
        self.assertEqual(stats["due_soon"], 1)

        with override_settings(NOTIFICATION_URGENCY={"MEDIUM_MAX_DAYS": 7}):
            stats = pending_statistics(user=self.evaluator, clock=self.clock)
        self.assertEqual(stats["due_soon"], 2)


class PreferenceTests(NotificationTestCase):
    def test_defaults_are_created_on_first_read(self):
        preference = get_preferences(self.evaluator, clock=self.clock)

        self.assertTrue(preference.notifications_enabled)
        self.assertTrue(preference.email_enabled)
        self.assertEqual(preference.minimum_urgency, "low")
        self.assertFalse(preference.paused)
        self.assertEqual(preference.version, 1)
        self.assertEqual(NotificationPreference.objects.count(), 1)

    def test_update_bumps_the_version(self):
        preference = update_preferences(self.evaluator, email_enabled=False, minimum_urgency="medium")

        self.assertFalse(preference.email_enabled)
        self.assertEqual(preference.minimum_urgency, "medium")
        self.assertEqual(preference.version, 2)

    def test_invalid_updates(self):
        for changes in (
            {},
            {"digest": True},
            {"minimum_urgency": "overdue"},
            {"email_enabled": "no"},
        ):
            with self.subTest(changes=changes):
                with self.assertRaises(ValidationError):
                    update_preferences(self.evaluator, **changes)

    def test_reset_restores_defaults_and_lifts_the_pause(self):
        update_preferences(self.evaluator, notifications_enabled=False, minimum_urgency="high")
        pause_notifications(self.evaluator, until=at(2024, 1, 12), clock=self.clock)

        preference = reset_preferences(self.evaluator)

        self.assertTrue(preference.notifications_enabled)
        self.assertEqual(preference.minimum_urgency, "low")
        self.assertFalse(preference.paused)
        self.assertIsNone(preference.paused_until)

    def test_pause_and_resume(self):
        preference = pause_notifications(
            self.evaluator, until=at(2024, 1, 12), reason="Vacation", clock=self.clock
        )
        self.assertEqual(preference.paused_from, self.clock.now())
        self.assertEqual(preference.pause_reason, "Vacation")
        self.assertTrue(notifications_paused(self.evaluator, clock=self.clock))

        resume_notifications(self.evaluator)
        self.assertFalse(notifications_paused(self.evaluator, clock=self.clock))

    def test_expired_pause_is_lifted_on_read(self):
        pause_notifications(self.evaluator, until=at(2024, 1, 10), clock=self.clock)

        self.clock.set(at(2024, 1, 11))
        preference = get_preferences(self.evaluator, clock=self.clock)

        self.assertFalse(preference.paused)
        self.assertIsNone(preference.paused_from)

    def test_invalid_pauses(self):
        with self.assertRaises(ValidationError):
            pause_notifications(self.evaluator, until=at(2024, 1, 8), clock=self.clock)
        with self.assertRaises(ValidationError):
            pause_notifications(self.evaluator, until=datetime(2024, 1, 12), clock=self.clock)
        with self.assertRaises(ValidationError):
            pause_notifications(
                self.evaluator, until=at(2024, 1, 12), reason="x" * 300, clock=self.clock
            )

    def test_each_user_has_their_own(self):
        update_preferences(self.evaluator, notifications_enabled=False)
        self.assertTrue(get_preferences(self.other).notifications_enabled)

    def test_anonymous_users_have_no_preferences(self):
        with self.assertRaises(PermissionDenied):
            get_preferences(AnonymousUser())


class NullTransport(MailTransport):
    def send(self, to, subject, body):
        return DeliveryResult.ok()


class SweepSchedulerTests(NotificationTestCase):
    def make(self, **config):
        reminders = ReminderScheduler(
            config=ReminderConfig(**config), clock=self.clock, transport=NullTransport()
        )
        backend = mock.MagicMock()
        return SweepScheduler(reminders, scheduler_class=backend), backend

    def test_start_registers_jobs_once(self):
        scheduler, backend = self.make(sweep_interval_minutes=15)

        scheduler.start()
        scheduler.start()

        backend.assert_called_once()
        instance = backend.return_value
        instance.start.assert_called_once()
        job_ids = [c.kwargs["id"] for c in instance.add_job.call_args_list]
        self.assertEqual(job_ids, [SWEEP_JOB_ID, PURGE_JOB_ID])
        sweep_call = instance.add_job.call_args_list[0]
        self.assertEqual(sweep_call.kwargs["minutes"], 15)
        self.assertEqual(sweep_call.kwargs["max_instances"], 1)
        self.assertTrue(scheduler.running)

    def test_stop(self):
        scheduler, backend = self.make()
        scheduler.start()
        scheduler.stop()

        backend.return_value.shutdown.assert_called_once_with(wait=False)
        self.assertFalse(scheduler.running)

    def test_tick_runs_a_full_sweep(self):
        scheduler, _ = self.make()
        with mock.patch("notifications.scheduler.close_old_connections"):
            scheduler._tick()

        self.assertTrue(Notification.objects.filter(type=Notification.Type.PENDING).exists())

    def test_inactive_tick_does_nothing(self):
        scheduler, _ = self.make(ativo=False)
        with mock.patch("notifications.scheduler.run_sweep") as run_sweep:
            scheduler._tick()
        run_sweep.assert_not_called()

    def test_force_sweep_ignores_inactive_flag(self):
        scheduler, _ = self.make(ativo=False)
        report = scheduler.force_sweep()
        self.assertEqual(report.notifications, 1)


class CommandTests(NotificationTestCase):
    def test_send_deadline_reminders(self):
        out = StringIO()
        call_command("send_deadline_reminders", stdout=out)
        self.assertIn("Completed:", out.getvalue())

    @override_settings(NOTIFICATION_RETENTION_DAYS=30)
    def test_purge_notifications(self):
        self.notify(status=Notification.Status.READ, created_at=timezone.now() - timedelta(days=40))

        out = StringIO()
        call_command("purge_notifications", "--days", "30", stdout=out)

        self.assertIn("Deleted 1 read notification(s).", out.getvalue())
        self.assertFalse(Notification.objects.exists())
