from datetime import datetime, timedelta
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from accounts.models import Attendant
from core import audit
from core.clock import FixedClock
from core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from core.models import AuditLog
from evaluations.models import Evaluation
from periods.models import Period
from periods.services.conflicts import Window, find_conflicts, overlaps
from periods.services.lifecycle import (
    can_transition,
    create_period,
    delete_period,
    expected_status,
    preview_reconciliation,
    reconcile_period,
    reconcile_periods,
    update_period,
)


def at(*args):
    return timezone.make_aware(datetime(*args))


def make_period(name, start, end, status=Period.Status.PLANNED):
    return Period.objects.create(name=name, start=start, end=end, status=status)


class OverlapTests(TestCase):
    def test_closed_interval_overlap(self):
        a = Window(at(2024, 1, 1), at(2024, 1, 31))
        self.assertTrue(overlaps(a, Window(at(2024, 1, 20), at(2024, 2, 10))))
        self.assertTrue(overlaps(a, Window(at(2024, 1, 31), at(2024, 2, 10))))
        self.assertFalse(overlaps(a, Window(at(2024, 2, 1), at(2024, 2, 10))))

    def test_find_conflicts_ignores_terminal_periods(self):
        make_period("Finished", at(2024, 1, 1), at(2024, 1, 31), Period.Status.FINISHED)
        make_period("Canceled", at(2024, 1, 1), at(2024, 1, 31), Period.Status.CANCELED)
        planned = make_period("Planned", at(2024, 1, 25), at(2024, 2, 5))

        conflicts = find_conflicts(Window(at(2024, 1, 10), at(2024, 1, 30)))

        self.assertEqual([c.id for c in conflicts], [planned.pk])

    def test_find_conflicts_returns_full_set_ordered_by_start(self):
        later = make_period("Later", at(2024, 3, 1), at(2024, 3, 31))
        earlier = make_period("Earlier", at(2024, 1, 1), at(2024, 1, 31), Period.Status.ACTIVE)

        conflicts = find_conflicts(Window(at(2024, 1, 15), at(2024, 3, 15)))

        self.assertEqual([c.id for c in conflicts], [earlier.pk, later.pk])
        self.assertEqual(conflicts[0].as_dict()["name"], "Earlier")

    def test_find_conflicts_excludes_self(self):
        period = make_period("Self", at(2024, 1, 1), at(2024, 1, 31))
        self.assertEqual(
            find_conflicts(Window(period.start, period.end), exclude_id=period.pk), []
        )


class ReconcileTests(TestCase):
    def test_planned_period_activates_then_finishes(self):
        period = make_period("January", at(2024, 1, 1), at(2024, 1, 31))

        result = reconcile_periods(now=at(2024, 1, 15))
        period.refresh_from_db()
        self.assertEqual(period.status, Period.Status.ACTIVE)
        self.assertEqual(result.changed, 1)
        self.assertEqual(result.activated, [period.pk])

        result = reconcile_periods(now=at(2024, 2, 1))
        period.refresh_from_db()
        self.assertEqual(period.status, Period.Status.FINISHED)
        self.assertEqual(result.finished, [period.pk])

    def test_second_call_without_elapsed_time_changes_nothing(self):
        make_period("January", at(2024, 1, 1), at(2024, 1, 31))
        now = at(2024, 1, 15)

        self.assertEqual(reconcile_periods(now=now).changed, 1)
        self.assertEqual(reconcile_periods(now=now).changed, 0)

    def test_activation_deferred_while_another_period_is_active(self):
        active = make_period("A", at(2024, 1, 1), at(2024, 1, 31), Period.Status.ACTIVE)
        blocked = make_period("B", at(2024, 1, 20), at(2024, 2, 10))

        result = reconcile_periods(now=at(2024, 1, 25))

        blocked.refresh_from_db()
        self.assertEqual(blocked.status, Period.Status.PLANNED)
        self.assertTrue(blocked.needs_attention)
        self.assertIn("A (#%d)" % active.pk, blocked.attention_note)
        self.assertEqual(result.changed, 0)
        self.assertEqual(result.deferred[0]["id"], blocked.pk)
        self.assertEqual(Period.objects.filter(status=Period.Status.ACTIVE).count(), 1)

        # Still deferred, still no change.
        self.assertEqual(reconcile_periods(now=at(2024, 1, 25)).changed, 0)

    def test_competing_candidates_earliest_start_wins(self):
        first = make_period("First", at(2024, 1, 1), at(2024, 1, 31))
        second = make_period("Second", at(2024, 1, 5), at(2024, 1, 20))

        result = reconcile_periods(now=at(2024, 1, 10))

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, Period.Status.ACTIVE)
        self.assertEqual(second.status, Period.Status.PLANNED)
        self.assertTrue(second.needs_attention)
        self.assertEqual(result.activated, [first.pk])

    def test_expiring_period_frees_the_slot_in_the_same_pass(self):
        old = make_period("Old", at(2024, 1, 1), at(2024, 1, 10), Period.Status.ACTIVE)
        new = make_period("New", at(2024, 1, 11), at(2024, 1, 31))

        result = reconcile_periods(now=at(2024, 1, 15))

        old.refresh_from_db()
        new.refresh_from_db()
        self.assertEqual(old.status, Period.Status.FINISHED)
        self.assertEqual(new.status, Period.Status.ACTIVE)
        self.assertEqual(result.changed, 2)

    def test_activation_clears_attention_flag(self):
        period = make_period("Later", at(2024, 1, 20), at(2024, 2, 10))
        period.needs_attention = True
        period.attention_note = "blocked"
        period.save()

        reconcile_periods(now=at(2024, 1, 25))

        period.refresh_from_db()
        self.assertEqual(period.status, Period.Status.ACTIVE)
        self.assertFalse(period.needs_attention)
        self.assertEqual(period.attention_note, "")

    def test_canceled_period_is_never_touched(self):
        period = make_period("Canceled", at(2024, 1, 1), at(2024, 1, 31), Period.Status.CANCELED)
        reconcile_periods(now=at(2024, 1, 15))
        period.refresh_from_db()
        self.assertEqual(period.status, Period.Status.CANCELED)

    def test_transitions_are_audited(self):
        period = make_period("January", at(2024, 1, 1), at(2024, 1, 31))
        reconcile_periods(now=at(2024, 1, 15))

        entry = AuditLog.objects.get(action="period_status_changed")
        change = entry.change
        self.assertIsInstance(change, audit.PeriodStatusChanged)
        self.assertEqual(change.entity_id, period.pk)
        self.assertEqual(change.new_status, Period.Status.ACTIVE)
        self.assertTrue(change.automatic)

    def test_reconcile_single_period(self):
        period = make_period("January", at(2024, 1, 1), at(2024, 1, 31))

        period, changed = reconcile_period(period.pk, now=at(2024, 1, 15))
        self.assertTrue(changed)
        self.assertEqual(period.status, Period.Status.ACTIVE)

        with self.assertRaises(NotFoundError):
            reconcile_period(999, now=at(2024, 1, 15))

    def test_expected_status_and_preview(self):
        period = make_period("January", at(2024, 1, 1), at(2024, 1, 31))
        now = at(2024, 1, 15)

        self.assertEqual(expected_status(period, now), Period.Status.ACTIVE)

        stale = preview_reconciliation(now=now)
        self.assertEqual(stale[0]["expected_status"], Period.Status.ACTIVE)
        period.refresh_from_db()
        self.assertEqual(period.status, Period.Status.PLANNED)

        period.status = Period.Status.ACTIVE
        self.assertEqual(expected_status(period, at(2024, 2, 2)), Period.Status.FINISHED)

    def test_planned_period_that_never_ran_is_not_stale(self):
        make_period("Missed", at(2024, 1, 1), at(2024, 1, 31))
        later = at(2024, 2, 2)

        self.assertEqual(reconcile_periods(now=later).changed, 0)
        self.assertEqual(preview_reconciliation(now=later), [])
        self.assertEqual(Period.objects.get().status, Period.Status.PLANNED)


class TransitionTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.evaluator = User.objects.create_user(username="eva", password="x")
        self.attendant = Attendant.objects.create(name="Ana")

    def test_activation_rejected_with_conflicting_active_period(self):
        a = make_period("A", at(2024, 1, 1), at(2024, 1, 31), Period.Status.ACTIVE)
        b = make_period("B", at(2024, 1, 20), at(2024, 2, 10))

        check = can_transition(b, Period.Status.ACTIVE, now=at(2024, 1, 21))

        self.assertFalse(check.allowed)
        self.assertEqual([c.id for c in check.conflicts], [a.pk])
        with self.assertRaises(ConflictError) as ctx:
            check.raise_if_denied()
        self.assertEqual(ctx.exception.conflicts[0]["id"], a.pk)

    def test_cancel_blocked_by_completed_evaluations(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31), Period.Status.ACTIVE)
        Evaluation.objects.create(
            evaluator=self.evaluator, evaluated=self.attendant, period=period,
            score=4, status=Evaluation.Status.COMPLETED,
        )

        check = can_transition(period, Period.Status.CANCELED, now=at(2024, 1, 15))
        self.assertFalse(check.allowed)
        self.assertIn("1 completed", check.reason)

    def test_terminal_periods_cannot_change(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31), Period.Status.FINISHED)
        self.assertFalse(can_transition(period, Period.Status.CANCELED).allowed)

    def test_activation_uses_the_given_clock(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))

        self.assertTrue(
            can_transition(period, Period.Status.ACTIVE, clock=FixedClock(at(2024, 1, 15))).allowed
        )
        late = can_transition(period, Period.Status.ACTIVE, clock=FixedClock(at(2024, 2, 15)))
        self.assertFalse(late.allowed)
        self.assertIn("already ended", late.reason)


class AdministrativeOperationTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_user(username="admin", password="x", role="ADMIN")
        self.manager = User.objects.create_user(username="mgr", password="x", role="MANAGER")
        self.attendant_user = User.objects.create_user(username="att", password="x")
        self.clock = FixedClock(at(2023, 12, 1))

    def test_create_period_is_planned_and_audited(self):
        period = create_period(
            self.manager, name="2024 Q1", start=at(2024, 1, 1), end=at(2024, 3, 31),
            clock=self.clock,
        )

        self.assertEqual(period.status, Period.Status.PLANNED)
        self.assertEqual(period.created_by, self.manager)
        entry = AuditLog.objects.get(action="period_created")
        self.assertEqual(entry.user, self.manager)
        self.assertEqual(entry.change.start, at(2024, 1, 1))

    def test_create_period_inside_window_activates_immediately(self):
        self.clock.set(at(2024, 1, 5))
        period = create_period(
            self.manager, name="Now", start=at(2024, 1, 1), end=at(2024, 1, 31),
            clock=self.clock,
        )
        self.assertEqual(period.status, Period.Status.ACTIVE)

    def test_create_overlapping_period_returns_conflicts(self):
        existing = make_period("A", at(2024, 1, 1), at(2024, 1, 31))

        with self.assertRaises(ConflictError) as ctx:
            create_period(
                self.manager, name="B", start=at(2024, 1, 31), end=at(2024, 2, 10),
                clock=self.clock,
            )
        self.assertEqual([c["id"] for c in ctx.exception.conflicts], [existing.pk])

    def test_create_ignores_terminal_periods(self):
        make_period("Old", at(2024, 1, 1), at(2024, 1, 31), Period.Status.CANCELED)
        period = create_period(
            self.manager, name="New", start=at(2024, 1, 10), end=at(2024, 1, 20),
            clock=self.clock,
        )
        self.assertEqual(period.name, "New")

    def test_duplicate_name_is_conflict(self):
        make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        with self.assertRaises(ConflictError):
            create_period(
                self.manager, name="A", start=at(2024, 5, 1), end=at(2024, 5, 31),
                clock=self.clock,
            )

    def test_end_must_follow_start(self):
        with self.assertRaises(ValidationError):
            create_period(
                self.manager, name="Bad", start=at(2024, 2, 1), end=at(2024, 1, 1),
                clock=self.clock,
            )

    def test_window_already_over_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            create_period(
                self.manager, name="Past", start=at(2023, 10, 1), end=at(2023, 10, 31),
                clock=self.clock,
            )
        self.assertIn("end", ctx.exception.message_dict)
        self.assertFalse(Period.objects.exists())

    def test_attendant_cannot_create(self):
        with self.assertRaises(PermissionDenied):
            create_period(
                self.attendant_user, name="X", start=at(2024, 1, 1), end=at(2024, 1, 31),
                clock=self.clock,
            )

    def test_date_edit_revalidates_overlap(self):
        a = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        b = make_period("B", at(2024, 2, 1), at(2024, 2, 28))

        with self.assertRaises(ConflictError) as ctx:
            update_period(self.manager, b.pk, start=at(2024, 1, 15), clock=self.clock)
        self.assertEqual(ctx.exception.conflicts[0]["id"], a.pk)

        b.refresh_from_db()
        self.assertEqual(b.start, at(2024, 2, 1))

    def test_update_records_field_changes(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        update_period(self.manager, period.pk, description="Annual review", clock=self.clock)

        change = AuditLog.objects.get(action="period_updated").change
        self.assertEqual(change.changes[0].field, "description")
        self.assertEqual(change.changes[0].new, "Annual review")

    def test_cancel_through_update(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        period = update_period(self.manager, period.pk, status="CANCELED", clock=self.clock)
        self.assertEqual(period.status, Period.Status.CANCELED)

    def test_cancel_takes_pending_evaluations_along(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        evaluation = Evaluation.objects.create(
            evaluator=self.manager,
            evaluated=Attendant.objects.create(name="Ana"),
            period=period,
            status=Evaluation.Status.PENDING,
        )

        update_period(self.manager, period.pk, status="CANCELED", clock=self.clock)

        evaluation.refresh_from_db()
        self.assertEqual(evaluation.status, Evaluation.Status.CANCELED)

    def test_finished_period_dates_are_frozen(self):
        period = make_period("A", at(2023, 1, 1), at(2023, 1, 31), Period.Status.FINISHED)
        with self.assertRaises(ValidationError):
            update_period(self.manager, period.pk, end=at(2023, 2, 28), clock=self.clock)

    def test_update_requires_a_field(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        with self.assertRaises(ValidationError):
            update_period(self.manager, period.pk, clock=self.clock)

    def test_delete_is_admin_only(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))

        with self.assertRaises(PermissionDenied):
            delete_period(self.manager, period.pk, clock=self.clock)

        delete_period(self.admin, period.pk, clock=self.clock)
        self.assertFalse(Period.objects.filter(pk=period.pk).exists())
        self.assertTrue(AuditLog.objects.filter(action="period_deleted").exists())

    def test_delete_refused_with_evaluations(self):
        period = make_period("A", at(2024, 1, 1), at(2024, 1, 31))
        Evaluation.objects.create(
            evaluator=self.manager,
            evaluated=Attendant.objects.create(name="Ana"),
            period=period,
            status=Evaluation.Status.PENDING,
        )
        with self.assertRaises(ConflictError):
            delete_period(self.admin, period.pk, clock=self.clock)


class ReconcileCommandTests(TestCase):
    def test_command_reports_changes(self):
        now = timezone.now()
        make_period("Current", now - timedelta(days=1), now + timedelta(days=1))

        out = StringIO()
        call_command("reconcile_periods", stdout=out)

        self.assertIn("1 period(s) changed", out.getvalue())
        self.assertEqual(Period.objects.get().status, Period.Status.ACTIVE)

    def test_preview_changes_nothing(self):
        now = timezone.now()
        make_period("Current", now - timedelta(days=1), now + timedelta(days=1))

        out = StringIO()
        call_command("reconcile_periods", "--preview", stdout=out)

        self.assertIn("PLANNED -> ACTIVE", out.getvalue())
        self.assertEqual(Period.objects.get().status, Period.Status.PLANNED)
