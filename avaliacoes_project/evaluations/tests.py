from contextlib import contextmanager
from datetime import datetime
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db.models import QuerySet
from django.test import TestCase
from django.utils import timezone

from accounts.models import Attendant
from core.clock import FixedClock
from core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from core.models import AuditLog
from evaluations.models import Evaluation
from evaluations.services import (
    DUPLICATE_MESSAGE,
    assign_evaluations,
    create_evaluation,
    delete_evaluation,
    get_evaluation,
    list_evaluations,
    update_evaluation,
)
from periods.models import Period
from periods.services.lifecycle import update_period
from reminders.models import Reminder


def at(*args):
    return timezone.make_aware(datetime(*args))


@contextmanager
def spy_on_row_locks():
    """
    Record the model of every select_for_update() issued by the
    evaluation services, in order. Period reconciliation is stubbed out
    so its own locks do not show up.
    """
    locked = []
    original = QuerySet.select_for_update

    def spy(queryset, *args, **kwargs):
        locked.append(queryset.model)
        return original(queryset, *args, **kwargs)

    with mock.patch("evaluations.services.reconcile_periods"):
        with mock.patch.object(QuerySet, "select_for_update", autospec=True, side_effect=spy):
            yield locked


class EvaluationTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.manager = User.objects.create_user(username="mgr", password="x", role="MANAGER")
        self.evaluator = User.objects.create_user(username="eva", password="x")
        self.other = User.objects.create_user(username="otto", password="x")

        self.attendant = Attendant.objects.create(name="Ana", position="Front desk")
        self.period = Period.objects.create(
            name="January",
            start=at(2024, 1, 1),
            end=at(2024, 1, 31, 23, 59),
            status=Period.Status.ACTIVE,
        )
        self.clock = FixedClock(at(2024, 1, 15, 10))

    def create(self, actor=None, **overrides):
        kwargs = dict(
            evaluated_id=self.attendant.pk,
            period_id=self.period.pk,
            score=4,
            comment="Solid month.",
            clock=self.clock,
        )
        kwargs.update(overrides)
        return create_evaluation(actor or self.evaluator, **kwargs)

    def pending(self, evaluator=None):
        return Evaluation.objects.create(
            evaluator=evaluator or self.evaluator,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
        )


class CreateEvaluationTests(EvaluationTestCase):
    def test_created_completed(self):
        evaluation = self.create()

        self.assertEqual(evaluation.status, Evaluation.Status.COMPLETED)
        self.assertEqual(evaluation.evaluator, self.evaluator)
        self.assertEqual(evaluation.evaluation_date, self.clock.now())
        self.assertTrue(AuditLog.objects.filter(action="evaluation_created").exists())

    def test_duplicate_is_conflict(self):
        self.create()
        with self.assertRaises(ConflictError) as ctx:
            self.create(score=2)
        self.assertEqual(ctx.exception.message, DUPLICATE_MESSAGE)
        self.assertEqual(Evaluation.objects.count(), 1)

    def test_database_race_is_translated_to_conflict(self):
        with mock.patch(
            "evaluations.services.Evaluation.objects.create",
            side_effect=IntegrityError("unique_evaluation_per_period"),
        ):
            with self.assertRaises(ConflictError) as ctx:
                self.create()
        self.assertEqual(ctx.exception.message, DUPLICATE_MESSAGE)

    def test_period_must_be_active(self):
        self.period.status = Period.Status.PLANNED
        self.period.start = at(2024, 2, 1)
        self.period.end = at(2024, 2, 28)
        self.period.save()

        with self.assertRaises(ValidationError):
            self.create()

    def test_finished_period_rejected_after_reconciliation(self):
        self.clock.set(at(2024, 2, 2))
        with self.assertRaises(ValidationError):
            self.create()
        self.period.refresh_from_db()
        self.assertEqual(self.period.status, Period.Status.FINISHED)

    def test_window_check_applies_to_attendants_only(self):
        # ACTIVE but the clock is before the window opens.
        self.period.start = at(2024, 1, 20)
        self.period.save()

        with self.assertRaises(ValidationError):
            self.create()

        evaluation = self.create(actor=self.manager)
        self.assertEqual(evaluation.evaluator, self.manager)

    def test_attendant_must_be_active(self):
        self.attendant.status = Attendant.Status.ON_LEAVE
        self.attendant.save()
        with self.assertRaises(ValidationError):
            self.create()

    def test_missing_references(self):
        with self.assertRaises(NotFoundError):
            self.create(period_id=999)
        with self.assertRaises(NotFoundError):
            self.create(evaluated_id=999)

    def test_input_validation(self):
        for score in (0, 6, "3", 3.5, True, None):
            with self.assertRaises(ValidationError):
                self.create(score=score)
        with self.assertRaises(ValidationError):
            self.create(comment="x" * 1001)

    def test_period_row_is_locked(self):
        with spy_on_row_locks() as locked:
            self.create()
        self.assertIn(Period, locked)

    def test_anonymous_rejected(self):
        with self.assertRaises(PermissionDenied):
            create_evaluation(
                None, evaluated_id=self.attendant.pk, period_id=self.period.pk,
                score=3, clock=self.clock,
            )


class UpdateEvaluationTests(EvaluationTestCase):
    def test_evaluator_completes_pending(self):
        evaluation = self.pending()

        evaluation = update_evaluation(
            self.evaluator, evaluation.pk, score=5, status="COMPLETED", clock=self.clock
        )

        self.assertEqual(evaluation.status, Evaluation.Status.COMPLETED)
        self.assertEqual(evaluation.score, 5)
        self.assertEqual(evaluation.evaluation_date, self.clock.now())
        change = AuditLog.objects.get(action="evaluation_updated").change
        self.assertEqual({c.field for c in change.changes}, {"score", "status", "evaluation_date"})

    def test_completing_requires_score(self):
        evaluation = self.pending()
        with self.assertRaises(ValidationError):
            update_evaluation(self.evaluator, evaluation.pk, status="COMPLETED", clock=self.clock)

    def test_evaluator_cannot_edit_completed(self):
        evaluation = self.create()
        with self.assertRaises(PermissionDenied):
            update_evaluation(self.evaluator, evaluation.pk, score=1, clock=self.clock)

    def test_other_user_cannot_edit(self):
        evaluation = self.pending()
        with self.assertRaises(PermissionDenied):
            update_evaluation(self.other, evaluation.pk, score=1, clock=self.clock)

    def test_evaluator_cannot_cancel_or_move_deadline(self):
        evaluation = self.pending()
        with self.assertRaises(PermissionDenied):
            update_evaluation(self.evaluator, evaluation.pk, status="CANCELED", clock=self.clock)
        with self.assertRaises(PermissionDenied):
            update_evaluation(
                self.evaluator, evaluation.pk, due_at=at(2024, 1, 20), clock=self.clock
            )

    def test_evaluator_edit_rechecks_window(self):
        evaluation = self.pending()
        self.period.start = at(2024, 1, 20)
        self.period.save()

        with self.assertRaises(ValidationError):
            update_evaluation(self.evaluator, evaluation.pk, score=3, clock=self.clock)

    def test_manager_edits_any_time(self):
        evaluation = self.create()
        self.clock.set(at(2024, 3, 1))

        evaluation = update_evaluation(self.manager, evaluation.pk, status="CANCELED", clock=self.clock)
        self.assertEqual(evaluation.status, Evaluation.Status.CANCELED)

    def test_at_least_one_field(self):
        evaluation = self.pending()
        with self.assertRaises(ValidationError):
            update_evaluation(self.manager, evaluation.pk, clock=self.clock)

    def test_canceled_period_cannot_gain_completed_evaluations(self):
        evaluation = self.pending()
        update_period(self.manager, self.period.pk, status="CANCELED", clock=self.clock)

        for actor in (self.manager, self.evaluator):
            with self.subTest(actor=actor.username):
                with self.assertRaises(ValidationError):
                    update_evaluation(
                        actor, evaluation.pk, score=5, status="COMPLETED", clock=self.clock
                    )

        self.assertFalse(
            Evaluation.objects.filter(
                period=self.period, status=Evaluation.Status.COMPLETED
            ).exists()
        )

    def test_period_row_is_locked(self):
        evaluation = self.pending()

        with spy_on_row_locks() as locked:
            update_evaluation(self.evaluator, evaluation.pk, score=2, clock=self.clock)

        self.assertEqual(locked[:2], [Period, Evaluation])


class DeleteEvaluationTests(EvaluationTestCase):
    def test_only_elevated_roles_delete(self):
        evaluation = self.create()
        with self.assertRaises(PermissionDenied):
            delete_evaluation(self.evaluator, evaluation.pk, clock=self.clock)

        delete_evaluation(self.manager, evaluation.pk, clock=self.clock)
        self.assertFalse(Evaluation.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action="evaluation_deleted").exists())

    def test_unsent_reminders_go_sent_ones_stay(self):
        evaluation = self.pending()
        unsent = Reminder.objects.create(
            evaluation=evaluation, user=self.evaluator, scheduled_at=at(2024, 1, 20, 9)
        )
        sent = Reminder.objects.create(
            evaluation=evaluation, user=self.evaluator, scheduled_at=at(2024, 1, 14, 9),
            sent=True, sent_at=at(2024, 1, 14, 9),
        )

        delete_evaluation(self.manager, evaluation.pk, clock=self.clock)

        self.assertFalse(Reminder.objects.filter(pk=unsent.pk).exists())
        sent.refresh_from_db()
        self.assertIsNone(sent.evaluation)

    def test_missing(self):
        with self.assertRaises(NotFoundError):
            delete_evaluation(self.manager, 999, clock=self.clock)


class AssignEvaluationTests(EvaluationTestCase):
    def test_creates_pending_and_skips_existing(self):
        bruno = Attendant.objects.create(name="Bruno")
        away = Attendant.objects.create(name="Carla", status=Attendant.Status.INACTIVE)

        result = assign_evaluations(
            self.manager,
            period_id=self.period.pk,
            evaluator_id=self.evaluator.pk,
            evaluated_ids=[self.attendant.pk, bruno.pk, away.pk],
            due_at=at(2024, 1, 25, 18),
            clock=self.clock,
        )

        self.assertEqual(len(result.created), 2)
        self.assertEqual(result.skipped, [away.pk])
        self.assertTrue(
            Evaluation.objects.filter(status=Evaluation.Status.PENDING, due_at=at(2024, 1, 25, 18)).count() == 2
        )

        again = assign_evaluations(
            self.manager,
            period_id=self.period.pk,
            evaluator_id=self.evaluator.pk,
            evaluated_ids=[self.attendant.pk],
            clock=self.clock,
        )
        self.assertEqual(again.created, [])
        self.assertEqual(again.skipped, [self.attendant.pk])

    def test_requires_elevated_role(self):
        with self.assertRaises(PermissionDenied):
            assign_evaluations(
                self.evaluator,
                period_id=self.period.pk,
                evaluator_id=self.evaluator.pk,
                evaluated_ids=[self.attendant.pk],
                clock=self.clock,
            )

    def test_terminal_period_rejected(self):
        self.period.status = Period.Status.CANCELED
        self.period.save()
        with self.assertRaises(ValidationError):
            assign_evaluations(
                self.manager,
                period_id=self.period.pk,
                evaluator_id=self.evaluator.pk,
                evaluated_ids=[self.attendant.pk],
                clock=self.clock,
            )

    def test_unknown_attendant(self):
        with self.assertRaises(NotFoundError):
            assign_evaluations(
                self.manager,
                period_id=self.period.pk,
                evaluator_id=self.evaluator.pk,
                evaluated_ids=[999],
                clock=self.clock,
            )


class VisibilityTests(EvaluationTestCase):
    def test_attendants_see_only_their_evaluations(self):
        mine = self.create()
        others = create_evaluation(
            self.other,
            evaluated_id=Attendant.objects.create(name="Bruno").pk,
            period_id=self.period.pk,
            score=3,
            clock=self.clock,
        )

        visible = list(list_evaluations(self.evaluator, clock=self.clock))
        self.assertEqual(visible, [mine])
        self.assertEqual(
            set(list_evaluations(self.manager, clock=self.clock)), {mine, others}
        )

        with self.assertRaises(NotFoundError):
            get_evaluation(self.evaluator, others.pk, clock=self.clock)

    def test_evaluated_user_sees_received(self):
        self.attendant.user = self.other
        self.attendant.save()
        evaluation = self.create()

        self.assertEqual(get_evaluation(self.other, evaluation.pk, clock=self.clock), evaluation)
