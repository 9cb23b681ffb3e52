from datetime import datetime, timedelta

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from accounts.permissions import capabilities_for
from core import audit
from core.clock import FixedClock, SystemClock, resolve_clock
from core.exceptions import ValidationError
from core.models import AuditLog


def at(*args):
    return timezone.make_aware(datetime(*args))


class ClockTests(SimpleTestCase):
    def test_fixed_clock(self):
        clock = FixedClock(datetime(2024, 1, 3, 9))
        self.assertTrue(timezone.is_aware(clock.now()))

        clock.advance(days=1, hours=2)
        self.assertEqual(clock.now(), at(2024, 1, 4, 11))
        self.assertEqual(clock.localdate().isoformat(), "2024-01-04")

    def test_resolve_clock(self):
        fixed = FixedClock(at(2024, 1, 1))
        self.assertIs(resolve_clock(fixed), fixed)
        self.assertEqual(resolve_clock(fixed, now=at(2024, 5, 1)).now(), at(2024, 5, 1))
        self.assertIsInstance(resolve_clock(), SystemClock)


class AuditTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="mgr", password="x", role="MANAGER")

    def test_round_trip(self):
        start = at(2024, 1, 1)
        entry = audit.record(
            audit.PeriodUpdated(
                entity_id=7,
                changes=(audit.FieldChange("start", start, start + timedelta(days=1)),),
            ),
            user=self.user,
            at=at(2024, 1, 2),
        )

        entry = AuditLog.objects.get(pk=entry.pk)
        self.assertEqual(entry.entity, "period")
        self.assertEqual(entry.entity_id, "7")
        change = entry.change
        self.assertIsInstance(change, audit.PeriodUpdated)
        self.assertEqual(change.changes[0].old, start)
        self.assertEqual(change.changes[0].new, start + timedelta(days=1))

    def test_user_taken_from_capabilities(self):
        entry = audit.record(
            audit.PeriodDeleted(entity_id=3, name="Q1"), user=capabilities_for(self.user)
        )
        self.assertEqual(entry.user_id, self.user.pk)

    def test_diff_only_reports_changed_fields(self):
        class Row:
            name = "Q1"
            description = ""

        changes = audit.diff(Row(), {"name": "Q1", "description": "First quarter"})
        self.assertEqual(changes, (audit.FieldChange("description", "", "First quarter"),))

    def test_unknown_action(self):
        with self.assertRaises(ValidationError):
            audit.load_change("period_exploded", {})
