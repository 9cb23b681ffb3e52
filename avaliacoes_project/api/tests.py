import json
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from accounts.models import Attendant
from evaluations.models import Evaluation
from notifications.models import Notification
from periods.models import Period
from reminders.models import Reminder


class ApiTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.manager = User.objects.create_user(username="mgr", password="x", role="MANAGER")
        self.attendant_user = User.objects.create_user(username="eva", password="x")
        self.attendant = Attendant.objects.create(name="Ana")

        now = timezone.now()
        self.period = Period.objects.create(
            name="Current",
            start=now - timedelta(days=5),
            end=now + timedelta(days=20),
            status=Period.Status.ACTIVE,
        )

    def send(self, method, url, data=None, user=None):
        if user is not None:
            self.client.force_login(user)
        body = json.dumps(data) if data is not None else ""
        return getattr(self.client, method)(url, data=body, content_type="application/json")


class AuthenticationTests(ApiTestCase):
    def test_anonymous_requests_are_rejected(self):
        response = self.client.get(reverse("api:period-list"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Authentication required.")

    def test_wrong_method(self):
        self.client.force_login(self.manager)
        response = self.client.put(reverse("api:scheduler-sweep"))
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response["Allow"], "POST")


class PeriodApiTests(ApiTestCase):
    def test_create_and_fetch(self):
        start = timezone.now() + timedelta(days=30)
        response = self.send("post", reverse("api:period-list"), {
            "name": "Next quarter",
            "start": start.isoformat(),
            "end": (start + timedelta(days=30)).isoformat(),
        }, user=self.manager)

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "PLANNED")

        response = self.client.get(reverse("api:period-detail", args=[body["id"]]))
        self.assertEqual(response.json()["name"], "Next quarter")

    def test_overlap_is_a_conflict(self):
        response = self.send("post", reverse("api:period-list"), {
            "name": "Overlapping",
            "start": (timezone.now() + timedelta(days=10)).isoformat(),
            "end": (timezone.now() + timedelta(days=40)).isoformat(),
        }, user=self.manager)

        self.assertEqual(response.status_code, 409)
        conflicts = response.json()["conflicts"]
        self.assertEqual([c["id"] for c in conflicts], [self.period.pk])

    def test_naive_dates_are_rejected(self):
        response = self.send("post", reverse("api:period-list"), {
            "name": "Naive",
            "start": "2030-01-01T00:00:00",
            "end": "2030-02-01T00:00:00",
        }, user=self.manager)

        self.assertEqual(response.status_code, 400)
        self.assertIn("start", response.json()["details"])

    def test_attendants_cannot_manage_periods(self):
        response = self.send("get", reverse("api:period-list"), user=self.attendant_user)
        self.assertEqual(response.status_code, 403)

    def test_missing_period(self):
        response = self.send("get", reverse("api:period-detail", args=[999]), user=self.manager)
        self.assertEqual(response.status_code, 404)

    def test_delete_empty_period(self):
        response = self.send("delete", reverse("api:period-detail", args=[self.period.pk]), user=self.manager)
        # Only administrators delete periods.
        self.assertEqual(response.status_code, 403)

        admin = get_user_model().objects.create_user(username="root", password="x", role="ADMIN")
        response = self.send("delete", reverse("api:period-detail", args=[self.period.pk]), user=admin)
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Period.objects.exists())

    def test_reconcile_one_period(self):
        stale = Period.objects.create(
            name="Last month",
            start=timezone.now() - timedelta(days=40),
            end=timezone.now() - timedelta(days=10),
            status=Period.Status.ACTIVE,
        )
        url = reverse("api:period-reconcile-one", args=[stale.pk])

        response = self.send("post", url, user=self.attendant_user)
        self.assertEqual(response.status_code, 403)

        response = self.send("post", url, user=self.manager)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["changed"])
        self.assertEqual(response.json()["period"]["status"], "FINISHED")

        response = self.send("post", url)
        self.assertFalse(response.json()["changed"])

        response = self.send("post", reverse("api:period-reconcile-one", args=[999]))
        self.assertEqual(response.status_code, 404)


class EvaluationApiTests(ApiTestCase):
    def payload(self, **overrides):
        data = {"evaluated": self.attendant.pk, "period": self.period.pk, "score": 4, "comment": "Good"}
        data.update(overrides)
        return data

    def test_create_then_duplicate(self):
        url = reverse("api:evaluation-list")
        response = self.send("post", url, self.payload(), user=self.attendant_user)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "COMPLETED")

        response = self.send("post", url, self.payload(score=2), user=self.attendant_user)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(
            response.json()["error"],
            "You have already evaluated this attendant in this period.",
        )

    def test_invalid_score(self):
        response = self.send("post", reverse("api:evaluation-list"), self.payload(score=9), user=self.attendant_user)
        self.assertEqual(response.status_code, 400)
        self.assertIn("score", response.json()["details"])

    def test_invalid_json(self):
        self.client.force_login(self.attendant_user)
        response = self.client.post(
            reverse("api:evaluation-list"), data="{not json", content_type="application/json"
        )
        self.assertEqual(response.status_code, 400)

    def test_assign_and_list(self):
        response = self.send("post", reverse("api:evaluation-assign"), {
            "period": self.period.pk,
            "evaluator": self.attendant_user.pk,
            "evaluated": [self.attendant.pk],
        }, user=self.manager)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(response.json()["created"]), 1)

        response = self.send("get", reverse("api:evaluation-list") + "?status=PENDING", user=self.attendant_user)
        self.assertEqual(len(response.json()["results"]), 1)


class SchedulerApiTests(ApiTestCase):
    def test_sweep_requires_manager(self):
        response = self.send("post", reverse("api:scheduler-sweep"), user=self.attendant_user)
        self.assertEqual(response.status_code, 403)

    def test_sweep_report(self):
        response = self.send("post", reverse("api:scheduler-sweep"), user=self.manager)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            set(response.json()),
            {"created", "sent", "failed", "skipped", "reconciled", "notifications"},
        )

    def test_config_rejects_invalid_values(self):
        url = reverse("api:scheduler-config")
        response = self.send("patch", url, {"HORARIO_ENVIO": "25:99"}, user=self.manager)
        self.assertEqual(response.status_code, 400)

        response = self.send("get", url, user=self.manager)
        self.assertEqual(response.json()["HORARIO_ENVIO"], "09:00")

    def test_unknown_reminder_action(self):
        evaluation = Evaluation.objects.create(
            evaluator=self.attendant_user,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
        )
        reminder = Reminder.objects.create(
            evaluation=evaluation,
            user=self.attendant_user,
            scheduled_at=timezone.now() + timedelta(days=1),
        )

        response = self.send(
            "post", reverse("api:reminder-action", args=[reminder.pk, "explode"]), user=self.manager
        )
        self.assertEqual(response.status_code, 400)

        response = self.send(
            "post", reverse("api:reminder-action", args=[reminder.pk, "mark_sent"]), user=self.manager
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["sent"])

    def test_reminder_waiting_for_retry(self):
        evaluation = Evaluation.objects.create(
            evaluator=self.attendant_user,
            evaluated=self.attendant,
            period=self.period,
            status=Evaluation.Status.PENDING,
        )
        reminder = Reminder.objects.create(
            evaluation=evaluation,
            user=self.attendant_user,
            scheduled_at=timezone.now(),
            attempts=1,
            last_error="SMTP timeout",
        )

        response = self.send("get", reverse("api:reminder-list"), user=self.manager)
        self.assertEqual(
            [(r["id"], r["retrying"]) for r in response.json()["results"]],
            [(reminder.pk, True)],
        )


class NotificationApiTests(ApiTestCase):
    def test_list_and_read(self):
        notification = Notification.objects.create(
            recipient=self.attendant_user,
            type=Notification.Type.PENDING,
            title="Evaluation due in 2 days",
            message="Please complete it.",
        )

        response = self.send("get", reverse("api:notification-list"), user=self.attendant_user)
        self.assertEqual([n["id"] for n in response.json()["results"]], [notification.pk])

        response = self.send("post", reverse("api:notification-read", args=[notification.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "read")
        self.assertTrue(response.json()["is_read"])

        response = self.send("post", reverse("api:notification-read", args=[notification.pk]), user=self.manager)
        self.assertEqual(response.status_code, 404)

    def test_statistics(self):
        response = self.send("get", reverse("api:notification-statistics"), user=self.attendant_user)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], 0)

    def test_preferences(self):
        url = reverse("api:notification-preferences")

        response = self.send("get", url, user=self.attendant_user)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["email_enabled"])

        response = self.send("patch", url, {"email_enabled": False, "minimum_urgency": "high"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["email_enabled"])
        self.assertEqual(response.json()["version"], 2)

        response = self.send("patch", url, {"actor": 1})
        self.assertEqual(response.status_code, 400)

        response = self.send("delete", url)
        self.assertTrue(response.json()["email_enabled"])
        self.assertEqual(response.json()["minimum_urgency"], "low")

    def test_pause_and_resume(self):
        url = reverse("api:notification-pause")
        until = timezone.now() + timedelta(days=2)

        response = self.send("post", url, {}, user=self.attendant_user)
        self.assertEqual(response.status_code, 400)

        response = self.send("post", url, {"until": until.isoformat(), "reason": "Trip"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["paused"])
        self.assertEqual(response.json()["pause_reason"], "Trip")

        self.assertTrue(self.send("get", url).json()["paused"])

        response = self.send("delete", url)
        self.assertFalse(response.json()["paused"])
        self.assertFalse(self.send("get", url).json()["paused"])
