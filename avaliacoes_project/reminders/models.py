from django.conf import settings
from django.db import models
from django.utils import timezone

from evaluations.models import Evaluation


class Holiday(models.Model):
    date = models.DateField(unique=True)
    name = models.CharField(max_length=120)

    class Meta:
        ordering = ["date"]

    def __str__(self):
        return f"{self.date:%Y-%m-%d} {self.name}"


class Reminder(models.Model):
    """
    One scheduled reminder delivery.

    At most one per (evaluation, user, type, calendar day). Mutated only
    by delivery attempts or an explicit reschedule; a sent reminder is
    never changed again.
    """

    class Type(models.TextChoices):
        REMINDER = "reminder", "Reminder"
        DUE = "due", "Due"

    # =====================================================
    # RELATIONSHIPS
    # =====================================================
    # Sent reminders outlive a deleted evaluation as delivery history.
    evaluation = models.ForeignKey(
        Evaluation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reminders",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reminders",
    )

    type = models.CharField(
        max_length=20,
        choices=Type.choices,
        default=Type.REMINDER,
    )

    # =====================================================
    # SCHEDULE
    # =====================================================
    scheduled_at = models.DateTimeField(db_index=True)

    # Local calendar day of scheduled_at; kept in sync by save().
    scheduled_date = models.DateField(editable=False)

    # =====================================================
    # DELIVERY STATE
    # =====================================================
    sent = models.BooleanField(default=False, db_index=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(null=True, blank=True)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    permanently_failed = models.BooleanField(default=False)

    claimed_at = models.DateTimeField(null=True, blank=True)
    claim_token = models.CharField(max_length=32, blank=True)

    # =====================================================
    # BOOKKEEPING
    # =====================================================
    notes = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reminders_created",
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["scheduled_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["evaluation", "user", "type", "scheduled_date"],
                name="unique_reminder_per_day",
            ),
        ]
        indexes = [
            models.Index(
                fields=["sent", "permanently_failed", "scheduled_at"],
                name="reminder_due_idx",
            ),
        ]

    def __str__(self):
        return f"{self.get_type_display()} for {self.user} on {self.scheduled_date}"

    def save(self, *args, **kwargs):
        self.scheduled_date = timezone.localdate(self.scheduled_at)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "scheduled_at" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"scheduled_date"}
        super().save(*args, **kwargs)

    @property
    def is_retrying(self):
        return not self.sent and self.attempts > 0 and not self.permanently_failed
