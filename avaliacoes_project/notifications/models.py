from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from evaluations.models import Evaluation


class Notification(models.Model):
    """
    A derived, user-facing notification about pending evaluation work.
    Notifications are NOT the source of truth; they reflect the state
    of evaluations and reminders.
    """

    # =====================================================
    # TYPE
    # =====================================================
    class Type(models.TextChoices):
        PENDING = "pending", "Pending"
        OVERDUE = "overdue", "Overdue"
        REMINDER = "reminder", "Reminder"

    # =====================================================
    # URGENCY (UI + sorting)
    # =====================================================
    class Urgency(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        OVERDUE = "overdue", "Overdue"

    class Status(models.TextChoices):
        UNREAD = "unread", "Unread"
        READ = "read", "Read"

    # =====================================================
    # CORE RELATIONSHIPS
    # =====================================================
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User who receives this notification"
    )

    evaluation = models.ForeignKey(
        Evaluation,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications"
    )

    # =====================================================
    # CLASSIFICATION
    # =====================================================
    type = models.CharField(
        max_length=20,
        choices=Type.choices,
        db_index=True
    )

    urgency = models.CharField(
        max_length=20,
        choices=Urgency.choices,
        default=Urgency.LOW,
        db_index=True
    )

    # =====================================================
    # CONTENT
    # =====================================================
    title = models.CharField(
        max_length=200,
        help_text="Short headline shown in notification list"
    )

    message = models.TextField(
        help_text="Detailed message shown when expanded"
    )

    action_url = models.CharField(
        max_length=255,
        blank=True,
        help_text="Deep link to the evaluation"
    )

    deadline = models.DateTimeField(null=True, blank=True)

    # =====================================================
    # STATE
    # =====================================================
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.UNREAD,
        db_index=True
    )

    read_at = models.DateTimeField(
        null=True,
        blank=True
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )

    # =====================================================
    # DJANGO META
    # =====================================================
    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["recipient", "evaluation", "type"],
                condition=Q(status="unread"),
                name="unique_unread_notification",
            ),
        ]
        indexes = [
            models.Index(fields=["recipient", "status"], name="notification_inbox_idx"),
            models.Index(fields=["recipient", "type", "status"], name="notification_type_idx"),
        ]

    def __str__(self):
        return (
            f"{self.recipient} | "
            f"{self.type.upper()} | "
            f"{self.title}"
        )

    @property
    def is_read(self):
        return self.status == self.Status.READ


# Ordering used by minimum-urgency preferences.
URGENCY_RANK = {"low": 0, "medium": 1, "high": 2, "overdue": 3}


class NotificationPreference(models.Model):
    """
    Per-user notification settings. Users without a row behave as if
    they had one with the field defaults.
    """

    class MinimumUrgency(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notification_preference",
    )

    # =====================================================
    # OPT-OUTS
    # =====================================================
    notifications_enabled = models.BooleanField(default=True)
    email_enabled = models.BooleanField(
        default=True,
        help_text="Receive reminder e-mails"
    )
    minimum_urgency = models.CharField(
        max_length=10,
        choices=MinimumUrgency.choices,
        default=MinimumUrgency.LOW,
        help_text="In-app notifications below this urgency are not created"
    )

    # =====================================================
    # PAUSE WINDOW
    # =====================================================
    paused = models.BooleanField(default=False)
    paused_from = models.DateTimeField(null=True, blank=True)
    paused_until = models.DateTimeField(null=True, blank=True)
    pause_reason = models.CharField(max_length=255, blank=True)

    # =====================================================
    # METADATA
    # =====================================================
    last_notified_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Notification preferences of {self.user}"

    def is_paused(self, now):
        if not self.paused:
            return False
        if self.paused_from and now < self.paused_from:
            return False
        if self.paused_until and now > self.paused_until:
            return False
        return True

    def pause_expired(self, now):
        return self.paused and self.paused_until is not None and now > self.paused_until

    def accepts(self, urgency, now):
        """Whether an in-app notification of `urgency` may be created at `now`."""
        if not self.notifications_enabled or self.is_paused(now):
            return False
        return URGENCY_RANK[urgency] >= URGENCY_RANK[self.minimum_urgency]

    def accepts_email(self, now):
        return self.notifications_enabled and self.email_enabled and not self.is_paused(now)
