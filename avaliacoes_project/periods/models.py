from django.conf import settings
from django.db import models
from django.db.models import F, Q


class Period(models.Model):
    """
    A bounded window during which evaluations may be submitted.

    Status is driven by time through periods.services.lifecycle;
    never assign `status` directly outside that module.
    """

    class Status(models.TextChoices):
        PLANNED = "PLANNED", "Planned"
        ACTIVE = "ACTIVE", "Active"
        FINISHED = "FINISHED", "Finished"
        CANCELED = "CANCELED", "Canceled"

    NON_TERMINAL = (Status.PLANNED, Status.ACTIVE)
    TERMINAL = (Status.FINISHED, Status.CANCELED)

    name = models.CharField(max_length=120, unique=True)
    description = models.TextField(blank=True)

    start = models.DateTimeField()
    end = models.DateTimeField()

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PLANNED,
        db_index=True,
    )

    # Set when reconciliation could not activate this period because
    # another overlapping period is ACTIVE. Cleared on activation.
    needs_attention = models.BooleanField(default=False)
    attention_note = models.CharField(max_length=255, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="periods_created",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start", "id"]
        indexes = [
            models.Index(fields=["status", "start", "end"], name="period_status_window_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end__gt=F("start")),
                name="period_end_after_start",
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL

    def contains(self, instant):
        return self.start <= instant <= self.end
