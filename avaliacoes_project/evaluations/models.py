from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.db.models.functions import Coalesce

from accounts.models import Attendant
from core.models import TimeStampedModel
from periods.models import Period

MIN_SCORE = 1
MAX_SCORE = 5
MAX_COMMENT_LENGTH = 1000


class EvaluationQuerySet(models.QuerySet):
    def pending_with_deadline(self, until=None):
        """
        PENDING evaluations in periods that were not canceled, annotated
        with `deadline_at` (explicit due date, else period end).
        """
        qs = (
            self.filter(status=Evaluation.Status.PENDING)
            .exclude(period__status=Period.Status.CANCELED)
            .annotate(deadline_at=Coalesce("due_at", "period__end"))
        )
        if until is not None:
            qs = qs.filter(deadline_at__lte=until)
        return qs.order_by("deadline_at", "id")


class Evaluation(TimeStampedModel):
    """
    One evaluator's assessment of one attendant within a period.

    Created COMPLETED by the evaluator, or PENDING when assigned by a
    manager and completed later.
    """

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        COMPLETED = "COMPLETED", "Completed"
        CANCELED = "CANCELED", "Canceled"

    # =====================================================
    # RELATIONSHIPS
    # =====================================================
    evaluator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="evaluations_given",
    )

    evaluated = models.ForeignKey(
        Attendant,
        on_delete=models.CASCADE,
        related_name="evaluations",
    )

    period = models.ForeignKey(
        Period,
        on_delete=models.PROTECT,
        related_name="evaluations",
    )

    # =====================================================
    # CONTENT
    # =====================================================
    score = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(MIN_SCORE), MaxValueValidator(MAX_SCORE)],
    )

    comment = models.CharField(max_length=MAX_COMMENT_LENGTH, blank=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.COMPLETED,
        db_index=True,
    )

    evaluation_date = models.DateTimeField(null=True, blank=True)

    # Explicit deadline; the period end applies when empty.
    due_at = models.DateTimeField(null=True, blank=True)

    objects = EvaluationQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["evaluator", "evaluated", "period"],
                name="unique_evaluation_per_period",
            ),
            models.CheckConstraint(
                condition=Q(score__isnull=True) | Q(score__gte=MIN_SCORE, score__lte=MAX_SCORE),
                name="evaluation_score_range",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "due_at"], name="evaluation_status_due_idx"),
        ]

    def __str__(self):
        return f"{self.evaluator} → {self.evaluated} ({self.period})"

    @property
    def deadline(self):
        return self.due_at or self.period.end

    @property
    def is_pending(self):
        return self.status == self.Status.PENDING
