import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        ("periods", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Evaluation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("score", models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ("comment", models.CharField(blank=True, max_length=1000)),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("COMPLETED", "Completed"), ("CANCELED", "Canceled")], db_index=True, default="COMPLETED", max_length=20)),
                ("evaluation_date", models.DateTimeField(blank=True, null=True)),
                ("due_at", models.DateTimeField(blank=True, null=True)),
                ("evaluated", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="evaluations", to="accounts.attendant")),
                ("evaluator", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="evaluations_given", to=settings.AUTH_USER_MODEL)),
                ("period", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="evaluations", to="periods.period")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["status", "due_at"], name="evaluation_status_due_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("evaluator", "evaluated", "period"), name="unique_evaluation_per_period"),
                    models.CheckConstraint(condition=models.Q(("score__isnull", True), models.Q(("score__gte", 1), ("score__lte", 5)), _connector="OR"), name="evaluation_score_range"),
                ],
            },
        ),
    ]
