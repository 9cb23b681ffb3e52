import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("evaluations", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("type", models.CharField(choices=[("pending", "Pending"), ("overdue", "Overdue"), ("reminder", "Reminder")], db_index=True, max_length=20)),
                ("urgency", models.CharField(choices=[("low", "Low"), ("medium", "Medium"), ("high", "High"), ("overdue", "Overdue")], db_index=True, default="low", max_length=20)),
                ("title", models.CharField(help_text="Short headline shown in notification list", max_length=200)),
                ("message", models.TextField(help_text="Detailed message shown when expanded")),
                ("action_url", models.CharField(blank=True, help_text="Deep link to the evaluation", max_length=255)),
                ("deadline", models.DateTimeField(blank=True, null=True)),
                ("status", models.CharField(choices=[("unread", "Unread"), ("read", "Read")], db_index=True, default="unread", max_length=10)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("evaluation", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to="evaluations.evaluation")),
                ("recipient", models.ForeignKey(help_text="User who receives this notification", on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["recipient", "status"], name="notification_inbox_idx"),
                    models.Index(fields=["recipient", "type", "status"], name="notification_type_idx"),
                ],
                "constraints": [models.UniqueConstraint(condition=models.Q(("status", "unread")), fields=("recipient", "evaluation", "type"), name="unique_unread_notification")],
            },
        ),
    ]
