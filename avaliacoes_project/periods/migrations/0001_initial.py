import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Period",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120, unique=True)),
                ("description", models.TextField(blank=True)),
                ("start", models.DateTimeField()),
                ("end", models.DateTimeField()),
                ("status", models.CharField(choices=[("PLANNED", "Planned"), ("ACTIVE", "Active"), ("FINISHED", "Finished"), ("CANCELED", "Canceled")], db_index=True, default="PLANNED", max_length=20)),
                ("needs_attention", models.BooleanField(default=False)),
                ("attention_note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="periods_created", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["start", "id"],
                "indexes": [models.Index(fields=["status", "start", "end"], name="period_status_window_idx")],
                "constraints": [models.CheckConstraint(condition=models.Q(("end__gt", models.F("start"))), name="period_end_after_start")],
            },
        ),
    ]
