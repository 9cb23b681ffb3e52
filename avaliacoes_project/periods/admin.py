from django.contrib import admin

from .models import Period


# ============================================================
# EVALUATION PERIODS
# ============================================================

@admin.register(Period)
class PeriodAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "start",
        "end",
        "status",
        "needs_attention",
        "created_by",
    )

    list_filter = (
        "status",
        "needs_attention",
    )

    search_fields = (
        "name",
        "description",
    )

    # Status is owned by the lifecycle service; edit it through the API.
    readonly_fields = (
        "status",
        "needs_attention",
        "attention_note",
        "created_by",
        "created_at",
        "updated_at",
    )

    date_hierarchy = "start"
