from django.contrib import admin

from .models import Evaluation


# ============================================================
# EVALUATIONS
# ============================================================

@admin.register(Evaluation)
class EvaluationAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "evaluator",
        "evaluated",
        "period",
        "score",
        "status",
        "due_at",
        "evaluation_date",
    )

    list_filter = (
        "status",
        "period",
    )

    search_fields = (
        "evaluator__username",
        "evaluated__name",
        "comment",
    )

    list_select_related = ("evaluator", "evaluated", "period")

    readonly_fields = (
        "evaluation_date",
        "created_at",
        "updated_at",
    )
