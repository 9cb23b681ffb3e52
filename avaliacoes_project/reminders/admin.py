from django.contrib import admin

from .models import Holiday, Reminder


# ============================================================
# REMINDERS (OPERATOR VIEW OF DELIVERY STATE)
# ============================================================

@admin.register(Reminder)
class ReminderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "evaluation",
        "type",
        "scheduled_at",
        "sent",
        "attempts",
        "permanently_failed",
        "last_attempt_at",
        "last_error",
    )

    list_filter = (
        "type",
        "sent",
        "permanently_failed",
        "scheduled_date",
    )

    search_fields = (
        "user__username",
        "user__email",
        "last_error",
        "notes",
    )

    list_select_related = ("user", "evaluation")

    readonly_fields = (
        "scheduled_date",
        "sent",
        "sent_at",
        "attempts",
        "last_error",
        "last_attempt_at",
        "permanently_failed",
        "claimed_at",
        "claim_token",
        "created_at",
    )


# ============================================================
# HOLIDAY CALENDAR
# ============================================================

@admin.register(Holiday)
class HolidayAdmin(admin.ModelAdmin):
    list_display = ("date", "name")
    search_fields = ("name",)
    date_hierarchy = "date"
