from django.contrib import admin

from .models import Notification, NotificationPreference


# ============================================================
# NOTIFICATIONS
# ============================================================

@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = (
        "recipient",
        "type",
        "urgency",
        "status",
        "title",
        "deadline",
        "created_at",
    )

    list_filter = (
        "type",
        "urgency",
        "status",
    )

    search_fields = (
        "recipient__username",
        "title",
        "message",
    )

    list_select_related = ("recipient", "evaluation")

    readonly_fields = ("created_at", "read_at")


# ============================================================
# PREFERENCES
# ============================================================

@admin.register(NotificationPreference)
class NotificationPreferenceAdmin(admin.ModelAdmin):
    list_display = (
        "user",
        "notifications_enabled",
        "email_enabled",
        "minimum_urgency",
        "paused",
        "paused_until",
    )

    list_filter = (
        "notifications_enabled",
        "email_enabled",
        "minimum_urgency",
        "paused",
    )

    search_fields = ("user__username",)

    readonly_fields = ("last_notified_at", "version", "created_at", "updated_at")
