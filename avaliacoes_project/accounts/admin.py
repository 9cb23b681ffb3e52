from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User, Attendant

# ============================================================
# USER ADMIN
# ============================================================

@admin.register(User)
class UserAdmin(BaseUserAdmin):
    ordering = ("username",)

    list_display = (
        "username",
        "email",
        "first_name",
        "last_name",
        "position_title",
        "role",
        "is_active",
        "is_staff",
    )

    list_filter = (
        "role",
        "is_active",
        "is_staff",
    )

    search_fields = (
        "username",
        "email",
        "first_name",
        "last_name",
    )

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Evaluation Access", {
            "fields": (
                "position_title",
                "role",
            )
        }),
    )


# ============================================================
# ATTENDANTS (EVALUATED TARGETS)
# ============================================================

@admin.register(Attendant)
class AttendantAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "position",
        "status",
        "user",
        "created_at",
    )

    list_filter = (
        "status",
    )

    search_fields = (
        "name",
        "position",
        "user__username",
    )

    autocomplete_fields = ("user",)
