from django.contrib import admin

from .models import AuditLog


# ============================================================
# AUDIT TRAIL (READ ONLY)
# ============================================================

@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = (
        "created_at",
        "action",
        "entity",
        "entity_id",
        "user",
    )

    list_filter = (
        "action",
        "entity",
    )

    search_fields = (
        "entity_id",
        "user__username",
    )

    readonly_fields = (
        "created_at",
        "action",
        "entity",
        "entity_id",
        "user",
        "payload",
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
