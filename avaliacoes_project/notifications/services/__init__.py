"""
Notification service layer.

Each module exposes functions that emit or read notifications WITHOUT
knowing about HTTP. Role-based visibility lives in inbox.

The sweep orchestrator is imported from notifications.services.sweep
directly; it depends on the reminders app.
"""

# =====================================================
# URGENCY
# =====================================================
from .urgency import (
    Classification,
    UrgencyPolicy,
    classify,
    days_remaining,
)

# =====================================================
# GENERATION
# =====================================================
from .generation import (
    generate_notifications,
    notify_reminder_delivered,
)

# =====================================================
# INBOX
# =====================================================
from .inbox import (
    list_notifications,
    mark_all_as_read,
    mark_as_read,
    pending_statistics,
    purge_old_notifications,
)

# =====================================================
# PREFERENCES
# =====================================================
from .preferences import (
    get_preferences,
    notifications_paused,
    pause_notifications,
    preference_for,
    preferences_for,
    reset_preferences,
    resume_notifications,
    update_preferences,
)
