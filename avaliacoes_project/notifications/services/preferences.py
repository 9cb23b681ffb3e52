"""
Per-user notification preferences.

Every user manages only their own row, created with defaults on first
access. A pause whose end has passed is lifted the next time the row
is read.
"""

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from accounts.permissions import as_capabilities
from core.clock import resolve_clock
from core.exceptions import PermissionDenied, ValidationError
from notifications.models import NotificationPreference

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("notifications_enabled", "email_enabled", "minimum_urgency")

PAUSE_RESET = {
    "paused": False,
    "paused_from": None,
    "paused_until": None,
    "pause_reason": "",
}

MAX_REASON_LENGTH = 255


def _require_login(caps):
    if caps.user_id is None:
        raise PermissionDenied("Authentication required.")
    return caps.user_id


def _locked(user_id):
    NotificationPreference.objects.get_or_create(user_id=user_id)
    return NotificationPreference.objects.select_for_update().get(user_id=user_id)


def _save(preference, values):
    for name, value in values.items():
        setattr(preference, name, value)
    preference.version = F("version") + 1
    preference.save()
    preference.refresh_from_db()
    return preference


# ============================================================
# READ SIDE (SWEEPS)
# ============================================================

def preferences_for(user_ids):
    """
    user_id -> NotificationPreference for every id given. Users without
    a stored row get an unsaved instance holding the defaults.
    """
    user_ids = set(user_ids)
    stored = {
        p.user_id: p
        for p in NotificationPreference.objects.filter(user_id__in=user_ids)
    }
    return {
        user_id: stored.get(user_id) or NotificationPreference(user_id=user_id)
        for user_id in user_ids
    }


def preference_for(user_id):
    return preferences_for([user_id])[user_id]


def record_delivery(user_id, now):
    NotificationPreference.objects.filter(user_id=user_id).update(last_notified_at=now)


# ============================================================
# USER OPERATIONS
# ============================================================

def get_preferences(actor, clock=None):
    user_id = _require_login(as_capabilities(actor))
    now = resolve_clock(clock).now()

    with transaction.atomic():
        preference = _locked(user_id)
        if preference.pause_expired(now):
            preference = _save(preference, PAUSE_RESET)
            logger.info("Notification pause of user %s ended; notifications resumed", user_id)
    return preference


def update_preferences(actor, /, **changes):
    user_id = _require_login(as_capabilities(actor))

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}.")
    if not changes:
        raise ValidationError("At least one field must be provided.")

    errors = {}
    for name in ("notifications_enabled", "email_enabled"):
        if name in changes and not isinstance(changes[name], bool):
            errors[name] = "Must be true or false."
    if (
        "minimum_urgency" in changes
        and changes["minimum_urgency"] not in NotificationPreference.MinimumUrgency.values
    ):
        errors["minimum_urgency"] = "Invalid urgency."
    if errors:
        raise ValidationError(errors)

    with transaction.atomic():
        preference = _save(_locked(user_id), changes)

    logger.info(
        "Notification preferences of user %s updated (%s)",
        user_id, ", ".join(sorted(changes)),
    )
    return preference


def reset_preferences(actor):
    user_id = _require_login(as_capabilities(actor))

    defaults = {
        name: NotificationPreference._meta.get_field(name).get_default()
        for name in EDITABLE_FIELDS
    }
    with transaction.atomic():
        preference = _save(_locked(user_id), {**defaults, **PAUSE_RESET})

    logger.info("Notification preferences of user %s reset to defaults", user_id)
    return preference


def pause_notifications(actor, *, until, start=None, reason="", clock=None):
    """Silence notifications and reminder e-mails between `start` (default now) and `until`."""
    user_id = _require_login(as_capabilities(actor))

    errors = {}
    if until is None or timezone.is_naive(until):
        errors["until"] = "A time-zone aware end date and time is required."
    if start is not None and timezone.is_naive(start):
        errors["start"] = "Start must include a time zone."
    reason = reason or ""
    if len(reason) > MAX_REASON_LENGTH:
        errors["reason"] = f"Reason must have at most {MAX_REASON_LENGTH} characters."
    if errors:
        raise ValidationError(errors)

    start = start or resolve_clock(clock).now()
    if until <= start:
        raise ValidationError({"until": "The pause must end after it starts."})

    with transaction.atomic():
        preference = _save(_locked(user_id), {
            "paused": True,
            "paused_from": start,
            "paused_until": until,
            "pause_reason": reason,
        })

    logger.info(
        "Notifications of user %s paused from %s until %s",
        user_id, start.isoformat(), until.isoformat(),
    )
    return preference


def resume_notifications(actor):
    user_id = _require_login(as_capabilities(actor))

    with transaction.atomic():
        preference = _save(_locked(user_id), PAUSE_RESET)

    logger.info("Notifications of user %s resumed", user_id)
    return preference


def notifications_paused(actor, clock=None) -> bool:
    preference = get_preferences(actor, clock=clock)
    return preference.is_paused(resolve_clock(clock).now())
