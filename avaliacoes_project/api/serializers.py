"""
Model -> JSON-ready dict conversion for the API views.
"""


def _iso(value):
    return value.isoformat() if value else None


def period_to_dict(period):
    return {
        "id": period.pk,
        "name": period.name,
        "description": period.description,
        "start": _iso(period.start),
        "end": _iso(period.end),
        "status": period.status,
        "needs_attention": period.needs_attention,
        "attention_note": period.attention_note,
        "created_by": period.created_by_id,
        "created_at": _iso(period.created_at),
        "updated_at": _iso(period.updated_at),
    }


def evaluation_to_dict(evaluation):
    return {
        "id": evaluation.pk,
        "evaluator": evaluation.evaluator_id,
        "evaluated": evaluation.evaluated_id,
        "period": evaluation.period_id,
        "score": evaluation.score,
        "comment": evaluation.comment,
        "status": evaluation.status,
        "evaluation_date": _iso(evaluation.evaluation_date),
        "due_at": _iso(evaluation.due_at),
        "created_at": _iso(evaluation.created_at),
        "updated_at": _iso(evaluation.updated_at),
    }


def reminder_to_dict(reminder):
    return {
        "id": reminder.pk,
        "evaluation": reminder.evaluation_id,
        "user": reminder.user_id,
        "type": reminder.type,
        "scheduled_at": _iso(reminder.scheduled_at),
        "sent": reminder.sent,
        "sent_at": _iso(reminder.sent_at),
        "attempts": reminder.attempts,
        "last_error": reminder.last_error,
        "last_attempt_at": _iso(reminder.last_attempt_at),
        "permanently_failed": reminder.permanently_failed,
        "retrying": reminder.is_retrying,
        "notes": reminder.notes,
    }


def notification_to_dict(notification):
    return {
        "id": notification.pk,
        "evaluation": notification.evaluation_id,
        "type": notification.type,
        "urgency": notification.urgency,
        "status": notification.status,
        "is_read": notification.is_read,
        "title": notification.title,
        "message": notification.message,
        "action_url": notification.action_url,
        "deadline": _iso(notification.deadline),
        "created_at": _iso(notification.created_at),
        "read_at": _iso(notification.read_at),
    }


def preference_to_dict(preference):
    return {
        "notifications_enabled": preference.notifications_enabled,
        "email_enabled": preference.email_enabled,
        "minimum_urgency": preference.minimum_urgency,
        "paused": preference.paused,
        "paused_from": _iso(preference.paused_from),
        "paused_until": _iso(preference.paused_until),
        "pause_reason": preference.pause_reason,
        "last_notified_at": _iso(preference.last_notified_at),
        "version": preference.version,
        "updated_at": _iso(preference.updated_at),
    }
