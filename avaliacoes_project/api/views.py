from django.http import HttpResponse, JsonResponse

from accounts.permissions import capabilities_for
from api.decorators import api_view, json_body, parse_bool, parse_instant
from api.serializers import (
    evaluation_to_dict,
    notification_to_dict,
    period_to_dict,
    preference_to_dict,
    reminder_to_dict,
)
from core.exceptions import ValidationError
from evaluations import services as evaluation_services
from notifications.services import inbox, preferences
from notifications.services.sweep import run_sweep
from periods.services import lifecycle
from reminders.services import current_scheduler

REMINDER_ACTIONS = ("resend", "mark_sent", "reschedule")


def _int_param(request, name):
    value = request.GET.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError({name: "Must be an integer."})


# ============================================================
# PERIODS
# ============================================================

@api_view(["GET", "POST"])
def periods_collection(request):
    if request.method == "GET":
        periods = lifecycle.list_periods(request.user, status=request.GET.get("status"))
        return JsonResponse({"results": [period_to_dict(p) for p in periods]})

    data = json_body(request)
    period = lifecycle.create_period(
        request.user,
        name=data.get("name"),
        start=parse_instant(data.get("start"), "start"),
        end=parse_instant(data.get("end"), "end"),
        description=data.get("description", ""),
    )
    return JsonResponse(period_to_dict(period), status=201)


@api_view(["GET", "PATCH", "DELETE"])
def period_detail(request, period_id):
    if request.method == "GET":
        period = lifecycle.get_period(request.user, period_id)
        return JsonResponse(period_to_dict(period))

    if request.method == "DELETE":
        lifecycle.delete_period(request.user, period_id)
        return HttpResponse(status=204)

    data = json_body(request)
    changes = {
        key: data[key]
        for key in ("name", "description", "status")
        if key in data
    }
    for key in ("start", "end"):
        if key in data:
            changes[key] = parse_instant(data[key], key)

    period = lifecycle.update_period(request.user, period_id, **changes)
    return JsonResponse(period_to_dict(period))


@api_view(["GET", "POST"])
def periods_reconcile(request):
    capabilities_for(request.user).require(
        "manage_periods", "You are not allowed to reconcile periods."
    )
    if request.method == "GET":
        return JsonResponse({"stale": lifecycle.preview_reconciliation()})

    result = lifecycle.reconcile_periods()
    return JsonResponse(result.as_dict())


@api_view(["POST"])
def period_reconcile(request, period_id):
    capabilities_for(request.user).require(
        "manage_periods", "You are not allowed to reconcile periods."
    )
    period, changed = lifecycle.reconcile_period(period_id)
    return JsonResponse({"changed": changed, "period": period_to_dict(period)})


# ============================================================
# EVALUATIONS
# ============================================================

@api_view(["GET", "POST"])
def evaluations_collection(request):
    if request.method == "GET":
        evaluations = evaluation_services.list_evaluations(
            request.user,
            period_id=_int_param(request, "period"),
            status=request.GET.get("status"),
            evaluator_id=_int_param(request, "evaluator"),
            evaluated_id=_int_param(request, "evaluated"),
        )
        return JsonResponse({"results": [evaluation_to_dict(e) for e in evaluations]})

    data = json_body(request)
    evaluation = evaluation_services.create_evaluation(
        request.user,
        evaluated_id=data.get("evaluated"),
        period_id=data.get("period"),
        score=data.get("score"),
        comment=data.get("comment", ""),
    )
    return JsonResponse(evaluation_to_dict(evaluation), status=201)


@api_view(["POST"])
def evaluations_assign(request):
    data = json_body(request)
    evaluated_ids = data.get("evaluated")
    if not isinstance(evaluated_ids, list):
        raise ValidationError({"evaluated": "Provide a list of attendant ids."})

    result = evaluation_services.assign_evaluations(
        request.user,
        period_id=data.get("period"),
        evaluator_id=data.get("evaluator"),
        evaluated_ids=evaluated_ids,
        due_at=parse_instant(data.get("due_at"), "due_at"),
    )
    return JsonResponse(result.as_dict(), status=201)


@api_view(["GET", "PATCH", "DELETE"])
def evaluation_detail(request, evaluation_id):
    if request.method == "GET":
        evaluation = evaluation_services.get_evaluation(request.user, evaluation_id)
        return JsonResponse(evaluation_to_dict(evaluation))

    if request.method == "DELETE":
        evaluation_services.delete_evaluation(request.user, evaluation_id)
        return HttpResponse(status=204)

    data = json_body(request)
    evaluation = evaluation_services.update_evaluation(
        request.user,
        evaluation_id,
        score=data.get("score"),
        comment=data.get("comment"),
        status=data.get("status"),
        due_at=parse_instant(data.get("due_at"), "due_at"),
    )
    return JsonResponse(evaluation_to_dict(evaluation))


# ============================================================
# SCHEDULER
# ============================================================

def _require_reminder_access(request):
    capabilities_for(request.user).require(
        "manage_reminders", "Only managers can operate the reminder scheduler."
    )


@api_view(["POST"])
def scheduler_sweep(request):
    _require_reminder_access(request)
    report = run_sweep(current_scheduler())
    return JsonResponse(report.as_dict())


@api_view(["POST"])
def scheduler_reschedule(request, evaluation_id):
    _require_reminder_access(request)
    result = current_scheduler().reschedule_evaluation(evaluation_id, user=request.user)
    return JsonResponse(result)


@api_view(["GET", "PATCH"])
def scheduler_config(request):
    _require_reminder_access(request)
    scheduler = current_scheduler()

    if request.method == "GET":
        return JsonResponse(scheduler.config.as_dict())

    data = json_body(request)
    changes = {key.lower(): value for key, value in data.items()}
    result = scheduler.update_config(**changes)
    return JsonResponse({"config": scheduler.config.as_dict(), **result})


@api_view(["GET"])
def scheduler_statistics(request):
    _require_reminder_access(request)
    return JsonResponse(current_scheduler().statistics())


@api_view(["GET", "POST"])
def scheduler_reminders(request):
    scheduler = current_scheduler()

    if request.method == "GET":
        reminders = scheduler.list_reminders(
            request.user,
            sent=parse_bool(request.GET.get("sent")),
            evaluation_id=_int_param(request, "evaluation"),
            failed=parse_bool(request.GET.get("failed")),
        )
        return JsonResponse({"results": [reminder_to_dict(r) for r in reminders]})

    data = json_body(request)
    reminder = scheduler.create_manual_reminder(
        request.user,
        evaluation_id=data.get("evaluation"),
        scheduled_at=parse_instant(data.get("scheduled_at"), "scheduled_at"),
        type=data.get("type", "reminder"),
        notes=data.get("notes", ""),
    )
    return JsonResponse(reminder_to_dict(reminder), status=201)


@api_view(["DELETE"])
def scheduler_reminder_detail(request, reminder_id):
    current_scheduler().delete_reminder(request.user, reminder_id)
    return HttpResponse(status=204)


@api_view(["POST"])
def scheduler_reminder_action(request, reminder_id, action):
    if action not in REMINDER_ACTIONS:
        raise ValidationError({"action": f"Unknown action '{action}'."})

    scheduler = current_scheduler()
    if action == "resend":
        reminder = scheduler.resend(request.user, reminder_id)
    elif action == "mark_sent":
        reminder = scheduler.mark_sent(request.user, reminder_id)
    else:
        data = json_body(request)
        reminder = scheduler.reschedule_reminder(
            request.user,
            reminder_id,
            parse_instant(data.get("scheduled_at"), "scheduled_at"),
        )
    return JsonResponse(reminder_to_dict(reminder))


@api_view(["POST"])
def scheduler_reminders_purge(request):
    data = json_body(request)
    scheduler = current_scheduler()
    scope = data.get("scope", "stale")

    if scope == "stale":
        deleted = scheduler.purge_stale_unsent(request.user)
    elif scope == "sent":
        deleted = scheduler.purge_sent(
            request.user, parse_instant(data.get("before"), "before")
        )
    else:
        raise ValidationError({"scope": "Scope must be 'stale' or 'sent'."})
    return JsonResponse({"deleted": deleted})


# ============================================================
# NOTIFICATIONS
# ============================================================

@api_view(["GET"])
def notifications_list(request):
    notifications = inbox.list_notifications(
        request.user,
        type=request.GET.get("type"),
        urgency=request.GET.get("urgency"),
        status=request.GET.get("status"),
    )
    return JsonResponse({"results": [notification_to_dict(n) for n in notifications]})


@api_view(["POST"])
def notification_read(request, notification_id):
    notification = inbox.mark_as_read(request.user, notification_id)
    return JsonResponse(notification_to_dict(notification))


@api_view(["POST"])
def notifications_read_all(request):
    data = json_body(request)
    updated = inbox.mark_all_as_read(
        request.user,
        type=data.get("type"),
        urgency=data.get("urgency"),
    )
    return JsonResponse({"updated": updated})


@api_view(["GET"])
def notifications_statistics(request):
    caps = capabilities_for(request.user)
    user = None if caps.view_all_notifications and request.GET.get("scope") == "all" else request.user
    return JsonResponse(inbox.pending_statistics(user=user))


@api_view(["GET", "PATCH", "DELETE"])
def notification_preferences(request):
    if request.method == "GET":
        preference = preferences.get_preferences(request.user)
    elif request.method == "DELETE":
        preference = preferences.reset_preferences(request.user)
    else:
        preference = preferences.update_preferences(request.user, **json_body(request))
    return JsonResponse(preference_to_dict(preference))


@api_view(["GET", "POST", "DELETE"])
def notification_pause(request):
    if request.method == "GET":
        return JsonResponse({"paused": preferences.notifications_paused(request.user)})

    if request.method == "DELETE":
        preference = preferences.resume_notifications(request.user)
        return JsonResponse(preference_to_dict(preference))

    data = json_body(request)
    preference = preferences.pause_notifications(
        request.user,
        until=parse_instant(data.get("until"), "until"),
        start=parse_instant(data.get("start"), "start"),
        reason=data.get("reason", ""),
    )
    return JsonResponse(preference_to_dict(preference))
