from django.urls import path

from . import views

app_name = "api"

urlpatterns = [
    # =========================
    # PERIODS
    # =========================
    path("periods/", views.periods_collection, name="period-list"),
    path("periods/reconcile/", views.periods_reconcile, name="period-reconcile"),
    path("periods/<int:period_id>/", views.period_detail, name="period-detail"),
    path("periods/<int:period_id>/reconcile/", views.period_reconcile, name="period-reconcile-one"),

    # =========================
    # EVALUATIONS
    # =========================
    path("evaluations/", views.evaluations_collection, name="evaluation-list"),
    path("evaluations/assign/", views.evaluations_assign, name="evaluation-assign"),
    path("evaluations/<int:evaluation_id>/", views.evaluation_detail, name="evaluation-detail"),

    # =========================
    # SCHEDULER
    # =========================
    path("scheduler/sweep/", views.scheduler_sweep, name="scheduler-sweep"),
    path("scheduler/config/", views.scheduler_config, name="scheduler-config"),
    path("scheduler/statistics/", views.scheduler_statistics, name="scheduler-statistics"),
    path(
        "scheduler/evaluations/<int:evaluation_id>/reschedule/",
        views.scheduler_reschedule,
        name="scheduler-reschedule",
    ),
    path("scheduler/reminders/", views.scheduler_reminders, name="reminder-list"),
    path("scheduler/reminders/purge/", views.scheduler_reminders_purge, name="reminder-purge"),
    path("scheduler/reminders/<int:reminder_id>/", views.scheduler_reminder_detail, name="reminder-detail"),
    path(
        "scheduler/reminders/<int:reminder_id>/<str:action>/",
        views.scheduler_reminder_action,
        name="reminder-action",
    ),

    # =========================
    # NOTIFICATIONS
    # =========================
    path("notifications/", views.notifications_list, name="notification-list"),
    path("notifications/read-all/", views.notifications_read_all, name="notification-read-all"),
    path("notifications/statistics/", views.notifications_statistics, name="notification-statistics"),
    path("notifications/preferences/", views.notification_preferences, name="notification-preferences"),
    path("notifications/preferences/pause/", views.notification_pause, name="notification-pause"),
    path(
        "notifications/<int:notification_id>/read/",
        views.notification_read,
        name="notification-read",
    ),
]
