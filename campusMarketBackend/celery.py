"""
Celery configuration for the campus marketplace backend.

Runs the stale-reservation reconciler on a fixed beat schedule and hosts any
operator-triggered reconcile runs.
"""

import os

from celery import Celery


os.environ.setdefault("DJANGO_SETTINGS_MODULE", "campusMarketBackend.settings")

app = Celery("campusMarketBackend")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
app.autodiscover_tasks(["payment_system.Tasks"])

RECONCILE_INTERVAL_MINUTES = int(os.environ.get("RECONCILER_INTERVAL_MINUTES", "15"))

app.conf.beat_schedule = {
    "release-stale-reservations": {
        "task": "payment_system.Tasks.reconciliation_tasks.release_stale_reservations_task",
        "schedule": 60.0 * RECONCILE_INTERVAL_MINUTES,
        # A run that could not start before the next tick is redundant
        "options": {"expires": 60.0 * RECONCILE_INTERVAL_MINUTES, "queue": "payment_tasks"},
    },
}

app.conf.update(
    task_routes={
        "payment_system.Tasks.*": {"queue": "payment_tasks"},
    },
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=60 * 60 * 24,
    worker_max_tasks_per_child=1000,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
)
