"""Celery application instance shared across the backend.

Start a worker with beat embedded (single scheduler instance):
    celery -A app.celery_app worker -B -Q reminder -l info --concurrency=2
"""

from celery import Celery
from celery.signals import worker_ready

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("quiz_reminder", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.timezone = "UTC"

celery_app.conf.task_routes = {
    "app.workers.reminder.sweep": {"queue": "reminder"},
}

# Beat schedule: sweep for due quiz reminders on a fixed cadence
celery_app.conf.beat_schedule = {
    "sweep-quiz-reminders": {
        "task": "app.workers.reminder.sweep",
        "schedule": settings.REMINDER_SWEEP_INTERVAL_SECONDS,
        # A sweep that waited a whole interval in the queue is superseded by the next one.
        "options": {"expires": settings.REMINDER_SWEEP_INTERVAL_SECONDS},
    }
}


@worker_ready.connect
def _catch_up_on_start(sender=None, **kwargs):  # noqa: ANN001
    """Sweep once right away to pick up reminders missed while workers were down."""
    celery_app.send_task("app.workers.reminder.sweep", queue="reminder")


# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
