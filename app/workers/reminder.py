"""Celery task that runs the quiz-reminder sweep."""

from __future__ import annotations

import logging

import redis
from sqlalchemy.exc import SQLAlchemyError

from app.celery_app import celery_app
from app.services import reminder_engine
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "quiz-reminder:sweep"


def _sweep_lock():
    """Cross-process guard so two workers never sweep at the same time."""
    client = redis.Redis.from_url(settings.REDIS_URL)
    # Expire well after a normal sweep so a crashed worker cannot hold it forever.
    timeout = max(int(settings.REMINDER_SWEEP_INTERVAL_SECONDS * 5), 60)
    return client.lock(SWEEP_LOCK_NAME, timeout=timeout, blocking=False)


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.sweep", bind=True, ignore_result=True)
def sweep(self):  # noqa: D401
    """Send due quiz reminders. Returns "done", "busy" or "error"."""
    lock = _sweep_lock()
    try:
        acquired = lock.acquire(blocking=False)
    except redis.RedisError as exc:
        _LOGGER.error("Sweep lock unavailable: %s", exc)
        return "error"
    if not acquired:
        _LOGGER.info("Sweep already in progress elsewhere; skipping")
        return "busy"
    try:
        report = db.run_sync(reminder_engine.run_sweep())
    except (SQLAlchemyError, OSError) as exc:
        # No retry: the next beat tick is the retry.
        _LOGGER.error("Reminder sweep aborted: %s", exc)
        return "error"
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            _LOGGER.warning("Sweep lock expired before the sweep finished")
    _LOGGER.debug("Sweep report: %s", report.model_dump())
    return "done"
