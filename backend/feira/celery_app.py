from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

WEBHOOK_TASK = "feira.tasks.boost_tasks.process_boost_webhook"
MAINTENANCE_TASK = "feira.tasks.boost_tasks.run_marketplace_maintenance"

_observers_bound = False


def _redis_url(*names: str, default: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _interval_seconds(name: str, default: int, minimum: int) -> float:
    try:
        value = int((os.getenv(name) or str(default)).strip())
    except ValueError:
        value = default
    return float(max(minimum, value))


def _log_task_event(flask_app, level: str, event: str, **fields) -> None:
    entry = {"event": event, "timestamp": datetime.utcnow().isoformat()}
    entry.update(fields)
    getattr(flask_app.logger, level)(json.dumps(entry, default=str))


def _bind_task_observers(flask_app) -> None:
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _on_failure(sender=None, task_id=None, exception=None, kwargs=None, einfo=None, **_):
        _log_task_event(
            flask_app,
            "error",
            "celery_task_failure",
            task_name=getattr(sender, "name", ""),
            task_id=str(task_id or ""),
            trace_id=str((kwargs or {}).get("trace_id") or ""),
            exception=str(exception or ""),
            einfo=str(einfo) if einfo is not None else "",
        )

    @task_retry.connect(weak=False)
    def _on_retry(request=None, reason=None, **_):
        _log_task_event(
            flask_app,
            "warning",
            "celery_task_retry",
            task_name=str(getattr(request, "task", "") or ""),
            task_id=str(getattr(request, "id", "") or ""),
            trace_id=str((getattr(request, "kwargs", None) or {}).get("trace_id") or ""),
            retries=int(getattr(request, "retries", 0) or 0),
            reason=str(reason or ""),
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    """Celery bound to ``flask_app``: every task body runs inside its app context.

    Webhook processing and the hourly maintenance job run on separate queues.
    """
    broker = _redis_url("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    backend = _redis_url("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker)
    celery = Celery("feira", broker=broker, backend=backend)
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        result_expires=24 * 3600,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
        task_routes={
            WEBHOOK_TASK: {"queue": "boost_webhooks"},
            MAINTENANCE_TASK: {"queue": "maintenance"},
        },
        beat_schedule={
            "marketplace-maintenance": {
                "task": MAINTENANCE_TASK,
                "schedule": _interval_seconds("MAINTENANCE_INTERVAL_SECONDS", 3600, 60),
            },
        },
    )

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.set_default()
    celery.autodiscover_tasks(["feira.tasks"], related_name="boost_tasks")
    _bind_task_observers(flask_app)
    return celery
