from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from feira.celery_app import MAINTENANCE_TASK, WEBHOOK_TASK

MAX_BACKOFF_SECONDS = 900


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    entry = {
        "task_name": task_name,
        "status": status,
        "duration_ms": int(max(0.0, time.perf_counter() - started_at) * 1000),
        "trace_id": trace_id or "",
        "timestamp": datetime.utcnow().isoformat(),
    }
    entry.update(extra)
    current_app.logger.info(json.dumps(entry, default=str))


def _backoff(retries: int) -> int:
    return min(MAX_BACKOFF_SECONDS, 5 * 2 ** max(0, retries))


def _can_retry(task) -> bool:
    return int(task.request.retries or 0) < int(task.max_retries or 0)


@shared_task(bind=True, name=WEBHOOK_TASK, max_retries=5)
def process_boost_webhook_task(self, *, notice: dict, trace_id: str = ""):
    """Apply a queued gateway notification; gateway failures are retried with backoff."""
    from feira.services.boost_service import WebhookNotice, process_webhook

    started = time.perf_counter()
    payment_id = notice.get("payment_id")
    body, status = process_webhook(WebhookNotice(**notice), request_id=trace_id)
    if int(status) < 500:
        _task_log("process_boost_webhook", status="ok", started_at=started, trace_id=trace_id,
                  payment_id=payment_id, changed=bool(body.get("changed")))
        return body

    if not _can_retry(self):
        _task_log("process_boost_webhook", status="failed", started_at=started, trace_id=trace_id, payment_id=payment_id)
        return body
    countdown = _backoff(int(self.request.retries or 0))
    _task_log("process_boost_webhook", status="retrying", started_at=started, trace_id=trace_id,
              payment_id=payment_id, countdown=countdown)
    raise self.retry(exc=RuntimeError(body.get("error") or "webhook_failed"), countdown=countdown)


@shared_task(bind=True, name=MAINTENANCE_TASK, max_retries=3)
def run_marketplace_maintenance_task(self, *, trace_id: str = ""):
    from feira.jobs.maintenance_runner import run_marketplace_maintenance

    started = time.perf_counter()
    try:
        result = run_marketplace_maintenance()
    except Exception as exc:
        if not _can_retry(self):
            _task_log("run_marketplace_maintenance", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
            raise
        countdown = _backoff(int(self.request.retries or 0))
        _task_log("run_marketplace_maintenance", status="retrying", started_at=started, trace_id=trace_id,
                  detail=str(exc), countdown=countdown)
        raise self.retry(exc=exc, countdown=countdown)
    _task_log(
        "run_marketplace_maintenance",
        status="ok",
        started_at=started,
        trace_id=trace_id,
        expired_ads=result.get("expired_ads"),
        finished_boosts=result.get("finished_boosts"),
        pending=result.get("pending_boosts"),
    )
    return result
