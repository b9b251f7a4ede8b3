from __future__ import annotations

import json
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from feira.extensions import db
from feira.models import JobRun


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    summary: dict | None = None,
    error: str | None = None,
) -> JobRun | None:
    """Persist the outcome of a job. A failed write is logged, never raised."""
    row = JobRun(
        job_name=(job_name or "unknown").strip()[:64],
        started_at=started_at,
        finished_at=datetime.utcnow(),
        ok=bool(ok),
        summary_json=json.dumps(summary or {}, separators=(",", ":"), default=str),
        error=(error or "")[:1000] or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("job_run_record_failed job=%s", job_name)
        return None
    return row


def last_job_run(job_name: str) -> JobRun | None:
    return JobRun.query.filter_by(job_name=job_name).order_by(JobRun.finished_at.desc(), JobRun.id.desc()).first()
