from __future__ import annotations

from datetime import datetime

from flask import current_app

from feira.services.ad_service import expire_ads
from feira.services.boost_service import expire_finished_boosts, reconcile_pending_boosts
from feira.utils.job_runs import record_job_run


def _now():
    return datetime.utcnow()


def run_marketplace_maintenance(*, now: datetime | None = None) -> dict:
    """Hourly housekeeping.

    Steps:
      - ads past ``expires_at`` are deactivated and their owners notified.
      - pending boosts are re-checked with the gateway; ones still pending
        after ``BOOST_PENDING_TTL_HOURS`` become ``expired``.
      - approved boosts whose window ended stop being active, and the ad's
        featured flag follows its remaining live boosts.
    """
    started_at = _now()
    now = now or started_at
    ttl_hours = int(current_app.config.get("BOOST_PENDING_TTL_HOURS") or 24)
    result = {"ok": True, "ts": now.isoformat()}
    try:
        result["expired_ads"] = len(expire_ads(now))
        result["pending_boosts"] = reconcile_pending_boosts(now, ttl_hours=ttl_hours)
        result["finished_boosts"] = len(expire_finished_boosts(now))
    except Exception as e:
        current_app.logger.exception("marketplace_maintenance_failed")
        result["ok"] = False
        record_job_run(job_name="marketplace_maintenance", ok=False, started_at=started_at, summary=result, error=str(e))
        raise
    record_job_run(job_name="marketplace_maintenance", ok=True, started_at=started_at, summary=result)
    current_app.logger.info(
        "marketplace_maintenance_done expired_ads=%s finished_boosts=%s pending=%s",
        result["expired_ads"],
        result["finished_boosts"],
        result["pending_boosts"],
    )
    return result
