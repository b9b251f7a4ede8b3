from __future__ import annotations

import hashlib
import json
import os
import re
import time
import uuid
from datetime import datetime

from flask import g, request

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

# Header and body keys that never leave the process in error reports.
_SECRET_HEADERS = ("authorization", "cookie", "set-cookie", "x-signature")
_SECRET_FIELDS = ("password", "payer_cpf", "payer_phone", "payer_email")


def get_request_id() -> str:
    return getattr(g, "request_id", "") or ""


def with_trace_id(payload: dict) -> dict:
    rid = get_request_id().strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _client_ip_hash(salt: str) -> str:
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    ip = forwarded or request.remote_addr or ""
    return hashlib.sha256(f"{salt}:{ip}".encode("utf-8")).hexdigest()[:16]


def _incoming_request_id() -> str:
    rid = (request.headers.get("X-Request-Id") or "").strip()
    if rid and _REQUEST_ID_RE.match(rid):
        return rid
    return uuid.uuid4().hex


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        try:
            traces_rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip())
        except ValueError:
            traces_rate = 0.0

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("FEIRA_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=max(0.0, min(traces_rate, 1.0)),
            before_send=scrub_event,
        )
        app.logger.info("sentry_enabled env=%s", os.getenv("FEIRA_ENV") or "dev")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def scrub_event(event, hint):
    """Drop credentials and payer personal data from a Sentry event."""
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    for key in list(headers.keys()):
        if key.lower() in _SECRET_HEADERS:
            headers[key] = "[REDACTED]"
    req["headers"] = headers
    data = req.get("data")
    if isinstance(data, dict):
        for key in _SECRET_FIELDS:
            if key in data:
                data[key] = "[REDACTED]"
    event["request"] = req
    return event


def install_request_observers(app) -> None:
    @app.before_request
    def _begin_request_trace():
        g.request_id = _incoming_request_id()
        g.request_started_at = time.perf_counter()
        g.auth_user_id = None
        g.auth_role = None

    @app.after_request
    def _finish_request_trace(response):
        rid = get_request_id() or uuid.uuid4().hex
        response.headers["X-Request-Id"] = rid
        if request.path == "/api/health":
            return response
        started = getattr(g, "request_started_at", None)
        entry = {
            "event": "http_request",
            "ts": datetime.utcnow().isoformat(),
            "request_id": rid,
            "method": request.method,
            "path": request.path,
            "endpoint": request.endpoint or "",
            "status": int(response.status_code),
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
            "user_id": getattr(g, "auth_user_id", None),
            "role": getattr(g, "auth_role", None),
            "ip_hash": _client_ip_hash(app.config.get("SECRET_KEY", "feira")),
        }
        if response.status_code >= 500:
            app.logger.error(json.dumps(entry))
        else:
            app.logger.info(json.dumps(entry))
        return response
