from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from feira.services.boost_service import (
    BoostError,
    create_boost,
    list_featured,
    notice_to_dict,
    parse_webhook,
    poll_boost_status,
    process_webhook,
    verify_webhook_signature,
)
from feira.services.promotion_service import list_promotions
from feira.utils.observability import get_request_id
from feira.utils.validation import json_body

boost_bp = Blueprint("boost_bp", __name__, url_prefix="/api")


@boost_bp.get("/boost/promotions")
def public_promotions():
    rows = list_promotions()
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows]}), 200


@boost_bp.get("/featured")
def featured_ads():
    rows = list_featured()
    return jsonify({"ok": True, "items": [b.to_dict(include_ad=True) for b in rows]}), 200


@boost_bp.post("/boost/create")
def create_boost_payment():
    try:
        boost, payment = create_boost(json_body(request))
    except BoostError as err:
        return jsonify(err.to_payload()), err.http_status
    return jsonify(
        {
            "ok": True,
            "boosted_ad": boost.to_dict(),
            "payment": {
                "id": payment.payment_id,
                "status": payment.status,
                "qr_code": payment.qr_code,
                "qr_code_base64": payment.qr_code_base64,
            },
        }
    ), 201


@boost_bp.get("/boost/status/<int:boost_id>")
def boost_status(boost_id: int):
    try:
        boost, outcome, sync_error = poll_boost_status(boost_id)
    except BoostError as err:
        return jsonify(err.to_payload()), err.http_status
    payload = {"ok": True, "boosted_ad": boost.to_dict()}
    if outcome is not None:
        payload["gateway_status"] = outcome.gateway_status
    if sync_error:
        payload["sync_error"] = sync_error
    return jsonify(payload), 200


@boost_bp.post("/boost/webhook")
def boost_webhook():
    payload = request.get_json(silent=True) or {}
    notice = parse_webhook(payload, request.args)
    if not verify_webhook_signature(notice, request.headers):
        current_app.logger.warning("boost_webhook_invalid_signature payment_id=%s", notice.payment_id)
        return jsonify({"ok": False, "error": "INVALID_SIGNATURE"}), 400

    if current_app.config.get("BOOST_WEBHOOK_QUEUE") and notice.topic == "payment" and notice.payment_id:
        from feira.tasks.boost_tasks import process_boost_webhook_task

        try:
            process_boost_webhook_task.delay(notice=notice_to_dict(notice), trace_id=get_request_id())
            return jsonify({"ok": True, "queued": True, "trace_id": get_request_id()}), 200
        except Exception:
            current_app.logger.exception("boost_webhook_enqueue_failed payment_id=%s", notice.payment_id)

    body, status = process_webhook(notice, request_id=get_request_id())
    return jsonify(body), int(status)
