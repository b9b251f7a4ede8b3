from __future__ import annotations

from flask import Blueprint, jsonify

from feira.services.notification_service import delete_for_user, list_for_user, mark_read
from feira.utils.auth import current_user

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
def list_notifications():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    rows = list_for_user(int(user.id))
    unread = sum(1 for row in rows if not row.read)
    return jsonify({"ok": True, "items": [x.to_dict() for x in rows], "unread": unread}), 200


@notifications_bp.patch("/notifications/<int:notification_id>/read")
def mark_notification_read(notification_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    row = mark_read(int(user.id), notification_id)
    if not row:
        return jsonify({"message": "Not found"}), 404
    return jsonify({"ok": True, "notification": row.to_dict()}), 200


@notifications_bp.delete("/notifications/<int:notification_id>")
def delete_notification(notification_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not delete_for_user(int(user.id), notification_id):
        return jsonify({"message": "Not found"}), 404
    return jsonify({"ok": True}), 200
