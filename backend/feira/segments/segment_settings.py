from __future__ import annotations

from flask import Blueprint, jsonify

from feira.services.settings_service import public_settings

settings_bp = Blueprint("settings_bp", __name__, url_prefix="/api")


@settings_bp.get("/settings")
def get_public_settings():
    return jsonify({"ok": True, "settings": public_settings()}), 200
