from __future__ import annotations

from flask import Blueprint, current_app, jsonify, redirect, request
from flask_login import current_user as session_user, login_required, logout_user

from feira.extensions import login_manager
from feira.services.user_service import RegistrationClosedError, authenticate_user, register_user, update_profile
from feira.utils.auth import current_user
from feira.utils.jwt_utils import create_user_token
from feira.utils.validation import json_body

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api")


# Session scheme: cookies are signed, but no identity provider is wired in,
# so the loader never resolves a user and guarded routes always answer 401.
@login_manager.user_loader
def _load_session_user(user_id):
    return None


@login_manager.unauthorized_handler
def _session_unauthorized():
    return jsonify({"ok": False, "error": "Unauthorized", "message": "Session authentication required"}), 401


@auth_bp.get("/login")
def session_login():
    return jsonify({"ok": False, "error": "NOT_IMPLEMENTED", "message": "Session login is not available"}), 501


@auth_bp.get("/callback")
def session_callback():
    return redirect("/")


@auth_bp.get("/logout")
def session_logout():
    logout_user()
    return redirect("/")


@auth_bp.get("/auth/session")
@login_required
def session_me():
    return jsonify({"ok": True, "user": session_user.to_dict()}), 200


@auth_bp.post("/auth/register")
def register():
    data = json_body(request)
    try:
        user = register_user(data)
    except RegistrationClosedError:
        return jsonify({"ok": False, "error": "REGISTRATION_CLOSED", "message": "Registros não permitidos"}), 403
    current_app.logger.info("user_registered user_id=%s", user.id)
    return jsonify({"ok": True, "token": create_user_token(user), "user": user.to_dict()}), 201


@auth_bp.post("/auth/login")
def login():
    data = json_body(request)
    login_id = str(data.get("username") or data.get("email") or "").strip()
    password = str(data.get("password") or "")
    user = authenticate_user(login_id, password)
    if not user:
        return jsonify({"ok": False, "error": "INVALID_CREDENTIALS", "message": "Credenciais inválidas"}), 401
    return jsonify({"ok": True, "token": create_user_token(user), "user": user.to_dict()}), 200


@auth_bp.get("/auth/user")
def me():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "user": user.to_dict()}), 200


@auth_bp.put("/user/profile")
def update_my_profile():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    user = update_profile(user, json_body(request))
    return jsonify({"ok": True, "user": user.to_dict()}), 200
