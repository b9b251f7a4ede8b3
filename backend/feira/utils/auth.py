from __future__ import annotations

from flask import g, request

from feira.extensions import db
from feira.models import AdminUser, User
from feira.utils.jwt_utils import decode_admin_token, decode_user_token, get_bearer_token


def _subject_id(payload: dict | None) -> int | None:
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except Exception:
        return None


def current_user() -> User | None:
    """Resolve the bearer token on the request to an active end user."""
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    uid = _subject_id(decode_user_token(token))
    if uid is None:
        return None
    user = db.session.get(User, uid)
    if not user or not user.active:
        return None
    g.auth_user_id = int(user.id)
    g.auth_role = "user"
    return user


def current_admin() -> AdminUser | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    admin_id = _subject_id(decode_admin_token(token))
    if admin_id is None:
        return None
    admin = db.session.get(AdminUser, admin_id)
    if not admin or not admin.active:
        return None
    g.auth_user_id = int(admin.id)
    g.auth_role = (admin.role or "admin").strip().lower()
    return admin
