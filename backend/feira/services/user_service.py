from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_

from feira.extensions import db
from feira.models import Ad, AdminUser, Favorite, Notification, User
from feira.services.ad_service import purge_ad
from feira.services.notification_service import notify
from feira.services.settings_service import get_setting
from feira.utils.validation import FieldErrors, ValidationError, clean_email, clean_phone, clean_str


class RegistrationClosedError(Exception):
    pass


def register_user(data: dict) -> User:
    if not get_setting("allow_registrations"):
        raise RegistrationClosedError()

    errors = FieldErrors()
    username = clean_str(data, "username", errors, min_len=3, max_len=64)
    email = clean_email(data, "email", errors)
    password = clean_str(data, "password", errors, min_len=6, max_len=128)
    first_name = clean_str(data, "first_name", errors, required=False, max_len=120)
    last_name = clean_str(data, "last_name", errors, required=False, max_len=120)
    errors.raise_if_any()

    if User.query.filter(func.lower(User.username) == username.lower()).first():
        errors.add("username", "already taken")
    if User.query.filter(func.lower(User.email) == email).first():
        errors.add("email", "already registered")
    errors.raise_if_any()

    user = User(username=username, email=email, first_name=first_name, last_name=last_name)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    notify(
        user.id,
        "Bem-vindo!",
        "Sua conta foi criada com sucesso. Você já pode começar a anunciar!",
        type="success",
    )
    db.session.commit()
    return user


def authenticate_user(login: str, password: str) -> User | None:
    ident = (login or "").strip().lower()
    if not ident or not password:
        return None
    user = User.query.filter(or_(func.lower(User.username) == ident, func.lower(User.email) == ident)).first()
    if user is None or not user.active or not user.check_password(password):
        return None
    return user


def update_profile(user: User, data: dict) -> User:
    errors = FieldErrors()
    changes = {}
    for field in ("first_name", "last_name"):
        if field in data:
            changes[field] = clean_str(data, field, errors, required=False, max_len=120)
    if "profile_image_url" in data:
        changes["profile_image_url"] = clean_str(data, "profile_image_url", errors, required=False, max_len=1024)
    if "whatsapp" in data:
        changes["whatsapp"] = clean_phone(data, "whatsapp", errors, required=False)
    if "email" in data:
        email = clean_email(data, "email", errors)
        if email and email != (user.email or "").lower():
            if User.query.filter(func.lower(User.email) == email, User.id != user.id).first():
                errors.add("email", "already registered")
        changes["email"] = email
    errors.raise_if_any()

    for field, value in changes.items():
        if field == "email" and not value:
            continue
        setattr(user, field, value)
    user.updated_at = datetime.utcnow()
    db.session.add(user)
    db.session.commit()
    return user


def list_users() -> list[User]:
    return User.query.order_by(User.created_at.desc(), User.id.desc()).all()


def set_user_active(user_id: int, active: bool) -> User | None:
    user = db.session.get(User, int(user_id))
    if user is None:
        return None
    user.active = bool(active)
    user.updated_at = datetime.utcnow()
    db.session.add(user)
    db.session.commit()
    return user


def delete_user(user_id: int) -> bool:
    user = db.session.get(User, int(user_id))
    if user is None:
        return False
    for ad in Ad.query.filter_by(user_id=user.id).all():
        purge_ad(ad)
    Favorite.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    Notification.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.delete(user)
    db.session.commit()
    return True


def authenticate_admin(email: str, password: str) -> AdminUser | None:
    ident = (email or "").strip().lower()
    if not ident or not password:
        return None
    admin = AdminUser.query.filter(func.lower(AdminUser.email) == ident).first()
    if admin is None or not admin.active or not admin.check_password(password):
        return None
    return admin


def upsert_admin(email: str, password: str, *, role: str = "super_admin") -> AdminUser:
    ident = (email or "").strip().lower()
    if not ident or not password:
        raise ValidationError([{"field": "email", "message": "email and password are required"}])
    admin = AdminUser.query.filter(func.lower(AdminUser.email) == ident).first()
    if admin is None:
        admin = AdminUser(email=ident, first_name="Admin", last_name="", role=role)
        db.session.add(admin)
    admin.set_password(password)
    admin.active = True
    admin.updated_at = datetime.utcnow()
    db.session.commit()
    return admin
