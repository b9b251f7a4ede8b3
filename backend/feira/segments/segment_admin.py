from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func

from feira.extensions import db
from feira.models import Ad, BoostedAd, Category, User
from feira.services import ad_service, promotion_service, settings_service, user_service
from feira.services.boost_service import BoostError, BoostStatus, list_boosts, set_boost_active
from feira.utils.auth import current_admin
from feira.utils.jwt_utils import create_admin_token
from feira.utils.validation import FieldErrors, ValidationError, clean_bool, clean_str, json_body

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


@admin_bp.before_request
def _require_admin():
    if request.method == "OPTIONS" or request.endpoint == "admin_bp.admin_login":
        return None
    admin = current_admin()
    if not admin:
        return jsonify({"ok": False, "message": "Acesso negado - Admin requerido"}), 401
    g.admin = admin
    return None


def _active_flag() -> bool:
    errors = FieldErrors()
    active = clean_bool(json_body(request), "active", errors)
    errors.raise_if_any()
    return bool(active)


@admin_bp.post("/login")
def admin_login():
    data = json_body(request)
    errors = FieldErrors()
    email = clean_str(data, "email", errors)
    password = clean_str(data, "password", errors)
    errors.raise_if_any()
    admin = user_service.authenticate_admin(email, password)
    if not admin:
        return jsonify({"ok": False, "error": "INVALID_CREDENTIALS", "message": "Credenciais inválidas"}), 401
    current_app.logger.info("admin_login admin_id=%s", admin.id)
    return jsonify({"ok": True, "token": create_admin_token(admin), "admin": admin.to_dict()}), 200


@admin_bp.get("/stats")
def stats():
    total_ads = db.session.query(func.count(Ad.id)).scalar() or 0
    active_ads = db.session.query(func.count(Ad.id)).filter(Ad.active.is_(True)).scalar() or 0
    boost_counts = dict(
        db.session.query(BoostedAd.payment_status, func.count(BoostedAd.id))
        .group_by(BoostedAd.payment_status)
        .all()
    )
    revenue = (
        db.session.query(func.coalesce(func.sum(BoostedAd.amount), 0))
        .filter(BoostedAd.payment_status == BoostStatus.APPROVED)
        .scalar()
    )
    recent_users = User.query.order_by(User.created_at.desc(), User.id.desc()).limit(5).all()
    recent_ads = Ad.query.order_by(Ad.created_at.desc(), Ad.id.desc()).limit(5).all()
    return jsonify(
        {
            "ok": True,
            "total_users": int(db.session.query(func.count(User.id)).scalar() or 0),
            "total_ads": int(total_ads),
            "active_ads": int(active_ads),
            "inactive_ads": int(total_ads) - int(active_ads),
            "boosts": {status: int(boost_counts.get(status, 0)) for status in BoostStatus.ALLOWED},
            "boost_revenue": float(revenue or 0),
            "recent_users": [u.to_dict() for u in recent_users],
            "recent_ads": [a.to_dict() for a in recent_ads],
        }
    ), 200


@admin_bp.get("/users")
def list_users():
    return jsonify({"ok": True, "items": [u.to_dict() for u in user_service.list_users()]}), 200


@admin_bp.patch("/users/<int:user_id>/toggle")
def toggle_user(user_id: int):
    user = user_service.set_user_active(user_id, _active_flag())
    if not user:
        return jsonify({"message": "Usuário não encontrado"}), 404
    return jsonify({"ok": True, "user": user.to_dict()}), 200


@admin_bp.delete("/users/<int:user_id>")
def delete_user(user_id: int):
    if not user_service.delete_user(user_id):
        return jsonify({"message": "Usuário não encontrado"}), 404
    current_app.logger.info("admin_user_deleted user_id=%s admin_id=%s", user_id, g.admin.id)
    return jsonify({"ok": True, "message": "Usuário deletado com sucesso"}), 200


@admin_bp.get("/ads")
def list_all_ads():
    rows = Ad.query.order_by(Ad.created_at.desc(), Ad.id.desc()).all()
    return jsonify({"ok": True, "items": [a.to_dict() for a in rows]}), 200


@admin_bp.patch("/ads/<int:ad_id>/toggle")
def toggle_ad(ad_id: int):
    active = _active_flag()
    ad = ad_service.set_ad_active(ad_id, active)
    if not ad:
        return jsonify({"message": "Anúncio não encontrado"}), 404
    message = "Anúncio ativado" if active else "Anúncio desativado"
    return jsonify({"ok": True, "message": message, "ad": ad.to_dict()}), 200


@admin_bp.delete("/ads/<int:ad_id>")
def delete_ad(ad_id: int):
    if not ad_service.delete_ad_permanently(ad_id):
        return jsonify({"message": "Anúncio não encontrado"}), 404
    current_app.logger.info("admin_ad_deleted ad_id=%s admin_id=%s", ad_id, g.admin.id)
    return jsonify({"ok": True, "message": "Anúncio deletado permanentemente"}), 200


def _clean_category(data: dict, *, partial: bool) -> dict:
    errors = FieldErrors()
    values = {
        "name": clean_str(data, "name", errors, required=not partial, max_len=100),
        "icon": clean_str(data, "icon", errors, required=not partial, max_len=50),
    }
    if values["name"]:
        clash = Category.query.filter(func.lower(Category.name) == values["name"].lower()).first()
        if clash is not None and (not partial or clash.id != request.view_args.get("category_id")):
            errors.add("name", "already exists")
    errors.raise_if_any()
    return {key: value for key, value in values.items() if value is not None}


@admin_bp.post("/categories")
def create_category():
    row = Category(**_clean_category(json_body(request), partial=False))
    db.session.add(row)
    db.session.commit()
    return jsonify({"ok": True, "category": row.to_dict()}), 201


@admin_bp.put("/categories/<int:category_id>")
def update_category(category_id: int):
    row = db.session.get(Category, category_id)
    if not row:
        return jsonify({"message": "Categoria não encontrada"}), 404
    for key, value in _clean_category(json_body(request), partial=True).items():
        setattr(row, key, value)
    db.session.add(row)
    db.session.commit()
    return jsonify({"ok": True, "category": row.to_dict()}), 200


@admin_bp.delete("/categories/<int:category_id>")
def delete_category(category_id: int):
    row = db.session.get(Category, category_id)
    if not row:
        return jsonify({"message": "Categoria não encontrada"}), 404
    Ad.query.filter(Ad.category_id == row.id).update({Ad.category_id: None}, synchronize_session=False)
    db.session.delete(row)
    db.session.commit()
    return jsonify({"ok": True, "message": "Categoria deletada com sucesso"}), 200


@admin_bp.get("/settings")
def get_settings():
    return jsonify({"ok": True, "items": [s.to_dict() for s in settings_service.all_settings()]}), 200


@admin_bp.put("/settings")
def put_settings():
    data = json_body(request)
    if not data:
        raise ValidationError([{"field": "body", "message": "no settings given"}])
    rows = settings_service.set_settings(data)
    current_app.logger.info("admin_settings_updated keys=%s admin_id=%s", ",".join(sorted(data)), g.admin.id)
    return jsonify({"ok": True, "message": "Configurações atualizadas com sucesso", "items": [s.to_dict() for s in rows]}), 200


@admin_bp.get("/boost/promotions")
def list_all_promotions():
    rows = promotion_service.list_promotions(include_inactive=True)
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows]}), 200


@admin_bp.post("/boost/promotions")
def create_promotion():
    row = promotion_service.create_promotion(json_body(request))
    return jsonify({"ok": True, "promotion": row.to_dict()}), 201


@admin_bp.put("/boost/promotions/<int:promotion_id>")
def update_promotion(promotion_id: int):
    row = promotion_service.update_promotion(promotion_id, json_body(request))
    if not row:
        return jsonify({"message": "Promoção não encontrada"}), 404
    return jsonify({"ok": True, "promotion": row.to_dict()}), 200


@admin_bp.delete("/boost/promotions/<int:promotion_id>")
def delete_promotion(promotion_id: int):
    result = promotion_service.delete_promotion(promotion_id)
    if not result:
        return jsonify({"message": "Promoção não encontrada"}), 404
    return jsonify({"ok": True, "result": result}), 200


@admin_bp.get("/boost/ads")
def list_boosted_ads():
    return jsonify({"ok": True, "items": [b.to_dict(include_ad=True) for b in list_boosts()]}), 200


@admin_bp.patch("/boost/ads/<int:boost_id>/toggle")
def toggle_boosted_ad(boost_id: int):
    active = _active_flag()
    try:
        boost = set_boost_active(boost_id, active, actor_id=int(g.admin.id))
    except BoostError as err:
        return jsonify(err.to_payload()), err.http_status
    message = "Impulsionamento ativado" if active else "Impulsionamento desativado"
    return jsonify({"ok": True, "message": message, "boosted_ad": boost.to_dict()}), 200
