from __future__ import annotations

import base64
import binascii
import mimetypes
import os
import uuid

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from feira.models import Category
from feira.services.ad_service import (
    AdLimitError,
    add_favorite,
    create_ad,
    get_ad,
    is_favorite,
    list_ads,
    list_favorite_ads,
    list_user_ads,
    remove_favorite,
    soft_delete_ad,
    update_ad,
)
from feira.utils.auth import current_user
from feira.utils.validation import FieldErrors, ValidationError, clean_int, json_body, query_int

ads_bp = Blueprint("ads_bp", __name__, url_prefix="/api")

_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}


def _bool_arg(name: str) -> bool | None:
    raw = (request.args.get(name) or "").strip().lower()
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    return None


def _optional_user_id() -> int | None:
    user = current_user()
    return int(user.id) if user else None


@ads_bp.get("/categories")
def list_categories():
    rows = Category.query.order_by(Category.name.asc()).all()
    return jsonify({"ok": True, "items": [c.to_dict() for c in rows]}), 200


@ads_bp.get("/ads")
def list_public_ads():
    errors = FieldErrors()
    category_id = clean_int(request.args, "category_id", errors, required=False, minimum=1)
    owner_id = clean_int(request.args, "user_id", errors, required=False, minimum=1)
    errors.raise_if_any()
    rows = list_ads(
        category_id=category_id,
        location=(request.args.get("location") or "").strip() or None,
        search=(request.args.get("search") or "").strip() or None,
        featured=_bool_arg("featured"),
        user_id=owner_id,
        limit=query_int(request.args, "limit", 50, minimum=1, maximum=100),
        offset=query_int(request.args, "offset", 0, minimum=0),
    )
    return jsonify({"ok": True, "items": [ad.to_dict() for ad in rows]}), 200


@ads_bp.get("/ads/<int:ad_id>")
def get_public_ad(ad_id: int):
    ad = get_ad(ad_id, viewer_id=_optional_user_id(), count_view=True)
    if not ad:
        return jsonify({"message": "Anúncio não encontrado"}), 404
    return jsonify({"ok": True, "ad": ad.to_dict()}), 200


@ads_bp.post("/ads")
def create_my_ad():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    try:
        ad = create_ad(user, json_body(request))
    except AdLimitError as limit:
        return jsonify(limit.to_payload()), 403
    current_app.logger.info("ad_created ad_id=%s user_id=%s", ad.id, user.id)
    return jsonify({"ok": True, "ad": ad.to_dict()}), 201


@ads_bp.patch("/ads/<int:ad_id>")
def update_my_ad(ad_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    ad = update_ad(ad_id, int(user.id), json_body(request))
    if not ad:
        return jsonify({"message": "Anúncio não encontrado"}), 404
    return jsonify({"ok": True, "ad": ad.to_dict()}), 200


@ads_bp.delete("/ads/<int:ad_id>")
def delete_my_ad(ad_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not soft_delete_ad(ad_id, int(user.id)):
        return jsonify({"message": "Anúncio não encontrado"}), 404
    return jsonify({"ok": True, "message": "Anúncio excluído com sucesso"}), 200


@ads_bp.get("/user/ads")
def my_ads():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    rows = list_user_ads(int(user.id))
    return jsonify({"ok": True, "items": [ad.to_dict() for ad in rows]}), 200


def _upload_dir() -> str:
    path = current_app.config["UPLOAD_DIR"]
    os.makedirs(path, exist_ok=True)
    return path


@ads_bp.post("/upload/image")
def upload_image():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401

    file = request.files.get("image")
    if file is not None and file.filename:
        ext = (file.filename.rsplit(".", 1)[-1] if "." in file.filename else "").lower()
        if ext not in _IMAGE_EXTENSIONS:
            raise ValidationError([{"field": "image", "message": "unsupported image type"}])
        name = secure_filename(f"{uuid.uuid4().hex}.{ext}")
        file.save(os.path.join(_upload_dir(), name))
        current_app.logger.info("image_uploaded user_id=%s file=%s", user.id, name)
        return jsonify({"ok": True, "image_url": f"/api/uploads/{name}"}), 201

    data = json_body(request)
    raw = str(data.get("image_data") or "").strip()
    if not raw:
        raise ValidationError([{"field": "image_data", "message": "is required"}])
    if raw.startswith("data:"):
        data_mime = raw[5:].split(",", 1)[0].split(";", 1)[0].strip().lower()
        if not data_mime.startswith("image/"):
            raise ValidationError([{"field": "image_data", "message": "unsupported image type"}])
        return jsonify({"ok": True, "image_url": raw}), 200
    try:
        base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError([{"field": "image_data", "message": "must be base64 encoded"}])
    mime = mimetypes.guess_type(str(data.get("file_name") or ""))[0] or "image/jpeg"
    if not mime.startswith("image/"):
        mime = "image/jpeg"
    return jsonify({"ok": True, "image_url": f"data:{mime};base64,{raw}"}), 200


@ads_bp.get("/uploads/<path:filename>")
def uploaded_file(filename: str):
    return send_from_directory(_upload_dir(), filename)


@ads_bp.get("/favorites")
def my_favorites():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    rows = list_favorite_ads(int(user.id))
    return jsonify({"ok": True, "items": [ad.to_dict() for ad in rows]}), 200


@ads_bp.post("/favorites")
def add_my_favorite():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    errors = FieldErrors()
    ad_id = clean_int(json_body(request), "ad_id", errors, minimum=1)
    errors.raise_if_any()
    row = add_favorite(int(user.id), ad_id)
    if not row:
        return jsonify({"message": "Anúncio não encontrado"}), 404
    return jsonify({"ok": True, "favorite": row.to_dict()}), 201


@ads_bp.delete("/favorites/<int:ad_id>")
def remove_my_favorite(ad_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not remove_favorite(int(user.id), ad_id):
        return jsonify({"message": "Favorito não encontrado"}), 404
    return jsonify({"ok": True}), 200


@ads_bp.get("/favorites/<int:ad_id>/check")
def check_my_favorite(ad_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "is_favorite": is_favorite(int(user.id), ad_id)}), 200
