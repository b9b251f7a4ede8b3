from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_

from feira.extensions import db
from feira.models import Ad, AdImage, BoostedAd, BoostTransition, Category, Favorite, Notification
from feira.services.notification_service import notify
from feira.services.settings_service import get_int_setting
from feira.utils.validation import FieldErrors, clean_int, clean_money, clean_phone, clean_str

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_IMAGES = 10


@dataclass
class AdLimitError(Exception):
    limit: int

    def to_payload(self) -> dict:
        return {
            "ok": False,
            "error": "AD_LIMIT_REACHED",
            "message": f"Limite de {self.limit} anúncios ativos atingido",
            "limit": int(self.limit),
        }


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _clean_images(data: dict, errors: FieldErrors) -> list[str] | None:
    raw = data.get("images")
    if raw is None:
        return None
    if not isinstance(raw, list):
        errors.add("images", "must be a list of URLs")
        return None
    urls = []
    for idx, item in enumerate(raw):
        if not isinstance(item, str) or not item.strip():
            errors.add(f"images[{idx}]", "must be a non-empty string")
            continue
        urls.append(item.strip())
    if len(urls) > MAX_IMAGES:
        errors.add("images", f"at most {MAX_IMAGES} images")
        return None
    return urls


def clean_ad_payload(data: dict, *, partial: bool = False) -> dict:
    errors = FieldErrors()
    required = not partial
    cleaned = {}
    values = {
        "title": clean_str(data, "title", errors, required=required, min_len=3, max_len=200),
        "description": clean_str(data, "description", errors, required=required, min_len=1),
        "price": clean_money(data, "price", errors, required=required),
        "location": clean_str(data, "location", errors, required=required, max_len=200),
        "whatsapp": clean_phone(data, "whatsapp", errors, required=required),
        "image_url": clean_str(data, "image_url", errors, required=False, max_len=1024),
        "category_id": clean_int(data, "category_id", errors, required=False, minimum=1),
    }
    for key, value in values.items():
        if value is not None:
            cleaned[key] = value
    if "category_id" in data and data.get("category_id") in (None, ""):
        cleaned["category_id"] = None
    images = _clean_images(data, errors)
    if images is not None:
        cleaned["images"] = images
    if cleaned.get("category_id") is not None and db.session.get(Category, cleaned["category_id"]) is None:
        errors.add("category_id", "unknown category")
    errors.raise_if_any()
    return cleaned


def _apply_images(ad: Ad, urls: list[str]) -> None:
    ad.images = [AdImage(url=url, sort_order=idx, is_primary=(idx == 0)) for idx, url in enumerate(urls)]
    if urls and not ad.image_url:
        ad.image_url = urls[0]


def list_ads(
    *,
    category_id: int | None = None,
    location: str | None = None,
    search: str | None = None,
    featured: bool | None = None,
    user_id: int | None = None,
    include_inactive: bool = False,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[Ad]:
    q = Ad.query
    if not include_inactive:
        q = q.filter(Ad.active.is_(True))
    if category_id is not None:
        q = q.filter(Ad.category_id == int(category_id))
    if location:
        q = q.filter(Ad.location.ilike(_like(location), escape="\\"))
    if search:
        pattern = _like(search)
        q = q.filter(or_(Ad.title.ilike(pattern, escape="\\"), Ad.description.ilike(pattern, escape="\\")))
    if featured is not None:
        q = q.filter(Ad.featured.is_(bool(featured)))
    if user_id is not None:
        q = q.filter(Ad.user_id == int(user_id))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))
    return q.order_by(Ad.created_at.desc(), Ad.id.desc()).offset(offset).limit(limit).all()


def list_user_ads(user_id: int) -> list[Ad]:
    return (
        Ad.query.filter(Ad.user_id == int(user_id))
        .order_by(Ad.created_at.desc(), Ad.id.desc())
        .all()
    )


def get_ad(ad_id: int, *, viewer_id: int | None = None, count_view: bool = False) -> Ad | None:
    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        return None
    if not ad.active and (viewer_id is None or int(ad.user_id or 0) != int(viewer_id)):
        return None
    if count_view:
        Ad.query.filter(Ad.id == ad.id).update({Ad.views: Ad.views + 1}, synchronize_session=False)
        db.session.commit()
        db.session.refresh(ad)
    return ad


def active_ad_count(user_id: int) -> int:
    return Ad.query.filter(Ad.user_id == int(user_id), Ad.active.is_(True)).count()


def create_ad(user, data: dict) -> Ad:
    cleaned = clean_ad_payload(data)
    limit = get_int_setting("max_ads_per_user", 10)
    if active_ad_count(user.id) >= limit:
        raise AdLimitError(limit=limit)

    duration_days = max(1, get_int_setting("ad_duration_days", 30))
    now = datetime.utcnow()
    images = cleaned.pop("images", [])
    ad = Ad(
        user_id=int(user.id),
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(days=duration_days),
        **cleaned,
    )
    _apply_images(ad, images)
    db.session.add(ad)
    db.session.flush()
    notify(
        user.id,
        "Anúncio criado!",
        f'Seu anúncio "{ad.title}" foi criado com sucesso',
        type="success",
        ad_id=ad.id,
    )
    db.session.commit()
    return ad


def update_ad(ad_id: int, user_id: int, data: dict) -> Ad | None:
    ad = Ad.query.filter(Ad.id == int(ad_id), Ad.user_id == int(user_id)).first()
    if ad is None:
        return None
    cleaned = clean_ad_payload(data, partial=True)
    images = cleaned.pop("images", None)
    for key in Ad.EDITABLE_FIELDS:
        if key in cleaned:
            setattr(ad, key, cleaned[key])
    if images is not None:
        if "image_url" not in cleaned:
            ad.image_url = None
        _apply_images(ad, images)
    ad.updated_at = datetime.utcnow()
    db.session.add(ad)
    db.session.commit()
    return ad


def soft_delete_ad(ad_id: int, user_id: int) -> bool:
    ad = Ad.query.filter(Ad.id == int(ad_id), Ad.user_id == int(user_id)).first()
    if ad is None:
        return False
    ad.active = False
    ad.updated_at = datetime.utcnow()
    db.session.add(ad)
    db.session.commit()
    return True


def set_ad_active(ad_id: int, active: bool) -> Ad | None:
    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        return None
    ad.active = bool(active)
    ad.updated_at = datetime.utcnow()
    db.session.add(ad)
    db.session.commit()
    return ad


def purge_ad(ad: Ad) -> None:
    boost_ids = [row.id for row in BoostedAd.query.filter_by(ad_id=ad.id).all()]
    if boost_ids:
        BoostTransition.query.filter(BoostTransition.boosted_ad_id.in_(boost_ids)).delete(synchronize_session=False)
        BoostedAd.query.filter(BoostedAd.id.in_(boost_ids)).delete(synchronize_session=False)
    Favorite.query.filter_by(ad_id=ad.id).delete(synchronize_session=False)
    Notification.query.filter_by(ad_id=ad.id).update({Notification.ad_id: None}, synchronize_session=False)
    db.session.delete(ad)


def delete_ad_permanently(ad_id: int) -> bool:
    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        return False
    purge_ad(ad)
    db.session.commit()
    return True


def expire_ads(now: datetime | None = None) -> list[int]:
    """Deactivate ads past their expiry and tell their owners."""
    now = now or datetime.utcnow()
    rows = (
        Ad.query.filter(Ad.active.is_(True), Ad.expires_at.isnot(None), Ad.expires_at <= now)
        .order_by(Ad.id.asc())
        .all()
    )
    expired = []
    for ad in rows:
        ad.active = False
        ad.updated_at = now
        db.session.add(ad)
        notify(
            ad.user_id,
            "Anúncio expirado",
            f'Seu anúncio "{ad.title}" expirou e não está mais visível.',
            type="warning",
            ad_id=ad.id,
        )
        expired.append(int(ad.id))
    db.session.commit()
    return expired


def list_favorite_ads(user_id: int) -> list[Ad]:
    return (
        Ad.query.join(Favorite, Favorite.ad_id == Ad.id)
        .filter(Favorite.user_id == int(user_id), Ad.active.is_(True))
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .all()
    )


def add_favorite(user_id: int, ad_id: int) -> Favorite | None:
    ad = db.session.get(Ad, int(ad_id))
    if ad is None or not ad.active:
        return None
    existing = Favorite.query.filter_by(user_id=int(user_id), ad_id=int(ad_id)).first()
    if existing:
        return existing
    row = Favorite(user_id=int(user_id), ad_id=int(ad_id))
    db.session.add(row)
    db.session.commit()
    return row


def remove_favorite(user_id: int, ad_id: int) -> bool:
    row = Favorite.query.filter_by(user_id=int(user_id), ad_id=int(ad_id)).first()
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def is_favorite(user_id: int, ad_id: int) -> bool:
    return Favorite.query.filter_by(user_id=int(user_id), ad_id=int(ad_id)).first() is not None
