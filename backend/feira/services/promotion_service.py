from __future__ import annotations

from datetime import datetime

from feira.extensions import db
from feira.models import BoostedAd, BoostPromotion
from feira.utils.validation import FieldErrors, clean_bool, clean_int, clean_money, clean_str


def clean_promotion_payload(data: dict, *, partial: bool = False) -> dict:
    errors = FieldErrors()
    required = not partial
    values = {
        "name": clean_str(data, "name", errors, required=required, max_len=120),
        "price": clean_money(data, "price", errors, required=required),
        "duration_days": clean_int(data, "duration_days", errors, required=required, minimum=1),
        "description": clean_str(data, "description", errors, required=False),
        "active": clean_bool(data, "active", errors, required=False),
    }
    if values["price"] is not None and values["price"] <= 0:
        errors.add("price", "must be greater than zero")
    errors.raise_if_any()
    return {key: value for key, value in values.items() if value is not None}


def list_promotions(*, include_inactive: bool = False) -> list[BoostPromotion]:
    q = BoostPromotion.query
    if not include_inactive:
        q = q.filter(BoostPromotion.active.is_(True))
    return q.order_by(BoostPromotion.price.asc(), BoostPromotion.id.asc()).all()


def create_promotion(data: dict) -> BoostPromotion:
    cleaned = clean_promotion_payload(data)
    row = BoostPromotion(**cleaned)
    db.session.add(row)
    db.session.commit()
    return row


def update_promotion(promotion_id: int, data: dict) -> BoostPromotion | None:
    row = db.session.get(BoostPromotion, int(promotion_id))
    if row is None:
        return None
    cleaned = clean_promotion_payload(data, partial=True)
    for key, value in cleaned.items():
        setattr(row, key, value)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()
    return row


def delete_promotion(promotion_id: int) -> str | None:
    """Remove a promotion; one already sold is only deactivated."""
    row = db.session.get(BoostPromotion, int(promotion_id))
    if row is None:
        return None
    if BoostedAd.query.filter_by(promotion_id=row.id).first() is not None:
        row.active = False
        row.updated_at = datetime.utcnow()
        db.session.add(row)
        db.session.commit()
        return "deactivated"
    db.session.delete(row)
    db.session.commit()
    return "deleted"
