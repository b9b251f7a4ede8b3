from datetime import datetime

from feira.extensions import db


class BoostPromotion(db.Model):
    __tablename__ = "boost_promotions"
    __table_args__ = (
        db.CheckConstraint("duration_days > 0", name="ck_boost_promotions_duration_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name or "",
            "price": float(self.price or 0),
            "duration_days": int(self.duration_days or 0),
            "description": self.description or "",
            "active": bool(self.active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class BoostedAd(db.Model):
    __tablename__ = "boosted_ads"
    __table_args__ = (
        db.CheckConstraint(
            "NOT active OR payment_status = 'approved'",
            name="ck_boosted_ads_active_requires_approved",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("boost_promotions.id"), nullable=False, index=True)

    payment_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(16), nullable=False, default="pix")
    external_reference = db.Column(db.String(64), nullable=False, unique=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)

    payer_name = db.Column(db.String(120), nullable=False)
    payer_last_name = db.Column(db.String(120), nullable=False)
    payer_cpf = db.Column(db.String(11), nullable=False)
    payer_email = db.Column(db.String(255), nullable=True)
    payer_phone = db.Column(db.String(20), nullable=True)

    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True, index=True)
    active = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    ad = db.relationship("Ad", lazy="joined")
    promotion = db.relationship("BoostPromotion", lazy="joined")

    def to_dict(self, include_ad: bool = False) -> dict:
        payload = {
            "id": int(self.id),
            "ad_id": int(self.ad_id),
            "promotion_id": int(self.promotion_id),
            "promotion": self.promotion.to_dict() if self.promotion is not None else None,
            "payment_id": self.payment_id or "",
            "payment_status": self.payment_status or "pending",
            "payment_method": self.payment_method or "pix",
            "external_reference": self.external_reference or "",
            "amount": float(self.amount or 0),
            "payer_name": self.payer_name or "",
            "payer_last_name": self.payer_last_name or "",
            "payer_email": self.payer_email or "",
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "active": bool(self.active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_ad:
            payload["ad"] = self.ad.to_dict() if self.ad is not None else None
        return payload
