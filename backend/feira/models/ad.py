import re
from datetime import datetime
from urllib.parse import quote

from feira.extensions import db


def whatsapp_link(number: str | None, title: str | None = None) -> str:
    digits = re.sub(r"\D", "", number or "")
    if not digits:
        return ""
    message = quote(f'Olá! Vi seu anúncio "{title or ""}" e tenho interesse no produto.')
    return f"https://wa.me/55{digits}?text={message}"


class Ad(db.Model):
    __tablename__ = "ads"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    image_url = db.Column(db.String(1024), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    location = db.Column(db.String(200), nullable=False)
    whatsapp = db.Column(db.String(20), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    featured = db.Column(db.Boolean, nullable=False, default=False, index=True)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    views = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    category = db.relationship("Category", lazy="joined")
    user = db.relationship("User", lazy="joined")
    images = db.relationship(
        "AdImage",
        order_by="AdImage.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Fields an owner may change through a partial update.
    EDITABLE_FIELDS = ("title", "description", "price", "image_url", "category_id", "location", "whatsapp")

    def to_dict(self) -> dict:
        images = [img.to_dict() for img in (self.images or [])]
        image_url = self.image_url or (images[0]["url"] if images else "")
        owner = None
        if self.user is not None:
            owner = {
                "id": int(self.user.id),
                "username": self.user.username or "",
                "first_name": self.user.first_name or "",
                "last_name": self.user.last_name or "",
                "profile_image_url": self.user.profile_image_url or "",
            }
        return {
            "id": int(self.id),
            "title": self.title or "",
            "description": self.description or "",
            "price": float(self.price or 0),
            "image_url": image_url,
            "images": images,
            "category_id": int(self.category_id) if self.category_id is not None else None,
            "category": self.category.to_dict() if self.category is not None else None,
            "location": self.location or "",
            "whatsapp": self.whatsapp or "",
            "whatsapp_url": whatsapp_link(self.whatsapp, self.title),
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "user": owner,
            "featured": bool(self.featured),
            "active": bool(self.active),
            "views": int(self.views or 0),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AdImage(db.Model):
    __tablename__ = "ad_images"

    id = db.Column(db.Integer, primary_key=True)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True)
    url = db.Column(db.Text, nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id) if self.id is not None else None,
            "url": self.url or "",
            "sort_order": int(self.sort_order or 0),
            "is_primary": bool(self.is_primary),
        }
