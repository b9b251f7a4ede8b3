from datetime import datetime

from feira.extensions import db


class Favorite(db.Model):
    __tablename__ = "favorites"
    __table_args__ = (
        db.UniqueConstraint("user_id", "ad_id", name="uq_favorites_user_ad"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "ad_id": int(self.ad_id),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
