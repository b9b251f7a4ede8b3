from datetime import datetime

from feira.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False, default="info")  # info | success | warning | error
    read = db.Column(db.Boolean, nullable=False, default=False)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    TYPES = ("info", "success", "warning", "error")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "title": self.title or "",
            "message": self.message or "",
            "type": self.type or "info",
            "read": bool(self.read),
            "ad_id": int(self.ad_id) if self.ad_id is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
