from datetime import datetime

from feira.extensions import db


class SiteSetting(db.Model):
    __tablename__ = "site_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(16), nullable=False, default="text")  # text | boolean | number
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def typed_value(self):
        raw = self.value if self.value is not None else ""
        if self.type == "boolean":
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        if self.type == "number":
            try:
                return int(str(raw).strip())
            except Exception:
                try:
                    return float(str(raw).strip())
                except Exception:
                    return 0
        return raw

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "key": self.key,
            "value": self.value if self.value is not None else "",
            "type": self.type or "text",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
