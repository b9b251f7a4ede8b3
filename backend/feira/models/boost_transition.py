from datetime import datetime

from feira.extensions import db


class BoostTransition(db.Model):
    __tablename__ = "boost_transitions"

    id = db.Column(db.Integer, primary_key=True)
    boosted_ad_id = db.Column(db.Integer, db.ForeignKey("boosted_ads.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=False, default="")
    to_status = db.Column(db.String(16), nullable=False)
    source = db.Column(db.String(16), nullable=False, default="system")  # create | poll | webhook | admin | job
    reason = db.Column(db.String(240), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "boosted_ad_id": int(self.boosted_ad_id),
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "source": self.source or "",
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
