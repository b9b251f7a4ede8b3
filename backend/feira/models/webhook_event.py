from datetime import datetime

from feira.extensions import db


class WebhookEvent(db.Model):
    # Events in these states are answered as replays; failed ones are retried.
    SETTLED_STATUSES = ("processed", "ignored")

    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="mercadopago")
    event_id = db.Column(db.String(128), nullable=False)
    payment_id = db.Column(db.String(64), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="received")  # received | processed | ignored | failed
    attempts = db.Column(db.Integer, nullable=False, default=0)
    processed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event_id": self.event_id,
            "payment_id": self.payment_id or "",
            "action": self.action or "",
            "status": self.status or "",
            "attempts": int(self.attempts or 0),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "request_id": self.request_id or "",
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
