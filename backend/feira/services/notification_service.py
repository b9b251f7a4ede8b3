from __future__ import annotations

from flask import current_app

from feira.extensions import db
from feira.models import Notification


def notify(
    user_id: int | None,
    title: str,
    message: str,
    *,
    type: str = "info",
    ad_id: int | None = None,
    commit: bool = False,
) -> Notification | None:
    if not user_id:
        return None
    kind = type if type in Notification.TYPES else "info"
    row = Notification(
        user_id=int(user_id),
        title=(title or "")[:160],
        message=message or "",
        type=kind,
        ad_id=ad_id,
    )
    db.session.add(row)
    if commit:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("notification_create_failed user_id=%s", user_id)
            return None
    return row


def list_for_user(user_id: int, limit: int = 80) -> list[Notification]:
    return (
        Notification.query.filter_by(user_id=int(user_id))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def mark_read(user_id: int, notification_id: int) -> Notification | None:
    row = Notification.query.filter_by(id=int(notification_id), user_id=int(user_id)).first()
    if row is None:
        return None
    if not row.read:
        row.read = True
        db.session.add(row)
        db.session.commit()
    return row


def delete_for_user(user_id: int, notification_id: int) -> bool:
    row = Notification.query.filter_by(id=int(notification_id), user_id=int(user_id)).first()
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True
