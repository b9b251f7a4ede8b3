from __future__ import annotations

import hashlib
import hmac
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from feira.extensions import db
from feira.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, PaymentGatewayError
from feira.integrations.payments.base import PixPayer, PixPaymentResult
from feira.integrations.payments.factory import build_payments_provider
from feira.models import Ad, BoostedAd, BoostPromotion, BoostTransition, WebhookEvent
from feira.services.notification_service import notify
from feira.utils.validation import FieldErrors, clean_cpf, clean_email, clean_int, clean_phone, clean_str

WEBHOOK_PROVIDER = "mercadopago"


class BoostStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    TERMINAL = {REJECTED, CANCELLED, EXPIRED}
    ALLOWED = {
        PENDING: {PENDING, APPROVED, REJECTED, CANCELLED, EXPIRED},
        APPROVED: {APPROVED},
        REJECTED: {REJECTED},
        CANCELLED: {CANCELLED},
        EXPIRED: {EXPIRED},
    }


# Gateway payment status -> boost payment status. Anything unlisted stays pending.
GATEWAY_STATUS_MAP = {
    "approved": BoostStatus.APPROVED,
    "rejected": BoostStatus.REJECTED,
    "cancelled": BoostStatus.CANCELLED,
    "refunded": BoostStatus.CANCELLED,
    "charged_back": BoostStatus.CANCELLED,
    "pending": BoostStatus.PENDING,
    "in_process": BoostStatus.PENDING,
    "authorized": BoostStatus.PENDING,
    "in_mediation": BoostStatus.PENDING,
}

_GATEWAY_ERRORS = (PaymentGatewayError, IntegrationDisabledError, IntegrationMisconfiguredError)


@dataclass
class BoostError(Exception):
    code: str
    message: str
    http_status: int = 400

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


@dataclass
class SyncOutcome:
    boost_id: int
    gateway_status: str
    target_status: str
    changed: bool
    ignored: bool = False


@dataclass
class WebhookNotice:
    topic: str
    action: str
    payment_id: str
    event_id: str
    live_mode: bool | None = None


def map_gateway_status(raw: str | None) -> str:
    return GATEWAY_STATUS_MAP.get((raw or "").strip().lower(), BoostStatus.PENDING)


def _provider():
    return build_payments_provider(current_app.config)


def _notification_url() -> str:
    base = (current_app.config.get("BASE_URL") or "http://localhost:5000").rstrip("/")
    return f"{base}/api/boost/webhook"


def _record_transition(boost: BoostedAd, from_status: str, to_status: str, *, source: str, reason: str = "") -> None:
    db.session.add(
        BoostTransition(
            boosted_ad_id=int(boost.id),
            from_status=from_status or "",
            to_status=to_status,
            source=(source or "system")[:16],
            reason=(reason or "")[:240],
        )
    )


def live_boost_exists(ad_id: int, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    return (
        BoostedAd.query.filter(
            BoostedAd.ad_id == int(ad_id),
            BoostedAd.payment_status == BoostStatus.APPROVED,
            BoostedAd.active.is_(True),
            BoostedAd.end_date > now,
        ).first()
        is not None
    )


def recompute_featured(ad_id: int, now: datetime | None = None) -> bool:
    featured = live_boost_exists(ad_id, now)
    Ad.query.filter(Ad.id == int(ad_id)).update({Ad.featured: featured}, synchronize_session=False)
    return featured


def _clean_create_payload(data: dict) -> dict:
    errors = FieldErrors()
    values = {
        "ad_id": clean_int(data, "ad_id", errors, minimum=1),
        "promotion_id": clean_int(data, "promotion_id", errors, minimum=1),
        "payer_name": clean_str(data, "payer_name", errors, max_len=120),
        "payer_last_name": clean_str(data, "payer_last_name", errors, max_len=120),
        "payer_cpf": clean_cpf(data, "payer_cpf", errors),
        "payer_email": clean_email(data, "payer_email", errors, required=False),
        "payer_phone": clean_phone(data, "payer_phone", errors, required=False),
    }
    errors.raise_if_any()
    return values


def create_boost(data: dict) -> tuple[BoostedAd, PixPaymentResult]:
    """Ask the gateway for a PIX charge, then persist the pending boost.

    Nothing is written when the gateway call fails.
    """
    values = _clean_create_payload(data)

    ad = db.session.get(Ad, values["ad_id"])
    if ad is None or not ad.active:
        raise BoostError("AD_NOT_FOUND", "Anúncio não encontrado", 404)
    promotion = db.session.get(BoostPromotion, values["promotion_id"])
    if promotion is None or not promotion.active:
        raise BoostError("PROMOTION_NOT_FOUND", "Promoção não encontrada", 404)

    external_reference = uuid.uuid4().hex
    payer = PixPayer(
        first_name=values["payer_name"],
        last_name=values["payer_last_name"],
        cpf=values["payer_cpf"],
        email=values["payer_email"],
        phone=values["payer_phone"],
    )
    try:
        payment = _provider().create_pix_payment(
            amount=float(promotion.price),
            description=f"{promotion.name} - {ad.title}"[:250],
            payer=payer,
            external_reference=external_reference,
            notification_url=_notification_url(),
        )
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.error("boost_payments_unavailable ad_id=%s err=%s", ad.id, e)
        raise BoostError("PAYMENTS_UNAVAILABLE", "Pagamentos indisponíveis no momento", 503) from e
    except PaymentGatewayError as e:
        current_app.logger.exception("boost_payment_create_failed ad_id=%s promotion_id=%s code=%s", ad.id, promotion.id, e.code)
        raise BoostError("PAYMENT_GATEWAY_ERROR", "Erro ao processar pagamento", 502) from e

    now = datetime.utcnow()
    boost = BoostedAd(
        ad_id=int(ad.id),
        promotion_id=int(promotion.id),
        payment_id=payment.payment_id,
        payment_status=BoostStatus.PENDING,
        payment_method="pix",
        external_reference=external_reference,
        amount=promotion.price,
        payer_name=values["payer_name"],
        payer_last_name=values["payer_last_name"],
        payer_cpf=values["payer_cpf"],
        payer_email=values["payer_email"],
        payer_phone=values["payer_phone"],
        active=False,
        created_at=now,
        updated_at=now,
    )
    db.session.add(boost)
    db.session.flush()
    _record_transition(boost, "", BoostStatus.PENDING, source="create", reason=f"payment_id={payment.payment_id}")
    db.session.commit()
    current_app.logger.info(
        "boost_created boost_id=%s ad_id=%s payment_id=%s amount=%s",
        boost.id,
        boost.ad_id,
        boost.payment_id,
        float(boost.amount),
    )
    return boost, payment


def apply_status(boost: BoostedAd, target: str, *, source: str, reason: str = "", now: datetime | None = None) -> bool:
    """Move a pending boost to ``target``.

    The write is a compare-and-set on ``payment_status = 'pending'``: when a
    webhook and a poll race, only one of them wins and runs the approval side
    effects. Returns True when this call performed the change.
    """
    current = boost.payment_status or BoostStatus.PENDING
    if target == current:
        return False
    allowed = BoostStatus.ALLOWED.get(current, {current})
    if target not in allowed:
        current_app.logger.warning(
            "boost_transition_ignored boost_id=%s from=%s to=%s source=%s",
            boost.id,
            current,
            target,
            source,
        )
        return False

    now = now or datetime.utcnow()
    values = {BoostedAd.payment_status: target, BoostedAd.updated_at: now}
    if target == BoostStatus.APPROVED:
        duration_days = int(boost.promotion.duration_days)
        values.update(
            {
                BoostedAd.start_date: now,
                BoostedAd.end_date: now + timedelta(days=duration_days),
                BoostedAd.active: True,
            }
        )
    rowcount = (
        BoostedAd.query.filter(BoostedAd.id == boost.id, BoostedAd.payment_status == BoostStatus.PENDING)
        .update(values, synchronize_session=False)
    )
    if rowcount != 1:
        db.session.rollback()
        db.session.refresh(boost)
        current_app.logger.info("boost_transition_lost_race boost_id=%s to=%s source=%s", boost.id, target, source)
        return False

    _record_transition(boost, current, target, source=source, reason=reason)
    if target == BoostStatus.APPROVED:
        Ad.query.filter(Ad.id == boost.ad_id).update({Ad.featured: True}, synchronize_session=False)
        ad = db.session.get(Ad, boost.ad_id)
        if ad is not None:
            notify(
                ad.user_id,
                "Impulsionamento ativado!",
                f'Seu anúncio "{ad.title}" está em destaque por {int(boost.promotion.duration_days)} dias.',
                type="success",
                ad_id=ad.id,
            )
    db.session.commit()
    db.session.refresh(boost)
    current_app.logger.info("boost_transition_applied boost_id=%s from=%s to=%s source=%s", boost.id, current, target, source)
    return True


def sync_boost_payment(boost: BoostedAd, *, source: str) -> SyncOutcome:
    """Fetch the authoritative payment status and apply it. Gateway errors propagate."""
    if not boost.payment_id:
        return SyncOutcome(int(boost.id), "", boost.payment_status, changed=False)
    result = _provider().get_payment(boost.payment_id)
    target = map_gateway_status(result.status)
    if result.external_reference and result.external_reference != boost.external_reference:
        current_app.logger.warning(
            "boost_reference_mismatch boost_id=%s payment_id=%s",
            boost.id,
            boost.payment_id,
        )
        return SyncOutcome(int(boost.id), result.status, target, changed=False, ignored=True)
    if target == BoostStatus.PENDING:
        return SyncOutcome(int(boost.id), result.status, target, changed=False)
    changed = apply_status(boost, target, source=source, reason=f"gateway_status={result.status}")
    ignored = not changed and boost.payment_status != target
    return SyncOutcome(int(boost.id), result.status, target, changed=changed, ignored=ignored)


def get_boost(boost_id: int) -> BoostedAd | None:
    return db.session.get(BoostedAd, int(boost_id))


def poll_boost_status(boost_id: int) -> tuple[BoostedAd, SyncOutcome | None, str | None]:
    """Status endpoint: re-query the gateway for pending boosts.

    A gateway failure is logged and the stored record is returned untouched;
    the next poll tries again.
    """
    boost = get_boost(boost_id)
    if boost is None:
        raise BoostError("BOOST_NOT_FOUND", "Impulsionamento não encontrado", 404)
    if boost.payment_status != BoostStatus.PENDING:
        return boost, None, None
    try:
        outcome = sync_boost_payment(boost, source="poll")
    except _GATEWAY_ERRORS as e:
        db.session.rollback()
        current_app.logger.exception("boost_status_poll_failed boost_id=%s payment_id=%s", boost.id, boost.payment_id)
        return boost, None, getattr(e, "code", type(e).__name__)
    return boost, outcome, None


def parse_webhook(payload: dict, args) -> WebhookNotice:
    if not isinstance(payload, dict):
        payload = {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    topic = str(payload.get("type") or payload.get("topic") or args.get("type") or args.get("topic") or "").strip().lower()
    action = str(payload.get("action") or "").strip().lower()
    payment_id = str(data.get("id") or args.get("data.id") or "").strip()
    if not payment_id and args.get("topic"):
        # Legacy IPN form: ?topic=payment&id=<payment id>
        payment_id = str(args.get("id") or "").strip()
    event_id = str(payload.get("id") or "").strip()
    if not event_id:
        event_id = f"ipn:{topic}:{payment_id}:{uuid.uuid4().hex}"
    live_mode = payload.get("live_mode")
    return WebhookNotice(
        topic=topic,
        action=action,
        payment_id=payment_id,
        event_id=event_id[:128],
        live_mode=bool(live_mode) if live_mode is not None else None,
    )


def verify_webhook_signature(notice: WebhookNotice, headers) -> bool:
    """Check MercadoPago's ``x-signature`` header when a secret is configured."""
    secret = (current_app.config.get("MERCADOPAGO_WEBHOOK_SECRET") or "").strip()
    if not secret:
        return True
    signature = (headers.get("x-signature") or "").strip()
    request_id = (headers.get("x-request-id") or "").strip()
    parts = {}
    for chunk in signature.split(","):
        key, _, value = chunk.partition("=")
        parts[key.strip()] = value.strip()
    ts = parts.get("ts") or ""
    received = parts.get("v1") or ""
    if not ts or not received:
        return False
    data_id = notice.payment_id.lower() if notice.payment_id.isalnum() else notice.payment_id
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def _webhook_event(notice: WebhookNotice, request_id: str) -> WebhookEvent:
    event = WebhookEvent.query.filter_by(provider=WEBHOOK_PROVIDER, event_id=notice.event_id).first()
    if event is not None:
        return event
    event = WebhookEvent(
        provider=WEBHOOK_PROVIDER,
        event_id=notice.event_id,
        payment_id=notice.payment_id or None,
        action=(notice.action or notice.topic)[:64] or None,
        status="received",
        request_id=(request_id or "")[:64] or None,
    )
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        event = WebhookEvent.query.filter_by(provider=WEBHOOK_PROVIDER, event_id=notice.event_id).first()
    return event


def _finish_event(event: WebhookEvent, status: str, error: str | None = None) -> None:
    event.status = status
    event.error = error
    event.processed_at = datetime.utcnow()
    db.session.add(event)
    db.session.commit()


def process_webhook(notice: WebhookNotice, *, request_id: str = "") -> tuple[dict, int]:
    """Apply a gateway notification. A 5xx answer makes the gateway redeliver."""
    if notice.topic != "payment":
        return {"ok": True, "ignored": True, "reason": "unsupported_topic"}, 200
    if not notice.payment_id:
        return {
            "ok": False,
            "error": "VALIDATION_ERROR",
            "message": "Invalid data",
            "errors": [{"field": "data.id", "message": "is required"}],
        }, 400

    event = _webhook_event(notice, request_id)
    if event.status in WebhookEvent.SETTLED_STATUSES:
        return {"ok": True, "replayed": True}, 200
    event.attempts = int(event.attempts or 0) + 1
    db.session.commit()

    boost = BoostedAd.query.filter_by(payment_id=notice.payment_id).first()
    if boost is None:
        _finish_event(event, "ignored", "unknown payment id")
        current_app.logger.info("boost_webhook_unknown_payment payment_id=%s", notice.payment_id)
        return {"ok": True, "ignored": True, "reason": "unknown_payment"}, 200

    try:
        outcome = sync_boost_payment(boost, source="webhook")
    except _GATEWAY_ERRORS as e:
        db.session.rollback()
        current_app.logger.exception("boost_webhook_processing_failed payment_id=%s", notice.payment_id)
        _finish_event(event, "failed", str(e)[:1000])
        return {"ok": False, "error": "WEBHOOK_PROCESSING_FAILED"}, 500

    _finish_event(event, "ignored" if outcome.ignored else "processed")
    return {
        "ok": True,
        "received": True,
        "boost_id": int(boost.id),
        "payment_status": boost.payment_status,
        "changed": outcome.changed,
    }, 200


def notice_to_dict(notice: WebhookNotice) -> dict:
    return asdict(notice)


def set_boost_active(boost_id: int, active: bool, *, actor_id: int | None = None, now: datetime | None = None) -> BoostedAd:
    """Admin pause/resume of an approved boost inside its window."""
    now = now or datetime.utcnow()
    boost = get_boost(boost_id)
    if boost is None:
        raise BoostError("BOOST_NOT_FOUND", "Anúncio impulsionado não encontrado", 404)
    if boost.payment_status != BoostStatus.APPROVED:
        raise BoostError("BOOST_NOT_APPROVED", "Somente impulsionamentos aprovados podem ser alterados", 409)
    if active and (boost.end_date is None or boost.end_date <= now):
        raise BoostError("BOOST_WINDOW_CLOSED", "O período do impulsionamento já terminou", 409)
    if bool(boost.active) == bool(active):
        return boost

    BoostedAd.query.filter(
        BoostedAd.id == boost.id,
        BoostedAd.payment_status == BoostStatus.APPROVED,
    ).update({BoostedAd.active: bool(active), BoostedAd.updated_at: now}, synchronize_session=False)
    _record_transition(
        boost,
        BoostStatus.APPROVED,
        BoostStatus.APPROVED,
        source="admin",
        reason=f"{'resumed' if active else 'paused'} by admin_id={actor_id}",
    )
    recompute_featured(boost.ad_id, now)
    db.session.commit()
    db.session.refresh(boost)
    return boost


def list_featured(now: datetime | None = None) -> list[BoostedAd]:
    now = now or datetime.utcnow()
    return (
        BoostedAd.query.join(Ad, Ad.id == BoostedAd.ad_id)
        .filter(
            BoostedAd.payment_status == BoostStatus.APPROVED,
            BoostedAd.active.is_(True),
            BoostedAd.end_date > now,
            Ad.active.is_(True),
        )
        .order_by(BoostedAd.start_date.desc(), BoostedAd.id.desc())
        .all()
    )


def list_boosts() -> list[BoostedAd]:
    return BoostedAd.query.order_by(BoostedAd.created_at.desc(), BoostedAd.id.desc()).all()


def expire_finished_boosts(now: datetime | None = None) -> list[int]:
    now = now or datetime.utcnow()
    rows = BoostedAd.query.filter(
        BoostedAd.payment_status == BoostStatus.APPROVED,
        BoostedAd.active.is_(True),
        BoostedAd.end_date <= now,
    ).all()
    finished = []
    for boost in rows:
        BoostedAd.query.filter(BoostedAd.id == boost.id).update(
            {BoostedAd.active: False, BoostedAd.updated_at: now}, synchronize_session=False
        )
        _record_transition(boost, BoostStatus.APPROVED, BoostStatus.APPROVED, source="job", reason="window_ended")
        finished.append(int(boost.id))
    for ad_id in {int(boost.ad_id) for boost in rows}:
        recompute_featured(ad_id, now)
    db.session.commit()
    return finished


def reconcile_pending_boosts(now: datetime | None = None, ttl_hours: int = 24) -> dict:
    """Re-query stale pending boosts; ones still pending past the TTL expire."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=int(ttl_hours))
    rows = (
        BoostedAd.query.filter(BoostedAd.payment_status == BoostStatus.PENDING)
        .order_by(BoostedAd.created_at.asc())
        .all()
    )
    summary = {"checked": 0, "changed": 0, "expired": 0, "errors": 0}
    for boost in rows:
        summary["checked"] += 1
        try:
            outcome = sync_boost_payment(boost, source="job")
        except _GATEWAY_ERRORS as e:
            db.session.rollback()
            summary["errors"] += 1
            current_app.logger.exception("boost_reconcile_failed boost_id=%s", boost.id)
            # The gateway no longer knows the payment; it can never be approved.
            unknown = isinstance(e, PaymentGatewayError) and e.http_status == 404
            if unknown and boost.created_at <= cutoff:
                if apply_status(boost, BoostStatus.EXPIRED, source="job", reason="payment_not_found", now=now):
                    summary["expired"] += 1
            continue
        if outcome.changed:
            summary["changed"] += 1
            continue
        if boost.payment_status == BoostStatus.PENDING and boost.created_at <= cutoff:
            if apply_status(boost, BoostStatus.EXPIRED, source="job", reason=f"pending_ttl_hours={ttl_hours}", now=now):
                summary["expired"] += 1
    return summary
