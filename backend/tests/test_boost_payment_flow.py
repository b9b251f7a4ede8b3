from __future__ import annotations

import time
import unittest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from feira import create_app
from feira.extensions import db
from feira.integrations.payments.mock_provider import MockPaymentsProvider
from feira.models import Ad, BoostedAd, BoostPromotion, BoostTransition, Notification
from feira.services.boost_service import apply_status


class BoostPaymentFlowTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    def _register(self) -> tuple[str, int]:
        suffix = time.time_ns()
        res = self.client.post(
            "/api/auth/register",
            json={
                "username": f"vendedor{suffix}",
                "email": f"vendedor-{suffix}@feira.test",
                "password": "Passw0rd!",
                "first_name": "Ana",
            },
        )
        self.assertEqual(res.status_code, 201)
        body = res.get_json()
        return body["token"], int(body["user"]["id"])

    def _create_ad(self, token: str) -> int:
        res = self.client.post(
            "/api/ads",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "title": "Bicicleta aro 29",
                "description": "Pouco usada, revisada.",
                "price": "850.00",
                "location": "Campinas",
                "whatsapp": "(19) 99876-5432",
            },
        )
        self.assertEqual(res.status_code, 201)
        return int(res.get_json()["ad"]["id"])

    def _create_promotion(self, price: str = "9.99", days: int = 5) -> int:
        with self.app.app_context():
            promo = BoostPromotion(name="Impulso Teste", price=Decimal(price), duration_days=days, active=True)
            db.session.add(promo)
            db.session.commit()
            return int(promo.id)

    def _create_boost(self, ad_id: int, promotion_id: int) -> dict:
        res = self.client.post(
            "/api/boost/create",
            json={
                "ad_id": ad_id,
                "promotion_id": promotion_id,
                "payer_name": "Ana",
                "payer_last_name": "Souza",
                "payer_cpf": "123.456.789-09",
                "payer_email": "ana@feira.test",
                "payer_phone": "(19) 99876-5432",
            },
        )
        self.assertEqual(res.status_code, 201)
        return res.get_json()

    def _webhook(self, payment_id: str, event_id: str | None = None):
        return self.client.post(
            "/api/boost/webhook",
            json={
                "id": event_id or f"evt-{time.time_ns()}",
                "type": "payment",
                "action": "payment.updated",
                "data": {"id": payment_id},
            },
        )

    def _pending_boost(self) -> tuple[int, dict]:
        token, _user_id = self._register()
        ad_id = self._create_ad(token)
        promotion_id = self._create_promotion()
        return ad_id, self._create_boost(ad_id, promotion_id)

    def test_new_boost_starts_pending_without_dates(self):
        _ad_id, created = self._pending_boost()
        boosted = created["boosted_ad"]
        self.assertEqual(boosted["payment_status"], "pending")
        self.assertIsNone(boosted["start_date"])
        self.assertIsNone(boosted["end_date"])
        self.assertFalse(boosted["active"])
        self.assertEqual(boosted["amount"], 9.99)
        self.assertTrue(created["payment"]["id"])
        self.assertTrue(created["payment"]["qr_code"])
        self.assertTrue(created["payment"]["qr_code_base64"])

        with self.app.app_context():
            rows = BoostTransition.query.filter_by(boosted_ad_id=boosted["id"]).all()
            self.assertEqual([(r.from_status, r.to_status) for r in rows], [("", "pending")])

    def test_approval_webhook_activates_boost_for_promotion_window(self):
        ad_id, created = self._pending_boost()
        payment_id = created["payment"]["id"]
        boost_id = created["boosted_ad"]["id"]

        MockPaymentsProvider.set_status(payment_id, "approved")
        res = self._webhook(payment_id)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["payment_status"], "approved")
        self.assertTrue(body["changed"])

        with self.app.app_context():
            boost = db.session.get(BoostedAd, boost_id)
            self.assertTrue(boost.active)
            self.assertEqual(boost.end_date - boost.start_date, timedelta(days=5))
            self.assertTrue(db.session.get(Ad, ad_id).featured)
            owner_notes = Notification.query.filter_by(ad_id=ad_id, title="Impulsionamento ativado!").count()
            self.assertEqual(owner_notes, 1)

        featured = self.client.get("/api/featured").get_json()
        self.assertIn(ad_id, [item["ad_id"] for item in featured["items"]])
        featured_ads = self.client.get("/api/ads?featured=true").get_json()
        self.assertIn(ad_id, [item["id"] for item in featured_ads["items"]])

    def test_second_approval_is_a_no_op(self):
        _ad_id, created = self._pending_boost()
        payment_id = created["payment"]["id"]
        boost_id = created["boosted_ad"]["id"]
        MockPaymentsProvider.set_status(payment_id, "approved")
        self.assertEqual(self._webhook(payment_id).status_code, 200)

        with self.app.app_context():
            first = db.session.get(BoostedAd, boost_id)
            dates = (first.start_date, first.end_date)
            transitions = BoostTransition.query.filter_by(boosted_ad_id=boost_id).count()

        again = self._webhook(payment_id)
        self.assertEqual(again.status_code, 200)
        self.assertFalse(again.get_json()["changed"])

        polled = self.client.get(f"/api/boost/status/{boost_id}")
        self.assertEqual(polled.status_code, 200)
        self.assertEqual(polled.get_json()["boosted_ad"]["payment_status"], "approved")

        with self.app.app_context():
            second = db.session.get(BoostedAd, boost_id)
            self.assertEqual((second.start_date, second.end_date), dates)
            self.assertEqual(BoostTransition.query.filter_by(boosted_ad_id=boost_id).count(), transitions)

    def test_replayed_event_is_acknowledged_once(self):
        _ad_id, created = self._pending_boost()
        payment_id = created["payment"]["id"]
        MockPaymentsProvider.set_status(payment_id, "approved")
        event_id = f"evt-replay-{time.time_ns()}"

        first = self._webhook(payment_id, event_id=event_id)
        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.get_json()["changed"])
        second = self._webhook(payment_id, event_id=event_id)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.get_json()["replayed"])

    def test_rejected_payment_is_terminal(self):
        ad_id, created = self._pending_boost()
        payment_id = created["payment"]["id"]
        boost_id = created["boosted_ad"]["id"]

        MockPaymentsProvider.set_status(payment_id, "rejected", "cc_rejected_other_reason")
        self.assertEqual(self._webhook(payment_id).get_json()["payment_status"], "rejected")

        MockPaymentsProvider.set_status(payment_id, "approved")
        res = self._webhook(payment_id)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payment_status"], "rejected")

        with self.app.app_context():
            boost = db.session.get(BoostedAd, boost_id)
            self.assertFalse(boost.active)
            self.assertIsNone(boost.start_date)
            self.assertFalse(db.session.get(Ad, ad_id).featured)

    def test_poll_applies_gateway_status(self):
        _ad_id, created = self._pending_boost()
        boost_id = created["boosted_ad"]["id"]

        still_pending = self.client.get(f"/api/boost/status/{boost_id}").get_json()
        self.assertEqual(still_pending["boosted_ad"]["payment_status"], "pending")
        self.assertEqual(still_pending["gateway_status"], "pending")

        MockPaymentsProvider.set_status(created["payment"]["id"], "approved")
        approved = self.client.get(f"/api/boost/status/{boost_id}").get_json()
        self.assertEqual(approved["boosted_ad"]["payment_status"], "approved")
        self.assertTrue(approved["boosted_ad"]["active"])

    def test_refunded_payment_maps_to_cancelled(self):
        _ad_id, created = self._pending_boost()
        MockPaymentsProvider.set_status(created["payment"]["id"], "refunded")
        res = self._webhook(created["payment"]["id"])
        self.assertEqual(res.get_json()["payment_status"], "cancelled")

    def test_unknown_boost_status_is_404(self):
        res = self.client.get("/api/boost/status/987654")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "BOOST_NOT_FOUND")

    def test_create_boost_rejects_invalid_payer(self):
        token, _user_id = self._register()
        ad_id = self._create_ad(token)
        res = self.client.post(
            "/api/boost/create",
            json={"ad_id": ad_id, "promotion_id": self._create_promotion(), "payer_cpf": "123"},
        )
        self.assertEqual(res.status_code, 400)
        body = res.get_json()
        self.assertEqual(body["error"], "VALIDATION_ERROR")
        fields = {item["field"] for item in body["errors"]}
        self.assertIn("payer_name", fields)
        self.assertIn("payer_cpf", fields)

    def test_create_boost_for_unknown_promotion_is_404(self):
        token, _user_id = self._register()
        ad_id = self._create_ad(token)
        res = self.client.post(
            "/api/boost/create",
            json={
                "ad_id": ad_id,
                "promotion_id": 424242,
                "payer_name": "Ana",
                "payer_last_name": "Souza",
                "payer_cpf": "12345678909",
            },
        )
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "PROMOTION_NOT_FOUND")

    def test_webhook_without_payment_id_is_rejected(self):
        res = self.client.post("/api/boost/webhook", json={"type": "payment", "data": {}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "VALIDATION_ERROR")

    def test_webhook_other_topics_are_ignored(self):
        res = self.client.post("/api/boost/webhook", json={"type": "merchant_order", "data": {"id": "1"}})
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["ignored"])

    def test_webhook_for_unknown_payment_is_ignored(self):
        res = self._webhook("555000111")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["reason"], "unknown_payment")

    def test_ipn_query_form_is_accepted(self):
        _ad_id, created = self._pending_boost()
        payment_id = created["payment"]["id"]
        MockPaymentsProvider.set_status(payment_id, "approved")
        res = self.client.post(f"/api/boost/webhook?topic=payment&id={payment_id}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payment_status"], "approved")

    def test_stale_approval_loses_to_concurrent_transition(self):
        ad_id, created = self._pending_boost()
        boost_id = created["boosted_ad"]["id"]

        with self.app.app_context():
            session = db.session()
            session.expire_on_commit = False
            try:
                boost = session.get(BoostedAd, boost_id)
                self.assertEqual(boost.payment_status, "pending")
                # Another worker settles the payment after this one loaded the row.
                BoostedAd.query.filter(BoostedAd.id == boost_id).update(
                    {BoostedAd.payment_status: "rejected"}, synchronize_session=False
                )
                session.commit()
                self.assertEqual(boost.payment_status, "pending")

                changed = apply_status(boost, "approved", source="poll")
            finally:
                session.expire_on_commit = True

            self.assertFalse(changed)
            self.assertEqual(boost.payment_status, "rejected")
            stored = db.session.get(BoostedAd, boost_id)
            self.assertIsNone(stored.start_date)
            self.assertIsNone(stored.end_date)
            self.assertFalse(stored.active)
            rows = BoostTransition.query.filter_by(boosted_ad_id=boost_id).all()
            self.assertEqual([r.to_status for r in rows], ["pending"])
            self.assertFalse(db.session.get(Ad, ad_id).featured)
            self.assertEqual(Notification.query.filter_by(ad_id=ad_id, title="Impulsionamento ativado!").count(), 0)

    def test_active_boosts_are_always_approved(self):
        _ad_id, created = self._pending_boost()
        boost_id = created["boosted_ad"]["id"]

        with self.app.app_context():
            boost = db.session.get(BoostedAd, boost_id)
            boost.active = True
            with self.assertRaises(IntegrityError):
                db.session.commit()
            db.session.rollback()

            for row in BoostedAd.query.all():
                if row.active:
                    self.assertEqual(row.payment_status, "approved")


if __name__ == "__main__":
    unittest.main()
