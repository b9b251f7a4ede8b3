from __future__ import annotations

import time
import unittest
from datetime import datetime, timedelta
from decimal import Decimal

from feira import create_app
from feira.extensions import db
from feira.integrations.payments.mock_provider import MockPaymentsProvider
from feira.jobs.maintenance_runner import run_marketplace_maintenance
from feira.models import Ad, BoostedAd, BoostPromotion, JobRun, Notification
from feira.services.boost_service import list_featured


class MarketplaceMaintenanceTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app()
        cls.app.config.update(TESTING=True, BOOST_PENDING_TTL_HOURS=24)
        cls.client = cls.app.test_client()

        suffix = time.time_ns()
        res = cls.client.post(
            "/api/auth/register",
            json={"username": f"job{suffix}", "email": f"job-{suffix}@feira.test", "password": "Passw0rd!"},
        )
        cls.token = res.get_json()["token"]
        with cls.app.app_context():
            promo = BoostPromotion(name="Impulso Premium", price=Decimal("19.99"), duration_days=10)
            db.session.add(promo)
            db.session.commit()
            cls.promotion_id = int(promo.id)

    def _create_ad(self, title: str = "Sofá retrátil") -> int:
        res = self.client.post(
            "/api/ads",
            headers={"Authorization": f"Bearer {self.token}"},
            json={
                "title": title,
                "description": "Três lugares",
                "price": "700",
                "location": "Jundiaí",
                "whatsapp": "11987654321",
            },
        )
        self.assertEqual(res.status_code, 201)
        return int(res.get_json()["ad"]["id"])

    def _create_boost(self, ad_id: int) -> dict:
        res = self.client.post(
            "/api/boost/create",
            json={
                "ad_id": ad_id,
                "promotion_id": self.promotion_id,
                "payer_name": "Carla",
                "payer_last_name": "Dias",
                "payer_cpf": "11122233344",
            },
        )
        self.assertEqual(res.status_code, 201)
        return res.get_json()

    def _backdate_boost(self, boost_id: int, hours: int) -> None:
        with self.app.app_context():
            BoostedAd.query.filter(BoostedAd.id == boost_id).update(
                {BoostedAd.created_at: datetime.utcnow() - timedelta(hours=hours)}, synchronize_session=False
            )
            db.session.commit()

    def test_stale_pending_boost_expires(self):
        created = self._create_boost(self._create_ad())
        boost_id = created["boosted_ad"]["id"]
        self._backdate_boost(boost_id, hours=30)

        with self.app.app_context():
            summary = run_marketplace_maintenance()
            self.assertTrue(summary["ok"])
            self.assertGreaterEqual(summary["pending_boosts"]["expired"], 1)
            boost = db.session.get(BoostedAd, boost_id)
            self.assertEqual(boost.payment_status, "expired")
            self.assertFalse(boost.active)
            self.assertIsNone(boost.start_date)
            self.assertTrue(JobRun.query.filter_by(job_name="marketplace_maintenance", ok=True).count() >= 1)

        # A late approval after expiry is not applied.
        MockPaymentsProvider.set_status(created["payment"]["id"], "approved")
        res = self.client.post("/api/boost/webhook", json={"type": "payment", "data": {"id": created["payment"]["id"]}})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payment_status"], "expired")

    def test_stale_pending_boost_unknown_to_gateway_expires(self):
        stale = self._create_boost(self._create_ad())
        fresh = self._create_boost(self._create_ad())
        self._backdate_boost(stale["boosted_ad"]["id"], hours=30)
        MockPaymentsProvider._payments.pop(stale["payment"]["id"])
        MockPaymentsProvider._payments.pop(fresh["payment"]["id"])

        with self.app.app_context():
            summary = run_marketplace_maintenance()
            self.assertGreaterEqual(summary["pending_boosts"]["errors"], 2)
            self.assertEqual(db.session.get(BoostedAd, stale["boosted_ad"]["id"]).payment_status, "expired")
            self.assertEqual(db.session.get(BoostedAd, fresh["boosted_ad"]["id"]).payment_status, "pending")

    def test_fresh_pending_boost_stays_pending(self):
        created = self._create_boost(self._create_ad())
        with self.app.app_context():
            run_marketplace_maintenance()
            boost = db.session.get(BoostedAd, created["boosted_ad"]["id"])
            self.assertEqual(boost.payment_status, "pending")

    def test_reconcile_applies_missed_approval(self):
        created = self._create_boost(self._create_ad())
        boost_id = created["boosted_ad"]["id"]
        self._backdate_boost(boost_id, hours=30)
        MockPaymentsProvider.set_status(created["payment"]["id"], "approved")

        with self.app.app_context():
            run_marketplace_maintenance()
            boost = db.session.get(BoostedAd, boost_id)
            self.assertEqual(boost.payment_status, "approved")
            self.assertTrue(boost.active)

    def test_finished_boost_is_deactivated(self):
        ad_id = self._create_ad()
        created = self._create_boost(ad_id)
        boost_id = created["boosted_ad"]["id"]
        MockPaymentsProvider.set_status(created["payment"]["id"], "approved")
        self.client.get(f"/api/boost/status/{boost_id}")

        with self.app.app_context():
            boost = db.session.get(BoostedAd, boost_id)
            after_window = boost.end_date + timedelta(hours=1)
            run_marketplace_maintenance(now=after_window)

            boost = db.session.get(BoostedAd, boost_id)
            self.assertEqual(boost.payment_status, "approved")
            self.assertFalse(boost.active)
            self.assertFalse(db.session.get(Ad, ad_id).featured)
            self.assertNotIn(boost_id, [row.id for row in list_featured()])

    def test_expired_ads_are_hidden_and_owner_notified(self):
        ad_id = self._create_ad(title="Mesa de jantar")
        with self.app.app_context():
            Ad.query.filter(Ad.id == ad_id).update(
                {Ad.expires_at: datetime.utcnow() - timedelta(minutes=5)}, synchronize_session=False
            )
            db.session.commit()
            summary = run_marketplace_maintenance()
            self.assertGreaterEqual(summary["expired_ads"], 1)
            self.assertFalse(db.session.get(Ad, ad_id).active)
            self.assertEqual(Notification.query.filter_by(ad_id=ad_id, title="Anúncio expirado").count(), 1)

        res = self.client.get(f"/api/ads/{ad_id}")
        self.assertEqual(res.status_code, 404)


if __name__ == "__main__":
    unittest.main()
