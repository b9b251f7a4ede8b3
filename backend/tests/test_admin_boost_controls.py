from __future__ import annotations

import time
import unittest
from datetime import datetime, timedelta

from feira import create_app
from feira.extensions import db
from feira.integrations.payments.mock_provider import MockPaymentsProvider
from feira.models import Ad, BoostedAd, BoostTransition
from feira.services.user_service import upsert_admin


class AdminBoostControlsTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

        suffix = time.time_ns()
        cls.admin_email = f"admin-{suffix}@feira.test"
        with cls.app.app_context():
            upsert_admin(cls.admin_email, "Adm1nPassw0rd")
        res = cls.client.post("/api/admin/login", json={"email": cls.admin_email, "password": "Adm1nPassw0rd"})
        cls.admin_headers = {"Authorization": f"Bearer {res.get_json()['token']}"}

        res = cls.client.post(
            "/api/auth/register",
            json={"username": f"dono{suffix}", "email": f"dono-{suffix}@feira.test", "password": "Passw0rd!"},
        )
        cls.user_headers = {"Authorization": f"Bearer {res.get_json()['token']}"}

    def _create_promotion(self, price="9.99", days=5) -> int:
        res = self.client.post(
            "/api/admin/boost/promotions",
            headers=self.admin_headers,
            json={"name": "Impulso Básico", "price": price, "duration_days": days, "description": "5 dias"},
        )
        self.assertEqual(res.status_code, 201)
        return int(res.get_json()["promotion"]["id"])

    def _create_boost(self, *, approve: bool) -> tuple[int, int]:
        ad = self.client.post(
            "/api/ads",
            headers=self.user_headers,
            json={
                "title": "Notebook i5",
                "description": "8GB RAM",
                "price": "2100.50",
                "location": "Piracicaba",
                "whatsapp": "19912345678",
            },
        ).get_json()["ad"]
        created = self.client.post(
            "/api/boost/create",
            json={
                "ad_id": ad["id"],
                "promotion_id": self._create_promotion(),
                "payer_name": "Davi",
                "payer_last_name": "Rocha",
                "payer_cpf": "22233344455",
            },
        ).get_json()
        boost_id = int(created["boosted_ad"]["id"])
        if approve:
            MockPaymentsProvider.set_status(created["payment"]["id"], "approved")
            self.client.get(f"/api/boost/status/{boost_id}")
        return int(ad["id"]), boost_id

    def _toggle(self, boost_id: int, active: bool):
        return self.client.patch(
            f"/api/admin/boost/ads/{boost_id}/toggle",
            headers=self.admin_headers,
            json={"active": active},
        )

    def test_admin_routes_require_admin_token(self):
        res = self.client.get("/api/admin/stats")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["message"], "Acesso negado - Admin requerido")

        res = self.client.get("/api/admin/stats", headers=self.user_headers)
        self.assertEqual(res.status_code, 401)

    def test_admin_login_rejects_wrong_password(self):
        res = self.client.post("/api/admin/login", json={"email": self.admin_email, "password": "nope"})
        self.assertEqual(res.status_code, 401)

    def test_pause_and_resume_approved_boost(self):
        ad_id, boost_id = self._create_boost(approve=True)

        paused = self._toggle(boost_id, False)
        self.assertEqual(paused.status_code, 200)
        self.assertFalse(paused.get_json()["boosted_ad"]["active"])
        with self.app.app_context():
            self.assertFalse(db.session.get(Ad, ad_id).featured)

        resumed = self._toggle(boost_id, True)
        self.assertEqual(resumed.status_code, 200)
        self.assertTrue(resumed.get_json()["boosted_ad"]["active"])
        with self.app.app_context():
            self.assertTrue(db.session.get(Ad, ad_id).featured)
            sources = [row.source for row in BoostTransition.query.filter_by(boosted_ad_id=boost_id).all()]
            self.assertEqual(sources.count("admin"), 2)

    def test_pending_boost_cannot_be_activated(self):
        _ad_id, boost_id = self._create_boost(approve=False)
        res = self._toggle(boost_id, True)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "BOOST_NOT_APPROVED")
        with self.app.app_context():
            self.assertFalse(db.session.get(BoostedAd, boost_id).active)

    def test_boost_outside_window_cannot_resume(self):
        _ad_id, boost_id = self._create_boost(approve=True)
        self.assertEqual(self._toggle(boost_id, False).status_code, 200)
        with self.app.app_context():
            past = datetime.utcnow() - timedelta(days=1)
            BoostedAd.query.filter(BoostedAd.id == boost_id).update({BoostedAd.end_date: past}, synchronize_session=False)
            db.session.commit()
        res = self._toggle(boost_id, True)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "BOOST_WINDOW_CLOSED")

    def test_toggle_unknown_boost_is_404(self):
        self.assertEqual(self._toggle(999999, False).status_code, 404)

    def test_toggle_requires_active_flag(self):
        _ad_id, boost_id = self._create_boost(approve=True)
        res = self.client.patch(f"/api/admin/boost/ads/{boost_id}/toggle", headers=self.admin_headers, json={})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["errors"][0]["field"], "active")

    def test_sold_promotion_is_deactivated_not_deleted(self):
        _ad_id, boost_id = self._create_boost(approve=False)
        with self.app.app_context():
            promotion_id = int(db.session.get(BoostedAd, boost_id).promotion_id)

        res = self.client.delete(f"/api/admin/boost/promotions/{promotion_id}", headers=self.admin_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["result"], "deactivated")
        public_ids = [p["id"] for p in self.client.get("/api/boost/promotions").get_json()["items"]]
        self.assertNotIn(promotion_id, public_ids)

        unused = self._create_promotion(price="4.99", days=2)
        res = self.client.delete(f"/api/admin/boost/promotions/{unused}", headers=self.admin_headers)
        self.assertEqual(res.get_json()["result"], "deleted")

    def test_promotion_duration_must_be_positive(self):
        res = self.client.post(
            "/api/admin/boost/promotions",
            headers=self.admin_headers,
            json={"name": "Grátis", "price": "0", "duration_days": 0},
        )
        self.assertEqual(res.status_code, 400)
        self.assertIn("duration_days", [e["field"] for e in res.get_json()["errors"]])

    def test_stats_and_boost_listing(self):
        self._create_boost(approve=True)
        stats = self.client.get("/api/admin/stats", headers=self.admin_headers)
        self.assertEqual(stats.status_code, 200)
        body = stats.get_json()
        self.assertGreaterEqual(body["boosts"]["approved"], 1)
        self.assertGreater(body["boost_revenue"], 0)

        listing = self.client.get("/api/admin/boost/ads", headers=self.admin_headers).get_json()
        self.assertTrue(all("ad" in item for item in listing["items"]))

    def test_admin_settings_round_trip(self):
        res = self.client.put(
            "/api/admin/settings",
            headers=self.admin_headers,
            json={"site_name": "Feira do Interior", "allow_registrations": True},
        )
        self.assertEqual(res.status_code, 200)
        public = self.client.get("/api/settings").get_json()["settings"]
        self.assertEqual(public["site_name"], "Feira do Interior")
        self.assertEqual(public["allow_registrations"], "true")

        empty = self.client.put("/api/admin/settings", headers=self.admin_headers, json={})
        self.assertEqual(empty.status_code, 400)

    def test_admin_hides_and_deletes_ads(self):
        ad_id, _boost_id = self._create_boost(approve=True)
        hidden = self.client.patch(f"/api/admin/ads/{ad_id}/toggle", headers=self.admin_headers, json={"active": False})
        self.assertEqual(hidden.status_code, 200)
        self.assertEqual(self.client.get(f"/api/ads/{ad_id}").status_code, 404)

        deleted = self.client.delete(f"/api/admin/ads/{ad_id}", headers=self.admin_headers)
        self.assertEqual(deleted.status_code, 200)
        with self.app.app_context():
            self.assertIsNone(db.session.get(Ad, ad_id))
            self.assertEqual(BoostedAd.query.filter_by(ad_id=ad_id).count(), 0)

    def test_category_crud(self):
        name = f"Ferramentas {time.time_ns()}"
        created = self.client.post("/api/admin/categories", headers=self.admin_headers, json={"name": name, "icon": "fas fa-wrench"})
        self.assertEqual(created.status_code, 201)
        category_id = created.get_json()["category"]["id"]

        clash = self.client.post("/api/admin/categories", headers=self.admin_headers, json={"name": name, "icon": "fas fa-tag"})
        self.assertEqual(clash.status_code, 400)

        renamed = self.client.put(f"/api/admin/categories/{category_id}", headers=self.admin_headers, json={"icon": "fas fa-hammer"})
        self.assertEqual(renamed.get_json()["category"]["icon"], "fas fa-hammer")

        self.assertEqual(self.client.delete(f"/api/admin/categories/{category_id}", headers=self.admin_headers).status_code, 200)
        names = [c["name"] for c in self.client.get("/api/categories").get_json()["items"]]
        self.assertNotIn(name, names)


if __name__ == "__main__":
    unittest.main()
