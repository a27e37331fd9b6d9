from __future__ import annotations

import unittest

from dispatch_fixtures import DispatchTestCase

from marketrun.extensions import db
from marketrun.models import AgentSettings


class AgentStatusApiTestCase(DispatchTestCase):
    def test_unverified_agent_cannot_go_online(self):
        with self.app.app_context():
            agent_id = self.seed_agent(status="offline", accepting=False, kyc=False).id

        res = self.client.post("/api/agent/status", json={"status": "available"}, headers=self.auth(agent_id))

        self.assertEqual(res.status_code, 403)
        body = res.get_json()
        self.assertEqual(body["error"], "KYC_REQUIRED")
        self.assertFalse(body["details"]["kyc_verified"])
        self.assertIn("Wait for KYC approval", body["details"]["required_actions"])
        with self.app.app_context():
            self.assertEqual(AgentSettings.query.filter_by(agent_id=agent_id).one().current_status, "offline")

    def test_verified_agent_goes_online_and_offline(self):
        with self.app.app_context():
            agent_id = self.seed_agent(status="offline", accepting=False).id

        res = self.client.post("/api/agent/status", json={"status": "available"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 200)
        settings = res.get_json()["settings"]
        self.assertEqual(settings["current_status"], "available")
        self.assertTrue(settings["is_accepting_orders"])

        res = self.client.post("/api/agent/status", json={"status": "away"}, headers=self.auth(agent_id))
        self.assertEqual(res.get_json()["settings"]["current_status"], "away")
        self.assertFalse(res.get_json()["settings"]["is_accepting_orders"])

        res = self.client.get("/api/agent/status", headers=self.auth(agent_id))
        body = res.get_json()
        self.assertEqual(body["status"], "away")
        self.assertTrue(body["kyc_verified"])

    def test_status_read_repairs_stale_kyc_flag(self):
        with self.app.app_context():
            verified_id = self.seed_agent(status="offline", accepting=False).id
            revoked_id = self.seed_agent(status="offline", accepting=False, kyc=False).id
            AgentSettings.query.filter_by(agent_id=verified_id).one().kyc_complete = False
            AgentSettings.query.filter_by(agent_id=revoked_id).one().kyc_complete = True
            db.session.commit()

        body = self.client.get("/api/agent/status", headers=self.auth(verified_id)).get_json()
        self.assertTrue(body["kyc_complete"])
        body = self.client.get("/api/agent/status", headers=self.auth(revoked_id)).get_json()
        self.assertFalse(body["kyc_complete"])
        self.assertFalse(body["can_go_online"])

        with self.app.app_context():
            verified = AgentSettings.query.filter_by(agent_id=verified_id).one()
            self.assertTrue(verified.kyc_complete)
            self.assertIsNotNone(verified.kyc_completed_at)
            revoked = AgentSettings.query.filter_by(agent_id=revoked_id).one()
            self.assertFalse(revoked.kyc_complete)
            self.assertIsNone(revoked.kyc_completed_at)

    def test_unknown_status_is_rejected(self):
        with self.app.app_context():
            agent_id = self.seed_agent().id
        res = self.client.post("/api/agent/status", json={"status": "sleeping"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)

    def test_accepting_orders_needs_online_status(self):
        with self.app.app_context():
            agent_id = self.seed_agent(status="away", accepting=False).id
        res = self.client.post("/api/agent/accepting-orders", json={"is_accepting_orders": True}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/agent/accepting-orders", json={}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)

    def test_customers_are_turned_away(self):
        with self.app.app_context():
            customer_id = self.seed_user().id
        res = self.client.get("/api/agent/status", headers=self.auth(customer_id))
        self.assertEqual(res.status_code, 403)
        res = self.client.get("/api/agent/status")
        self.assertEqual(res.status_code, 401)

    def test_stats_count_orders_by_status(self):
        with self.app.app_context():
            agent = self.seed_agent(6.5, 3.3, status="busy", accepting=False)
            market = self.seed_market()
            self.seed_order(self.seed_user(), market, status="completed", agent=agent)
            self.seed_order(self.seed_user(), market, status="accepted", agent=agent)
            agent_id = agent.id
        body = self.client.get("/api/agent/stats", headers=self.auth(agent_id)).get_json()
        self.assertEqual(body["total_orders"], 2)
        self.assertEqual(body["completed_orders"], 1)
        self.assertEqual(body["pending_orders"], 1)
        self.assertEqual(body["unique_markets"], 1)


class AgentLocationsApiTestCase(DispatchTestCase):
    def test_location_crud(self):
        with self.app.app_context():
            agent_id = self.seed_agent().id
        headers = self.auth(agent_id)

        res = self.client.post("/api/agent/locations", json={"latitude": 6.45, "longitude": 3.39, "name": "Lekki"}, headers=headers)
        self.assertEqual(res.status_code, 201)
        location = res.get_json()["location"]
        self.assertEqual(location["radius"], 5.0)
        self.assertEqual(location["location_type"], "service_area")

        res = self.client.patch(f"/api/agent/locations/{location['id']}", json={"radius": 12}, headers=headers)
        self.assertEqual(res.get_json()["location"]["radius"], 12.0)

        res = self.client.get("/api/agent/locations", headers=headers)
        self.assertEqual(len(res.get_json()["items"]), 1)

        res = self.client.delete(f"/api/agent/locations/{location['id']}", headers=headers)
        self.assertEqual(res.status_code, 200)
        res = self.client.delete(f"/api/agent/locations/{location['id']}", headers=headers)
        self.assertEqual(res.status_code, 404)

    def test_bad_coordinates_are_rejected(self):
        with self.app.app_context():
            agent_id = self.seed_agent().id
        headers = self.auth(agent_id)
        res = self.client.post("/api/agent/locations", json={"latitude": 123, "longitude": 3.39}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/agent/locations", json={"longitude": 3.39}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/agent/locations", json={"latitude": 6.4, "longitude": 3.3, "location_type": "moon"}, headers=headers)
        self.assertEqual(res.status_code, 400)

    def test_current_location_is_upserted(self):
        with self.app.app_context():
            agent_id = self.seed_agent().id
        headers = self.auth(agent_id)
        first = self.client.post("/api/agent/current-location", json={"latitude": 6.5, "longitude": 3.3}, headers=headers).get_json()
        second = self.client.post("/api/agent/current-location", json={"latitude": 6.6, "longitude": 3.4}, headers=headers).get_json()
        self.assertEqual(first["location"]["id"], second["location"]["id"])
        self.assertEqual(second["location"]["latitude"], 6.6)
        status = self.client.get("/api/agent/status", headers=headers).get_json()
        self.assertEqual(status["location"]["id"], second["location"]["id"])


class AgentDocumentsApiTestCase(DispatchTestCase):
    def test_documents_are_stored_in_metadata(self):
        with self.app.app_context():
            agent_id = self.seed_agent(kyc=False).id
        headers = self.auth(agent_id)

        res = self.client.post(
            "/api/agent/documents",
            json={"nin": "12345678901", "images": ["front.png"], "identity_document": {"type": "passport"}},
            headers=headers,
        )
        self.assertEqual(res.status_code, 200)
        meta = res.get_json()["metadata"]
        self.assertEqual(meta["nin"], "12345678901")
        self.assertEqual(meta["images"], ["front.png"])
        self.assertEqual(meta["identity_document"], {"type": "passport"})

        res = self.client.post("/api/agent/documents", json={"images": ["back.png"]}, headers=headers)
        self.assertEqual(res.get_json()["metadata"]["images"], ["front.png", "back.png"])

        with self.app.app_context():
            row = AgentSettings.query.filter_by(agent_id=agent_id).one()
            self.assertEqual(row.nin, "12345678901")

    def test_invalid_nin_is_rejected(self):
        with self.app.app_context():
            agent_id = self.seed_agent().id
        res = self.client.post("/api/agent/documents", json={"nin": "12ab"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/agent/documents", json={}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
