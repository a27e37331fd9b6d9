from __future__ import annotations

import unittest

from dispatch_fixtures import DispatchTestCase, north_of

from marketrun.extensions import db
from marketrun.models import Order


class OrdersApiTestCase(DispatchTestCase):
    def test_customer_checkout_and_listing(self):
        with self.app.app_context():
            customer = self.seed_user()
            sl = self.seed_shopping_list(customer, self.seed_market(), total=8000.0)
            customer_id, sl_id = customer.id, sl.id

        res = self.client.post(
            "/api/orders",
            json={"shopping_list_id": sl_id, "delivery_address": {"street": "1 Broad St"}, "customer_notes": "Ring twice"},
            headers=self.auth(customer_id),
        )
        self.assertEqual(res.status_code, 201)
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["customer_notes"], "Ring twice")

        res = self.client.get("/api/orders/my", headers=self.auth(customer_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["orders"][0]["id"], order["id"])

        res = self.client.get("/api/orders/my?status=completed", headers=self.auth(customer_id))
        self.assertEqual(res.get_json()["count"], 0)

        res = self.client.get(f"/api/orders/{order['id']}/trail", headers=self.auth(customer_id))
        self.assertEqual([t["action"] for t in res.get_json()["items"]], ["order_created"])

    def test_agents_cannot_check_out(self):
        with self.app.app_context():
            agent_id = self.seed_agent(6.5, 3.3).id
        res = self.client.post("/api/orders", json={"shopping_list_id": 1}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["error"], "FORBIDDEN")

    def test_order_detail_is_private(self):
        with self.app.app_context():
            order_id = self.seed_order(self.seed_user(), self.seed_market()).id
            stranger_id = self.seed_user().id
        res = self.client.get(f"/api/orders/{order_id}", headers=self.auth(stranger_id))
        self.assertEqual(res.status_code, 403)
        res = self.client.get("/api/orders/424242", headers=self.auth(stranger_id))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "NOT_FOUND")

    def test_agent_status_update_and_invalid_transition(self):
        with self.app.app_context():
            agent = self.seed_agent(6.5, 3.3, status="busy", accepting=False)
            order_id = self.seed_order(self.seed_user(), self.seed_market(), status="accepted", agent=agent).id
            agent_id = agent.id

        res = self.client.patch(f"/api/orders/{order_id}/status", json={"status": "in_progress"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["status"], "in_progress")

        res = self.client.patch(f"/api/orders/{order_id}/status", json={"status": "completed"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 400)
        self.assertIn("Invalid status transition", res.get_json()["message"])

        res = self.client.get("/api/agent/orders?status=in_progress", headers=self.auth(agent_id))
        self.assertEqual(res.get_json()["count"], 1)

    def test_notes_follow_caller_role(self):
        with self.app.app_context():
            customer = self.seed_user()
            agent = self.seed_agent(6.5, 3.3, status="busy", accepting=False)
            order_id = self.seed_order(customer, self.seed_market(), status="accepted", agent=agent).id
            customer_id, agent_id = customer.id, agent.id

        res = self.client.post(f"/api/orders/{order_id}/notes", json={"notes": "Tomatoes are out"}, headers=self.auth(agent_id))
        self.assertEqual(res.get_json()["order"]["agent_notes"], "Tomatoes are out")
        res = self.client.post(f"/api/orders/{order_id}/notes", json={"notes": "Get plum instead"}, headers=self.auth(customer_id))
        self.assertEqual(res.get_json()["order"]["customer_notes"], "Get plum instead")
        res = self.client.post(f"/api/orders/{order_id}/notes", json={"notes": ""}, headers=self.auth(customer_id))
        self.assertEqual(res.status_code, 400)

    def test_agent_rejects_through_api(self):
        with self.app.app_context():
            agent = self.seed_agent(6.5, 3.3, status="busy", accepting=False)
            order_id = self.seed_order(self.seed_user(), self.seed_market(None, None), status="accepted", agent=agent).id
            agent_id = agent.id

        res = self.client.post(f"/api/orders/{order_id}/reject", json={"reason": "car broke down"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertFalse(body["cancelled"])
        self.assertIsNone(body["reassigned_agent_id"])
        self.assertEqual(body["rejection_count"], 1)
        self.assertEqual(body["order"]["rejected_agents"][0]["reason"], "car broke down")

        res = self.client.post(f"/api/orders/{order_id}/reject", json={"reason": "again"}, headers=self.auth(agent_id))
        self.assertEqual(res.status_code, 403)


class AdminOrdersApiTestCase(DispatchTestCase):
    def test_admin_ranks_and_assigns(self):
        with self.app.app_context():
            admin_id = self.seed_user("admin").id
            near_id = self.seed_agent(north_of(6.5, 1.0), 3.3).id
            far_id = self.seed_agent(north_of(6.5, 12.0), 3.3).id
            order_id = self.seed_order(self.seed_user(), self.seed_market(6.5, 3.3)).id

        res = self.client.get(f"/api/admin/orders/{order_id}/available-agents", headers=self.auth(admin_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual([a["agent_id"] for a in res.get_json()["agents"]], [near_id, far_id])

        res = self.client.get("/api/admin/orders/pending-assignment", headers=self.auth(admin_id))
        self.assertEqual([o["id"] for o in res.get_json()["orders"]], [order_id])

        res = self.client.post(f"/api/admin/orders/{order_id}/assign", json={"agent_id": far_id}, headers=self.auth(admin_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["agent_id"], far_id)

        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).status, "accepted")

    def test_admin_routes_require_admin(self):
        with self.app.app_context():
            customer_id = self.seed_user().id
            order_id = self.seed_order(self.seed_user(), self.seed_market()).id
        res = self.client.get(f"/api/admin/orders/{order_id}/consistency", headers=self.auth(customer_id))
        self.assertEqual(res.status_code, 403)
        res = self.client.get(f"/api/admin/orders/{order_id}/consistency")
        self.assertEqual(res.status_code, 401)

    def test_consistency_and_reconcile(self):
        with self.app.app_context():
            admin_id = self.seed_user("admin").id
            order = self.seed_order(self.seed_user(), self.seed_market())
            order.shopping_list.status = "draft"
            db.session.commit()
            order_id = order.id

        res = self.client.get(f"/api/admin/orders/{order_id}/consistency", headers=self.auth(admin_id))
        body = res.get_json()
        self.assertFalse(body["is_consistent"])
        self.assertEqual(body["expected_status"], "accepted")

        res = self.client.post(f"/api/admin/orders/{order_id}/reconcile", headers=self.auth(admin_id))
        self.assertTrue(res.get_json()["is_consistent"])

    def test_nearby_agents_found_and_not_found(self):
        with self.app.app_context():
            admin_id = self.seed_user("admin").id
            agent_id = self.seed_agent(north_of(6.5, 8.0), 3.3).id

        res = self.client.get("/api/admin/agents/nearby?lat=6.5&lng=3.3&initial_radius=5&max_radius=20", headers=self.auth(admin_id))
        body = res.get_json()
        self.assertTrue(body["found"])
        self.assertEqual(body["radius_km"], 10.0)
        self.assertEqual([a["id"] for a in body["agents"]], [agent_id])

        res = self.client.get("/api/admin/agents/nearby?lat=6.5&lng=3.3&initial_radius=2&max_radius=5", headers=self.auth(admin_id))
        body = res.get_json()
        self.assertFalse(body["found"])
        self.assertEqual(body["agents"], [])

        res = self.client.get("/api/admin/agents/nearby?lat=6.5&lng=3.3&initial_radius=30&max_radius=5", headers=self.auth(admin_id))
        self.assertEqual(res.status_code, 400)

        res = self.client.get("/api/admin/agents/nearby?lat=x", headers=self.auth(admin_id))
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
