from __future__ import annotations

import json
import unittest
import uuid

from dispatch_fixtures import DispatchTestCase

from marketrun.extensions import db
from marketrun.utils.jwt_utils import create_token


class TraceIdTestCase(DispatchTestCase):
    def test_trace_id_is_generated_for_each_request(self):
        first = self.client.get("/api/health")
        second = self.client.get("/api/health")
        self.assertEqual(first.status_code, 200)
        uuid.UUID(first.headers["X-Request-Id"])
        self.assertNotEqual(first.headers["X-Request-Id"], second.headers["X-Request-Id"])

    def test_caller_trace_id_is_echoed_and_stamped_on_errors(self):
        res = self.client.post("/api/orders", json={"shopping_list_id": 1}, headers={"X-Request-Id": "rider-app-77"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.headers["X-Request-Id"], "rider-app-77")
        self.assertEqual(res.get_json()["trace_id"], "rider-app-77")

    def test_webhook_event_keeps_the_trace_id(self):
        from marketrun.models import WebhookEvent

        payload = {"Value": {"Data": {"Id": "mock-untracked", "Status": "completed"}}}
        res = self.client.post("/api/webhooks/alatpay", json=payload, headers={"X-Request-Id": "alat-delivery-9"})
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            event = WebhookEvent.query.one()
            self.assertEqual(event.request_id, "alat-delivery-9")
            self.assertEqual(event.status, "ignored")
            self.assertEqual(event.attempts, 1)
            self.assertEqual(event.provider_status, "completed")


class ErrorEnvelopeTestCase(DispatchTestCase):
    def _assert_envelope(self, res, status: int, error: str | None = None):
        self.assertEqual(res.status_code, status)
        self.assertTrue(res.is_json)
        body = res.get_json()
        self.assertIs(body["ok"], False)
        self.assertEqual(body["status"], status)
        self.assertTrue(body["message"])
        self.assertTrue(body["trace_id"])
        if error is not None:
            self.assertEqual(body["error"], error)
        return body

    def test_unknown_api_route(self):
        self._assert_envelope(self.client.get("/api/markets/nowhere"), 404)

    def test_wrong_method_on_known_route(self):
        self._assert_envelope(self.client.delete("/api/payments/health"), 405)

    def test_missing_token(self):
        self._assert_envelope(self.client.get("/api/orders/my"), 401, "UNAUTHORIZED")

    def test_garbage_token_is_treated_as_anonymous(self):
        res = self.client.get("/api/orders/my", headers={"Authorization": "Bearer not-a-jwt"})
        self._assert_envelope(res, 401, "UNAUTHORIZED")

    def test_blocked_customer_cannot_authenticate(self):
        with self.app.app_context():
            customer = self.seed_user()
            customer.is_blocked = True
            db.session.commit()
            headers = self.auth(customer.id)
        self._assert_envelope(self.client.get("/api/orders/my", headers=headers), 401, "UNAUTHORIZED")

    def test_role_claim_does_not_grant_admin(self):
        with self.app.app_context():
            customer = self.seed_user()
            token = create_token(customer.id, role="admin")
        res = self.client.get("/api/admin/orders/pending-assignment", headers={"Authorization": f"Bearer {token}"})
        self._assert_envelope(res, 403, "FORBIDDEN")


class HealthTestCase(DispatchTestCase):
    def test_health_reports_database_and_service(self):
        body = self.client.get("/api/health").get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["service"], "marketrun-backend")
        self.assertEqual(body["db"], "ok")
        self.assertIn("alembic_head", body)
        self.assertEqual(body["push"]["provider"], "mock")

    def test_health_checks_are_not_request_logged(self):
        with self.assertLogs(self.app.logger, level="INFO") as logs:
            self.client.get("/api/health")
            self.client.get("/api/payments/health")
        lines = [json.loads(r.getMessage()) for r in logs.records if r.getMessage().startswith("{")]
        self.assertEqual([line["path"] for line in lines], ["/api/payments/health"])


if __name__ == "__main__":
    unittest.main()
