from __future__ import annotations

import unittest
from unittest.mock import patch

from dispatch_fixtures import DispatchTestCase, north_of

from marketrun.extensions import db
from marketrun.integrations.chat.local_provider import LocalChatProvider
from marketrun.models import ChatChannel, Order, OrderTrail, ShoppingList
from marketrun.services.payment_confirmation_service import (
    confirm_payment,
    reconcile_status,
    validate_status_consistency,
)
from marketrun.utils.errors import BadRequestError, NotFoundError


class ConfirmPaymentTestCase(DispatchTestCase):
    def test_payment_assigns_agent_and_opens_chat(self):
        with self.app.app_context():
            market = self.seed_market(6.5, 3.3)
            agent = self.seed_agent(north_of(6.5, 1.0), 3.3)
            order = self.seed_order(self.seed_user(), market, payment_status="pending")

            result = confirm_payment(order.id, "mock-abc123", "webhook")

            self.assertTrue(result["success"])
            self.assertEqual(result["assigned_agent_id"], agent.id)
            order = db.session.get(Order, order.id)
            self.assertEqual(order.payment_status, "completed")
            self.assertEqual(order.payment_id, "mock-abc123")
            self.assertIsNotNone(order.payment_processed_at)
            self.assertEqual(order.status, "accepted")
            sl = db.session.get(ShoppingList, order.shopping_list_id)
            self.assertEqual(sl.payment_status, "completed")
            self.assertEqual(sl.status, "accepted")
            self.assertEqual(sl.agent_id, agent.id)
            channel = ChatChannel.query.filter_by(order_id=order.id).one()
            self.assertTrue(channel.is_active)
            trail = OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").one()
            self.assertIn("mock-abc123", trail.metadata_json)

    def test_repeat_confirmation_changes_nothing(self):
        with self.app.app_context():
            market = self.seed_market(6.5, 3.3)
            agent = self.seed_agent(north_of(6.5, 1.0), 3.3)
            order = self.seed_order(self.seed_user(), market, payment_status="pending")

            first = confirm_payment(order.id, "mock-once", "webhook")
            second = confirm_payment(order.id, "mock-once", "api_sync")

            self.assertEqual(first["assigned_agent_id"], agent.id)
            self.assertEqual(second, {"success": True, "assigned_agent_id": agent.id})
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").count(), 1)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="agent_assigned").count(), 1)

    def test_payment_without_agents_still_confirms(self):
        with self.app.app_context():
            order = self.seed_order(self.seed_user(), self.seed_market(6.5, 3.3), payment_status="pending")

            result = confirm_payment(order.id, "mock-lonely", "api_sync")

            self.assertIsNone(result["assigned_agent_id"])
            order = db.session.get(Order, order.id)
            self.assertEqual(order.payment_status, "completed")
            self.assertEqual(order.status, "pending")
            self.assertEqual(db.session.get(ShoppingList, order.shopping_list_id).status, "accepted")

    def test_assignment_error_leaves_payment_confirmed(self):
        with self.app.app_context():
            market = self.seed_market(6.5, 3.3)
            self.seed_agent(north_of(6.5, 1.0), 3.3)
            order = self.seed_order(self.seed_user(), market, payment_status="pending")

            with patch(
                "marketrun.services.payment_confirmation_service.auto_assign_agent",
                side_effect=RuntimeError("scoring unavailable"),
            ):
                result = confirm_payment(order.id, "mock-noassign", "webhook")

            self.assertEqual(result, {"success": True, "assigned_agent_id": None})
            db.session.remove()
            order = db.session.get(Order, order.id)
            self.assertEqual(order.payment_status, "completed")
            self.assertEqual(order.status, "pending")
            self.assertIsNone(order.agent_id)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").count(), 1)

    def test_chat_provider_error_leaves_payment_confirmed(self):
        with self.app.app_context():
            market = self.seed_market(6.5, 3.3)
            agent = self.seed_agent(north_of(6.5, 1.0), 3.3)
            order = self.seed_order(self.seed_user(), market, payment_status="pending")

            with patch(
                "marketrun.services.payment_confirmation_service.build_chat_provider",
                side_effect=RuntimeError("chat backend down"),
            ):
                result = confirm_payment(order.id, "mock-nochat", "webhook")

            self.assertTrue(result["success"])
            self.assertEqual(result["assigned_agent_id"], agent.id)
            db.session.remove()
            order = db.session.get(Order, order.id)
            self.assertEqual(order.payment_status, "completed")
            self.assertEqual(order.agent_id, agent.id)
            trail = OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").one()
            self.assertIn('"chat_activated":false', trail.metadata_json)

    def test_failed_chat_write_does_not_roll_back_payment(self):
        class DuplicateChannelProvider(LocalChatProvider):
            def activate_chat(self, *, order_id, activated_by):
                db.session.add(ChatChannel(order_id=int(order_id), is_active=True, activated_by=activated_by))
                db.session.flush()

        with self.app.app_context():
            order = self.seed_order(self.seed_user(), self.seed_market(6.5, 3.3), payment_status="pending")
            db.session.add(ChatChannel(order_id=order.id, is_active=False))
            db.session.commit()

            with patch(
                "marketrun.services.payment_confirmation_service.build_chat_provider",
                return_value=DuplicateChannelProvider(),
            ):
                result = confirm_payment(order.id, "mock-chat", "webhook")

            self.assertTrue(result["success"])
            db.session.remove()
            order = db.session.get(Order, order.id)
            self.assertEqual(order.payment_status, "completed")
            self.assertEqual(order.payment_id, "mock-chat")
            channel = ChatChannel.query.filter_by(order_id=order.id).one()
            self.assertFalse(channel.is_active)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").count(), 1)

    def test_unknown_source_and_missing_reference_are_rejected(self):
        with self.app.app_context():
            order = self.seed_order(self.seed_user(), self.seed_market(), payment_status="pending")
            with self.assertRaises(BadRequestError):
                confirm_payment(order.id, "mock-x", "carrier_pigeon")
            with self.assertRaises(BadRequestError):
                confirm_payment(order.id, "  ", "webhook")
            with self.assertRaises(NotFoundError):
                confirm_payment(999999, "mock-x", "webhook")
            self.assertEqual(db.session.get(Order, order.id).payment_status, "pending")

    def test_cancelled_order_cannot_be_paid(self):
        with self.app.app_context():
            order = self.seed_order(self.seed_user(), self.seed_market(), status="cancelled", payment_status="pending")
            with self.assertRaises(BadRequestError):
                confirm_payment(order.id, "mock-late", "webhook")


class StatusConsistencyTestCase(DispatchTestCase):
    def test_drifted_list_is_reported_and_reconciled(self):
        with self.app.app_context():
            admin = self.seed_user("admin")
            agent = self.seed_agent(6.5, 3.3, status="busy", accepting=False)
            order = self.seed_order(self.seed_user(), self.seed_market(), status="shopping", agent=agent)
            sl = db.session.get(ShoppingList, order.shopping_list_id)
            sl.status = "draft"
            sl.payment_status = None
            sl.agent_id = None
            db.session.commit()

            report = validate_status_consistency(order.id)
            self.assertFalse(report["is_consistent"])
            self.assertEqual(report["expected_status"], "processing")
            self.assertEqual(report["actual_status"], "draft")
            self.assertEqual(len(report["issues"]), 3)
            self.assertEqual(len(report["recommendations"]), 3)

            fixed = reconcile_status(order.id, performed_by=admin.id)

            self.assertTrue(fixed["is_consistent"])
            sl = db.session.get(ShoppingList, order.shopping_list_id)
            self.assertEqual(sl.status, "processing")
            self.assertEqual(sl.payment_status, "completed")
            self.assertEqual(sl.agent_id, agent.id)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="status_reconciled").count(), 1)

    def test_consistent_order_is_left_alone(self):
        with self.app.app_context():
            order = self.seed_order(self.seed_user(), self.seed_market())
            self.assertTrue(validate_status_consistency(order.id)["is_consistent"])
            reconcile_status(order.id)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id).count(), 0)


if __name__ == "__main__":
    unittest.main()
