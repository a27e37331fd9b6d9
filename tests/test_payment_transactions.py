from __future__ import annotations

import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from dispatch_fixtures import DispatchTestCase

from marketrun.extensions import db
from marketrun.models import Order, OrderTrail, PaymentTransaction, WebhookEvent
from marketrun.services.payment_transaction_service import (
    expire_stale_transactions,
    initialize_payment,
    process_alatpay_webhook,
    sync_transaction,
)
from marketrun.utils.errors import BadRequestError, ForbiddenError


def _webhook(txn_id: str, status: str = "completed", amount: float = 10500.0) -> dict:
    return {"Value": {"Data": {"Id": txn_id, "Status": status, "Amount": amount}}}


class InitializePaymentTestCase(DispatchTestCase):
    def test_same_key_returns_same_transaction(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")

            first = initialize_payment(order.id, customer.id, idempotency_key="key-1")
            second = initialize_payment(order.id, customer.id, idempotency_key="key-1")

            self.assertEqual(first.id, second.id)
            self.assertEqual(PaymentTransaction.query.count(), 1)
            self.assertEqual(first.status, "pending")
            self.assertEqual(first.provider, "mock")
            self.assertEqual(first.amount, 10500.0)
            self.assertEqual(first.provider_response().get("account_number"), "0000000000")
            self.assertIsNotNone(first.expires_at)

    def test_second_pending_without_key_is_refused(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            initialize_payment(order.id, customer.id)
            with self.assertRaises(BadRequestError):
                initialize_payment(order.id, customer.id)

    def test_new_key_cancels_previous_pending(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            old = initialize_payment(order.id, customer.id, idempotency_key="key-a")
            new = initialize_payment(order.id, customer.id, idempotency_key="key-b")
            self.assertNotEqual(old.id, new.id)
            self.assertEqual(db.session.get(PaymentTransaction, old.id).status, "cancelled")

    def test_only_owner_can_pay_unpaid_order(self):
        with self.app.app_context():
            customer = self.seed_user()
            stranger = self.seed_user()
            unpaid = self.seed_order(customer, self.seed_market(), payment_status="pending")
            paid = self.seed_order(customer, self.seed_market())
            with self.assertRaises(ForbiddenError):
                initialize_payment(unpaid.id, stranger.id)
            with self.assertRaises(BadRequestError):
                initialize_payment(paid.id, customer.id)


class PaymentWebhookTestCase(DispatchTestCase):
    def test_completed_webhook_confirms_order_once(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)

            body, code = process_alatpay_webhook(payload=_webhook(txn.provider_transaction_id), request_id="req-1")
            self.assertEqual(code, 200)
            self.assertEqual(body["status"], "completed")
            self.assertTrue(body["confirmation"]["success"])
            self.assertEqual(db.session.get(Order, order.id).payment_status, "completed")

            replay, replay_code = process_alatpay_webhook(payload=_webhook(txn.provider_transaction_id))
            self.assertEqual(replay_code, 200)
            self.assertTrue(replay.get("replayed"))
            self.assertEqual(WebhookEvent.query.count(), 1)
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="payment_confirmed").count(), 1)

    def test_unknown_transaction_is_ignored(self):
        with self.app.app_context():
            body, code = process_alatpay_webhook(payload=_webhook("mock-nobody"))
            self.assertEqual(code, 200)
            self.assertTrue(body.get("ignored"))
            self.assertEqual(WebhookEvent.query.one().status, "ignored")

    def test_payload_without_id_is_rejected(self):
        with self.app.app_context():
            body, code = process_alatpay_webhook(payload={"Value": {"Data": {}}})
            self.assertEqual(code, 400)
            self.assertEqual(body["error"], "INVALID_PAYLOAD")

    def test_failed_webhook_marks_transaction_failed(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)
            body, code = process_alatpay_webhook(payload=_webhook(txn.provider_transaction_id, status="failed"))
            self.assertEqual(code, 200)
            self.assertEqual(body["status"], "failed")
            self.assertEqual(db.session.get(Order, order.id).payment_status, "pending")


class PaymentSyncAndExpiryTestCase(DispatchTestCase):
    def test_sync_confirms_completed_transaction(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)
            with patch.dict("os.environ", {"MOCK_PAYMENT_STATUS": "successful"}):
                result = sync_transaction(txn.provider_transaction_id)
            self.assertEqual(result["status"], "completed")
            self.assertEqual(db.session.get(Order, order.id).payment_status, "completed")

            again = sync_transaction(txn.provider_transaction_id)
            self.assertTrue(again["already_processed"])

    def test_stale_pending_transaction_expires(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)
            txn.expires_at = datetime.utcnow() - timedelta(minutes=1)
            db.session.commit()

            with patch.dict("os.environ", {"MOCK_PAYMENT_STATUS": "pending"}):
                summary = expire_stale_transactions()

            self.assertEqual(summary["expired"], [txn.provider_transaction_id])
            self.assertEqual(summary["processed"], 1)
            self.assertEqual(db.session.get(PaymentTransaction, txn.id).status, "expired")
            self.assertEqual(db.session.get(Order, order.id).payment_status, "expired")
            self.assertEqual(OrderTrail.query.filter_by(order_id=order.id, action="payment_expired").count(), 1)

    def test_stale_but_paid_transaction_is_confirmed(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)
            txn.expires_at = datetime.utcnow() - timedelta(minutes=1)
            db.session.commit()

            with patch.dict("os.environ", {"MOCK_PAYMENT_STATUS": "completed"}):
                summary = expire_stale_transactions()

            self.assertEqual(summary["completed"], [txn.provider_transaction_id])
            self.assertEqual(db.session.get(Order, order.id).payment_status, "completed")

    def test_fresh_transactions_are_untouched(self):
        with self.app.app_context():
            customer = self.seed_user()
            order = self.seed_order(customer, self.seed_market(), payment_status="pending")
            txn = initialize_payment(order.id, customer.id)
            summary = expire_stale_transactions()
            self.assertEqual(summary["processed"], 0)
            self.assertEqual(db.session.get(PaymentTransaction, txn.id).status, "pending")


if __name__ == "__main__":
    unittest.main()
