from __future__ import annotations

import unittest
from unittest.mock import patch

from dispatch_fixtures import DispatchTestCase, north_of

from marketrun.extensions import db
from marketrun.models import Market
from marketrun.services.notification_service import notify_after_commit
from marketrun.services.payment_confirmation_service import confirm_payment


def _sent_to(dispatch) -> list[int]:
    return [c.args[0]["user_id"] for c in dispatch.call_args_list]


class NotifyAfterCommitTestCase(DispatchTestCase):
    def _touch(self):
        db.session.add(Market(name="Touch"))
        db.session.flush()

    def test_sent_only_after_commit(self):
        with self.app.app_context(), patch("marketrun.services.notification_service._dispatch") as dispatch:
            self._touch()
            notify_after_commit(7, "Hello", "body", {"k": 1})
            dispatch.assert_not_called()
            db.session.commit()
            dispatch.assert_called_once_with({"user_id": 7, "title": "Hello", "body": "body", "data": {"k": 1}})

    def test_rollback_discards_queued_items(self):
        with self.app.app_context(), patch("marketrun.services.notification_service._dispatch") as dispatch:
            self._touch()
            notify_after_commit(7, "Hello", "body")
            db.session.rollback()
            self._touch()
            db.session.commit()
            dispatch.assert_not_called()

    def test_savepoint_rollback_drops_only_its_items(self):
        with self.app.app_context(), patch("marketrun.services.notification_service._dispatch") as dispatch:
            self._touch()
            notify_after_commit(1, "outer", "kept")
            try:
                with db.session.begin_nested():
                    notify_after_commit(2, "inner", "dropped")
                    raise RuntimeError("assignment failed")
            except RuntimeError:
                pass
            with db.session.begin_nested():
                notify_after_commit(3, "inner", "kept")
            dispatch.assert_not_called()
            db.session.commit()
            self.assertEqual(_sent_to(dispatch), [1, 3])

    def test_missing_user_is_ignored(self):
        with self.app.app_context(), patch("marketrun.services.notification_service._dispatch") as dispatch:
            self._touch()
            notify_after_commit(None, "Hello", "body")
            db.session.commit()
            dispatch.assert_not_called()

    def test_payment_notifies_customer_and_agent(self):
        with self.app.app_context():
            market = self.seed_market(6.5, 3.3)
            agent = self.seed_agent(north_of(6.5, 1.0), 3.3)
            customer = self.seed_user()
            order = self.seed_order(customer, market, payment_status="pending")
            with patch("marketrun.services.notification_service._dispatch") as dispatch:
                confirm_payment(order.id, "mock-notify", "webhook")
            self.assertCountEqual(_sent_to(dispatch), [agent.id, customer.id])

    def test_async_mode_enqueues_task(self):
        self.app.config["NOTIFICATIONS_ASYNC"] = True
        try:
            with self.app.app_context(), patch("marketrun.tasks.dispatch_tasks.send_push_notification_task") as task:
                self._touch()
                notify_after_commit(5, "Queued", "body")
                db.session.commit()
        finally:
            self.app.config["NOTIFICATIONS_ASYNC"] = False
        task.delay.assert_called_once_with(user_id=5, title="Queued", body="body", data={})


if __name__ == "__main__":
    unittest.main()
