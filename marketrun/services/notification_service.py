from __future__ import annotations

import logging

from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session

from marketrun.extensions import db
from marketrun.integrations.common import IntegrationUnavailable
from marketrun.integrations.messaging.factory import build_messaging_provider

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_push_notifications"


def send_push_now(user_id: int, title: str, body: str, data: dict | None = None) -> dict:
    try:
        provider = build_messaging_provider()
    except IntegrationUnavailable as e:
        logger.info("push_skipped user_id=%s reason=%s", user_id, e)
        return {"ok": False, "code": "INTEGRATION_UNAVAILABLE", "message": str(e)}
    result = provider.send_push(user_id=int(user_id), title=title, body=body, data=data or {})
    if not result.ok:
        logger.warning("push_failed user_id=%s code=%s message=%s", user_id, result.code, result.message)
    return {"ok": bool(result.ok), "code": result.code, "message": result.message}


def _dispatch(item: dict) -> None:
    try:
        if has_app_context() and current_app.config.get("NOTIFICATIONS_ASYNC"):
            from marketrun.tasks.dispatch_tasks import send_push_notification_task

            send_push_notification_task.delay(**item)
        else:
            send_push_now(**item)
    except Exception as e:
        logger.warning("push_dispatch_failed user_id=%s err=%s", item.get("user_id"), e)


def notify_after_commit(user_id: int | None, title: str, body: str, data: dict | None = None) -> None:
    """Queue a push notification that is only sent once the session commits.

    Items queued inside a savepoint are discarded if that savepoint rolls back.
    """
    if user_id is None:
        return
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    item = {"user_id": int(user_id), "title": title, "body": body, "data": data or {}}
    pending.append((db.session().get_nested_transaction(), item))


def _queued_within(savepoint, ended) -> bool:
    txn = savepoint
    while txn is not None:
        if txn is ended:
            return True
        txn = txn.parent
    return False


@event.listens_for(Session, "after_commit")
def _flush_pending_notifications(session):
    # Savepoint releases also fire after_commit; only the outermost commit sends.
    if session.in_nested_transaction():
        return
    pending = session.info.pop(_PENDING_KEY, None) or []
    for _savepoint, item in pending:
        _dispatch(item)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending_notifications(session, previous_transaction):
    if not previous_transaction.nested:
        session.info.pop(_PENDING_KEY, None)
        return
    pending = session.info.get(_PENDING_KEY)
    if pending:
        session.info[_PENDING_KEY] = [
            (savepoint, item) for savepoint, item in pending if not _queued_within(savepoint, previous_transaction)
        ]
