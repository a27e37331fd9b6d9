from __future__ import annotations

import logging
from datetime import datetime

from marketrun.extensions import db
from marketrun.integrations.chat.factory import build_chat_provider
from marketrun.models import Order, ShoppingList
from marketrun.services.assignment_service import auto_assign_agent
from marketrun.services.notification_service import notify_after_commit
from marketrun.services.order_lifecycle_service import (
    OrderStatus,
    ShoppingListStatus,
    load_order_for_update,
    shopping_list_status_for,
    sync_shopping_list,
)
from marketrun.services.trail_service import TrailAction, add_trail
from marketrun.utils.errors import BadRequestError, NotFoundError

logger = logging.getLogger(__name__)

PAYMENT_SOURCES = ("webhook", "api_sync")

__all__ = [
    "PAYMENT_SOURCES",
    "confirm_payment",
    "reconcile_status",
    "shopping_list_status_for",
    "validate_status_consistency",
]


def _activate_chat(order: Order, performed_by: str) -> bool:
    try:
        with db.session.begin_nested():
            result = build_chat_provider().activate_chat(order_id=int(order.id), activated_by=performed_by)
    except Exception as e:
        logger.warning("chat_activation_failed order_id=%s err=%s", order.id, e)
        return False
    if not result.ok:
        logger.info("chat_activation_skipped order_id=%s code=%s", order.id, result.code)
    return bool(result.ok)


def confirm_payment(
    order_id,
    provider_transaction_id: str,
    source: str,
    performed_by: str = "system",
    *,
    commit: bool = True,
) -> dict:
    """Mark an order paid, then try to assign an agent.

    Calling it again for an already paid order changes nothing and reports the
    agent assigned so far. A failed assignment never undoes the payment.
    """
    src = (source or "").strip().lower()
    if src not in PAYMENT_SOURCES:
        raise BadRequestError(f"Unknown payment source '{source}'")
    txn_id = (provider_transaction_id or "").strip()
    if not txn_id:
        raise BadRequestError("provider_transaction_id is required")

    try:
        order = load_order_for_update(order_id)
        sl = order.shopping_list
        if sl is None:
            raise NotFoundError("Shopping list not found for order")

        if (order.payment_status or "") == "completed":
            logger.info("payment_already_confirmed order_id=%s source=%s", order.id, src)
            if commit:
                db.session.commit()
            return {"success": True, "assigned_agent_id": int(order.agent_id) if order.agent_id is not None else None}

        if order.status == OrderStatus.CANCELLED:
            raise BadRequestError("Cannot confirm payment for a cancelled order")

        previous_payment_status = order.payment_status or "pending"
        now = datetime.utcnow()
        order.payment_status = "completed"
        order.payment_id = txn_id[:128]
        order.payment_processed_at = now
        order.updated_at = now
        db.session.add(order)
        sl.payment_status = "completed"
        sl.payment_id = txn_id[:128]
        sl.payment_processed_at = now
        sync_shopping_list(order)
        db.session.flush()

        assigned_agent_id = int(order.agent_id) if order.agent_id is not None else None
        if assigned_agent_id is None and order.status == OrderStatus.PENDING:
            try:
                with db.session.begin_nested():
                    assigned_agent_id = auto_assign_agent(order, performed_by=None, commit=False)
            except Exception as e:
                assigned_agent_id = None
                logger.error("assignment_after_payment_failed order_id=%s err=%s", order.id, e)
        if assigned_agent_id is None:
            logger.info("order_awaiting_agent order_id=%s", order.id)

        chat_activated = _activate_chat(order, performed_by)

        try:
            with db.session.begin_nested():
                add_trail(
                    order.id,
                    TrailAction.PAYMENT_CONFIRMED,
                    description=f"Payment confirmed via {src}",
                    previous_value={"payment_status": previous_payment_status},
                    new_value={"payment_status": "completed"},
                    metadata={
                        "transaction_id": txn_id,
                        "source": src,
                        "payment_amount": float(order.total_amount or 0.0),
                        "assigned_agent_id": assigned_agent_id,
                        "shopping_list_id": int(sl.id),
                        "processed_at": now,
                        "chat_activated": chat_activated,
                        "performed_by": performed_by,
                    },
                )
        except Exception as e:
            logger.warning("payment_trail_failed order_id=%s err=%s", order.id, e)

        notify_after_commit(
            order.customer_id,
            "Payment received",
            f"Payment for order {order.order_number} was confirmed",
            {"order_id": int(order.id), "assigned_agent_id": assigned_agent_id},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info(
        "payment_confirmed order_id=%s source=%s txn=%s assigned_agent_id=%s",
        order.id,
        src,
        txn_id,
        assigned_agent_id,
    )
    return {"success": True, "assigned_agent_id": assigned_agent_id}


def validate_status_consistency(order_id) -> dict:
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise NotFoundError("Order not found")
    sl = order.shopping_list
    if sl is None:
        raise NotFoundError("Shopping list not found for order")

    expected = shopping_list_status_for(order.status, order.payment_status)
    actual = sl.status or ShoppingListStatus.DRAFT
    issues = []
    recommendations = []
    if expected != actual:
        issues.append(
            f"Shopping list status '{actual}' does not match expected '{expected}' "
            f"for order status '{order.status}' and payment status '{order.payment_status}'"
        )
        recommendations.append(f"Update shopping list status to '{expected}'")
    if order.payment_status == "completed" and (sl.payment_status or "") != "completed":
        issues.append("Order is paid but the shopping list payment status is not completed")
        recommendations.append("Mirror the order payment fields onto the shopping list")
    if order.agent_id != sl.agent_id:
        issues.append("Shopping list agent does not match the order agent")
        recommendations.append("Mirror the order agent onto the shopping list")
    return {
        "is_consistent": not issues,
        "expected_status": expected,
        "actual_status": actual,
        "issues": issues,
        "recommendations": recommendations,
    }


def reconcile_status(order_id, *, performed_by: int | None = None, commit: bool = True) -> dict:
    try:
        order = load_order_for_update(order_id)
        report = validate_status_consistency(order.id)
        if report["is_consistent"]:
            if commit:
                db.session.commit()
            return report
        sl: ShoppingList = order.shopping_list
        previous = {"status": sl.status, "payment_status": sl.payment_status, "agent_id": sl.agent_id}
        if order.payment_status == "completed":
            sl.payment_status = "completed"
            sl.payment_id = sl.payment_id or order.payment_id
            sl.payment_processed_at = sl.payment_processed_at or order.payment_processed_at
        sync_shopping_list(order)
        add_trail(
            order.id,
            TrailAction.STATUS_RECONCILED,
            user_id=performed_by,
            description="Shopping list status reconciled with order",
            previous_value=previous,
            new_value={"status": sl.status, "payment_status": sl.payment_status, "agent_id": sl.agent_id},
            metadata={"issues": report["issues"]},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("status_reconciled order_id=%s issues=%s", order.id, len(report["issues"]))
    return validate_status_consistency(order.id)
