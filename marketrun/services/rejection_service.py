from __future__ import annotations

import logging
from datetime import datetime

from marketrun.extensions import db
from marketrun.models import OrderRejection
from marketrun.services.assignment_service import auto_assign_agent
from marketrun.services.notification_service import notify_after_commit
from marketrun.services.order_lifecycle_service import (
    OrderStatus,
    load_order_for_update,
    release_agent,
    sync_shopping_list,
)
from marketrun.services.trail_service import TrailAction, add_trail
from marketrun.utils.dispatch_settings import get_dispatch_settings
from marketrun.utils.errors import BadRequestError, ConflictError, ForbiddenError

logger = logging.getLogger(__name__)


def _cancel_after_rejections(order, agent_id: int, reason: str, count: int) -> dict:
    now = datetime.utcnow()
    order.status = OrderStatus.CANCELLED
    if order.cancelled_at is None:
        order.cancelled_at = now
    order.agent_id = None
    order.updated_at = now
    db.session.add(order)
    sync_shopping_list(order)
    release_agent(agent_id)
    add_trail(
        order.id,
        TrailAction.ORDER_CANCELLED,
        user_id=agent_id,
        description=f"Order cancelled after {count} agent rejections",
        previous_value={"status": OrderStatus.ACCEPTED, "agent_id": agent_id},
        new_value={"status": OrderStatus.CANCELLED, "agent_id": None},
        metadata={"rejection_count": count, "last_reason": reason},
    )
    notify_after_commit(
        order.customer_id,
        "Order cancelled",
        f"We could not find an agent for order {order.order_number}",
        {"order_id": int(order.id)},
    )
    logger.warning("order_cancelled_max_rejections order_id=%s rejections=%s", order.id, count)
    return {"order": order, "cancelled": True, "reassigned_agent_id": None, "rejection_count": count}


def handle_agent_rejection(order_id, agent_id, reason: str, *, commit: bool = True) -> dict:
    """Record an agent's rejection, then cancel or try the next best agent.

    Returns ``{"order", "cancelled", "reassigned_agent_id", "rejection_count"}``.
    """
    text = (reason or "").strip()
    if not text:
        raise BadRequestError("A rejection reason is required")
    settings = get_dispatch_settings()
    try:
        order = load_order_for_update(order_id)
        aid = int(agent_id)
        if order.agent_id is None or int(order.agent_id) != aid:
            raise ForbiddenError("You are not assigned to this order")
        if order.status != OrderStatus.ACCEPTED:
            raise BadRequestError(f"Order in status {order.status} cannot be rejected")
        if aid in order.rejected_agent_ids():
            raise ConflictError("You have already rejected this order")

        order.rejected_agents.append(OrderRejection(agent_id=aid, reason=text[:240], rejected_at=datetime.utcnow()))
        count = len(order.rejected_agents)

        if count >= settings.max_rejections:
            result = _cancel_after_rejections(order, aid, text, count)
        else:
            order.agent_id = None
            order.status = OrderStatus.PENDING
            order.updated_at = datetime.utcnow()
            db.session.add(order)
            sync_shopping_list(order)
            release_agent(aid)
            add_trail(
                order.id,
                TrailAction.AGENT_REJECTED,
                user_id=aid,
                description=f"Agent rejected order: {text}",
                previous_value={"status": OrderStatus.ACCEPTED, "agent_id": aid},
                new_value={"status": OrderStatus.PENDING, "agent_id": None},
                metadata={"reason": text, "rejection_count": count},
            )
            db.session.flush()

            reassigned = None
            excluded = order.rejected_agent_ids()
            try:
                with db.session.begin_nested():
                    reassigned = auto_assign_agent(order, exclude_agent_ids=excluded, commit=False)
            except Exception as e:
                reassigned = None
                logger.warning("reassignment_failed order_id=%s err=%s", order.id, e)

            if reassigned is not None:
                add_trail(
                    order.id,
                    TrailAction.AGENT_REASSIGNED,
                    description="Order reassigned after rejection",
                    previous_value={"agent_id": aid},
                    new_value={"agent_id": reassigned},
                    metadata={"excluded_agent_ids": excluded, "rejection_count": count},
                )
            else:
                logger.info("order_awaiting_reassignment order_id=%s rejections=%s", order.id, count)
            result = {"order": order, "cancelled": False, "reassigned_agent_id": reassigned, "rejection_count": count}

        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info(
        "agent_rejection_handled order_id=%s agent_id=%s count=%s cancelled=%s reassigned=%s",
        order.id,
        agent_id,
        result["rejection_count"],
        result["cancelled"],
        result["reassigned_agent_id"],
    )
    return result
