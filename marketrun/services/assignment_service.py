from __future__ import annotations

import logging
from datetime import datetime

from marketrun.extensions import db
from marketrun.models import AgentSettings, Order, User
from marketrun.services.agent_metadata import write_availability
from marketrun.services.agent_scoring_service import get_available_agents_for_order
from marketrun.services.agent_service import is_agent_eligible
from marketrun.services.notification_service import notify_after_commit
from marketrun.services.order_lifecycle_service import (
    OrderStatus,
    load_order_for_update,
    release_agent,
    sync_shopping_list,
)
from marketrun.services.trail_service import TrailAction, add_trail
from marketrun.utils.errors import BadRequestError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.ACCEPTED)


def _lock_agent(agent_id) -> User:
    agent = db.session.get(User, int(agent_id))
    if agent is None or not agent.is_agent:
        raise NotFoundError("Agent not found")
    # Refresh the settings row inside this transaction.
    db.session.query(AgentSettings).filter(AgentSettings.agent_id == int(agent.id)).with_for_update().populate_existing().first()
    return agent


def assign_agent_to_order(order_id, agent_id, *, performed_by: int | None = None, commit: bool = True) -> Order:
    try:
        order = load_order_for_update(order_id)
        if order.status not in ASSIGNABLE_STATUSES:
            raise BadRequestError(f"Order in status {order.status} cannot be assigned")
        if order.agent_id is not None and int(order.agent_id) == int(agent_id):
            raise ConflictError("Agent is already assigned to this order")
        if int(agent_id) in order.rejected_agent_ids():
            raise BadRequestError("Agent has already rejected this order")
        agent = _lock_agent(agent_id)
        if not is_agent_eligible(agent):
            raise BadRequestError("Agent is not available for assignment")

        previous_agent_id = int(order.agent_id) if order.agent_id is not None else None
        previous_status = order.status
        now = datetime.utcnow()
        order.agent_id = int(agent.id)
        order.status = OrderStatus.ACCEPTED
        if order.accepted_at is None:
            order.accepted_at = now
        order.updated_at = now
        db.session.add(order)
        sync_shopping_list(order)
        write_availability(agent.id, status="busy", is_accepting_orders=False)
        if previous_agent_id is not None:
            release_agent(previous_agent_id)

        add_trail(
            order.id,
            TrailAction.AGENT_ASSIGNED,
            user_id=performed_by,
            description=f"Agent {agent.full_name or agent.id} assigned to order",
            previous_value={"agent_id": previous_agent_id, "status": previous_status},
            new_value={"agent_id": int(agent.id), "status": order.status},
            metadata={"assigned_at": now},
        )
        db.session.flush()
        notify_after_commit(
            agent.id,
            "New order assigned",
            f"Order {order.order_number} has been assigned to you",
            {"order_id": int(order.id)},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("agent_assigned order_id=%s agent_id=%s performed_by=%s", order.id, agent.id, performed_by)
    return order


def auto_assign_agent(order: Order, *, exclude_agent_ids=(), performed_by: int | None = None, commit: bool = False) -> int | None:
    """Assign the best ranked agent. Returns the agent id, or None when nobody is available."""
    excluded = set(int(a) for a in (exclude_agent_ids or ())) | set(order.rejected_agent_ids())
    ranked = get_available_agents_for_order(order.shopping_list_id, excluded)
    if not ranked:
        logger.info("auto_assign_no_candidates order_id=%s excluded=%s", order.id, sorted(excluded))
        return None
    best = ranked[0]
    assign_agent_to_order(order.id, best.agent.id, performed_by=performed_by, commit=commit)
    logger.info(
        "auto_assign_selected order_id=%s agent_id=%s score=%s distance_km=%s",
        order.id,
        best.agent.id,
        best.score,
        best.distance_km,
    )
    return int(best.agent.id)


def get_pending_agent_assignment_orders(limit: int = 50) -> list[Order]:
    return (
        Order.query.filter(
            Order.status == OrderStatus.PENDING,
            Order.payment_status == "completed",
            Order.agent_id.is_(None),
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
        .limit(max(1, int(limit)))
        .all()
    )
