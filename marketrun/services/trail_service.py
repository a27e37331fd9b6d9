from __future__ import annotations

from datetime import datetime

from marketrun.extensions import db
from marketrun.models import OrderTrail
from marketrun.utils.json_safe import safe_json


class TrailAction:
    ORDER_CREATED = "order_created"
    STATUS_CHANGED = "status_changed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    AGENT_ASSIGNED = "agent_assigned"
    AGENT_REJECTED = "agent_rejected"
    AGENT_REASSIGNED = "agent_reassigned"
    ORDER_CANCELLED = "order_cancelled"
    NOTES_UPDATED = "notes_updated"
    STATUS_RECONCILED = "status_reconciled"
    PAYMENT_EXPIRED = "payment_expired"


def add_trail(
    order_id: int,
    action: str,
    *,
    user_id: int | None = None,
    description: str = "",
    previous_value=None,
    new_value=None,
    metadata: dict | None = None,
) -> OrderTrail:
    """Append one audit row to the current session. The caller commits."""
    row = OrderTrail(
        order_id=int(order_id),
        user_id=int(user_id) if user_id is not None else None,
        action=(action or "unknown")[:64],
        description=(description or "")[:2000],
        previous_value_json=safe_json(previous_value),
        new_value_json=safe_json(new_value),
        metadata_json=safe_json(metadata or {}),
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    return row


def get_order_trail(order_id: int, *, action: str | None = None) -> list[OrderTrail]:
    q = OrderTrail.query.filter_by(order_id=int(order_id))
    if action:
        q = q.filter_by(action=action)
    return q.order_by(OrderTrail.created_at.asc(), OrderTrail.id.asc()).all()
