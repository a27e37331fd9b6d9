from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime

from marketrun.extensions import db
from marketrun.models import Order, ShoppingList, User
from marketrun.services.agent_metadata import write_availability
from marketrun.services.notification_service import notify_after_commit
from marketrun.services.trail_service import TrailAction, add_trail
from marketrun.utils.dispatch_settings import get_dispatch_settings
from marketrun.utils.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


class OrderStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    SHOPPING = "shopping"
    SHOPPING_COMPLETED = "shopping_completed"
    DELIVERY = "delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING, ACCEPTED, IN_PROGRESS, SHOPPING, SHOPPING_COMPLETED, DELIVERY, COMPLETED, CANCELLED)
    TERMINAL = {COMPLETED, CANCELLED}
    WORKING = {IN_PROGRESS, SHOPPING, SHOPPING_COMPLETED, DELIVERY}
    ACTIVE_FOR_WORKLOAD = {ACCEPTED, IN_PROGRESS}
    AGENT_SETTABLE = {ACCEPTED, IN_PROGRESS, SHOPPING, SHOPPING_COMPLETED, DELIVERY, COMPLETED}

    ALLOWED = {
        PENDING: {ACCEPTED, CANCELLED},
        ACCEPTED: {IN_PROGRESS, CANCELLED},
        IN_PROGRESS: {SHOPPING, CANCELLED},
        SHOPPING: {SHOPPING_COMPLETED, CANCELLED},
        SHOPPING_COMPLETED: {DELIVERY, CANCELLED},
        DELIVERY: {COMPLETED, CANCELLED},
        COMPLETED: set(),
        CANCELLED: set(),
    }

    TIMESTAMP_FIELDS = {
        ACCEPTED: "accepted_at",
        SHOPPING: "shopping_started_at",
        SHOPPING_COMPLETED: "shopping_completed_at",
        DELIVERY: "delivery_started_at",
        COMPLETED: "completed_at",
        CANCELLED: "cancelled_at",
    }


class ShoppingListStatus:
    DRAFT = "draft"
    ACCEPTED = "accepted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def shopping_list_status_for(order_status: str | None, payment_status: str | None) -> str:
    """Shopping list status implied by an order's status and payment status."""
    status = (order_status or OrderStatus.PENDING).strip().lower()
    if status == OrderStatus.CANCELLED:
        return ShoppingListStatus.CANCELLED
    if status == OrderStatus.COMPLETED:
        return ShoppingListStatus.COMPLETED
    if (payment_status or "").strip().lower() != "completed":
        return ShoppingListStatus.DRAFT
    if status in OrderStatus.WORKING:
        return ShoppingListStatus.PROCESSING
    return ShoppingListStatus.ACCEPTED


def can_transition(current: str | None, target: str | None) -> bool:
    cur = (current or OrderStatus.PENDING).strip().lower()
    return (target or "").strip().lower() in OrderStatus.ALLOWED.get(cur, set())


def _normalize_target(status) -> str:
    target = (str(status or "")).strip().lower()
    if target not in OrderStatus.ALL:
        raise BadRequestError(f"Unknown order status '{status}'")
    return target


def load_order_for_update(order_id) -> Order:
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        raise NotFoundError("Order not found")
    order = db.session.query(Order).filter(Order.id == oid).with_for_update().first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def sync_shopping_list(order: Order) -> ShoppingList | None:
    sl = order.shopping_list or db.session.get(ShoppingList, int(order.shopping_list_id))
    if sl is None:
        return None
    sl.status = shopping_list_status_for(order.status, order.payment_status)
    sl.agent_id = order.agent_id
    db.session.add(sl)
    return sl


def release_agent(agent_id: int | None) -> None:
    if agent_id is None:
        return
    write_availability(int(agent_id), status="available", is_accepting_orders=True)


def _check_permission(order: Order, actor: User, target: str) -> None:
    role = actor.role
    if role == "admin":
        return
    if role == "agent":
        if order.agent_id is None or int(order.agent_id) != int(actor.id):
            raise ForbiddenError("You are not assigned to this order")
        if target not in OrderStatus.AGENT_SETTABLE:
            raise ForbiddenError("Agents cannot set this order status")
        return
    if int(order.customer_id) == int(actor.id):
        if target != OrderStatus.CANCELLED:
            raise ForbiddenError("You can only cancel your orders")
        if order.status == OrderStatus.COMPLETED:
            raise BadRequestError("Cannot cancel a completed order")
        return
    raise ForbiddenError("You are not authorized to update this order")


def apply_status(order: Order, target: str, *, actor_id: int | None = None, reason: str = "") -> Order:
    """Apply one table transition with its side effects. Does not commit."""
    current = (order.status or OrderStatus.PENDING).strip().lower()
    if not can_transition(current, target):
        raise BadRequestError(f"Invalid status transition from {current} to {target}")
    if target == OrderStatus.ACCEPTED and order.agent_id is None:
        raise BadRequestError("Order has no agent; assign one instead")

    now = datetime.utcnow()
    order.status = target
    ts_field = OrderStatus.TIMESTAMP_FIELDS.get(target)
    if ts_field and getattr(order, ts_field, None) is None:
        setattr(order, ts_field, now)
    order.updated_at = now

    released_agent_id = None
    if target in OrderStatus.TERMINAL and order.agent_id is not None:
        released_agent_id = int(order.agent_id)
        release_agent(released_agent_id)

    db.session.add(order)
    sync_shopping_list(order)
    add_trail(
        order.id,
        TrailAction.STATUS_CHANGED,
        user_id=actor_id,
        description=f"Order status changed from {current} to {target}" + (f": {reason}" if reason else ""),
        previous_value={"status": current},
        new_value={"status": target},
        metadata={"released_agent_id": released_agent_id} if released_agent_id else {},
    )
    return order


def update_order_status(order_id, actor_id, status, *, commit: bool = True) -> Order:
    target = _normalize_target(status)
    try:
        order = load_order_for_update(order_id)
        actor = db.session.get(User, int(actor_id)) if actor_id is not None else None
        if actor is None:
            raise NotFoundError("User not found")
        _check_permission(order, actor, target)
        previous = order.status
        apply_status(order, target, actor_id=int(actor.id))
        if int(actor.id) != int(order.customer_id):
            notify_after_commit(
                order.customer_id,
                "Order update",
                f"Order {order.order_number} is now {target.replace('_', ' ')}",
                {"order_id": int(order.id), "status": target},
            )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("order_status_updated order_id=%s from=%s to=%s actor=%s", order.id, previous, target, actor_id)
    return order


def update_order_status_system(order: Order, status, *, reason: str = "", commit: bool = False) -> Order:
    target = _normalize_target(status)
    try:
        apply_status(order, target, actor_id=None, reason=reason)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return order


def calculate_totals(shopping_list: ShoppingList) -> dict:
    settings = get_dispatch_settings()
    subtotal = round(float(shopping_list.estimated_total or 0.0), 2)
    service_fee = round(subtotal * settings.service_fee_rate, 2)
    delivery_fee = round(settings.delivery_fee, 2)
    return {
        "subtotal": subtotal,
        "service_fee": service_fee,
        "delivery_fee": delivery_fee,
        "total_amount": round(subtotal + service_fee + delivery_fee, 2),
    }


def _generate_order_number() -> str:
    return f"MR-{datetime.utcnow().strftime('%y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def create_order_from_shopping_list(
    shopping_list_id,
    customer_id,
    *,
    delivery_address: dict | None = None,
    customer_notes: str = "",
    commit: bool = True,
) -> Order:
    try:
        sl = db.session.get(ShoppingList, int(shopping_list_id))
        if sl is None:
            raise NotFoundError("Shopping list not found")
        if int(sl.customer_id) != int(customer_id):
            raise ForbiddenError("You can only check out your own shopping lists")
        if sl.status not in (ShoppingListStatus.DRAFT, ShoppingListStatus.ACCEPTED):
            raise BadRequestError(f"Shopping list in status {sl.status} cannot be checked out")
        if Order.query.filter_by(shopping_list_id=int(sl.id)).first() is not None:
            raise ConflictError("An order already exists for this shopping list")
        if float(sl.estimated_total or 0.0) <= 0:
            raise BadRequestError("Shopping list has no priced items")

        totals = calculate_totals(sl)
        order = Order(
            order_number=_generate_order_number(),
            customer_id=int(customer_id),
            shopping_list_id=int(sl.id),
            status=OrderStatus.PENDING,
            payment_status="pending",
            total_amount=totals["total_amount"],
            service_fee=totals["service_fee"],
            delivery_fee=totals["delivery_fee"],
            delivery_address_json=json.dumps(delivery_address or {}),
            customer_notes=(customer_notes or "")[:2000] or None,
        )
        db.session.add(order)
        db.session.flush()
        sync_shopping_list(order)
        add_trail(
            order.id,
            TrailAction.ORDER_CREATED,
            user_id=int(customer_id),
            description=f"Order {order.order_number} created by customer",
            new_value={"status": order.status, "total_amount": order.total_amount},
            metadata={"order_number": order.order_number, "shopping_list_id": int(sl.id)},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("order_created order_id=%s order_number=%s total=%s", order.id, order.order_number, order.total_amount)
    return order


def get_order(order_id, *, user_id=None) -> Order:
    try:
        order = db.session.get(Order, int(order_id))
    except (TypeError, ValueError):
        order = None
    if order is None:
        raise NotFoundError("Order not found")
    if user_id is not None:
        user = db.session.get(User, int(user_id))
        is_party = int(user_id) in (int(order.customer_id), int(order.agent_id or 0))
        if not is_party and not (user is not None and user.user_type == "admin"):
            raise ForbiddenError("You are not authorized to view this order")
    return order


def _parse_date(raw):
    if not raw:
        return None
    if isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).strip())
    except ValueError:
        raise BadRequestError(f"Invalid date '{raw}'")


def _list_orders(q, *, status=None, start_date=None, end_date=None, page=None, size=None) -> dict:
    if status:
        q = q.filter(Order.status == str(status).strip().lower())
    start = _parse_date(start_date)
    end = _parse_date(end_date)
    if start is not None:
        q = q.filter(Order.created_at >= start)
    if end is not None:
        q = q.filter(Order.created_at <= end)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    count = q.count()
    result = {"count": count}
    try:
        page_i = int(page) if page is not None else 0
        size_i = int(size) if size is not None else 0
    except (TypeError, ValueError):
        raise BadRequestError("page and size must be integers")
    if page_i > 0 and size_i > 0:
        size_i = min(size_i, 100)
        q = q.offset((page_i - 1) * size_i).limit(size_i)
        result["total_pages"] = (count + size_i - 1) // size_i
        result["current_page"] = page_i
    result["orders"] = q.all()
    return result


def list_customer_orders(customer_id, **filters) -> dict:
    return _list_orders(Order.query.filter(Order.customer_id == int(customer_id)), **filters)


def list_agent_orders(agent_id, **filters) -> dict:
    return _list_orders(Order.query.filter(Order.agent_id == int(agent_id)), **filters)


def add_agent_notes(order_id, agent_id, notes: str, *, commit: bool = True) -> Order:
    text = (notes or "").strip()
    if not text:
        raise BadRequestError("Notes are required")
    try:
        order = load_order_for_update(order_id)
        if order.agent_id is None or int(order.agent_id) != int(agent_id):
            raise ForbiddenError("You are not assigned to this order")
        previous = order.agent_notes
        order.agent_notes = text[:4000]
        db.session.add(order)
        add_trail(
            order.id,
            TrailAction.NOTES_UPDATED,
            user_id=int(agent_id),
            description="Agent notes updated",
            previous_value={"agent_notes": previous},
            new_value={"agent_notes": order.agent_notes},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return order


def add_customer_notes(order_id, customer_id, notes: str, *, commit: bool = True) -> Order:
    text = (notes or "").strip()
    if not text:
        raise BadRequestError("Notes are required")
    try:
        order = load_order_for_update(order_id)
        if int(order.customer_id) != int(customer_id):
            raise ForbiddenError("You can only add notes to your orders")
        previous = order.customer_notes
        order.customer_notes = text[:4000]
        db.session.add(order)
        add_trail(
            order.id,
            TrailAction.NOTES_UPDATED,
            user_id=int(customer_id),
            description="Customer notes updated",
            previous_value={"customer_notes": previous},
            new_value={"customer_notes": order.customer_notes},
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return order
