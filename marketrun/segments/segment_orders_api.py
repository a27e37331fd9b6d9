from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from marketrun.extensions import db
from marketrun.models import User
from marketrun.services.agent_scoring_service import (
    Found,
    find_nearby_agents,
    get_available_agents_for_order,
)
from marketrun.services.assignment_service import assign_agent_to_order, get_pending_agent_assignment_orders
from marketrun.services.order_lifecycle_service import (
    add_agent_notes,
    add_customer_notes,
    create_order_from_shopping_list,
    get_order,
    list_agent_orders,
    list_customer_orders,
    update_order_status,
)
from marketrun.services.payment_confirmation_service import reconcile_status, validate_status_consistency
from marketrun.services.rejection_service import handle_agent_rejection
from marketrun.services.trail_service import get_order_trail
from marketrun.utils.errors import BadRequestError, ForbiddenError, UnauthorizedError

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")
admin_orders_bp = Blueprint("admin_orders_bp", __name__, url_prefix="/api/admin")


def _current_user() -> User | None:
    uid = getattr(g, "auth_user_id", None)
    if uid is None:
        return None
    return db.session.get(User, int(uid))


def _role(u: User | None) -> str:
    if not u:
        return "guest"
    return u.role


def _require_user(*roles: str) -> User:
    u = _current_user()
    if not u:
        raise UnauthorizedError("Unauthorized")
    if roles and _role(u) not in roles:
        raise ForbiddenError("Forbidden")
    return u


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _list_filters() -> dict:
    return {
        "status": request.args.get("status"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
        "page": request.args.get("page"),
        "size": request.args.get("size"),
    }


def _order_page(result: dict) -> dict:
    out = dict(result)
    out["orders"] = [o.to_dict() for o in result["orders"]]
    out["ok"] = True
    return out


@orders_bp.post("/orders")
def create_order():
    u = _require_user("customer")
    payload = _payload()
    try:
        shopping_list_id = int(payload.get("shopping_list_id"))
    except (TypeError, ValueError):
        raise BadRequestError("shopping_list_id required")
    address = payload.get("delivery_address")
    order = create_order_from_shopping_list(
        shopping_list_id,
        u.id,
        delivery_address=address if isinstance(address, dict) else None,
        customer_notes=str(payload.get("customer_notes") or ""),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 201


@orders_bp.get("/orders/my")
def my_orders():
    u = _require_user()
    return jsonify(_order_page(list_customer_orders(u.id, **_list_filters()))), 200


@orders_bp.get("/agent/orders")
def agent_orders():
    u = _require_user("agent")
    return jsonify(_order_page(list_agent_orders(u.id, **_list_filters()))), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order_detail(order_id: int):
    u = _require_user()
    order = get_order(order_id, user_id=u.id)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.patch("/orders/<int:order_id>/status")
def patch_order_status(order_id: int):
    u = _require_user()
    status = str(_payload().get("status") or "").strip()
    if not status:
        raise BadRequestError("status required")
    order = update_order_status(order_id, u.id, status)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.post("/orders/<int:order_id>/notes")
def post_order_notes(order_id: int):
    u = _require_user()
    notes = str(_payload().get("notes") or "")
    role = _role(u)
    if role == "agent":
        order = add_agent_notes(order_id, u.id, notes)
    elif role == "customer":
        order = add_customer_notes(order_id, u.id, notes)
    else:
        raise ForbiddenError("Forbidden")
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.post("/orders/<int:order_id>/reject")
def reject_order(order_id: int):
    u = _require_user("agent")
    result = handle_agent_rejection(order_id, u.id, str(_payload().get("reason") or ""))
    return jsonify(
        {
            "ok": True,
            "order": result["order"].to_dict(),
            "cancelled": result["cancelled"],
            "reassigned_agent_id": result["reassigned_agent_id"],
            "rejection_count": result["rejection_count"],
        }
    ), 200


@orders_bp.get("/orders/<int:order_id>/trail")
def order_trail(order_id: int):
    u = _require_user()
    get_order(order_id, user_id=u.id)
    action = (request.args.get("action") or "").strip() or None
    items = get_order_trail(order_id, action=action)
    return jsonify({"ok": True, "items": [t.to_dict() for t in items]}), 200


@admin_orders_bp.get("/orders/<int:order_id>/available-agents")
def admin_available_agents(order_id: int):
    _require_user("admin")
    order = get_order(order_id)
    ranked = get_available_agents_for_order(order.shopping_list_id, order.rejected_agent_ids())
    return jsonify({"ok": True, "agents": [s.to_dict() for s in ranked]}), 200


@admin_orders_bp.post("/orders/<int:order_id>/assign")
def admin_assign_agent(order_id: int):
    u = _require_user("admin")
    try:
        agent_id = int(_payload().get("agent_id"))
    except (TypeError, ValueError):
        raise BadRequestError("agent_id required")
    order = assign_agent_to_order(order_id, agent_id, performed_by=u.id)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@admin_orders_bp.get("/orders/<int:order_id>/consistency")
def admin_order_consistency(order_id: int):
    _require_user("admin")
    return jsonify({"ok": True, **validate_status_consistency(order_id)}), 200


@admin_orders_bp.post("/orders/<int:order_id>/reconcile")
def admin_order_reconcile(order_id: int):
    u = _require_user("admin")
    return jsonify({"ok": True, **reconcile_status(order_id, performed_by=u.id)}), 200


@admin_orders_bp.get("/orders/pending-assignment")
def admin_pending_assignment():
    _require_user("admin")
    rows = get_pending_agent_assignment_orders(limit=200)
    return jsonify({"ok": True, "orders": [o.to_dict() for o in rows]}), 200


@admin_orders_bp.get("/agents/nearby")
def admin_nearby_agents():
    _require_user("admin")
    try:
        lat = float(request.args.get("lat"))
        lng = float(request.args.get("lng"))
    except (TypeError, ValueError):
        raise BadRequestError("lat and lng required")
    try:
        result = find_nearby_agents(
            lat,
            lng,
            initial_radius=request.args.get("initial_radius", type=float),
            max_radius=request.args.get("max_radius", type=float),
        )
    except ValueError as e:
        raise BadRequestError(str(e))
    if isinstance(result, Found):
        return jsonify(
            {
                "ok": True,
                "found": True,
                "radius_km": result.radius_km,
                "agents": [a.to_dict() for a in result.agents],
            }
        ), 200
    return jsonify({"ok": True, "found": False, "max_radius_km": result.max_radius_km, "agents": []}), 200
