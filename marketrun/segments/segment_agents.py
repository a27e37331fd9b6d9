from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from marketrun.extensions import db
from marketrun.models import User
from marketrun.services.agent_metadata import AgentMetadata
from marketrun.services.agent_service import (
    add_agent_location,
    delete_agent_location,
    get_agent_stats,
    get_agent_status,
    list_agent_locations,
    set_agent_accepting_orders,
    update_agent_documents,
    update_agent_location,
    update_agent_status,
    update_current_location,
)
from marketrun.utils.errors import BadRequestError, ForbiddenError, UnauthorizedError

agents_bp = Blueprint("agents_bp", __name__, url_prefix="/api/agent")


def _require_agent() -> User:
    uid = getattr(g, "auth_user_id", None)
    if uid is None:
        raise UnauthorizedError("Unauthorized")
    user = db.session.get(User, int(uid))
    if user is None or not user.is_agent:
        raise ForbiddenError("Agents only")
    return user


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _optional_bool(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@agents_bp.get("/status")
def agent_status():
    agent = _require_agent()
    return jsonify({"ok": True, **get_agent_status(agent.id)}), 200


@agents_bp.post("/status")
def set_agent_status():
    agent = _require_agent()
    payload = _payload()
    row = update_agent_status(
        agent.id,
        str(payload.get("status") or ""),
        _optional_bool(payload.get("is_accepting_orders")),
    )
    return jsonify({"ok": True, "settings": row.to_dict()}), 200


@agents_bp.post("/accepting-orders")
def set_accepting_orders():
    agent = _require_agent()
    accepting = _optional_bool(_payload().get("is_accepting_orders"))
    if accepting is None:
        raise BadRequestError("is_accepting_orders required")
    row = set_agent_accepting_orders(agent.id, accepting)
    return jsonify({"ok": True, "settings": row.to_dict()}), 200


@agents_bp.get("/stats")
def agent_stats():
    agent = _require_agent()
    return jsonify({"ok": True, **get_agent_stats(agent.id)}), 200


@agents_bp.get("/locations")
def agent_locations():
    agent = _require_agent()
    return jsonify({"ok": True, "items": [loc.to_dict() for loc in list_agent_locations(agent.id)]}), 200


@agents_bp.post("/locations")
def create_agent_location():
    agent = _require_agent()
    row = add_agent_location(agent.id, _payload())
    return jsonify({"ok": True, "location": row.to_dict()}), 201


@agents_bp.patch("/locations/<int:location_id>")
def patch_agent_location(location_id: int):
    agent = _require_agent()
    row = update_agent_location(agent.id, location_id, _payload())
    return jsonify({"ok": True, "location": row.to_dict()}), 200


@agents_bp.delete("/locations/<int:location_id>")
def remove_agent_location(location_id: int):
    agent = _require_agent()
    delete_agent_location(agent.id, location_id)
    return jsonify({"ok": True}), 200


@agents_bp.post("/current-location")
def post_current_location():
    agent = _require_agent()
    payload = _payload()
    row = update_current_location(
        agent.id,
        payload.get("latitude"),
        payload.get("longitude"),
        address=payload.get("address"),
    )
    return jsonify({"ok": True, "location": row.to_dict()}), 200


@agents_bp.post("/documents")
def post_agent_documents():
    agent = _require_agent()
    payload = _payload()
    row = update_agent_documents(
        agent.id,
        nin=payload.get("nin"),
        images=payload.get("images"),
        identity_document=payload.get("identity_document"),
    )
    return jsonify({"ok": True, "metadata": AgentMetadata.from_settings(row).to_dict()}), 200
