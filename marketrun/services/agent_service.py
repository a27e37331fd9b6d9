from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import selectinload

from marketrun.extensions import db
from marketrun.models import AgentLocation, AgentSettings, Order, ShoppingList, User
from marketrun.services.agent_metadata import (
    AGENT_STATUSES,
    AgentMetadata,
    ensure_agent_settings,
    write_availability,
)
from marketrun.utils.errors import BadRequestError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

LOCATION_TYPES = ("service_area", "current_location")


def _get_agent(agent_id) -> User:
    try:
        user = db.session.get(User, int(agent_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise NotFoundError("Agent not found")
    if not user.is_agent:
        raise BadRequestError("User is not an agent")
    return user


def get_eligible_agents(exclude_agent_ids=()) -> list[User]:
    """Agents that may receive an order right now, with their active locations loaded."""
    excluded = {int(a) for a in (exclude_agent_ids or ())}
    q = (
        User.query.join(AgentSettings, AgentSettings.agent_id == User.id)
        .filter(
            User.user_type == "agent",
            User.is_kyc_verified.is_(True),
            User.is_deactivated.is_(False),
            User.is_blocked.is_(False),
            AgentSettings.current_status == "available",
            AgentSettings.is_accepting_orders.is_(True),
        )
        .options(selectinload(User.locations))
    )
    if excluded:
        q = q.filter(~User.id.in_(excluded))
    return q.order_by(User.id.asc()).all()


def is_agent_eligible(agent: User | None) -> bool:
    if agent is None or not agent.is_agent:
        return False
    if not agent.is_kyc_verified or agent.is_deactivated or agent.is_blocked:
        return False
    settings = agent.agent_settings
    if settings is None:
        return False
    return settings.current_status == "available" and bool(settings.is_accepting_orders)


def sync_kyc_flag(agent: User, row: AgentSettings) -> bool:
    """Align the settings row's ``kyc_complete`` with the user's KYC verification. True when it changed."""
    verified = bool(agent.is_kyc_verified)
    if bool(row.kyc_complete) == verified:
        return False
    AgentMetadata.from_settings(row).with_changes(
        kyc_complete=verified,
        kyc_completed_at=(row.kyc_completed_at or datetime.utcnow()) if verified else None,
    ).apply_to(row)
    db.session.add(row)
    logger.info("agent_kyc_complete_healed agent_id=%s kyc_complete=%s", agent.id, verified)
    return True


def update_agent_status(agent_id, status: str, is_accepting_orders: bool | None = None, *, commit: bool = True) -> AgentSettings:
    target = (status or "").strip().lower()
    if target not in AGENT_STATUSES:
        raise BadRequestError(f"Invalid agent status '{status}'")
    try:
        agent = _get_agent(agent_id)
        row = ensure_agent_settings(agent.id)
        if target == "available":
            if not agent.is_kyc_verified:
                meta = AgentMetadata.from_settings(row)
                raise ForbiddenError(
                    "KYC verification required to go online",
                    code="KYC_REQUIRED",
                    details={
                        "current_status": meta.current_status,
                        "kyc_verified": False,
                        "kyc_complete": meta.kyc_complete,
                        "required_actions": [
                            a
                            for a in (
                                "Upload KYC documents" if not meta.identity_document else None,
                                "Complete KYC verification process" if not meta.kyc_complete else None,
                                "Wait for KYC approval",
                            )
                            if a
                        ],
                    },
                )
            sync_kyc_flag(agent, row)
        accepting = target == "available" and (is_accepting_orders is not False)
        row = write_availability(agent.id, status=target, is_accepting_orders=accepting)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("agent_status_updated agent_id=%s status=%s accepting=%s", agent_id, target, accepting)
    return row


def set_agent_accepting_orders(agent_id, is_accepting_orders: bool, *, commit: bool = True) -> AgentSettings:
    try:
        agent = _get_agent(agent_id)
        row = ensure_agent_settings(agent.id)
        accepting = bool(is_accepting_orders)
        if accepting and not agent.is_kyc_verified:
            raise ForbiddenError("KYC verification required to accept orders", code="KYC_REQUIRED")
        if accepting and row.current_status != "available":
            raise BadRequestError("Go online before accepting orders")
        row = write_availability(agent.id, status=row.current_status, is_accepting_orders=accepting)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return row


def get_agent_status(agent_id, *, commit: bool = True) -> dict:
    agent = _get_agent(agent_id)
    try:
        row = ensure_agent_settings(agent.id)
        if sync_kyc_flag(agent, row) and commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    meta = AgentMetadata.from_settings(row)
    current = (
        AgentLocation.query.filter_by(agent_id=int(agent.id), location_type="current_location", is_active=True)
        .order_by(AgentLocation.updated_at.desc())
        .first()
    )
    return {
        "status": meta.current_status,
        "is_accepting_orders": meta.is_accepting_orders,
        "last_status_update": meta.last_status_update.isoformat() if meta.last_status_update else None,
        "kyc_verified": bool(agent.is_kyc_verified),
        "kyc_complete": meta.kyc_complete,
        "can_go_online": bool(agent.is_kyc_verified),
        "location": current.to_dict() if current else None,
    }


def get_agent_stats(agent_id) -> dict:
    agent = _get_agent(agent_id)
    base = Order.query.filter(Order.agent_id == int(agent.id))
    unique_markets = (
        db.session.query(db.func.count(db.distinct(ShoppingList.market_id)))
        .join(Order, Order.shopping_list_id == ShoppingList.id)
        .filter(Order.agent_id == int(agent.id))
        .scalar()
    )
    return {
        "total_orders": base.count(),
        "completed_orders": base.filter(Order.status == "completed").count(),
        "cancelled_orders": base.filter(Order.status == "cancelled").count(),
        "pending_orders": base.filter(Order.status.in_(("pending", "accepted", "in_progress"))).count(),
        "unique_markets": int(unique_markets or 0),
    }


def _coerce_coordinates(data: dict, *, required: bool) -> dict:
    out = {}
    for key, low, high in (("latitude", -90.0, 90.0), ("longitude", -180.0, 180.0)):
        if data.get(key) is None:
            if required:
                raise BadRequestError(f"{key} is required")
            continue
        try:
            value = float(data[key])
        except (TypeError, ValueError):
            raise BadRequestError(f"{key} must be a number")
        if value < low or value > high:
            raise BadRequestError(f"{key} out of range")
        out[key] = value
    return out


def _coerce_location_fields(data: dict, *, required: bool) -> dict:
    fields = _coerce_coordinates(data, required=required)
    if data.get("radius") is not None:
        try:
            radius = float(data["radius"])
        except (TypeError, ValueError):
            raise BadRequestError("radius must be a number")
        if radius <= 0:
            raise BadRequestError("radius must be positive")
        fields["radius"] = radius
    if data.get("location_type") is not None:
        location_type = str(data["location_type"]).strip().lower()
        if location_type not in LOCATION_TYPES:
            raise BadRequestError(f"Invalid location type '{data['location_type']}'")
        fields["location_type"] = location_type
    if data.get("is_active") is not None:
        fields["is_active"] = bool(data["is_active"])
    for key in ("name", "address"):
        if data.get(key) is not None:
            fields[key] = str(data[key])[:255]
    return fields


def add_agent_location(agent_id, data: dict, *, commit: bool = True) -> AgentLocation:
    fields = _coerce_location_fields(data or {}, required=True)
    try:
        agent = _get_agent(agent_id)
        row = AgentLocation(
            agent_id=int(agent.id),
            radius=fields.pop("radius", 5.0),
            location_type=fields.pop("location_type", "service_area"),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db.session.add(row)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return row


def update_agent_location(agent_id, location_id, data: dict, *, commit: bool = True) -> AgentLocation:
    fields = _coerce_location_fields(data or {}, required=False)
    try:
        row = AgentLocation.query.filter_by(id=int(location_id), agent_id=int(agent_id)).first()
        if row is None:
            raise NotFoundError("Location not found")
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = datetime.utcnow()
        db.session.add(row)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return row


def delete_agent_location(agent_id, location_id, *, commit: bool = True) -> None:
    try:
        row = AgentLocation.query.filter_by(id=int(location_id), agent_id=int(agent_id)).first()
        if row is None:
            raise NotFoundError("Location not found")
        db.session.delete(row)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise


def list_agent_locations(agent_id) -> list[AgentLocation]:
    return AgentLocation.query.filter_by(agent_id=int(agent_id)).order_by(AgentLocation.id.asc()).all()


def update_current_location(agent_id, latitude, longitude, *, address: str | None = None, commit: bool = True) -> AgentLocation:
    coords = _coerce_coordinates({"latitude": latitude, "longitude": longitude}, required=True)
    try:
        agent = _get_agent(agent_id)
        row = (
            AgentLocation.query.filter_by(agent_id=int(agent.id), location_type="current_location")
            .order_by(AgentLocation.id.asc())
            .first()
        )
        if row is None:
            row = AgentLocation(agent_id=int(agent.id), location_type="current_location", radius=0.5, name="Current location")
        row.latitude = coords["latitude"]
        row.longitude = coords["longitude"]
        row.is_active = True
        if address is not None:
            row.address = str(address)[:255]
        row.updated_at = datetime.utcnow()
        db.session.add(row)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return row


def update_agent_documents(agent_id, *, nin: str | None = None, images=None, identity_document: dict | None = None, commit: bool = True) -> AgentSettings:
    try:
        agent = _get_agent(agent_id)
        row = ensure_agent_settings(agent.id)
        meta = AgentMetadata.from_settings(row)
        changes = {}
        if nin is not None:
            cleaned = str(nin).strip()
            if not cleaned.isdigit() or len(cleaned) != 11:
                raise BadRequestError("NIN must be 11 digits")
            changes["nin"] = cleaned
        if images:
            if not isinstance(images, (list, tuple)):
                raise BadRequestError("images must be a list")
            changes["images"] = list(meta.images) + [str(i) for i in images if str(i).strip()]
        if identity_document is not None:
            if not isinstance(identity_document, dict):
                raise BadRequestError("identity_document must be an object")
            changes["identity_document"] = dict(identity_document)
        if not changes:
            raise BadRequestError("No documents supplied")
        meta.with_changes(**changes).apply_to(row)
        db.session.add(row)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return row
