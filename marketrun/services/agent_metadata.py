"""Typed agent metadata and the migration from the legacy JSON blob.

Version 1 is the free-form ``agentMetaData`` document that older clients
wrote (camelCase keys, ISO timestamps as strings). Version 2 is the typed
``AgentSettings`` row. ``migrate_metadata`` upgrades any known version to the
current one; ``AgentMetadata.apply_to`` is the only place that copies the
value object onto a settings row.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime

from marketrun.extensions import db
from marketrun.models import AgentSettings

CURRENT_VERSION = 2

AGENT_STATUSES = ("available", "busy", "away", "offline")


def _parse_dt(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def _load_json(raw, default):
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return parsed if isinstance(parsed, type(default)) else default


def _normalize_status(value) -> str:
    status = (str(value or "")).strip().lower()
    return status if status in AGENT_STATUSES else "offline"


@dataclass(frozen=True)
class AgentMetadata:
    current_status: str = "offline"
    is_accepting_orders: bool = False
    last_status_update: datetime | None = None
    kyc_complete: bool = False
    kyc_completed_at: datetime | None = None
    nin: str = ""
    images: list = field(default_factory=list)
    identity_document: dict = field(default_factory=dict)
    liveness_verification: dict = field(default_factory=dict)
    version: int = CURRENT_VERSION

    @classmethod
    def from_settings(cls, row: AgentSettings | None) -> "AgentMetadata":
        if row is None:
            return cls()
        return cls(
            current_status=_normalize_status(row.current_status),
            is_accepting_orders=bool(row.is_accepting_orders),
            last_status_update=row.last_status_update,
            kyc_complete=bool(row.kyc_complete),
            kyc_completed_at=row.kyc_completed_at,
            nin=row.nin or "",
            images=_load_json(row.images_json, []),
            identity_document=_load_json(row.identity_document_json, {}),
            liveness_verification=_load_json(row.liveness_verification_json, {}),
            version=int(row.metadata_version or CURRENT_VERSION),
        )

    def with_changes(self, **changes) -> "AgentMetadata":
        return replace(self, **changes)

    def apply_to(self, row: AgentSettings) -> AgentSettings:
        row.current_status = _normalize_status(self.current_status)
        row.is_accepting_orders = bool(self.is_accepting_orders)
        row.last_status_update = self.last_status_update
        row.kyc_complete = bool(self.kyc_complete)
        row.kyc_completed_at = self.kyc_completed_at
        row.nin = (self.nin or "")[:32] or None
        row.images_json = json.dumps(list(self.images or []))
        row.identity_document_json = json.dumps(dict(self.identity_document or {}))
        row.liveness_verification_json = json.dumps(dict(self.liveness_verification or {}))
        row.metadata_version = CURRENT_VERSION
        return row

    def to_dict(self) -> dict:
        return {
            "current_status": self.current_status,
            "is_accepting_orders": bool(self.is_accepting_orders),
            "last_status_update": self.last_status_update.isoformat() if self.last_status_update else None,
            "kyc_complete": bool(self.kyc_complete),
            "kyc_completed_at": self.kyc_completed_at.isoformat() if self.kyc_completed_at else None,
            "nin": self.nin,
            "images": list(self.images or []),
            "identity_document": dict(self.identity_document or {}),
            "version": self.version,
        }


def _migrate_v1(blob: dict) -> AgentMetadata:
    images = blob.get("images")
    identity = blob.get("identityDocument")
    liveness = blob.get("livenessVerification")
    return AgentMetadata(
        current_status=_normalize_status(blob.get("currentStatus")),
        is_accepting_orders=bool(blob.get("isAcceptingOrders", False)),
        last_status_update=_parse_dt(blob.get("lastStatusUpdate")),
        kyc_complete=bool(blob.get("kycComplete", False)),
        kyc_completed_at=_parse_dt(blob.get("kycCompletedAt")),
        nin=str(blob.get("nin") or ""),
        images=list(images) if isinstance(images, list) else [],
        identity_document=dict(identity) if isinstance(identity, dict) else {},
        liveness_verification=dict(liveness) if isinstance(liveness, dict) else {},
        version=CURRENT_VERSION,
    )


def migrate_metadata(blob, *, version: int | None = None) -> AgentMetadata:
    if blob is None:
        return AgentMetadata()
    if isinstance(blob, str):
        blob = _load_json(blob, {})
    if not isinstance(blob, dict):
        raise ValueError("agent metadata must be an object")
    v = int(version if version is not None else blob.get("version") or 1)
    if v == 1:
        return _migrate_v1(blob)
    if v == CURRENT_VERSION:
        return AgentMetadata(
            current_status=_normalize_status(blob.get("current_status")),
            is_accepting_orders=bool(blob.get("is_accepting_orders", False)),
            last_status_update=_parse_dt(blob.get("last_status_update")),
            kyc_complete=bool(blob.get("kyc_complete", False)),
            kyc_completed_at=_parse_dt(blob.get("kyc_completed_at")),
            nin=str(blob.get("nin") or ""),
            images=list(blob.get("images") or []),
            identity_document=dict(blob.get("identity_document") or {}),
            liveness_verification=dict(blob.get("liveness_verification") or {}),
        )
    raise ValueError(f"unsupported agent metadata version {v}")


def ensure_agent_settings(agent_id: int) -> AgentSettings:
    """Return the settings row for an agent, creating an offline default."""
    row = AgentSettings.query.filter_by(agent_id=int(agent_id)).first()
    if row is None:
        row = AgentMetadata(last_status_update=datetime.utcnow()).apply_to(AgentSettings(agent_id=int(agent_id)))
        db.session.add(row)
        db.session.flush()
    return row


def import_legacy_metadata(agent_id: int, blob) -> AgentSettings:
    row = ensure_agent_settings(agent_id)
    migrate_metadata(blob).apply_to(row)
    db.session.add(row)
    return row


def write_availability(agent_id: int, *, status: str, is_accepting_orders: bool) -> AgentSettings:
    """Set an agent's availability on their settings row. Joins the caller's session."""
    row = ensure_agent_settings(agent_id)
    meta = AgentMetadata.from_settings(row).with_changes(
        current_status=_normalize_status(status),
        is_accepting_orders=bool(is_accepting_orders),
        last_status_update=datetime.utcnow(),
    )
    meta.apply_to(row)
    db.session.add(row)
    return row
