from datetime import datetime
import json

from marketrun.extensions import db


def _load(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except Exception:
        return {"raw": str(raw)}


class OrderTrail(db.Model):
    """Append-only audit entry for an order."""

    __tablename__ = "order_trails"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default="")

    previous_value_json = db.Column(db.Text, nullable=True)
    new_value_json = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def metadata_dict(self) -> dict:
        parsed = _load(self.metadata_json)
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "action": self.action or "",
            "description": self.description or "",
            "previous_value": _load(self.previous_value_json),
            "new_value": _load(self.new_value_json),
            "metadata": self.metadata_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
