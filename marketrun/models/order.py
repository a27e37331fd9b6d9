from datetime import datetime

from marketrun.extensions import db
from marketrun.utils.json_safe import load_json_object


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    shopping_list_id = db.Column(db.Integer, db.ForeignKey("shopping_lists.id"), nullable=False, unique=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)

    # pending | completed | failed | expired
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_id = db.Column(db.String(128), nullable=True)
    payment_processed_at = db.Column(db.DateTime, nullable=True)

    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    service_fee = db.Column(db.Float, nullable=False, default=0.0)
    delivery_fee = db.Column(db.Float, nullable=False, default=0.0)

    delivery_address_json = db.Column(db.Text, nullable=True)
    customer_notes = db.Column(db.Text, nullable=True)
    agent_notes = db.Column(db.Text, nullable=True)

    accepted_at = db.Column(db.DateTime, nullable=True)
    shopping_started_at = db.Column(db.DateTime, nullable=True)
    shopping_completed_at = db.Column(db.DateTime, nullable=True)
    delivery_started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    shopping_list = db.relationship("ShoppingList", foreign_keys=[shopping_list_id])
    agent = db.relationship("User", foreign_keys=[agent_id])
    customer = db.relationship("User", foreign_keys=[customer_id])
    rejected_agents = db.relationship(
        "OrderRejection",
        back_populates="order",
        order_by="OrderRejection.id",
        cascade="all, delete-orphan",
    )

    def delivery_address(self) -> dict:
        return load_json_object(self.delivery_address_json)

    def rejected_agent_ids(self) -> list[int]:
        return [int(r.agent_id) for r in (self.rejected_agents or [])]

    def to_dict(self) -> dict:
        def _ts(value):
            return value.isoformat() if value else None

        return {
            "id": int(self.id),
            "order_number": self.order_number,
            "customer_id": int(self.customer_id),
            "agent_id": int(self.agent_id) if self.agent_id is not None else None,
            "shopping_list_id": int(self.shopping_list_id),
            "status": self.status or "pending",
            "payment_status": self.payment_status or "pending",
            "payment_id": self.payment_id or "",
            "payment_processed_at": _ts(self.payment_processed_at),
            "total_amount": float(self.total_amount or 0.0),
            "service_fee": float(self.service_fee or 0.0),
            "delivery_fee": float(self.delivery_fee or 0.0),
            "delivery_address": self.delivery_address(),
            "customer_notes": self.customer_notes or "",
            "agent_notes": self.agent_notes or "",
            "accepted_at": _ts(self.accepted_at),
            "shopping_started_at": _ts(self.shopping_started_at),
            "shopping_completed_at": _ts(self.shopping_completed_at),
            "delivery_started_at": _ts(self.delivery_started_at),
            "completed_at": _ts(self.completed_at),
            "cancelled_at": _ts(self.cancelled_at),
            "rejected_agents": [r.to_dict() for r in (self.rejected_agents or [])],
            "created_at": _ts(self.created_at),
        }
