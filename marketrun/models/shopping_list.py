from datetime import datetime

from marketrun.extensions import db


class ShoppingList(db.Model):
    __tablename__ = "shopping_lists"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, default="")

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    market_id = db.Column(db.Integer, db.ForeignKey("markets.id"), nullable=True, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # draft | accepted | processing | completed | cancelled
    status = db.Column(db.String(24), nullable=False, default="draft", index=True)

    estimated_total = db.Column(db.Float, nullable=False, default=0.0)

    payment_status = db.Column(db.String(16), nullable=True)
    payment_id = db.Column(db.String(128), nullable=True)
    payment_processed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    market = db.relationship("Market")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name or "",
            "customer_id": int(self.customer_id),
            "market_id": int(self.market_id) if self.market_id is not None else None,
            "agent_id": int(self.agent_id) if self.agent_id is not None else None,
            "status": self.status or "draft",
            "estimated_total": float(self.estimated_total or 0.0),
            "payment_status": self.payment_status or "",
            "payment_id": self.payment_id or "",
            "payment_processed_at": self.payment_processed_at.isoformat() if self.payment_processed_at else None,
        }
