from datetime import datetime

from marketrun.extensions import db


class OrderRejection(db.Model):
    __tablename__ = "order_rejections"
    __table_args__ = (
        db.UniqueConstraint("order_id", "agent_id", name="uq_order_rejection_order_agent"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reason = db.Column(db.String(240), nullable=False, default="")
    rejected_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    order = db.relationship("Order", back_populates="rejected_agents")

    def to_dict(self) -> dict:
        return {
            "agent_id": int(self.agent_id),
            "reason": self.reason or "",
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
        }
