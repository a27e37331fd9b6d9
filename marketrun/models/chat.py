from datetime import datetime

from marketrun.extensions import db


class ChatChannel(db.Model):
    __tablename__ = "chat_channels"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    activated_by = db.Column(db.String(64), nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "order_id": int(self.order_id),
            "is_active": bool(self.is_active),
            "activated_by": self.activated_by or "",
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
        }


class ChatMessage(db.Model):
    __tablename__ = "chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, nullable=True)
    sender_type = db.Column(db.String(16), nullable=False, default="system")
    body = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "sender_id": self.sender_id,
            "sender_type": self.sender_type or "system",
            "body": self.body or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
