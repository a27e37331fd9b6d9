from datetime import datetime
import json

from marketrun.extensions import db


class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.UniqueConstraint(
            "reference_id", "reference_type", "provider", "idempotency_key",
            name="uq_payment_txn_reference_provider_key",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)

    reference_id = db.Column(db.Integer, nullable=False, index=True)
    # order | shopping_list
    reference_type = db.Column(db.String(24), nullable=False, default="order")
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    provider = db.Column(db.String(32), nullable=False, default="mock")
    provider_transaction_id = db.Column(db.String(128), nullable=True, unique=True, index=True)

    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="NGN")

    # pending | completed | failed | expired | cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    idempotency_key = db.Column(db.String(128), nullable=False, default="")

    provider_response_json = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def provider_response(self) -> dict:
        raw = self.provider_response_json
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
            return parsed if isinstance(parsed, dict) else {"payload": parsed}
        except Exception:
            return {"raw": str(raw)}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "reference_id": int(self.reference_id),
            "reference_type": self.reference_type or "order",
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "provider": self.provider or "",
            "provider_transaction_id": self.provider_transaction_id or "",
            "amount": float(self.amount or 0.0),
            "currency": self.currency or "NGN",
            "status": self.status or "pending",
            "attempts": int(self.attempts or 0),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
