from datetime import datetime

from marketrun.extensions import db


class WebhookEvent(db.Model):
    """One inbound AlatPay notification, keyed by a hash of (Id, Status, Amount).

    A row that is not ``failed`` makes a redelivery a replay; a failed one is
    retried and its ``attempts`` counter grows.
    """

    __tablename__ = "webhook_events"

    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="alatpay")
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    provider_transaction_id = db.Column(db.String(128), nullable=True, index=True)
    provider_status = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(32), nullable=False, default=RECEIVED)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    processed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_replay(self) -> bool:
        return (self.status or "") != self.FAILED

    def start_attempt(self, *, request_id: str = "", payload_json: str | None = None) -> None:
        self.status = self.RECEIVED
        self.error = None
        self.attempts = int(self.attempts or 0) + 1
        self.request_id = (request_id or "")[:64] or None
        if payload_json is not None:
            self.payload_json = payload_json

    def mark_processed(self, *, ignored: bool = False) -> None:
        self.status = self.IGNORED if ignored else self.PROCESSED
        self.processed_at = datetime.utcnow()

    def mark_failed(self, error: Exception) -> None:
        self.status = self.FAILED
        self.error = f"{type(error).__name__}: {error}"[:1000]

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event_id": self.event_id,
            "provider_transaction_id": self.provider_transaction_id or "",
            "provider_status": self.provider_status or "",
            "status": self.status or "",
            "attempts": int(self.attempts or 0),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "request_id": self.request_id or "",
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
