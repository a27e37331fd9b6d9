from datetime import datetime

from marketrun.extensions import db


class AgentSettings(db.Model):
    """Typed agent availability and KYC metadata, one row per agent."""

    __tablename__ = "agent_settings"

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # available | busy | away | offline
    current_status = db.Column(db.String(16), nullable=False, default="offline", index=True)
    is_accepting_orders = db.Column(db.Boolean, nullable=False, default=False, index=True)
    last_status_update = db.Column(db.DateTime, nullable=True)

    kyc_complete = db.Column(db.Boolean, nullable=False, default=False)
    kyc_completed_at = db.Column(db.DateTime, nullable=True)
    nin = db.Column(db.String(32), nullable=True)
    images_json = db.Column(db.Text, nullable=True)
    identity_document_json = db.Column(db.Text, nullable=True)
    liveness_verification_json = db.Column(db.Text, nullable=True)

    metadata_version = db.Column(db.Integer, nullable=False, default=2)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    agent = db.relationship("User", back_populates="agent_settings")

    def to_dict(self) -> dict:
        return {
            "agent_id": int(self.agent_id),
            "current_status": self.current_status or "offline",
            "is_accepting_orders": bool(self.is_accepting_orders),
            "last_status_update": self.last_status_update.isoformat() if self.last_status_update else None,
            "kyc_complete": bool(self.kyc_complete),
            "metadata_version": int(self.metadata_version or 0),
        }
