from datetime import datetime

from marketrun.extensions import db


class AgentLocation(db.Model):
    __tablename__ = "agent_locations"

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    radius = db.Column(db.Float, nullable=False, default=5.0)  # km

    # service_area | current_location
    location_type = db.Column(db.String(24), nullable=False, default="service_area", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    name = db.Column(db.String(120), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    agent = db.relationship("User", back_populates="locations")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "agent_id": int(self.agent_id),
            "latitude": float(self.latitude),
            "longitude": float(self.longitude),
            "radius": float(self.radius or 0.0),
            "location_type": self.location_type or "service_area",
            "is_active": bool(self.is_active),
            "name": self.name or "",
            "address": self.address or "",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
