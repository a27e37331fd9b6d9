from datetime import datetime

from marketrun.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(80), nullable=False, default="")
    last_name = db.Column(db.String(80), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    # customer | agent | admin
    user_type = db.Column(db.String(16), nullable=False, default="customer", index=True)

    is_deactivated = db.Column(db.Boolean, nullable=False, default=False)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    is_kyc_verified = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    agent_settings = db.relationship(
        "AgentSettings",
        uselist=False,
        back_populates="agent",
        cascade="all, delete-orphan",
    )
    locations = db.relationship(
        "AgentLocation",
        back_populates="agent",
        cascade="all, delete-orphan",
        order_by="AgentLocation.id",
    )

    @property
    def role(self) -> str:
        return (self.user_type or "customer").strip().lower()

    @property
    def is_agent(self) -> bool:
        return self.role == "agent"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_authenticate(self) -> bool:
        return not (self.is_deactivated or self.is_blocked)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "email": self.email,
            "phone": self.phone,
            "user_type": self.user_type or "customer",
            "is_deactivated": bool(self.is_deactivated),
            "is_blocked": bool(self.is_blocked),
            "is_kyc_verified": bool(self.is_kyc_verified),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
