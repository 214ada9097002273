from datetime import datetime
import json

from app.extensions import db


class AuditEvent(db.Model):
    """Append-only trail of lifecycle transitions and money movements."""

    __tablename__ = "audit_events"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    event_type = db.Column(db.String(80), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=True, index=True)

    order_id = db.Column(db.Integer, nullable=True, index=True)
    delivery_id = db.Column(db.Integer, nullable=True, index=True)

    request_id = db.Column(db.String(80), nullable=True)
    severity = db.Column(db.String(16), nullable=False, default="INFO")
    metadata_json = db.Column(db.Text, nullable=True)

    def metadata_dict(self) -> dict:
        if not self.metadata_json:
            return {}
        try:
            parsed = json.loads(self.metadata_json)
        except ValueError:
            return {"raw": str(self.metadata_json)}
        return parsed if isinstance(parsed, dict) else {"raw": parsed}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "event_type": self.event_type,
            "actor_user_id": self.actor_user_id,
            "order_id": self.order_id,
            "delivery_id": self.delivery_id,
            "request_id": self.request_id or "",
            "severity": self.severity or "INFO",
            "metadata": self.metadata_dict(),
        }
