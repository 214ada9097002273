from datetime import datetime
import json

from app.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(48), nullable=False, index=True)  # order_placed | delivery_assigned | ...
    title = db.Column(db.String(160), nullable=False, default="")
    message = db.Column(db.Text, nullable=False, default="")

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except ValueError:
            return {}

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = read_at or datetime.utcnow()
        if not self.is_read:
            self.is_read = True
            self.read_at = stamped
        return self.read_at or stamped

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title or "",
            "message": self.message or "",
            "is_read": bool(self.is_read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "data": self.meta_dict(),
        }
