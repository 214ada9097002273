from datetime import datetime

from app.extensions import db


class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    label = db.Column(db.String(64), nullable=True)
    full_name = db.Column(db.String(120), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)

    address_line1 = db.Column(db.String(255), nullable=False, default="")
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=False, default="")
    state = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(120), nullable=False, default="Lebanon")

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def full_address(self) -> str:
        parts = [self.address_line1, self.address_line2, self.city, self.state, self.postal_code, self.country]
        return ", ".join(p.strip() for p in parts if (p or "").strip())

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "label": self.label or "",
            "full_name": self.full_name or "",
            "phone": self.phone or "",
            "address_line1": self.address_line1 or "",
            "address_line2": self.address_line2 or "",
            "city": self.city or "",
            "state": self.state or "",
            "postal_code": self.postal_code or "",
            "country": self.country or "",
            "full_address": self.full_address(),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_default": bool(self.is_default),
        }
