from datetime import datetime

from app.extensions import db


ITEM_CATEGORIES = ("tops", "bottoms", "dresses", "outerwear", "shoes", "accessories", "other")
ITEM_CONDITIONS = ("new", "like_new", "good", "fair")
ITEM_SIZES = ("XS", "S", "M", "L", "XL", "XXL", "XXXL", "One Size")
ITEM_GENDERS = ("male", "female", "unisex")


class ItemStatus:
    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"
    DONATED = "donated"


class Item(db.Model):
    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False, default="")
    description = db.Column(db.Text, nullable=True)

    category = db.Column(db.String(32), nullable=False, default="other", index=True)
    condition = db.Column(db.String(32), nullable=False, default="good")
    size = db.Column(db.String(16), nullable=True)
    gender = db.Column(db.String(16), nullable=True)

    # null for donation batches
    price = db.Column(db.Float, nullable=True)

    is_donation = db.Column(db.Boolean, nullable=False, default=False, index=True)
    donation_quantity = db.Column(db.Integer, nullable=True)
    donation_quantity_available = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ItemStatus.AVAILABLE, index=True)
    views_count = db.Column(db.Integer, nullable=False, default=0)

    sold_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    seller = db.relationship("User", foreign_keys=[seller_id], lazy="joined")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "seller": self.seller.to_public_dict() if self.seller else None,
            "title": self.title or "",
            "description": self.description or "",
            "category": self.category,
            "condition": self.condition,
            "size": self.size,
            "gender": self.gender,
            "price": float(self.price) if self.price is not None else None,
            "is_donation": bool(self.is_donation),
            "donation_quantity": self.donation_quantity,
            "donation_quantity_available": self.donation_quantity_available,
            "status": self.status,
            "views_count": int(self.views_count or 0),
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
