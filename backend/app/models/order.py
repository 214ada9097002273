from datetime import datetime

from app.extensions import db


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_DELIVERY = "in_delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    # Older clients send these; they read as the canonical values.
    ALIASES = {
        "in_transit": IN_DELIVERY,
        "delivered": COMPLETED,
    }

    ALL = (PENDING, CONFIRMED, IN_DELIVERY, COMPLETED, CANCELLED)

    @classmethod
    def normalize(cls, value: str | None) -> str:
        raw = (value or "").strip().lower()
        return cls.ALIASES.get(raw, raw)


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"


PAYMENT_METHOD_COD = "cod"


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    delivery_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=False)

    item_price = db.Column(db.Float, nullable=False, default=0.0)
    delivery_fee = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(24), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_METHOD_COD)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING)

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # "<buyer_id>:<item_id>" for donation claims; unique so a charity claims a batch once.
    donation_claim_key = db.Column(db.String(64), nullable=True, unique=True)
    distributed_at = db.Column(db.DateTime, nullable=True)
    distribution_notes = db.Column(db.Text, nullable=True)
    people_helped = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    in_delivery_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    item = db.relationship("Item", foreign_keys=[item_id])
    delivery_address = db.relationship("Address", foreign_keys=[delivery_address_id])
    deliveries = db.relationship(
        "Delivery",
        back_populates="order",
        order_by="Delivery.id",
        lazy="select",
    )

    @property
    def is_donation(self) -> bool:
        return bool(self.donation_claim_key) or bool(self.item is not None and self.item.is_donation)

    @property
    def active_delivery(self):
        """Latest delivery that has not been cancelled, if any."""
        for delivery in reversed(list(self.deliveries or [])):
            if delivery.status != "cancelled":
                return delivery
        return None

    def to_dict(self, *, include_item: bool = True):
        delivery = self.active_delivery
        payload = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "item_id": self.item_id,
            "delivery_address_id": self.delivery_address_id,
            "item_price": round(float(self.item_price or 0.0), 2),
            "delivery_fee": round(float(self.delivery_fee or 0.0), 2),
            "total_amount": round(float(self.total_amount or 0.0), 2),
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "is_donation": self.is_donation,
            "notes": self.notes or "",
            "cancellation_reason": self.cancellation_reason,
            "distributed_at": self.distributed_at.isoformat() if self.distributed_at else None,
            "distribution_notes": self.distribution_notes,
            "people_helped": self.people_helped,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "in_delivery_at": self.in_delivery_at.isoformat() if self.in_delivery_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "delivery": delivery.to_dict(include_order=False) if delivery else None,
        }
        if include_item and self.item is not None:
            payload["item"] = self.item.to_dict()
        if self.delivery_address is not None:
            payload["delivery_address"] = self.delivery_address.to_dict()
        return payload


class OrderSequence(db.Model):
    """Per-day counter backing RW-YYYYMMDD-NNNNN order numbers."""

    __tablename__ = "order_sequences"

    day = db.Column(db.String(8), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
