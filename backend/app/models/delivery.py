from datetime import datetime

from app.extensions import db


class Delivery(db.Model):
    __tablename__ = "deliveries"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    pickup_address = db.Column(db.String(255), nullable=True)
    pickup_latitude = db.Column(db.Float, nullable=True)
    pickup_longitude = db.Column(db.Float, nullable=True)
    delivery_address = db.Column(db.String(255), nullable=True)
    delivery_latitude = db.Column(db.Float, nullable=True)
    delivery_longitude = db.Column(db.Float, nullable=True)

    distance_km = db.Column(db.Float, nullable=False, default=0.0)
    duration_minutes = db.Column(db.Integer, nullable=True)
    route_polyline = db.Column(db.Text, nullable=True)
    is_fallback_route = db.Column(db.Boolean, nullable=False, default=False)

    delivery_fee = db.Column(db.Float, nullable=False, default=0.0)
    driver_earning = db.Column(db.Float, nullable=False, default=0.0)
    platform_fee = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    superseded_by_id = db.Column(
        db.Integer,
        db.ForeignKey("deliveries.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    assigned_at = db.Column(db.DateTime, nullable=True)
    picked_up_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    order = db.relationship("Order", back_populates="deliveries")
    driver = db.relationship("User", foreign_keys=[driver_id])
    superseded_by = db.relationship("Delivery", remote_side=[id], uselist=False)

    def append_notes(self, notes: str | None) -> None:
        text = (notes or "").strip()
        if not text:
            return
        self.notes = f"{self.notes}\n{text}" if self.notes else text

    def to_dict(self, *, include_order: bool = True):
        payload = {
            "id": self.id,
            "order_id": self.order_id,
            "driver_id": self.driver_id,
            "driver": self.driver.to_public_dict() if self.driver else None,
            "pickup_address": self.pickup_address or "",
            "pickup_latitude": self.pickup_latitude,
            "pickup_longitude": self.pickup_longitude,
            "delivery_address": self.delivery_address or "",
            "delivery_latitude": self.delivery_latitude,
            "delivery_longitude": self.delivery_longitude,
            "distance_km": round(float(self.distance_km or 0.0), 2),
            "duration_minutes": self.duration_minutes,
            "is_fallback_route": bool(self.is_fallback_route),
            "delivery_fee": round(float(self.delivery_fee or 0.0), 2),
            "driver_earning": round(float(self.driver_earning or 0.0), 2),
            "platform_fee": round(float(self.platform_fee or 0.0), 2),
            "status": self.status,
            "notes": self.notes or "",
            "failure_reason": self.failure_reason,
            "superseded_by_id": self.superseded_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "picked_up_at": self.picked_up_at.isoformat() if self.picked_up_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
        if include_order and self.order is not None:
            payload["order"] = {
                "id": self.order.id,
                "order_number": self.order.order_number,
                "status": self.order.status,
                "buyer_id": self.order.buyer_id,
                "seller_id": self.order.seller_id,
                "item_id": self.order.item_id,
                "total_amount": round(float(self.order.total_amount or 0.0), 2),
            }
        return payload
