from datetime import datetime

from app.extensions import db


VEHICLE_TYPES = ("car", "motorcycle", "bicycle")


class DriverApplicationStatus:
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    OPEN = (PENDING, UNDER_REVIEW)

    ALLOWED = {
        PENDING: {UNDER_REVIEW, APPROVED, REJECTED},
        UNDER_REVIEW: {APPROVED, REJECTED},
        APPROVED: set(),
        REJECTED: set(),
    }


class DriverApplication(db.Model):
    __tablename__ = "driver_applications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    full_name = db.Column(db.String(120), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    vehicle_type = db.Column(db.String(16), nullable=False, default="car")

    id_document_url = db.Column(db.String(1024), nullable=True)
    driving_license_url = db.Column(db.String(1024), nullable=True)
    vehicle_registration_url = db.Column(db.String(1024), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=DriverApplicationStatus.PENDING, index=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email or "",
            "address": self.address or "",
            "city": self.city or "",
            "vehicle_type": self.vehicle_type,
            "id_document_url": self.id_document_url,
            "driving_license_url": self.driving_license_url,
            "vehicle_registration_url": self.vehicle_registration_url,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
