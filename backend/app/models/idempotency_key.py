from datetime import datetime

from app.extensions import db


class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("scope", "user_id", "key", name="uq_idempotency_scope_user_key"),
    )

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    scope = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    request_hash = db.Column(db.String(64), nullable=False)

    response_json = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=False, default=200)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
