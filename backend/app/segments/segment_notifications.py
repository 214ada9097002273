from __future__ import annotations

from datetime import datetime

from flask import Blueprint, request

from app.extensions import db
from app.models import Notification
from app.services.errors import NotFound
from app.services.notification_service import unread_count
from app.utils.principal import current_principal
from app.utils.responses import ok, paginate

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
def list_notifications():
    principal = current_principal()
    query = Notification.query.filter_by(user_id=principal.user_id)
    if (request.args.get("unread") or "").strip() in ("1", "true"):
        query = query.filter_by(is_read=False)
    data = paginate(query.order_by(Notification.created_at.desc(), Notification.id.desc()), lambda n: n.to_dict())
    data["unread_count"] = unread_count(principal.user_id)
    return ok(data, "Notifications retrieved successfully")


@notifications_bp.post("/notifications/<int:notification_id>/read")
def mark_read(notification_id: int):
    principal = current_principal()
    row = Notification.query.filter_by(id=notification_id, user_id=principal.user_id).first()
    if row is None:
        raise NotFound("Notification not found")
    row.mark_read()
    db.session.commit()
    return ok(row.to_dict(), "Notification marked as read")


@notifications_bp.post("/notifications/read-all")
def mark_all_read():
    principal = current_principal()
    now = datetime.utcnow()
    updated = (
        Notification.query.filter_by(user_id=principal.user_id, is_read=False)
        .update({"is_read": True, "read_at": now}, synchronize_session=False)
    )
    db.session.commit()
    return ok({"updated": int(updated or 0)}, "All notifications marked as read")
