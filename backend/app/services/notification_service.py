from __future__ import annotations

import json
import logging
from functools import partial

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Notification, User
from app.utils.transactions import atomic, on_commit

logger = logging.getLogger(__name__)


def notify(user_id: int, type_: str, title: str, message: str, meta: dict | None = None) -> Notification | None:
    """Persist an in-app notification; failures are logged, never raised."""
    try:
        with atomic():
            row = Notification(
                user_id=int(user_id),
                type=(type_ or "general")[:48],
                title=(title or "")[:160],
                message=message or "",
                meta=json.dumps(meta or {}, separators=(",", ":"), default=str),
            )
            db.session.add(row)
        return row
    except SQLAlchemyError:
        logger.exception("notification_failed user_id=%s type=%s", user_id, type_)
        return None


def notify_after_commit(user_id: int | None, type_: str, title: str, message: str, meta: dict | None = None) -> None:
    if user_id is None:
        return
    on_commit(partial(notify, int(user_id), type_, title, message, meta))


def notify_other_charities(except_user_id: int, type_: str, title: str, message: str, meta: dict | None = None) -> None:
    def _broadcast():
        ids = [
            uid
            for (uid,) in db.session.query(User.id)
            .filter(User.role == "charity", User.id != int(except_user_id))
            .all()
        ]
        for uid in ids:
            notify(uid, type_, title, message, meta)
        logger.info("charity_broadcast type=%s recipients=%s", type_, len(ids))

    on_commit(_broadcast)


def unread_count(user_id: int) -> int:
    return Notification.query.filter_by(user_id=int(user_id), is_read=False).count()
