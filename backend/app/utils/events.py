from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from app.extensions import db
from app.models import AuditEvent
from app.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    try:
        return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps({"raw": str(normalized)})


def log_event(
    event_type: str,
    *,
    actor_user_id: int | None = None,
    order_id: int | None = None,
    delivery_id: int | None = None,
    severity: str = "INFO",
    metadata: dict | None = None,
) -> AuditEvent:
    """Stage an audit row in the caller's unit of work; it commits or rolls back with it."""
    event = AuditEvent(
        event_type=(event_type or "unknown").strip()[:80],
        actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
        order_id=int(order_id) if order_id is not None else None,
        delivery_id=int(delivery_id) if delivery_id is not None else None,
        request_id=(get_request_id() or "").strip()[:80] or None,
        severity=(severity or "INFO").strip().upper()[:16] or "INFO",
        metadata_json=_safe_json(metadata or {}),
    )
    db.session.add(event)
    logger.info(
        "audit event_type=%s actor=%s order_id=%s delivery_id=%s",
        event.event_type,
        event.actor_user_id,
        event.order_id,
        event.delivery_id,
    )
    return event
