from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any

from flask import request
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import IdempotencyKey

logger = logging.getLogger(__name__)

HEADER = "Idempotency-Key"


@dataclass
class IdempotencyOutcome:
    """``row`` is set for a fresh claim; ``body``/``status`` for a replay or conflict."""

    row: IdempotencyKey | None = None
    body: dict | None = None
    status: int = 200

    @property
    def is_replay(self) -> bool:
        return self.row is None


def get_idempotency_key() -> str:
    return (request.headers.get(HEADER) or "").strip()[:128]


def _hash_request(payload: Any) -> str:
    try:
        encoded = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        encoded = str(payload)
    return hashlib.sha256(f"{request.method}:{request.path}:{encoded}".encode("utf-8")).hexdigest()


def _conflict(message: str) -> IdempotencyOutcome:
    return IdempotencyOutcome(
        body={"success": False, "message": message, "error": "IDEMPOTENCY_CONFLICT"},
        status=409,
    )


def claim(scope: str, user_id: int, payload: Any) -> IdempotencyOutcome | None:
    """Reserve the request's key, or return the stored outcome of an earlier attempt.

    Returns None when the request carries no key.
    """
    key = get_idempotency_key()
    if not key:
        return None
    req_hash = _hash_request(payload)
    existing = IdempotencyKey.query.filter_by(scope=scope, user_id=int(user_id), key=key).first()
    if existing is None:
        row = IdempotencyKey(scope=scope, user_id=int(user_id), key=key, request_hash=req_hash)
        db.session.add(row)
        try:
            db.session.commit()
            return IdempotencyOutcome(row=row)
        except IntegrityError:
            db.session.rollback()
            existing = IdempotencyKey.query.filter_by(scope=scope, user_id=int(user_id), key=key).first()
            if existing is None:
                raise
    if existing.request_hash != req_hash:
        return _conflict("Idempotency-Key reused with a different payload")
    if existing.response_json is None:
        return _conflict("A request with this Idempotency-Key is still in progress")
    logger.info("idempotency_replay scope=%s user_id=%s", scope, user_id)
    return IdempotencyOutcome(body=json.loads(existing.response_json), status=int(existing.status_code or 200))


def store_response(row: IdempotencyKey, body: dict, status_code: int) -> None:
    row.response_json = json.dumps(body, separators=(",", ":"), default=str)
    row.status_code = int(status_code or 200)
    db.session.add(row)
    db.session.commit()


def release(row: IdempotencyKey) -> None:
    """Drop a claim whose request failed unexpectedly so the client may retry."""
    db.session.rollback()
    stale = db.session.get(IdempotencyKey, row.id)
    if stale is not None:
        db.session.delete(stale)
        db.session.commit()
