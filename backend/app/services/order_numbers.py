"""Day-scoped order numbers of the form RW-YYYYMMDD-NNNNN."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.extensions import db
from app.models import Order, OrderSequence
from app.services.errors import PreconditionFailed

ORDER_NUMBER_PREFIX = "RW"
MAX_DAILY_SEQUENCE = 99999


def format_order_number(day_key: str, sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{day_key}-{int(sequence):05d}"


def parse_sequence(order_number: str | None) -> int:
    try:
        return int(str(order_number).rsplit("-", 1)[1])
    except (IndexError, ValueError):
        return 0


def highest_issued_sequence(day_key: str) -> int:
    # Fixed-width numbers sort lexically; cancelled and soft-deleted orders count too.
    highest = (
        db.session.query(func.max(Order.order_number))
        .filter(Order.order_number.like(f"{ORDER_NUMBER_PREFIX}-{day_key}-%"))
        .scalar()
    )
    return parse_sequence(highest)


def _ensure_day_row(day_key: str) -> None:
    dialect = db.session.get_bind().dialect.name
    seed = highest_issued_sequence(day_key)
    if dialect == "postgresql":
        stmt = pg_insert(OrderSequence).values(day=day_key, last_value=seed).on_conflict_do_nothing(index_elements=["day"])
        db.session.execute(stmt)
    elif dialect == "sqlite":
        stmt = sqlite_insert(OrderSequence).values(day=day_key, last_value=seed).on_conflict_do_nothing(index_elements=["day"])
        db.session.execute(stmt)
    elif db.session.get(OrderSequence, day_key) is None:
        db.session.add(OrderSequence(day=day_key, last_value=seed))
        db.session.flush()


def next_order_number(now: datetime | None = None) -> str:
    """Allocate the next number for the day; callers must be inside a unit of work."""
    day_key = (now or datetime.utcnow()).strftime("%Y%m%d")
    _ensure_day_row(day_key)
    row = (
        db.session.query(OrderSequence)
        .filter(OrderSequence.day == day_key)
        .with_for_update()
        .populate_existing()
        .one()
    )
    value = max(int(row.last_value or 0), highest_issued_sequence(day_key)) + 1
    if value > MAX_DAILY_SEQUENCE:
        raise PreconditionFailed("Daily order capacity reached, try again tomorrow", code="ORDER_NUMBER_EXHAUSTED")
    row.last_value = value
    db.session.flush()
    return format_order_number(day_key, value)
