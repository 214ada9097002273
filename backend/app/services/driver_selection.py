from __future__ import annotations

import os

from sqlalchemy import func

from app.extensions import db
from app.models import Delivery, DriverApplication, DriverApplicationStatus, User

ACTIVE_DELIVERY_STATUSES = ("assigned", "in_transit")


def max_active_deliveries() -> int:
    raw = (os.getenv("DRIVER_MAX_ACTIVE_DELIVERIES") or "").strip()
    try:
        value = int(raw) if raw else 3
    except ValueError:
        value = 3
    return max(1, value)


class DriverSelector:
    """Chooses one driver from an ordered list of eligible candidates."""

    name = "base"

    def pick(self, candidates: list[User]) -> User | None:
        raise NotImplementedError


class FirstAvailableDriverSelector(DriverSelector):
    name = "first_available"

    def pick(self, candidates: list[User]) -> User | None:
        return candidates[0] if candidates else None


def default_selector() -> DriverSelector:
    return FirstAvailableDriverSelector()


def active_delivery_count(driver_id: int) -> int:
    return (
        db.session.query(func.count(Delivery.id))
        .filter(Delivery.driver_id == int(driver_id), Delivery.status.in_(ACTIVE_DELIVERY_STATUSES))
        .scalar()
        or 0
    )


def _approved_driver_ids():
    return db.session.query(DriverApplication.user_id).filter(
        DriverApplication.status == DriverApplicationStatus.APPROVED
    )


def idle_drivers(exclude_ids: set[int] | None = None) -> list[User]:
    """Approved drivers holding no assigned or in-transit delivery, lowest id first."""
    busy = db.session.query(Delivery.driver_id).filter(
        Delivery.driver_id.isnot(None),
        Delivery.status.in_(ACTIVE_DELIVERY_STATUSES),
    )
    query = User.query.filter(User.id.in_(_approved_driver_ids()), User.id.notin_(busy))
    if exclude_ids:
        query = query.filter(User.id.notin_(list(exclude_ids)))
    return query.order_by(User.id.asc()).all()


def lock_driver(driver_id: int) -> User | None:
    return (
        db.session.query(User)
        .filter(User.id == int(driver_id))
        .with_for_update()
        .populate_existing()
        .first()
    )
