from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import extract, func

from app.extensions import db
from app.models import Delivery, Item, ItemStatus, Order, OrderStatus, PaymentStatus, User
from app.services.driver_selection import (
    ACTIVE_DELIVERY_STATUSES,
    DriverSelector,
    active_delivery_count,
    default_selector,
    idle_drivers,
    lock_driver,
    max_active_deliveries,
)
from app.services.errors import Forbidden, NotFound, PreconditionFailed
from app.services.notification_service import notify_after_commit
from app.services.routing_service import RouteQuote, pickup_point
from app.utils.commission import split_delivery_fee
from app.utils.events import log_event
from app.utils.principal import Principal, is_approved_driver
from app.utils.transactions import atomic

logger = logging.getLogger(__name__)


class DeliveryStatus:
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALLOWED = {
        PENDING: {ASSIGNED, CANCELLED},
        ASSIGNED: {IN_TRANSIT, CANCELLED},
        IN_TRANSIT: {DELIVERED},
        DELIVERED: set(),
        CANCELLED: set(),
    }


def can_transition(current: str, target: str) -> bool:
    return target in DeliveryStatus.ALLOWED.get(current, set())


def _require_transition(delivery: Delivery, target: str) -> None:
    if not can_transition(delivery.status, target):
        raise PreconditionFailed(
            f"Delivery cannot move from {delivery.status} to {target}",
            code="INVALID_DELIVERY_TRANSITION",
        )


def get_delivery(delivery_id: int, *, lock: bool = False) -> Delivery:
    query = db.session.query(Delivery).filter(Delivery.id == int(delivery_id))
    if lock:
        query = query.with_for_update().populate_existing()
    delivery = query.first()
    if delivery is None:
        raise NotFound("Delivery not found")
    return delivery


def _lock_item(item_id: int) -> Item | None:
    return (
        db.session.query(Item)
        .filter(Item.id == int(item_id))
        .with_for_update()
        .populate_existing()
        .first()
    )


def reserve_item(order: Order, now: datetime | None = None) -> Item | None:
    """Take the order's item off the market again if a cancelled delivery released it."""
    item = _lock_item(order.item_id)
    if item is not None and item.status == ItemStatus.AVAILABLE:
        item.status = ItemStatus.DONATED if item.is_donation else ItemStatus.PENDING
        item.sold_at = now or datetime.utcnow()
        if item.is_donation:
            item.donation_quantity_available = 0
    return item


def build_delivery(order: Order, quote: RouteQuote) -> Delivery:
    """Materialize the pending delivery for a freshly placed order.

    The delivery fee is the order's fee so the order total and the driver/platform
    split always agree.
    """
    seller = order.seller or db.session.get(User, order.seller_id)
    address = order.delivery_address
    pickup_lat, pickup_lng = pickup_point(seller)
    split = split_delivery_fee(order.delivery_fee)
    delivery = Delivery(
        order=order,
        status=DeliveryStatus.PENDING,
        pickup_address=(seller.address if seller is not None else None),
        pickup_latitude=pickup_lat,
        pickup_longitude=pickup_lng,
        delivery_address=address.full_address() if address is not None else None,
        delivery_latitude=address.latitude if address is not None else None,
        delivery_longitude=address.longitude if address is not None else None,
        distance_km=quote.distance_km,
        duration_minutes=quote.duration_minutes,
        route_polyline=quote.polyline,
        is_fallback_route=quote.is_fallback,
        delivery_fee=split["delivery_fee"],
        driver_earning=split["driver_earning"],
        platform_fee=split["platform_fee"],
    )
    db.session.add(delivery)
    db.session.flush()
    logger.info(
        "delivery_created delivery_id=%s order_id=%s distance_km=%s fee=%s fallback=%s",
        delivery.id,
        order.id,
        delivery.distance_km,
        delivery.delivery_fee,
        delivery.is_fallback_route,
    )
    return delivery


def _clone_for_reassignment(cancelled: Delivery) -> Delivery:
    replacement = Delivery(
        order=cancelled.order,
        status=DeliveryStatus.PENDING,
        pickup_address=cancelled.pickup_address,
        pickup_latitude=cancelled.pickup_latitude,
        pickup_longitude=cancelled.pickup_longitude,
        delivery_address=cancelled.delivery_address,
        delivery_latitude=cancelled.delivery_latitude,
        delivery_longitude=cancelled.delivery_longitude,
        distance_km=cancelled.distance_km,
        duration_minutes=cancelled.duration_minutes,
        route_polyline=cancelled.route_polyline,
        is_fallback_route=cancelled.is_fallback_route,
        delivery_fee=cancelled.delivery_fee,
        driver_earning=cancelled.driver_earning,
        platform_fee=cancelled.platform_fee,
    )
    db.session.add(replacement)
    db.session.flush()
    return replacement


def _check_manual_driver(driver_id: int) -> User:
    driver = lock_driver(driver_id)
    if driver is None:
        raise NotFound("Driver not found")
    if not is_approved_driver(driver.id):
        raise PreconditionFailed("User is not an approved driver", code="DRIVER_NOT_APPROVED")
    limit = max_active_deliveries()
    if active_delivery_count(driver.id) >= limit:
        raise PreconditionFailed(
            f"Driver already has the maximum number of active deliveries ({limit})",
            code="DRIVER_AT_CAPACITY",
        )
    return driver


def _select_driver(selector: DriverSelector) -> User:
    tried: set[int] = set()
    while True:
        candidate = selector.pick(idle_drivers(exclude_ids=tried))
        if candidate is None:
            raise PreconditionFailed("No available drivers", code="NO_AVAILABLE_DRIVERS")
        # Re-check under the row lock; a concurrent assignment may have won.
        locked = lock_driver(candidate.id)
        if locked is not None and active_delivery_count(locked.id) == 0:
            return locked
        tried.add(int(candidate.id))


def _assign(delivery: Delivery, driver_id: int | None, *, actor_id: int | None, selector: DriverSelector | None) -> Delivery:
    _require_transition(delivery, DeliveryStatus.ASSIGNED)
    if driver_id is not None:
        driver = _check_manual_driver(int(driver_id))
    else:
        driver = _select_driver(selector or default_selector())

    now = datetime.utcnow()
    reserve_item(delivery.order, now)
    delivery.driver_id = driver.id
    delivery.status = DeliveryStatus.ASSIGNED
    delivery.assigned_at = now
    db.session.flush()

    log_event(
        "delivery_assigned",
        actor_user_id=actor_id,
        order_id=delivery.order_id,
        delivery_id=delivery.id,
        metadata={"driver_id": driver.id, "mode": "manual" if driver_id is not None else "auto"},
    )
    notify_after_commit(
        driver.id,
        "delivery_assigned",
        "New delivery assigned",
        f"You have been assigned delivery #{delivery.id}.",
        {"delivery_id": delivery.id, "order_id": delivery.order_id},
    )
    return delivery


def assign_driver(
    principal: Principal,
    delivery_id: int,
    driver_id: int | None = None,
    *,
    selector: DriverSelector | None = None,
) -> Delivery:
    if not principal.is_admin:
        raise Forbidden("Only admins can assign drivers")
    with atomic():
        delivery = get_delivery(delivery_id, lock=True)
        _assign(delivery, driver_id, actor_id=principal.user_id, selector=selector)
    return delivery


def accept_delivery(principal: Principal, delivery_id: int) -> Delivery:
    """A driver takes a pending delivery for themselves."""
    if not principal.is_driver:
        raise Forbidden("You are not a verified driver")
    with atomic():
        delivery = get_delivery(delivery_id, lock=True)
        if delivery.status != DeliveryStatus.PENDING:
            raise PreconditionFailed("This delivery is no longer available", code="DELIVERY_TAKEN")
        _assign(delivery, principal.user_id, actor_id=principal.user_id, selector=None)
    return delivery


def try_auto_assign(delivery: Delivery, *, actor_id: int | None = None) -> bool:
    """Best-effort automatic assignment; returns False when nobody is free."""
    try:
        _assign(delivery, None, actor_id=actor_id, selector=None)
    except PreconditionFailed as e:
        logger.info("auto_assign_skipped delivery_id=%s reason=%s", delivery.id, e.code)
        return False
    return True


def _require_assigned_driver(principal: Principal, delivery: Delivery, action: str) -> None:
    if delivery.driver_id is None or int(delivery.driver_id) != int(principal.user_id):
        raise Forbidden(f"Only the assigned driver can {action}")


def mark_picked_up(principal: Principal, delivery_id: int, notes: str | None = None) -> Delivery:
    with atomic():
        delivery = get_delivery(delivery_id, lock=True)
        _require_assigned_driver(principal, delivery, "mark this delivery as picked up")
        _require_transition(delivery, DeliveryStatus.IN_TRANSIT)

        now = datetime.utcnow()
        delivery.status = DeliveryStatus.IN_TRANSIT
        delivery.picked_up_at = now
        delivery.append_notes(notes)

        order = delivery.order
        order.status = OrderStatus.IN_DELIVERY
        order.in_delivery_at = now

        log_event(
            "delivery_picked_up",
            actor_user_id=principal.user_id,
            order_id=order.id,
            delivery_id=delivery.id,
        )
        notify_after_commit(
            order.buyer_id,
            "delivery_picked_up",
            "Your order is on the way",
            f"Order {order.order_number} has been picked up by the driver.",
            {"order_id": order.id, "delivery_id": delivery.id},
        )
    return delivery


def mark_delivered(principal: Principal, delivery_id: int, notes: str | None = None) -> Delivery:
    with atomic():
        delivery = get_delivery(delivery_id, lock=True)
        _require_assigned_driver(principal, delivery, "mark this delivery as delivered")
        _require_transition(delivery, DeliveryStatus.DELIVERED)

        now = datetime.utcnow()
        delivery.status = DeliveryStatus.DELIVERED
        delivery.delivered_at = now
        delivery.append_notes(notes)

        order = delivery.order
        order.status = OrderStatus.COMPLETED
        order.payment_status = PaymentStatus.PAID
        order.delivered_at = now
        order.completed_at = now

        item = _lock_item(order.item_id)
        if item is not None:
            item.status = ItemStatus.DONATED if item.is_donation else ItemStatus.SOLD
            item.sold_at = item.sold_at or now

        log_event(
            "delivery_delivered",
            actor_user_id=principal.user_id,
            order_id=order.id,
            delivery_id=delivery.id,
        )
        log_event(
            "driver_earning_credited",
            actor_user_id=principal.user_id,
            order_id=order.id,
            delivery_id=delivery.id,
            metadata={
                "driver_id": delivery.driver_id,
                "driver_earning": delivery.driver_earning,
                "platform_fee": delivery.platform_fee,
                "delivery_fee": delivery.delivery_fee,
                "cash_collected": order.total_amount,
            },
        )
        notify_after_commit(
            order.buyer_id,
            "delivery_completed",
            "Order delivered",
            f"Order {order.order_number} has been delivered.",
            {"order_id": order.id, "delivery_id": delivery.id},
        )
        notify_after_commit(
            order.seller_id,
            "delivery_completed",
            "Item delivered",
            f"Your item for order {order.order_number} was delivered.",
            {"order_id": order.id, "delivery_id": delivery.id},
        )
    return delivery


def _cancel(delivery: Delivery, reason: str, *, actor_id: int | None, reassign: bool) -> Delivery | None:
    """Cancel a delivery that has not been picked up.

    With ``reassign`` the order goes back to pending, its item back on the market,
    and a fresh pending delivery replaces this one. Returns the replacement.
    """
    if delivery.picked_up_at is not None:
        raise PreconditionFailed(
            "Delivery cannot be cancelled after the item has been picked up",
            code="ALREADY_PICKED_UP",
        )
    _require_transition(delivery, DeliveryStatus.CANCELLED)

    now = datetime.utcnow()
    previous_driver_id = delivery.driver_id
    delivery.status = DeliveryStatus.CANCELLED
    delivery.failure_reason = (reason or "").strip() or None
    delivery.cancelled_at = now

    replacement = None
    order = delivery.order
    if reassign:
        order.status = OrderStatus.PENDING
        order.confirmed_at = None
        item = _lock_item(order.item_id)
        if item is not None:
            item.status = ItemStatus.AVAILABLE
            item.sold_at = None
            if item.is_donation:
                item.donation_quantity_available = item.donation_quantity
        replacement = _clone_for_reassignment(delivery)
        delivery.superseded_by_id = replacement.id
    db.session.flush()

    log_event(
        "delivery_cancelled",
        actor_user_id=actor_id,
        order_id=order.id,
        delivery_id=delivery.id,
        metadata={
            "reason": delivery.failure_reason,
            "driver_id": previous_driver_id,
            "replacement_delivery_id": replacement.id if replacement is not None else None,
        },
    )
    if previous_driver_id is not None and previous_driver_id != actor_id:
        notify_after_commit(
            previous_driver_id,
            "delivery_cancelled",
            "Delivery cancelled",
            f"Delivery #{delivery.id} was cancelled.",
            {"delivery_id": delivery.id, "order_id": order.id},
        )
    return replacement


def cancel_delivery(principal: Principal, delivery_id: int, reason: str) -> Delivery:
    with atomic():
        delivery = get_delivery(delivery_id, lock=True)
        is_driver = delivery.driver_id is not None and int(delivery.driver_id) == int(principal.user_id)
        if not (is_driver or principal.is_admin):
            raise Forbidden("Only the assigned driver or an admin can cancel this delivery")
        _cancel(delivery, reason, actor_id=principal.user_id, reassign=True)
        order = delivery.order
        notify_after_commit(
            order.buyer_id,
            "delivery_cancelled",
            "Delivery rescheduled",
            f"The delivery for order {order.order_number} was cancelled and will be reassigned.",
            {"order_id": order.id},
        )
    return delivery


def cancel_for_order(delivery: Delivery, reason: str, *, actor_id: int | None) -> None:
    """Cancel the delivery of an order being cancelled; no replacement is created."""
    _cancel(delivery, reason, actor_id=actor_id, reassign=False)


def can_view(principal: Principal, delivery: Delivery) -> bool:
    if principal.is_admin:
        return True
    if delivery.driver_id is not None and int(delivery.driver_id) == int(principal.user_id):
        return True
    order = delivery.order
    return order is not None and principal.user_id in (order.buyer_id, order.seller_id)


def view_delivery(principal: Principal, delivery_id: int) -> Delivery:
    delivery = get_delivery(delivery_id)
    if not can_view(principal, delivery):
        raise Forbidden("Access denied")
    return delivery


def admin_deliveries_query(status: str | None = None, driver_id: int | None = None):
    query = Delivery.query
    if status:
        query = query.filter(Delivery.status == status)
    if driver_id is not None:
        query = query.filter(Delivery.driver_id == int(driver_id))
    return query.order_by(Delivery.created_at.desc(), Delivery.id.desc())


def driver_deliveries_query(driver_id: int, status: str | None = None):
    query = Delivery.query.filter(Delivery.driver_id == int(driver_id))
    if status:
        query = query.filter(Delivery.status == status)
    return query.order_by(Delivery.created_at.desc(), Delivery.id.desc())


def active_deliveries(driver_id: int) -> list[Delivery]:
    return (
        Delivery.query.filter(Delivery.driver_id == int(driver_id), Delivery.status.in_(ACTIVE_DELIVERY_STATUSES))
        .order_by(Delivery.assigned_at.asc())
        .all()
    )


def open_deliveries(limit: int = 20) -> list[Delivery]:
    return (
        Delivery.query.filter(Delivery.status == DeliveryStatus.PENDING)
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .limit(int(limit))
        .all()
    )


def driver_stats(driver_id: int, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    delivered = db.session.query(
        func.count(Delivery.id),
        func.coalesce(func.sum(Delivery.driver_earning), 0.0),
    ).filter(Delivery.driver_id == int(driver_id), Delivery.status == DeliveryStatus.DELIVERED)
    total_count, total_earnings = delivered.one()
    month_count, month_earnings = delivered.filter(
        extract("year", Delivery.delivered_at) == now.year,
        extract("month", Delivery.delivered_at) == now.month,
    ).one()
    return {
        "total_deliveries": int(total_count or 0),
        "total_earnings": round(float(total_earnings or 0.0), 2),
        "this_month_deliveries": int(month_count or 0),
        "this_month_earnings": round(float(month_earnings or 0.0), 2),
        "active_deliveries": active_delivery_count(driver_id),
        "max_active_deliveries": max_active_deliveries(),
    }
