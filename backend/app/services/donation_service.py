from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import extract, func
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import Item, ItemStatus, Order, OrderStatus, User
from app.services import order_service
from app.services.errors import Forbidden, PreconditionFailed
from app.services.notification_service import notify_after_commit, notify_other_charities
from app.utils.events import log_event
from app.utils.principal import Principal
from app.utils.transactions import atomic

logger = logging.getLogger(__name__)

RECOMMENDATION_CATEGORY_COUNT = 3


def donation_claim_key(charity_id: int, item_id: int) -> str:
    return f"{int(charity_id)}:{int(item_id)}"


def _require_charity(principal: Principal) -> None:
    if not principal.is_charity:
        raise Forbidden("Only charities can perform this action")


def _existing_claim(charity_id: int, item_id: int):
    return (
        db.session.query(Order.id)
        .filter(
            (Order.donation_claim_key == donation_claim_key(charity_id, item_id))
            | ((Order.buyer_id == int(charity_id)) & (Order.item_id == int(item_id)))
        )
        .first()
    )


def _is_claim_conflict(error: IntegrityError) -> bool:
    # Both SQLite and Postgres name the column or its unique index in the message.
    return "donation_claim_key" in str(getattr(error, "orig", None) or error)


def accept_donation(principal: Principal, item_id: int, delivery_address_id, notes: str | None = None) -> Order:
    _require_charity(principal)
    if delivery_address_id is None:
        raise PreconditionFailed("delivery_address_id is required", code="VALIDATION_ERROR")
    quote = order_service.prequote(item_id, principal.user_id, delivery_address_id)

    try:
        with atomic():
            item = order_service.lock_item(item_id)
            if not item.is_donation:
                raise PreconditionFailed("This item is not a donation", code="NOT_A_DONATION")
            if item.status != ItemStatus.AVAILABLE:
                raise PreconditionFailed("This donation is no longer available", code="ITEM_UNAVAILABLE")
            claim_key = donation_claim_key(principal.user_id, item.id)
            if _existing_claim(principal.user_id, item.id) is not None:
                raise PreconditionFailed("You have already requested this donation", code="DUPLICATE_CLAIM")
            address = order_service.buyer_address(principal.user_id, delivery_address_id)
            order_service.ensure_no_active_order(item)

            order = order_service.place_order(
                buyer_id=principal.user_id,
                item=item,
                address=address,
                delivery_fee=0.0,
                quote=quote,
                notes=notes,
                donation_claim_key=claim_key,
            )
            log_event(
                "donation_accepted",
                actor_user_id=principal.user_id,
                order_id=order.id,
                metadata={"item_id": item.id, "quantity": item.donation_quantity},
            )
            notify_after_commit(
                item.seller_id,
                "donation_claimed",
                "Your donation was accepted",
                f"A charity accepted your donation \"{item.title}\".",
                {"order_id": order.id, "item_id": item.id},
            )
            notify_other_charities(
                principal.user_id,
                "donation_unavailable",
                "Donation no longer available",
                f"The donation \"{item.title}\" has been claimed by another charity.",
                {"item_id": item.id},
            )
    except IntegrityError as e:
        if not _is_claim_conflict(e):
            raise
        logger.info("donation_claim_conflict charity_id=%s item_id=%s", principal.user_id, item_id)
        raise PreconditionFailed("You have already requested this donation", code="DUPLICATE_CLAIM")
    return order


def _people_helped(raw) -> int:
    if raw is None or raw == "":
        return 1
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise PreconditionFailed("people_helped must be a whole number", code="VALIDATION_ERROR")
    if value < 1:
        raise PreconditionFailed("people_helped must be at least 1", code="VALIDATION_ERROR")
    return value


def mark_distributed(principal: Principal, order_id: int, people_helped=None, notes: str | None = None) -> Order:
    _require_charity(principal)
    helped = _people_helped(people_helped)
    with atomic():
        order = order_service.get_order(order_id, lock=True)
        if int(order.buyer_id) != int(principal.user_id):
            raise Forbidden("You can only update your own donation orders")
        if not order.is_donation:
            raise PreconditionFailed("This is not a donation order", code="NOT_A_DONATION")
        if order.status != OrderStatus.COMPLETED:
            raise PreconditionFailed(
                "Donation must be delivered before it can be marked as distributed",
                code="NOT_DELIVERED",
            )
        if order.distributed_at is not None:
            raise PreconditionFailed("Donation has already been marked as distributed", code="ALREADY_DISTRIBUTED")

        order.distributed_at = datetime.utcnow()
        order.people_helped = helped
        order.distribution_notes = (notes or "").strip() or None

        log_event(
            "donation_distributed",
            actor_user_id=principal.user_id,
            order_id=order.id,
            metadata={"people_helped": helped},
        )
        notify_after_commit(
            order.seller_id,
            "donation_distributed",
            "Your donation reached people in need",
            f"Your donation helped {helped} {'person' if helped == 1 else 'people'}.",
            {"order_id": order.id, "people_helped": helped},
        )
    return order


def available_donations_query(filters: dict | None = None):
    filters = filters or {}
    query = Item.query.filter(
        Item.is_donation.is_(True),
        Item.status == ItemStatus.AVAILABLE,
        Item.deleted_at.is_(None),
    )
    for field in ("category", "size", "gender"):
        value = (filters.get(field) or "").strip()
        if value:
            query = query.filter(getattr(Item, field) == value)
    city = (filters.get("city") or "").strip()
    if city:
        query = query.join(User, User.id == Item.seller_id).filter(func.lower(User.city) == city.lower())
    return query.order_by(Item.created_at.desc(), Item.id.desc())


def _donation_orders(charity_id: int | None = None):
    query = Order.query.filter(Order.donation_claim_key.isnot(None))
    if charity_id is not None:
        query = query.filter(Order.buyer_id == int(charity_id))
    return query


def charity_history_query(charity_id: int, status: str | None = None):
    query = _donation_orders(charity_id)
    if status:
        query = query.filter(Order.status == OrderStatus.normalize(status))
    return query.order_by(Order.created_at.desc(), Order.id.desc())


def _this_month(query, now: datetime):
    return query.filter(
        extract("year", Order.created_at) == now.year,
        extract("month", Order.created_at) == now.month,
    )


def _sum_people(query) -> int:
    return int(query.with_entities(func.coalesce(func.sum(Order.people_helped), 0)).scalar() or 0)


def _rate(part: int, whole: int) -> float:
    return round((part / whole) * 100, 2) if whole else 0


def charity_impact(charity_id: int, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    orders = _donation_orders(charity_id)
    total = orders.count()
    completed = orders.filter(Order.status == OrderStatus.COMPLETED).count()
    distributed = orders.filter(Order.distributed_at.isnot(None)).count()
    month = _this_month(orders, now)
    return {
        "total_donations_received": total,
        "completed_donations": completed,
        "distributed_donations": distributed,
        "total_people_helped": _sum_people(orders),
        "this_month_donations": month.count(),
        "this_month_people_helped": _sum_people(month),
        "completion_rate": _rate(completed, total),
        "distribution_rate": _rate(distributed, completed),
    }


def platform_donation_stats(now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    donation_items = Item.query.filter(Item.is_donation.is_(True), Item.deleted_at.is_(None))
    orders = _donation_orders()
    total_orders = orders.count()
    completed = orders.filter(Order.status == OrderStatus.COMPLETED).count()
    active_charities = (
        db.session.query(func.count(func.distinct(Order.buyer_id)))
        .filter(Order.donation_claim_key.isnot(None))
        .scalar()
        or 0
    )
    categories = (
        db.session.query(Item.category, func.count(Item.id))
        .filter(Item.is_donation.is_(True), Item.deleted_at.is_(None))
        .group_by(Item.category)
        .order_by(func.count(Item.id).desc())
        .all()
    )
    return {
        "total_donation_items": donation_items.count(),
        "available_donations": donation_items.filter(Item.status == ItemStatus.AVAILABLE).count(),
        "total_donation_orders": total_orders,
        "completed_donations": completed,
        "total_people_helped": _sum_people(orders),
        "active_charities": int(active_charities),
        "this_month_donations": _this_month(orders, now).count(),
        "completion_rate": _rate(completed, total_orders),
        "categories": {category: int(count) for category, count in categories},
    }


def recommended_donations(charity_id: int, limit: int = 10) -> list[Item]:
    preferred = [
        category
        for category, _count in (
            db.session.query(Item.category, func.count(Order.id))
            .join(Order, Order.item_id == Item.id)
            .filter(Order.buyer_id == int(charity_id), Order.donation_claim_key.isnot(None))
            .group_by(Item.category)
            .order_by(func.count(Order.id).desc(), Item.category.asc())
            .limit(RECOMMENDATION_CATEGORY_COUNT)
            .all()
        )
    ]
    query = available_donations_query()
    if preferred:
        query = query.filter(Item.category.in_(preferred))
    return query.limit(int(limit)).all()
