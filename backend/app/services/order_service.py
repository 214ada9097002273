from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import extract, func

from app.extensions import db
from app.models import Address, Item, ItemStatus, Order, OrderStatus, PaymentStatus, PAYMENT_METHOD_COD
from app.services import delivery_service
from app.services.errors import Forbidden, NotFound, PreconditionFailed
from app.services.notification_service import notify_after_commit
from app.services.order_numbers import next_order_number
from app.services.routing_service import RouteQuote, quote_delivery
from app.utils.commission import money_major_to_minor, money_minor_to_major, order_total
from app.utils.events import log_event
from app.utils.principal import Principal
from app.utils.transactions import atomic

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


def get_item(item_id) -> Item:
    try:
        item = db.session.get(Item, int(item_id))
    except (TypeError, ValueError):
        item = None
    if item is None or item.is_deleted:
        raise NotFound("Item not found")
    return item


def lock_item(item_id) -> Item:
    try:
        item_pk = int(item_id)
    except (TypeError, ValueError):
        raise NotFound("Item not found")
    item = (
        db.session.query(Item)
        .filter(Item.id == item_pk)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if item is None or item.is_deleted:
        raise NotFound("Item not found")
    return item


def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == int(order_id), Order.deleted_at.is_(None))
    if lock:
        query = query.with_for_update().populate_existing()
    order = query.first()
    if order is None:
        raise NotFound("Order not found")
    return order


def buyer_address(buyer_id: int, address_id) -> Address:
    try:
        address = db.session.get(Address, int(address_id))
    except (TypeError, ValueError):
        address = None
    if address is None or int(address.user_id) != int(buyer_id):
        raise NotFound("Delivery address not found")
    return address


def ensure_no_active_order(item: Item) -> None:
    active = (
        db.session.query(Order.id)
        .filter(
            Order.item_id == item.id,
            Order.status != OrderStatus.CANCELLED,
            Order.deleted_at.is_(None),
        )
        .first()
    )
    if active is not None:
        raise PreconditionFailed("Item already has an open order", code="ITEM_ALREADY_ORDERED")


def prequote(item_id, buyer_id: int, address_id) -> RouteQuote | None:
    """Quote outside the transaction so no row lock is held across the provider call."""
    try:
        item = get_item(item_id)
        address = buyer_address(buyer_id, address_id)
    except NotFound:
        return None
    return quote_delivery(item.seller, address)


def parse_delivery_fee(raw) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise PreconditionFailed("delivery_fee must be a number", code="INVALID_DELIVERY_FEE")
    if value < 0:
        raise PreconditionFailed("delivery_fee cannot be negative", code="INVALID_DELIVERY_FEE")
    return money_minor_to_major(money_major_to_minor(value))


def place_order(
    *,
    buyer_id: int,
    item: Item,
    address: Address,
    delivery_fee: float | None,
    quote: RouteQuote | None,
    notes: str | None = None,
    donation_claim_key: str | None = None,
) -> Order:
    """Write the order, its delivery and the item reservation.

    Callers hold the item row lock, have validated every precondition and run
    this inside an ``atomic()`` block.
    """
    quote = quote or quote_delivery(item.seller, address)
    fee = quote.delivery_fee if delivery_fee is None else float(delivery_fee)

    if item.is_donation:
        item_price = 0.0
    else:
        if item.price is None:
            raise PreconditionFailed("Item has no price", code="ITEM_NOT_PRICED")
        item_price = money_minor_to_major(money_major_to_minor(item.price))

    now = datetime.utcnow()
    order = Order(
        order_number=next_order_number(now),
        buyer_id=int(buyer_id),
        seller_id=item.seller_id,
        item_id=item.id,
        delivery_address_id=address.id,
        item_price=item_price,
        delivery_fee=fee,
        total_amount=order_total(item_price, fee),
        status=OrderStatus.PENDING,
        payment_method=PAYMENT_METHOD_COD,
        payment_status=PaymentStatus.PENDING,
        notes=(notes or "").strip() or None,
        donation_claim_key=donation_claim_key,
    )
    order.item = item
    order.delivery_address = address
    db.session.add(order)
    db.session.flush()

    delivery_service.build_delivery(order, quote)

    if item.is_donation:
        # Donation batches have no seller confirmation step.
        item.status = ItemStatus.DONATED
        item.donation_quantity_available = 0
    else:
        item.status = ItemStatus.PENDING
    item.sold_at = now

    log_event(
        "order_placed",
        actor_user_id=buyer_id,
        order_id=order.id,
        metadata={
            "order_number": order.order_number,
            "item_id": item.id,
            "item_price": item_price,
            "delivery_fee": fee,
            "total_amount": order.total_amount,
            "fallback_route": quote.is_fallback,
            "donation": bool(item.is_donation),
        },
    )
    notify_after_commit(
        buyer_id,
        "order_placed",
        "Order placed",
        f"Your order {order.order_number} has been placed.",
        {"order_id": order.id},
    )
    notify_after_commit(
        item.seller_id,
        "new_order",
        "New order",
        f"Your item \"{item.title}\" has a new order ({order.order_number}).",
        {"order_id": order.id, "item_id": item.id},
    )
    logger.info(
        "order_created order_id=%s order_number=%s buyer_id=%s item_id=%s total=%s",
        order.id,
        order.order_number,
        buyer_id,
        item.id,
        order.total_amount,
    )
    return order


def create_order(
    principal: Principal,
    item_id,
    delivery_address_id,
    delivery_fee=None,
    notes: str | None = None,
) -> Order:
    if item_id is None:
        raise PreconditionFailed("item_id is required", code="VALIDATION_ERROR")
    if delivery_address_id is None:
        raise PreconditionFailed("delivery_address_id is required", code="VALIDATION_ERROR")
    fee = parse_delivery_fee(delivery_fee)
    quote = prequote(item_id, principal.user_id, delivery_address_id)

    with atomic():
        item = lock_item(item_id)
        if item.status != ItemStatus.AVAILABLE:
            raise PreconditionFailed("Item is not available", code="ITEM_UNAVAILABLE")
        if int(item.seller_id) == int(principal.user_id):
            raise PreconditionFailed("You cannot order your own item", code="OWN_ITEM")
        address = buyer_address(principal.user_id, delivery_address_id)
        if item.is_donation:
            raise PreconditionFailed("Donation items can only be accepted by charities", code="DONATION_ITEM")
        ensure_no_active_order(item)
        order = place_order(
            buyer_id=principal.user_id,
            item=item,
            address=address,
            delivery_fee=fee,
            quote=quote,
            notes=notes,
        )
    return order


def confirm_order(principal: Principal, order_id: int) -> Order:
    with atomic():
        order = get_order(order_id, lock=True)
        if int(order.seller_id) != int(principal.user_id):
            raise Forbidden("Only the seller can confirm this order")
        if order.status != OrderStatus.PENDING:
            raise PreconditionFailed(
                f"Order cannot be confirmed while {order.status}",
                code="INVALID_ORDER_TRANSITION",
            )

        order.status = OrderStatus.CONFIRMED
        order.confirmed_at = datetime.utcnow()

        delivery_service.reserve_item(order, order.confirmed_at)

        log_event("order_confirmed", actor_user_id=principal.user_id, order_id=order.id)
        notify_after_commit(
            order.buyer_id,
            "order_confirmed",
            "Order confirmed",
            f"The seller confirmed order {order.order_number}.",
            {"order_id": order.id},
        )

        delivery = order.active_delivery
        if delivery is not None and delivery.status == delivery_service.DeliveryStatus.PENDING:
            delivery_service.try_auto_assign(delivery, actor_id=principal.user_id)
    return order


def cancel_order(principal: Principal, order_id: int, reason: str) -> Order:
    reason = (reason or "").strip()
    if not reason:
        raise PreconditionFailed("A cancellation reason is required", code="VALIDATION_ERROR")
    with atomic():
        order = get_order(order_id, lock=True)
        if int(order.buyer_id) != int(principal.user_id):
            raise Forbidden("Only the buyer can cancel this order")
        if order.status not in CANCELLABLE_STATUSES:
            raise PreconditionFailed(
                f"Order cannot be cancelled while {order.status}",
                code="INVALID_ORDER_TRANSITION",
            )
        delivery = order.active_delivery
        if delivery is not None and delivery.picked_up_at is not None:
            raise PreconditionFailed(
                "Order cannot be cancelled after the item has been picked up",
                code="ALREADY_PICKED_UP",
            )

        now = datetime.utcnow()
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = now
        order.cancellation_reason = reason

        item = lock_item(order.item_id)
        item.status = ItemStatus.AVAILABLE
        item.sold_at = None
        if item.is_donation:
            item.donation_quantity_available = item.donation_quantity

        if delivery is not None:
            delivery_service.cancel_for_order(delivery, f"Order cancelled: {reason}", actor_id=principal.user_id)

        log_event(
            "order_cancelled",
            actor_user_id=principal.user_id,
            order_id=order.id,
            metadata={"reason": reason},
        )
        notify_after_commit(
            order.seller_id,
            "order_cancelled",
            "Order cancelled",
            f"Order {order.order_number} was cancelled by the buyer.",
            {"order_id": order.id, "reason": reason},
        )
    return order


def view_order(principal: Principal, order_id: int) -> Order:
    order = get_order(order_id)
    if principal.is_admin or principal.user_id in (order.buyer_id, order.seller_id):
        return order
    delivery = order.active_delivery
    if delivery is not None and delivery.driver_id == principal.user_id:
        return order
    raise Forbidden("You do not have access to this order")


def _status_filter(query, status: str | None):
    normalized = OrderStatus.normalize(status)
    if normalized:
        query = query.filter(Order.status == normalized)
    return query


def buyer_orders_query(buyer_id: int, status: str | None = None):
    query = Order.query.filter(Order.buyer_id == int(buyer_id), Order.deleted_at.is_(None))
    return _status_filter(query, status).order_by(Order.created_at.desc(), Order.id.desc())


def seller_orders_query(seller_id: int, status: str | None = None):
    query = Order.query.filter(Order.seller_id == int(seller_id), Order.deleted_at.is_(None))
    return _status_filter(query, status).order_by(Order.created_at.desc(), Order.id.desc())


def _rate(part: int, whole: int) -> float:
    return round((part / whole) * 100, 2) if whole else 0


def order_statistics(now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    counts = dict(
        db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
    )
    total = sum(int(v) for v in counts.values())
    completed = db.session.query(
        func.coalesce(func.sum(Order.total_amount), 0.0),
        func.coalesce(func.sum(Order.delivery_fee), 0.0),
    ).filter(Order.status == OrderStatus.COMPLETED).one()
    this_month = Order.query.filter(
        extract("year", Order.created_at) == now.year,
        extract("month", Order.created_at) == now.month,
    )
    month_revenue = (
        this_month.filter(Order.status == OrderStatus.COMPLETED)
        .with_entities(func.coalesce(func.sum(Order.total_amount), 0.0))
        .scalar()
    )
    completed_count = int(counts.get(OrderStatus.COMPLETED, 0))
    cancelled_count = int(counts.get(OrderStatus.CANCELLED, 0))
    return {
        "total_orders": total,
        "pending_orders": int(counts.get(OrderStatus.PENDING, 0)),
        "confirmed_orders": int(counts.get(OrderStatus.CONFIRMED, 0)),
        "in_delivery_orders": int(counts.get(OrderStatus.IN_DELIVERY, 0)),
        "completed_orders": completed_count,
        "cancelled_orders": cancelled_count,
        "total_revenue": round(float(completed[0] or 0.0), 2),
        "total_delivery_fees": round(float(completed[1] or 0.0), 2),
        "this_month_orders": this_month.count(),
        "this_month_revenue": round(float(month_revenue or 0.0), 2),
        "completion_rate": _rate(completed_count, total),
        "cancellation_rate": _rate(cancelled_count, total),
    }
