from __future__ import annotations

from flask import Blueprint, request

from app.services import delivery_service, order_service
from app.services.errors import Forbidden, PreconditionFailed
from app.services.routing_service import compute_route, quote_delivery
from app.utils.principal import current_principal
from app.utils.responses import json_body, ok, paginate

deliveries_bp = Blueprint("deliveries_bp", __name__, url_prefix="/api")


def _optional_int(raw, field: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise PreconditionFailed(f"{field} must be an integer", code="VALIDATION_ERROR")


@deliveries_bp.post("/deliveries/quote")
def quote():
    principal = current_principal()
    payload = json_body()
    if payload.get("item_id") is not None:
        item = order_service.get_item(payload.get("item_id"))
        address = order_service.buyer_address(principal.user_id, payload.get("delivery_address_id"))
        result = quote_delivery(item.seller, address)
    else:
        result = compute_route(
            payload.get("origin_lat"),
            payload.get("origin_lng"),
            payload.get("destination_lat"),
            payload.get("destination_lng"),
        )
    return ok(result.to_dict(), "Delivery fee calculated")


@deliveries_bp.get("/admin/deliveries")
def admin_deliveries():
    principal = current_principal()
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    query = delivery_service.admin_deliveries_query(
        status=(request.args.get("status") or "").strip() or None,
        driver_id=_optional_int(request.args.get("driver_id"), "driver_id"),
    )
    return ok(paginate(query, lambda d: d.to_dict()), "Deliveries retrieved successfully")


@deliveries_bp.get("/deliveries/<int:delivery_id>")
def show_delivery(delivery_id: int):
    principal = current_principal()
    delivery = delivery_service.view_delivery(principal, delivery_id)
    return ok(delivery.to_dict(), "Delivery retrieved successfully")


@deliveries_bp.post("/deliveries/<int:delivery_id>/assign-driver")
def assign_driver(delivery_id: int):
    principal = current_principal()
    payload = json_body()
    driver_id = _optional_int(payload.get("driver_id"), "driver_id")
    delivery = delivery_service.assign_driver(principal, delivery_id, driver_id)
    return ok(delivery.to_dict(), "Driver assigned successfully")


@deliveries_bp.post("/deliveries/<int:delivery_id>/pickup")
def pickup(delivery_id: int):
    principal = current_principal()
    payload = json_body()
    delivery = delivery_service.mark_picked_up(principal, delivery_id, payload.get("notes"))
    return ok(delivery.to_dict(), "Delivery marked as picked up")


@deliveries_bp.post("/deliveries/<int:delivery_id>/deliver")
def deliver(delivery_id: int):
    principal = current_principal()
    payload = json_body()
    delivery = delivery_service.mark_delivered(principal, delivery_id, payload.get("notes"))
    return ok(delivery.to_dict(), "Delivery completed successfully")


@deliveries_bp.post("/deliveries/<int:delivery_id>/cancel")
def cancel(delivery_id: int):
    principal = current_principal()
    payload = json_body()
    reason = (payload.get("reason") or "").strip()
    if not reason:
        raise PreconditionFailed("A cancellation reason is required", code="VALIDATION_ERROR")
    delivery = delivery_service.cancel_delivery(principal, delivery_id, reason)
    data = delivery.to_dict()
    data["replacement"] = delivery.superseded_by.to_dict(include_order=False) if delivery.superseded_by else None
    return ok(data, "Delivery cancelled and queued for reassignment")
