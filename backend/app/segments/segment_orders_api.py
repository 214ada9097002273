from __future__ import annotations

from flask import Blueprint, current_app, request

from app.services import order_service
from app.services.errors import Forbidden, LifecycleError
from app.utils.idempotency import claim, release, store_response
from app.utils.principal import current_principal
from app.utils.responses import json_body, ok, paginate

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


@orders_bp.post("/orders")
def create_order():
    principal = current_principal()
    payload = json_body()

    outcome = claim("orders.create", principal.user_id, payload)
    if outcome is not None and outcome.is_replay:
        return outcome.body, outcome.status

    try:
        order = order_service.create_order(
            principal,
            payload.get("item_id"),
            payload.get("delivery_address_id"),
            payload.get("delivery_fee"),
            notes=payload.get("notes"),
        )
    except LifecycleError as e:
        if outcome is not None:
            body = e.to_dict()
            store_response(outcome.row, body, e.status_code)
        raise
    except Exception:
        if outcome is not None:
            release(outcome.row)
        raise

    response = ok(order.to_dict(), "Order placed successfully", 201)
    if outcome is not None:
        store_response(outcome.row, response[0].get_json(), 201)
    current_app.logger.info("order_placed_api order_id=%s user_id=%s", order.id, principal.user_id)
    return response


@orders_bp.get("/orders")
def buyer_orders():
    principal = current_principal()
    query = order_service.buyer_orders_query(principal.user_id, request.args.get("status"))
    return ok(paginate(query, lambda o: o.to_dict()), "Orders retrieved successfully")


@orders_bp.get("/orders/as-seller")
def seller_orders():
    principal = current_principal()
    query = order_service.seller_orders_query(principal.user_id, request.args.get("status"))
    return ok(paginate(query, lambda o: o.to_dict()), "Orders retrieved successfully")


@orders_bp.get("/orders/<int:order_id>")
def show_order(order_id: int):
    principal = current_principal()
    order = order_service.view_order(principal, order_id)
    return ok(order.to_dict(), "Order retrieved successfully")


@orders_bp.put("/orders/<int:order_id>/cancel")
def cancel_order(order_id: int):
    principal = current_principal()
    payload = json_body()
    order = order_service.cancel_order(principal, order_id, payload.get("reason") or "")
    return ok(order.to_dict(), "Order cancelled successfully")


@orders_bp.post("/orders/<int:order_id>/confirm")
def confirm_order(order_id: int):
    principal = current_principal()
    order = order_service.confirm_order(principal, order_id)
    return ok(order.to_dict(), "Order confirmed successfully")


@orders_bp.get("/admin/orders/statistics")
def admin_order_statistics():
    principal = current_principal()
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return ok(order_service.order_statistics(), "Order statistics retrieved successfully")
