from __future__ import annotations

from flask import Blueprint, request

from app.services import donation_service
from app.services.errors import Forbidden
from app.utils.principal import Principal, current_principal
from app.utils.responses import json_body, ok, paginate

charity_bp = Blueprint("charity_bp", __name__, url_prefix="/api")


def _charity() -> Principal:
    principal = current_principal()
    if not principal.is_charity:
        raise Forbidden("Only charities can access this resource")
    return principal


@charity_bp.get("/charity/donations/available")
def available_donations():
    _charity()
    filters = {k: request.args.get(k) for k in ("category", "size", "gender", "city")}
    query = donation_service.available_donations_query(filters)
    return ok(paginate(query, lambda i: i.to_dict()), "Available donations retrieved successfully")


@charity_bp.post("/charity/accept-donation/<int:item_id>")
def accept_donation(item_id: int):
    principal = current_principal()
    payload = json_body()
    order = donation_service.accept_donation(
        principal,
        item_id,
        payload.get("delivery_address_id"),
        notes=payload.get("notes"),
    )
    return ok(order.to_dict(), "Donation accepted successfully", 201)


@charity_bp.post("/charity/mark-distributed/<int:order_id>")
def mark_distributed(order_id: int):
    principal = current_principal()
    payload = json_body()
    order = donation_service.mark_distributed(
        principal,
        order_id,
        payload.get("people_helped"),
        payload.get("notes"),
    )
    return ok(order.to_dict(), "Donation marked as distributed")


@charity_bp.get("/charity/donations/history")
def donation_history():
    principal = _charity()
    query = donation_service.charity_history_query(principal.user_id, request.args.get("status"))
    return ok(paginate(query, lambda o: o.to_dict()), "Donation history retrieved successfully")


@charity_bp.get("/charity/impact")
def impact():
    principal = _charity()
    return ok(donation_service.charity_impact(principal.user_id), "Impact statistics retrieved successfully")


@charity_bp.get("/charity/donations/recommended")
def recommended():
    principal = _charity()
    rows = donation_service.recommended_donations(principal.user_id)
    return ok([i.to_dict() for i in rows], "Recommended donations retrieved successfully")


@charity_bp.get("/admin/donations/statistics")
def platform_statistics():
    principal = current_principal()
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return ok(donation_service.platform_donation_stats(), "Donation statistics retrieved successfully")
