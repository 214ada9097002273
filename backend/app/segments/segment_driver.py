from __future__ import annotations

from flask import Blueprint, request

from app.services import delivery_service, driver_application_service
from app.services.errors import Forbidden
from app.utils.principal import Principal, current_principal
from app.utils.responses import json_body, ok, paginate

drivers_bp = Blueprint("drivers_bp", __name__, url_prefix="/api")


def _driver() -> Principal:
    principal = current_principal()
    if not principal.is_driver:
        raise Forbidden("You are not a verified driver")
    return principal


@drivers_bp.get("/driver/dashboard")
def dashboard():
    principal = _driver()
    return ok(
        {
            "stats": delivery_service.driver_stats(principal.user_id),
            "active_deliveries": [d.to_dict() for d in delivery_service.active_deliveries(principal.user_id)],
            "available_deliveries": [d.to_dict() for d in delivery_service.open_deliveries(limit=10)],
        },
        "Dashboard data retrieved successfully",
    )


@drivers_bp.get("/driver/deliveries")
def my_deliveries():
    principal = _driver()
    query = delivery_service.driver_deliveries_query(
        principal.user_id,
        (request.args.get("status") or "").strip() or None,
    )
    return ok(paginate(query, lambda d: d.to_dict()), "Deliveries retrieved successfully")


@drivers_bp.get("/driver/deliveries/available")
def available_deliveries():
    _driver()
    rows = delivery_service.open_deliveries(limit=20)
    return ok([d.to_dict() for d in rows], "Available deliveries retrieved successfully")


@drivers_bp.post("/driver/deliveries/<int:delivery_id>/accept")
def accept_delivery(delivery_id: int):
    principal = current_principal()
    delivery = delivery_service.accept_delivery(principal, delivery_id)
    return ok(delivery.to_dict(), "Delivery accepted successfully! Please go to the pickup location.")


@drivers_bp.get("/driver/earnings")
def earnings():
    principal = _driver()
    return ok(delivery_service.driver_stats(principal.user_id), "Earnings retrieved successfully")


@drivers_bp.post("/driver/applications")
def submit_application():
    principal = current_principal()
    application = driver_application_service.submit_application(principal, json_body())
    return ok(application.to_dict(), "Driver application submitted successfully", 201)


@drivers_bp.get("/driver/application")
def my_application():
    principal = current_principal()
    application = driver_application_service.latest_application(principal.user_id)
    return ok(
        {
            "application": application.to_dict() if application else None,
            "eligibility": driver_application_service.eligibility(principal.user_id),
        },
        "Application retrieved successfully",
    )


def _admin() -> Principal:
    principal = current_principal()
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal


@drivers_bp.get("/admin/driver-applications")
def admin_applications():
    _admin()
    query = driver_application_service.applications_query((request.args.get("status") or "").strip() or None)
    return ok(paginate(query, lambda a: a.to_dict()), "Applications retrieved successfully")


@drivers_bp.get("/admin/driver-applications/stats")
def admin_application_stats():
    _admin()
    return ok(driver_application_service.application_stats(), "Application statistics retrieved successfully")


@drivers_bp.post("/admin/driver-applications/<int:application_id>/review")
def admin_review_application(application_id: int):
    application = driver_application_service.set_under_review(_admin(), application_id)
    return ok(application.to_dict(), "Application moved to review")


@drivers_bp.post("/admin/driver-applications/<int:application_id>/approve")
def admin_approve_application(application_id: int):
    application = driver_application_service.approve_application(_admin(), application_id)
    return ok(application.to_dict(), "Driver application approved")


@drivers_bp.post("/admin/driver-applications/<int:application_id>/reject")
def admin_reject_application(application_id: int):
    principal = _admin()
    application = driver_application_service.reject_application(
        principal, application_id, json_body().get("reason") or ""
    )
    return ok(application.to_dict(), "Driver application rejected")
