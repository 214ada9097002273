from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func

from app.extensions import db
from app.models import DriverApplication, DriverApplicationStatus, User, VEHICLE_TYPES
from app.services.errors import Forbidden, NotFound, PreconditionFailed
from app.services.notification_service import notify_after_commit
from app.utils.events import log_event
from app.utils.principal import Principal
from app.utils.transactions import atomic

logger = logging.getLogger(__name__)

REAPPLY_COOLDOWN = timedelta(days=30)
REQUIRED_FIELDS = ("full_name", "phone", "address", "city", "vehicle_type")


def latest_application(user_id: int) -> DriverApplication | None:
    return (
        DriverApplication.query.filter_by(user_id=int(user_id))
        .order_by(DriverApplication.created_at.desc(), DriverApplication.id.desc())
        .first()
    )


def eligibility(user_id: int, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    rows = DriverApplication.query.filter_by(user_id=int(user_id)).all()
    if any(r.status == DriverApplicationStatus.APPROVED for r in rows):
        return {"can_apply": False, "reason": "You are already an approved driver"}
    if any(r.status in DriverApplicationStatus.OPEN for r in rows):
        return {"can_apply": False, "reason": "You already have a pending application under review"}
    recent_rejection = any(
        r.status == DriverApplicationStatus.REJECTED
        and r.reviewed_at is not None
        and r.reviewed_at > now - REAPPLY_COOLDOWN
        for r in rows
    )
    if recent_rejection:
        return {"can_apply": False, "reason": "Please wait 30 days after rejection before reapplying"}
    return {"can_apply": True, "reason": "You can apply to become a driver"}


def submit_application(principal: Principal, data: dict) -> DriverApplication:
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise PreconditionFailed(f"Missing required fields: {', '.join(missing)}", code="VALIDATION_ERROR")
    vehicle_type = str(data.get("vehicle_type")).strip().lower()
    if vehicle_type not in VEHICLE_TYPES:
        raise PreconditionFailed("Vehicle type must be car, motorcycle, or bicycle", code="VALIDATION_ERROR")

    with atomic():
        # Serializes concurrent submissions from the same user.
        user = db.session.query(User).filter(User.id == principal.user_id).with_for_update().first()
        if user is None:
            raise NotFound("User not found")
        verdict = eligibility(user.id)
        if not verdict["can_apply"]:
            raise PreconditionFailed(verdict["reason"], code="APPLICATION_NOT_ALLOWED")
        application = DriverApplication(
            user_id=user.id,
            full_name=str(data["full_name"]).strip(),
            phone=str(data["phone"]).strip(),
            email=(str(data.get("email") or "").strip() or user.email),
            address=str(data["address"]).strip(),
            city=str(data["city"]).strip(),
            vehicle_type=vehicle_type,
            id_document_url=(data.get("id_document_url") or None),
            driving_license_url=(data.get("driving_license_url") or None),
            vehicle_registration_url=(data.get("vehicle_registration_url") or None),
            status=DriverApplicationStatus.PENDING,
        )
        db.session.add(application)
        db.session.flush()
        log_event(
            "driver_application_submitted",
            actor_user_id=user.id,
            metadata={"application_id": application.id, "vehicle_type": vehicle_type},
        )
    return application


def _review(principal: Principal, application_id: int, target: str, *, reason: str | None = None) -> DriverApplication:
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    with atomic():
        application = (
            db.session.query(DriverApplication)
            .filter(DriverApplication.id == int(application_id))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if application is None:
            raise NotFound("Driver application not found")
        allowed = DriverApplicationStatus.ALLOWED.get(application.status, set())
        if target not in allowed:
            raise PreconditionFailed(
                f"Application cannot move from {application.status} to {target}",
                code="INVALID_APPLICATION_TRANSITION",
            )
        application.status = target
        application.reviewed_by = principal.user_id
        application.reviewed_at = datetime.utcnow()
        if target == DriverApplicationStatus.REJECTED:
            application.rejection_reason = reason

        log_event(
            f"driver_application_{target}",
            actor_user_id=principal.user_id,
            metadata={"application_id": application.id, "user_id": application.user_id, "reason": reason},
        )
        if target == DriverApplicationStatus.APPROVED:
            notify_after_commit(
                application.user_id,
                "driver_application_approved",
                "Driver application approved",
                "Congratulations! You can now accept deliveries.",
                {"application_id": application.id},
            )
        elif target == DriverApplicationStatus.REJECTED:
            notify_after_commit(
                application.user_id,
                "driver_application_rejected",
                "Driver application rejected",
                f"Your driver application was rejected: {reason}",
                {"application_id": application.id},
            )
    logger.info(
        "driver_application_reviewed application_id=%s status=%s reviewer=%s",
        application.id,
        target,
        principal.user_id,
    )
    return application


def set_under_review(principal: Principal, application_id: int) -> DriverApplication:
    return _review(principal, application_id, DriverApplicationStatus.UNDER_REVIEW)


def approve_application(principal: Principal, application_id: int) -> DriverApplication:
    return _review(principal, application_id, DriverApplicationStatus.APPROVED)


def reject_application(principal: Principal, application_id: int, reason: str) -> DriverApplication:
    reason = (reason or "").strip()
    if not reason:
        raise PreconditionFailed("A rejection reason is required", code="VALIDATION_ERROR")
    return _review(principal, application_id, DriverApplicationStatus.REJECTED, reason=reason)


def applications_query(status: str | None = None):
    query = DriverApplication.query
    if status:
        query = query.filter(DriverApplication.status == status)
    return query.order_by(DriverApplication.created_at.desc(), DriverApplication.id.desc())


def application_stats() -> dict:
    counts = dict(
        db.session.query(DriverApplication.status, func.count(DriverApplication.id))
        .group_by(DriverApplication.status)
        .all()
    )
    return {
        "total": sum(int(v) for v in counts.values()),
        "pending": int(counts.get(DriverApplicationStatus.PENDING, 0)),
        "under_review": int(counts.get(DriverApplicationStatus.UNDER_REVIEW, 0)),
        "approved": int(counts.get(DriverApplicationStatus.APPROVED, 0)),
        "rejected": int(counts.get(DriverApplicationStatus.REJECTED, 0)),
    }
