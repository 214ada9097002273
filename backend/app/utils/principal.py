from __future__ import annotations

from dataclasses import dataclass, field

from app.extensions import db
from app.models import DriverApplication, DriverApplicationStatus, User
from app.utils.jwt_utils import decode_token, get_bearer_token

CAP_ADMIN = "admin"
CAP_CHARITY = "charity"
CAP_DRIVER = "driver"


@dataclass(frozen=True)
class Principal:
    """Already-authorized actor handed to the lifecycle services."""

    user_id: int
    capabilities: frozenset = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def is_admin(self) -> bool:
        return self.can(CAP_ADMIN)

    @property
    def is_charity(self) -> bool:
        return self.can(CAP_CHARITY)

    @property
    def is_driver(self) -> bool:
        return self.can(CAP_DRIVER)

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "capabilities": sorted(self.capabilities)}


def is_approved_driver(user_id: int) -> bool:
    return (
        db.session.query(DriverApplication.id)
        .filter(
            DriverApplication.user_id == int(user_id),
            DriverApplication.status == DriverApplicationStatus.APPROVED,
        )
        .first()
        is not None
    )


def build_principal(user: User) -> Principal:
    caps = set()
    role = (user.role or "user").strip().lower()
    if role == "admin":
        caps.add(CAP_ADMIN)
    if role == "charity":
        caps.add(CAP_CHARITY)
    if is_approved_driver(int(user.id)):
        caps.add(CAP_DRIVER)
    return Principal(user_id=int(user.id), capabilities=frozenset(caps))


def principal_from_header(auth_header: str) -> tuple[Principal | None, User | None]:
    token = get_bearer_token(auth_header or "")
    if not token:
        return None, None
    payload = decode_token(token)
    if not payload:
        return None, None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None, None
    user = db.session.get(User, uid)
    if user is None:
        return None, None
    return build_principal(user), user


def current_principal() -> Principal:
    from flask import g

    from app.services.errors import Unauthorized

    principal = getattr(g, "principal", None)
    if principal is None:
        raise Unauthorized("Authentication required")
    return principal
