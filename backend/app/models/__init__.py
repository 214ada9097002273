from app.models.user import User
from app.models.address import Address
from app.models.item import (
    Item,
    ItemStatus,
    ITEM_CATEGORIES,
    ITEM_CONDITIONS,
    ITEM_SIZES,
    ITEM_GENDERS,
)
from app.models.order import Order, OrderSequence, OrderStatus, PaymentStatus, PAYMENT_METHOD_COD
from app.models.delivery import Delivery
from app.models.driver_application import DriverApplication, DriverApplicationStatus, VEHICLE_TYPES
from app.models.notification import Notification
from app.models.audit_event import AuditEvent
from app.models.idempotency_key import IdempotencyKey

__all__ = [
    "User",
    "Address",
    "Item",
    "ItemStatus",
    "ITEM_CATEGORIES",
    "ITEM_CONDITIONS",
    "ITEM_SIZES",
    "ITEM_GENDERS",
    "Order",
    "OrderSequence",
    "OrderStatus",
    "PaymentStatus",
    "PAYMENT_METHOD_COD",
    "Delivery",
    "DriverApplication",
    "DriverApplicationStatus",
    "VEHICLE_TYPES",
    "Notification",
    "AuditEvent",
    "IdempotencyKey",
]
