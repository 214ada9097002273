from __future__ import annotations

import unittest

from app.extensions import db
from app.models import AuditEvent, Item, Order
from app.services import order_service
from app.services.errors import PreconditionFailed
from app.utils.events import log_event
from app.utils.transactions import atomic, in_atomic_block, on_commit
from lifecycle_support import LifecycleTestCase


class TransactionsAndAuditTestCase(LifecycleTestCase):
    def test_nested_blocks_commit_once_at_the_outermost_level(self):
        ran = []
        with atomic():
            self.assertTrue(in_atomic_block())
            with atomic():
                log_event("inner", metadata={"n": 1})
                on_commit(lambda: ran.append("after"))
            self.assertEqual(ran, [])
        self.assertFalse(in_atomic_block())
        self.assertEqual(ran, ["after"])
        self.assertEqual(AuditEvent.query.filter_by(event_type="inner").count(), 1)

    def test_failed_operation_leaves_no_trace(self):
        world = self.marketplace()
        with self.assertRaises(PreconditionFailed):
            order_service.create_order(self.principal(world["buyer"]), world["item"], world["address"], delivery_fee="abc")
        with self.assertRaises(PreconditionFailed):
            with atomic():
                log_event("doomed")
                raise PreconditionFailed("nope")
        self.assertEqual(AuditEvent.query.count(), 0)
        self.assertEqual(Order.query.count(), 0)

    def test_rollback_mid_operation_restores_item(self):
        world = self.marketplace()
        with self.assertRaises(RuntimeError):
            with atomic():
                item = order_service.lock_item(world["item"])
                item.status = "pending"
                db.session.flush()
                raise RuntimeError("crash after reservation")
        self.assertEqual(self.fresh(Item, world["item"]).status, "available")

    def test_audit_event_records_request_context(self):
        world = self.marketplace()
        res = self.client.post(
            "/api/orders",
            json={"item_id": world["item"], "delivery_address_id": world["address"]},
            headers=dict(self.auth(world["buyer"]), **{"X-Request-Id": "audit-rid-1"}),
        )
        self.assertEqual(res.status_code, 201)
        event = AuditEvent.query.filter_by(event_type="order_placed").one()
        self.assertEqual(event.request_id, "audit-rid-1")
        self.assertEqual(event.actor_user_id, world["buyer"])
        self.assertEqual(event.metadata_dict()["total_amount"], res.get_json()["data"]["total_amount"])


if __name__ == "__main__":
    unittest.main()
