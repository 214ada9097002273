from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from app.extensions import db
from app.models import Delivery, Order, User
from app.services import delivery_service, order_service
from app.services.driver_selection import DriverSelector, idle_drivers
from lifecycle_support import LifecycleTestCase


class LastIdleDriverSelector(DriverSelector):
    name = "last_idle"

    def pick(self, candidates):
        return candidates[-1] if candidates else None


class StaleSnapshotSelector(DriverSelector):
    """Returns a candidate from an outdated list first, then behaves normally."""

    name = "stale_snapshot"

    def __init__(self, stale_driver):
        self.stale_driver = stale_driver
        self.calls = 0

    def pick(self, candidates):
        self.calls += 1
        if self.calls == 1:
            return self.stale_driver
        return candidates[0] if candidates else None


class DriverAssignmentTestCase(LifecycleTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.make_user("Admin", role="admin")

    def _pending_delivery(self) -> int:
        world = self.marketplace()
        order = order_service.create_order(self.principal(world["buyer"]), world["item"], world["address"])
        return self.fresh(Order, order.id).active_delivery.id

    def _assign(self, delivery_id, driver_id=None, actor=None):
        payload = {} if driver_id is None else {"driver_id": driver_id}
        return self.client.post(
            f"/api/deliveries/{delivery_id}/assign-driver",
            json=payload,
            headers=self.auth(actor or self.admin),
        )

    def test_manual_assignment_respects_capacity(self):
        driver = self.make_driver()
        first, second = self._pending_delivery(), self._pending_delivery()
        with patch.dict(os.environ, {"DRIVER_MAX_ACTIVE_DELIVERIES": "1"}):
            self.assertEqual(self._assign(first, driver).status_code, 200)
            self.assertLifecycleError(self._assign(second, driver), 400, "DRIVER_AT_CAPACITY")
        self.assertEqual(self.fresh(Delivery, second).status, "pending")
        self.assertIsNone(self.fresh(Delivery, second).driver_id)

    def test_default_capacity_is_three(self):
        driver = self.make_driver()
        deliveries = [self._pending_delivery() for _ in range(4)]
        for delivery_id in deliveries[:3]:
            self.assertEqual(self._assign(delivery_id, driver).status_code, 200)
        self.assertLifecycleError(self._assign(deliveries[3], driver), 400, "DRIVER_AT_CAPACITY")

    def test_unapproved_user_cannot_be_assigned(self):
        person = self.make_user("Not a driver")
        self.assertLifecycleError(self._assign(self._pending_delivery(), person), 400, "DRIVER_NOT_APPROVED")

    def test_only_admins_assign(self):
        driver = self.make_driver()
        self.assertLifecycleError(self._assign(self._pending_delivery(), driver, actor=driver), 403, "FORBIDDEN")

    def test_automatic_assignment_skips_busy_drivers(self):
        busy = self.make_driver("Busy")
        idle = self.make_driver("Idle")
        self.assertEqual(self._assign(self._pending_delivery(), busy).status_code, 200)

        res = self._assign(self._pending_delivery())
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json()["data"]["driver_id"], idle)

        self.assertLifecycleError(self._assign(self._pending_delivery()), 400, "NO_AVAILABLE_DRIVERS")

    def test_automatic_assignment_skips_driver_holding_three_deliveries(self):
        loaded = self.make_driver("Loaded")
        for _ in range(3):
            self.assertEqual(self._assign(self._pending_delivery(), loaded).status_code, 200)

        waiting = self._pending_delivery()
        self.assertLifecycleError(self._assign(waiting), 400, "NO_AVAILABLE_DRIVERS")
        self.assertEqual(self.fresh(Delivery, waiting).status, "pending")

        spare = self.make_driver("Spare")
        res = self._assign(waiting)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json()["data"]["driver_id"], spare)
        self.assertEqual(Delivery.query.filter_by(driver_id=loaded, status="assigned").count(), 3)

    def test_selected_driver_is_rechecked_under_lock(self):
        busy = self.make_driver("Busy")
        idle = self.make_driver("Idle")
        self.assertEqual(self._assign(self._pending_delivery(), busy).status_code, 200)

        selector = StaleSnapshotSelector(self.fresh(User, busy))
        delivery = delivery_service.assign_driver(
            self.principal(self.admin), self._pending_delivery(), selector=selector
        )
        self.assertEqual(delivery.driver_id, idle)
        self.assertEqual(selector.calls, 2)
        self.assertEqual(Delivery.query.filter_by(driver_id=busy).count(), 1)

    def test_capacity_is_counted_after_the_driver_lock(self):
        driver = self.make_driver()
        for _ in range(2):
            self.assertEqual(self._assign(self._pending_delivery(), driver).status_code, 200)
        rival, target = self._pending_delivery(), self._pending_delivery()
        real_lock_driver = delivery_service.lock_driver

        def rival_commits_first(driver_id):
            # Another assignment for the same driver lands while this one waits for the lock.
            competing = db.session.get(Delivery, rival)
            competing.driver_id = driver
            competing.status = "assigned"
            db.session.flush()
            return real_lock_driver(driver_id)

        with patch("app.services.delivery_service.lock_driver", side_effect=rival_commits_first):
            self.assertLifecycleError(self._assign(target, driver), 400, "DRIVER_AT_CAPACITY")
        self.assertEqual(self.fresh(Delivery, target).status, "pending")
        self.assertIsNone(self.fresh(Delivery, target).driver_id)

    def test_selector_is_pluggable(self):
        first = self.make_driver("First")
        last = self.make_driver("Last")
        self.assertEqual([u.id for u in idle_drivers()], [first, last])
        delivery = delivery_service.assign_driver(
            self.principal(self.admin),
            self._pending_delivery(),
            selector=LastIdleDriverSelector(),
        )
        self.assertEqual(delivery.driver_id, last)

    def test_seller_confirmation_auto_assigns_when_possible(self):
        world = self.marketplace()
        order = order_service.create_order(self.principal(world["buyer"]), world["item"], world["address"])

        res = self.client.post(f"/api/orders/{order.id}/confirm", headers=self.auth(world["seller"]))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["status"], "confirmed")
        # No drivers yet: confirmation succeeds and the delivery waits.
        self.assertEqual(self.fresh(Order, order.id).active_delivery.status, "pending")

    def test_driver_accepts_open_delivery_once(self):
        first = self.make_driver("First")
        second = self.make_driver("Second")
        delivery_id = self._pending_delivery()

        available = self.client.get("/api/driver/deliveries/available", headers=self.auth(first))
        self.assertEqual([d["id"] for d in available.get_json()["data"]], [delivery_id])

        res = self.client.post(f"/api/driver/deliveries/{delivery_id}/accept", headers=self.auth(first))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["driver_id"], first)

        taken = self.client.post(f"/api/driver/deliveries/{delivery_id}/accept", headers=self.auth(second))
        self.assertLifecycleError(taken, 400, "DELIVERY_TAKEN")

    def test_non_drivers_cannot_use_driver_surface(self):
        person = self.make_user("Person")
        self.assertLifecycleError(self.client.get("/api/driver/dashboard", headers=self.auth(person)), 403, "FORBIDDEN")
        self.assertLifecycleError(
            self.client.post(f"/api/driver/deliveries/{self._pending_delivery()}/accept", headers=self.auth(person)),
            403,
            "FORBIDDEN",
        )


if __name__ == "__main__":
    unittest.main()
