from __future__ import annotations

import unittest

from app.models import Notification
from app.services.notification_service import notify, notify_after_commit
from app.utils.transactions import atomic
from lifecycle_support import LifecycleTestCase


class NotificationsInboxTestCase(LifecycleTestCase):
    def setUp(self):
        super().setUp()
        self.user = self.make_user("Reader")
        self.other = self.make_user("Other")
        self.first = notify(self.user, "order_placed", "Order placed", "Your order has been placed.", {"order_id": 1}).id
        self.second = notify(self.user, "order_confirmed", "Order confirmed", "Confirmed.").id
        notify(self.other, "order_placed", "Order placed", "Someone else.")

    def test_lists_own_notifications_with_unread_count(self):
        data = self.client.get("/api/notifications", headers=self.auth(self.user)).get_json()["data"]
        self.assertEqual(data["pagination"]["total"], 2)
        self.assertEqual(data["unread_count"], 2)
        self.assertEqual(data["items"][0]["id"], self.second)
        self.assertEqual(data["items"][1]["data"], {"order_id": 1})

    def test_mark_one_and_all_read(self):
        res = self.client.post(f"/api/notifications/{self.first}/read", headers=self.auth(self.user))
        self.assertTrue(res.get_json()["data"]["is_read"])
        unread = self.client.get("/api/notifications?unread=1", headers=self.auth(self.user)).get_json()["data"]
        self.assertEqual([n["id"] for n in unread["items"]], [self.second])

        res = self.client.post("/api/notifications/read-all", headers=self.auth(self.user))
        self.assertEqual(res.get_json()["data"]["updated"], 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.other, is_read=False).count(), 1)

    def test_cannot_read_someone_elses_notification(self):
        res = self.client.post(f"/api/notifications/{self.first}/read", headers=self.auth(self.other))
        self.assertLifecycleError(res, 404, "NOT_FOUND")

    def test_notifications_are_dropped_when_the_operation_rolls_back(self):
        before = Notification.query.count()
        with self.assertRaises(RuntimeError):
            with atomic():
                notify_after_commit(self.user, "order_placed", "Order placed", "Never sent.")
                raise RuntimeError("boom")
        self.assertEqual(Notification.query.count(), before)

        with atomic():
            notify_after_commit(self.user, "order_placed", "Order placed", "Sent.")
        self.assertEqual(Notification.query.count(), before + 1)


if __name__ == "__main__":
    unittest.main()
