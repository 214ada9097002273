from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from app.models import AuditEvent, Delivery, Item, Notification, Order
from app.services import delivery_service, donation_service, order_service
from app.services.errors import PreconditionFailed
from lifecycle_support import BEIRUT, LifecycleTestCase


class DonationClaimsTestCase(LifecycleTestCase):
    def setUp(self):
        super().setUp()
        self.donor = self.make_user("Donor", coords=BEIRUT)
        self.item = self.make_item(self.donor, donation=True, category="outerwear", title="Winter coats")
        self.charity = self.make_user("Shelter", role="charity")
        self.charity_address = self.make_address(self.charity)
        self.other_charity = self.make_user("Food bank", role="charity")
        self.other_address = self.make_address(self.other_charity)

    def _accept(self, charity, address):
        return self.client.post(
            f"/api/charity/accept-donation/{self.item}",
            json={"delivery_address_id": address},
            headers=self.auth(charity),
        )

    def _deliver(self, order_id):
        driver = self.make_driver()
        admin = self.make_user("Admin", role="admin")
        delivery_id = self.fresh(Order, order_id).active_delivery.id
        delivery_service.assign_driver(self.principal(admin), delivery_id, driver)
        delivery_service.mark_picked_up(self.principal(driver), delivery_id)
        delivery_service.mark_delivered(self.principal(driver), delivery_id)

    def test_charity_claims_donation_free_of_charge(self):
        res = self._accept(self.charity, self.charity_address)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        data = res.get_json()["data"]
        self.assertTrue(data["is_donation"])
        self.assertEqual(data["total_amount"], 0.0)
        self.assertEqual(data["delivery_fee"], 0.0)
        self.assertEqual(data["delivery"]["driver_earning"], 0.0)

        item = self.fresh(Item, self.item)
        self.assertEqual(item.status, "donated")
        self.assertEqual(item.donation_quantity_available, 0)
        self.assertEqual(Notification.query.filter_by(user_id=self.donor, type="donation_claimed").count(), 1)
        self.assertEqual(
            Notification.query.filter_by(user_id=self.other_charity, type="donation_unavailable").count(), 1
        )
        self.assertEqual(
            Notification.query.filter_by(user_id=self.charity, type="donation_unavailable").count(), 0
        )

    def test_second_charity_cannot_claim_the_same_batch(self):
        self.assertEqual(self._accept(self.charity, self.charity_address).status_code, 201)
        self.assertLifecycleError(self._accept(self.other_charity, self.other_address), 400, "ITEM_UNAVAILABLE")
        self.assertEqual(Order.query.count(), 1)

    def test_same_charity_cannot_claim_twice_after_cancelling(self):
        order_id = self._accept(self.charity, self.charity_address).get_json()["data"]["id"]
        order_service.cancel_order(self.principal(self.charity), order_id, "Wrong sizes")
        self.assertEqual(self.fresh(Item, self.item).status, "available")

        self.assertLifecycleError(self._accept(self.charity, self.charity_address), 400, "DUPLICATE_CLAIM")
        self.assertEqual(self._accept(self.other_charity, self.other_address).status_code, 201)

    def test_unique_claim_index_backs_up_the_duplicate_check(self):
        order_id = self._accept(self.charity, self.charity_address).get_json()["data"]["id"]
        order_service.cancel_order(self.principal(self.charity), order_id, "Wrong sizes")
        deliveries_before = Delivery.query.count()

        # A racing request that passed the duplicate check before the first claim committed.
        with patch("app.services.donation_service._existing_claim", return_value=None):
            res = self._accept(self.charity, self.charity_address)

        self.assertLifecycleError(res, 400, "DUPLICATE_CLAIM")
        self.assertEqual(Order.query.count(), 1)
        self.assertEqual(Delivery.query.count(), deliveries_before)
        self.assertEqual(AuditEvent.query.filter_by(event_type="donation_accepted").count(), 1)
        self.assertEqual(self.fresh(Item, self.item).status, "available")

    def test_other_integrity_errors_are_not_reported_as_duplicate_claims(self):
        collision = IntegrityError(
            "INSERT INTO orders", {}, Exception("UNIQUE constraint failed: orders.order_number")
        )
        with patch("app.services.donation_service.order_service.place_order", side_effect=collision):
            with self.assertRaises(IntegrityError):
                donation_service.accept_donation(self.principal(self.charity), self.item, self.charity_address)
        self.assertEqual(self.fresh(Item, self.item).status, "available")

    def test_only_charities_accept_donations(self):
        person = self.make_user("Person")
        self.assertLifecycleError(self._accept(person, self.make_address(person)), 403, "FORBIDDEN")

    def test_regular_items_are_not_donations(self):
        priced = self.make_item(self.donor, price=10.0)
        with self.assertRaises(PreconditionFailed) as ctx:
            donation_service.accept_donation(self.principal(self.charity), priced, self.charity_address)
        self.assertEqual(ctx.exception.code, "NOT_A_DONATION")

    def test_distribution_requires_delivery_and_is_recorded_once(self):
        order_id = self._accept(self.charity, self.charity_address).get_json()["data"]["id"]
        url = f"/api/charity/mark-distributed/{order_id}"
        headers = self.auth(self.charity)

        self.assertLifecycleError(self.client.post(url, json={"people_helped": 4}, headers=headers), 400, "NOT_DELIVERED")

        self._deliver(order_id)
        self.assertEqual(self.fresh(Item, self.item).status, "donated")

        self.assertLifecycleError(self.client.post(url, json={"people_helped": 0}, headers=headers), 400, "VALIDATION_ERROR")

        res = self.client.post(url, json={"people_helped": 4, "notes": "Shelter intake"}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        data = res.get_json()["data"]
        self.assertEqual(data["people_helped"], 4)
        self.assertIsNotNone(data["distributed_at"])
        self.assertEqual(Notification.query.filter_by(user_id=self.donor, type="donation_distributed").count(), 1)

        again = self.client.post(url, json={"people_helped": 2}, headers=headers)
        self.assertLifecycleError(again, 400, "ALREADY_DISTRIBUTED")
        self.assertEqual(self.fresh(Order, order_id).people_helped, 4)

    def test_people_helped_defaults_to_one(self):
        order_id = self._accept(self.charity, self.charity_address).get_json()["data"]["id"]
        self._deliver(order_id)
        order = donation_service.mark_distributed(self.principal(self.charity), order_id)
        self.assertEqual(order.people_helped, 1)

    def test_impact_and_available_listing(self):
        listing = self.client.get("/api/charity/donations/available?category=outerwear", headers=self.auth(self.charity))
        self.assertEqual(listing.get_json()["data"]["pagination"]["total"], 1)

        order_id = self._accept(self.charity, self.charity_address).get_json()["data"]["id"]
        self._deliver(order_id)
        donation_service.mark_distributed(self.principal(self.charity), order_id, people_helped=3)

        impact = self.client.get("/api/charity/impact", headers=self.auth(self.charity)).get_json()["data"]
        self.assertEqual(impact["total_donations_received"], 1)
        self.assertEqual(impact["completed_donations"], 1)
        self.assertEqual(impact["total_people_helped"], 3)
        self.assertEqual(impact["completion_rate"], 100.0)

        listing = self.client.get("/api/charity/donations/available", headers=self.auth(self.charity))
        self.assertEqual(listing.get_json()["data"]["pagination"]["total"], 0)

    def test_recommendations_follow_claimed_categories(self):
        shoes = self.make_item(self.donor, donation=True, category="shoes", title="Sneakers")
        self.make_item(self.donor, donation=True, category="tops", title="Shirts")
        self._accept(self.charity, self.charity_address)
        more_coats = self.make_item(self.donor, donation=True, category="outerwear", title="Rain jackets")

        res = self.client.get("/api/charity/donations/recommended", headers=self.auth(self.charity))
        self.assertEqual([row["id"] for row in res.get_json()["data"]], [more_coats])

        fresh = self.client.get("/api/charity/donations/recommended", headers=self.auth(self.other_charity))
        self.assertIn(shoes, [row["id"] for row in fresh.get_json()["data"]])

    def test_admin_donation_statistics(self):
        admin = self.make_user("Admin", role="admin")
        self._accept(self.charity, self.charity_address)
        self.assertLifecycleError(
            self.client.get("/api/admin/donations/statistics", headers=self.auth(self.charity)), 403, "FORBIDDEN"
        )
        stats = self.client.get("/api/admin/donations/statistics", headers=self.auth(admin)).get_json()["data"]
        self.assertEqual(stats["total_donation_items"], 1)
        self.assertEqual(stats["available_donations"], 0)
        self.assertEqual(stats["total_donation_orders"], 1)
        self.assertEqual(stats["active_charities"], 1)
        self.assertEqual(stats["categories"], {"outerwear": 1})


if __name__ == "__main__":
    unittest.main()
