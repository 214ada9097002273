from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from app.extensions import db
from app.models import DriverApplication, Notification
from app.services import driver_application_service
from lifecycle_support import LifecycleTestCase

FORM = {
    "full_name": "Rami Haddad",
    "phone": "+96170123456",
    "address": "Mar Mikhael",
    "city": "Beirut",
    "vehicle_type": "Motorcycle",
}


class DriverApplicationsTestCase(LifecycleTestCase):
    def setUp(self):
        super().setUp()
        self.applicant = self.make_user("Applicant")
        self.admin = self.make_user("Admin", role="admin")

    def _submit(self, form=None):
        return self.client.post("/api/driver/applications", json=form or FORM, headers=self.auth(self.applicant))

    def _act(self, application_id, action, **payload):
        return self.client.post(
            f"/api/admin/driver-applications/{application_id}/{action}",
            json=payload,
            headers=self.auth(self.admin),
        )

    def test_submission_validates_fields(self):
        self.assertLifecycleError(self._submit({"full_name": "Only name"}), 400, "VALIDATION_ERROR")
        self.assertLifecycleError(self._submit(dict(FORM, vehicle_type="truck")), 400, "VALIDATION_ERROR")
        self.assertEqual(DriverApplication.query.count(), 0)

    def test_one_open_application_at_a_time(self):
        res = self._submit()
        self.assertEqual(res.status_code, 201)
        data = res.get_json()["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["vehicle_type"], "motorcycle")
        self.assertLifecycleError(self._submit(), 400, "APPLICATION_NOT_ALLOWED")

    def test_approval_grants_driver_capability(self):
        application_id = self._submit().get_json()["data"]["id"]
        self.assertFalse(self.principal(self.applicant).is_driver)

        self.assertEqual(self._act(application_id, "review").get_json()["data"]["status"], "under_review")
        res = self._act(application_id, "approve")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["reviewed_by"], self.admin)

        self.assertTrue(self.principal(self.applicant).is_driver)
        self.assertEqual(
            Notification.query.filter_by(user_id=self.applicant, type="driver_application_approved").count(), 1
        )
        dashboard = self.client.get("/api/driver/dashboard", headers=self.auth(self.applicant))
        self.assertEqual(dashboard.status_code, 200)

        self.assertLifecycleError(self._act(application_id, "reject", reason="Oops"), 400, "INVALID_APPLICATION_TRANSITION")

    def test_rejection_needs_reason_and_starts_cooldown(self):
        application_id = self._submit().get_json()["data"]["id"]
        self.assertLifecycleError(self._act(application_id, "reject"), 400, "VALIDATION_ERROR")

        res = self._act(application_id, "reject", reason="Licence expired")
        self.assertEqual(res.get_json()["data"]["rejection_reason"], "Licence expired")
        self.assertLifecycleError(self._submit(), 400, "APPLICATION_NOT_ALLOWED")

        mine = self.client.get("/api/driver/application", headers=self.auth(self.applicant)).get_json()["data"]
        self.assertFalse(mine["eligibility"]["can_apply"])

        application = db.session.get(DriverApplication, application_id)
        application.reviewed_at = datetime.utcnow() - timedelta(days=31)
        db.session.commit()
        self.assertTrue(driver_application_service.eligibility(self.applicant)["can_apply"])
        self.assertEqual(self._submit().status_code, 201)

    def test_review_is_admin_only(self):
        application_id = self._submit().get_json()["data"]["id"]
        res = self.client.post(
            f"/api/admin/driver-applications/{application_id}/approve",
            headers=self.auth(self.applicant),
        )
        self.assertLifecycleError(res, 403, "FORBIDDEN")

    def test_admin_listing_and_stats(self):
        self._submit()
        listing = self.client.get("/api/admin/driver-applications?status=pending", headers=self.auth(self.admin))
        self.assertEqual(listing.get_json()["data"]["pagination"]["total"], 1)
        stats = self.client.get("/api/admin/driver-applications/stats", headers=self.auth(self.admin)).get_json()["data"]
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["total"], 1)


if __name__ == "__main__":
    unittest.main()
