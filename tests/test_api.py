import json
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from compliance_alerts.core import security
from compliance_alerts.core.errors import PermanentDeliveryError
from compliance_alerts.core.security import make_ack_token
from compliance_alerts.dependencies import get_adapters, get_db, get_now, get_session_factory
from compliance_alerts.main import app
from compliance_alerts.routers import alerts as alerts_router
from compliance_alerts.routers import webhooks as webhooks_router
from compliance_alerts.services.channels import InAppAdapter
from helpers import ScriptedAdapter, make_session_factory, make_settings, utc

NOW = utc(2025, 6, 19, 0, 5)

DEADLINE = {
    "id": "dl-1",
    "org_id": "org-1",
    "title": "Q2 <VAT> filing",
    "due_at": "2025-06-20T00:00:00Z",
    "assignee_id": "user-1",
    "assignee_email": "owner@example.com",
}


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.email = ScriptedAdapter("email")
        self.adapters = {"email": self.email, "sms": ScriptedAdapter("sms"), "in_app": InAppAdapter()}
        self.settings = make_settings()

        def override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_now] = lambda: NOW
        app.dependency_overrides[get_adapters] = lambda: self.adapters
        app.dependency_overrides[get_session_factory] = lambda: self.Session

        self.patches = [
            patch.object(security, "get_settings", return_value=self.settings),
            patch.object(alerts_router, "get_settings", return_value=self.settings),
            patch.object(webhooks_router, "get_settings", return_value=self.settings),
        ]
        for item in self.patches:
            item.start()
        self.client = TestClient(app)

    def tearDown(self):
        for item in self.patches:
            item.stop()
        app.dependency_overrides.clear()

    def _create_deadline(self, event="created", **changes):
        response = self.client.post(
            "/deadlines/events",
            json={"event": event, "deadline": dict(DEADLINE, **changes)},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def _alerts(self, **params):
        params.setdefault("deadline_id", "dl-1")
        response = self.client.get("/alerts", params=params)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["items"]

    def _sent_email_alert(self):
        self._create_deadline()
        stats = self.client.post("/alerts/run-dispatch").json()["stats"]
        self.assertEqual(stats["sent"], 2)
        return [item for item in self._alerts(status="sent") if item["channel"] == "email"][0]


class DeadlineAndAlertApiTest(ApiTestCase):
    def test_health(self):
        self.assertEqual(self.client.get("/health").json()["status"], "ok")

    def test_created_event_schedules_alerts(self):
        result = self._create_deadline()

        # Default preferences; only the day-1 and day-0 milestones are still ahead.
        self.assertEqual(len(result["created"]), 4)
        alerts = self._alerts()
        self.assertEqual(
            sorted((item["channel"], item["scheduled_urgency"]) for item in alerts),
            [("email", "critical"), ("email", "high"), ("in_app", "critical"), ("in_app", "high")],
        )

    def test_completed_event_cancels_alerts(self):
        self._create_deadline()
        result = self._create_deadline(event="completed")
        self.assertEqual(len(result["cancelled"]), 4)
        self.assertEqual(self._alerts(status="scheduled"), [])

    def test_alert_listing_needs_a_filter_and_known_status(self):
        self.assertEqual(self.client.get("/alerts").status_code, 400)
        self.assertEqual(self.client.get("/alerts", params={"org_id": "org-1", "status": "lost"}).status_code, 400)

    def test_missing_alert_is_404(self):
        self.assertEqual(self.client.get("/alerts/999").status_code, 404)
        self.assertEqual(self.client.post("/alerts/999/acknowledge").status_code, 404)

    def test_dispatch_then_acknowledge(self):
        alert = self._sent_email_alert()
        self.assertEqual(len(self.email.calls), 1)

        response = self.client.post("/alerts/{}/acknowledge".format(alert["id"]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "acknowledged")
        self.assertEqual(response.json()["acknowledged_via"], "in_app_button")

        again = self.client.post("/alerts/{}/acknowledge".format(alert["id"]))
        self.assertEqual(again.status_code, 200)

        history = self.client.get("/alerts/{}/history".format(alert["id"])).json()
        self.assertEqual([entry["action"] for entry in history], ["acknowledged", "sent", "scheduled"])

    def test_scheduled_alert_cannot_be_acknowledged(self):
        self._create_deadline()
        alert = self._alerts()[0]
        response = self.client.post("/alerts/{}/acknowledge".format(alert["id"]))
        self.assertEqual(response.status_code, 409)

    def test_failed_alert_acknowledge_is_a_no_op(self):
        self._create_deadline()
        self.email.script = [PermanentDeliveryError("Resend API error: HTTP 422", status_code=422)]
        stats = self.client.post("/alerts/run-dispatch").json()["stats"]
        self.assertEqual(stats["failed"], 1)
        alert = self._alerts(status="failed")[0]

        response = self.client.post("/alerts/{}/acknowledge".format(alert["id"]))
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "failed")
        self.assertIsNone(response.json()["acknowledged_via"])

        link = self.client.get(
            "/alerts/{}/ack".format(alert["id"]),
            params={"token": make_ack_token(alert["id"])},
        )
        self.assertEqual(link.status_code, 200)
        self.assertIn("already closed (failed)", link.text)

        history = self.client.get("/alerts/{}/history".format(alert["id"])).json()
        self.assertEqual([entry["action"] for entry in history], ["failed", "scheduled"])

    def test_email_ack_link(self):
        alert = self._sent_email_alert()
        url = "/alerts/{}/ack".format(alert["id"])

        self.assertEqual(self.client.get(url, params={"token": "forged"}).status_code, 401)

        response = self.client.get(url, params={"token": make_ack_token(alert["id"])})
        self.assertEqual(response.status_code, 200)
        self.assertIn("Q2 &lt;VAT&gt; filing", response.text)
        self.assertEqual(self.client.get("/alerts/{}".format(alert["id"])).json()["acknowledged_via"], "email_link")

    def test_snooze_and_unsnooze(self):
        self._create_deadline()
        alert = [item for item in self._alerts() if item["scheduled_urgency"] == "critical"][0]
        url = "/alerts/{}/snooze".format(alert["id"])

        response = self.client.post(url, json={"until": "2025-06-19T12:00:00Z"})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIsNotNone(response.json()["snoozed_until"])

        past_due = self.client.post(url, json={"until": "2025-06-22T00:00:00Z"})
        self.assertEqual(past_due.status_code, 409)

        response = self.client.post("/alerts/{}/unsnooze".format(alert["id"]))
        self.assertIsNone(response.json()["snoozed_until"])

    def test_org_audit_log(self):
        self._create_deadline()
        entries = self.client.get("/alerts/audit", params={"org_id": "org-1"}).json()
        self.assertEqual(len(entries), 4)
        self.assertEqual({entry["action"] for entry in entries}, {"scheduled"})


class PreferencesApiTest(ApiTestCase):
    def test_get_returns_defaults(self):
        body = self.client.get("/preferences", params={"org_id": "org-1", "user_id": "user-1"}).json()
        self.assertEqual(body["source"], "default")
        self.assertEqual(body["alert_days"], [30, 14, 7, 3, 1, 0])

    def test_put_reschedules_open_deadlines(self):
        self._create_deadline()

        response = self.client.put(
            "/preferences",
            json={
                "org_id": "org-1",
                "user_id": "user-1",
                "high_channels": ["email"],
                "critical_channels": ["email"],
                "alert_days": [0, 1, 1],
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["preferences"]["source"], "user")
        self.assertEqual(body["preferences"]["alert_days"], [1, 0])
        # The day-1 alerts are already due and stay; the future in-app alert goes.
        self.assertEqual(body["reschedule"], {"deadlines": 1, "created": 0, "cancelled": 1})

    def test_put_accepts_overdue_offsets(self):
        self._create_deadline()

        response = self.client.put(
            "/preferences",
            json={
                "org_id": "org-1",
                "user_id": "user-1",
                "high_channels": ["email"],
                "critical_channels": ["email"],
                "alert_days": [-3, 1, 0, 1],
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["preferences"]["alert_days"], [1, 0, -3])
        self.assertEqual(body["reschedule"]["created"], 1)

        overdue = [item for item in self._alerts(status="scheduled") if item["scheduled_for"].startswith("2025-06-23")]
        self.assertEqual(len(overdue), 1)
        self.assertEqual(overdue[0]["channel"], "email")
        self.assertEqual(overdue[0]["scheduled_urgency"], "critical")

    def test_patch_validation(self):
        empty = self.client.patch("/preferences", json={"org_id": "org-1"})
        self.assertEqual(empty.status_code, 400)
        bad_channel = self.client.patch("/preferences", json={"org_id": "org-1", "high_channels": ["fax"]})
        self.assertEqual(bad_channel.status_code, 422)

        response = self.client.patch("/preferences", json={"org_id": "org-1", "escalation_enabled": False})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["preferences"]["escalation_enabled"])
        self.assertEqual(response.json()["preferences"]["alert_days"], [30, 14, 7, 3, 1, 0])


class NotificationsApiTest(ApiTestCase):
    def test_in_app_alerts_show_up_and_can_be_read(self):
        self._sent_email_alert()

        items = self.client.get("/notifications", params={"org_id": "org-1", "user_id": "user-1"}).json()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["title"], "Deadline Reminder: Q2 <VAT> filing")

        response = self.client.post("/notifications/{}/read".format(items[0]["id"]))
        self.assertIsNotNone(response.json()["read_at"])
        unread = self.client.get(
            "/notifications",
            params={"org_id": "org-1", "user_id": "user-1", "unread_only": True},
        ).json()
        self.assertEqual(unread, [])

    def test_unread_count_and_mark_all_read(self):
        self._sent_email_alert()
        params = {"org_id": "org-1", "user_id": "user-1"}

        self.assertEqual(self.client.get("/notifications/unread-count", params=params).json(), {"unread": 1})
        self.assertEqual(
            self.client.get("/notifications/unread-count", params={"org_id": "org-2"}).json(),
            {"unread": 0},
        )

        response = self.client.post("/notifications/read-all", params=params)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json(), {"updated": 1})
        self.assertEqual(self.client.get("/notifications/unread-count", params=params).json(), {"unread": 0})
        self.assertEqual(self.client.post("/notifications/read-all", params=params).json(), {"updated": 0})

        items = self.client.get("/notifications", params=params).json()
        self.assertIsNotNone(items[0]["read_at"])


class WebhooksApiTest(ApiTestCase):
    def test_resend_delivery_receipt(self):
        alert = self._sent_email_alert()
        payload = {
            "type": "email.delivered",
            "data": {"email_id": alert["provider_message_id"], "tags": {"alert_id": str(alert["id"])}},
        }
        response = self.client.post("/webhooks/resend", content=json.dumps(payload))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "processed")
        self.assertEqual(self.client.get("/alerts/{}".format(alert["id"])).json()["status"], "delivered")

    def test_resend_rejects_bad_bodies(self):
        self.assertEqual(self.client.post("/webhooks/resend", content=b"not json").status_code, 400)
        self.assertEqual(self.client.post("/webhooks/resend", json={"type": "email.delivered"}).status_code, 400)

    def test_resend_signature_is_enforced_when_configured(self):
        self.settings.RESEND_WEBHOOK_SECRET = "whsec_c2VjcmV0"
        response = self.client.post("/webhooks/resend", json={"type": "email.delivered", "data": {}})
        self.assertEqual(response.status_code, 401)

    def test_twilio_reply_returns_twiml(self):
        self.client.put(
            "/preferences",
            json={
                "org_id": "org-1",
                "user_id": "user-1",
                "high_channels": ["sms"],
                "critical_channels": ["sms"],
                "alert_days": [1, 0],
                "phone_number": "+15551234567",
            },
        )
        self._create_deadline()
        self.assertEqual(self.client.post("/alerts/run-dispatch").json()["stats"]["sent"], 1)

        response = self.client.post("/webhooks/twilio", data={"From": "+15551234567", "Body": "DONE"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"].split(";")[0], "text/xml")
        self.assertIn("Thank you! Your acknowledgment has been recorded. (Q2 &lt;VAT&gt; filing)", response.text)

    def test_twilio_rejects_unrecognized_form(self):
        response = self.client.post("/webhooks/twilio", data={"AccountSid": "AC123"})
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
