import unittest
from datetime import timedelta

from compliance_alerts.core.errors import AlertNotFoundError, AlertStateError, DuplicateEventError
from compliance_alerts.models.alert import Alert
from compliance_alerts.services import alert_state
from compliance_alerts.services.audit_log import alert_history, record_audit
from helpers import add_alert, add_deadline, make_session_factory, utc

SENT_AT = utc(2025, 6, 19, 0, 1)


class AlertStateTest(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        self.deadline = add_deadline(self.db)
        self.alert = add_alert(self.db, self.deadline)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _actions(self):
        return [entry.action for entry in reversed(alert_history(self.db, self.alert.id))]

    def test_full_lifecycle_writes_one_entry_per_transition(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT, provider_message_id="re_123")
        alert_state.mark_delivered(self.db, self.alert, now=SENT_AT + timedelta(minutes=1))
        alert_state.acknowledge(self.db, self.alert, method="email_link", now=SENT_AT + timedelta(hours=2))
        self.db.commit()

        self.assertEqual(self.alert.status, "acknowledged")
        self.assertEqual(self.alert.sent_at, SENT_AT)
        self.assertEqual(self.alert.provider_message_id, "re_123")
        self.assertEqual(self.alert.acknowledged_via, "email_link")
        self.assertEqual(self.alert.acknowledged_at, SENT_AT + timedelta(hours=2))
        self.assertEqual(self._actions(), ["sent", "delivered", "acknowledged"])

    def test_bounce_after_acknowledgment_changes_nothing(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT)
        alert_state.acknowledge(self.db, self.alert, method="sms_reply", now=SENT_AT + timedelta(hours=1))
        self.db.commit()

        with self.assertRaises(DuplicateEventError) as ctx:
            alert_state.mark_failed(self.db, self.alert, now=SENT_AT + timedelta(hours=2), error="bounced")
        self.db.rollback()

        self.assertEqual(ctx.exception.current_status, "acknowledged")
        self.assertEqual(self.db.get(Alert, self.alert.id).status, "acknowledged")
        self.assertEqual(self._actions(), ["sent", "acknowledged"])

    def test_terminal_states_never_move(self):
        alert_state.mark_failed(self.db, self.alert, now=SENT_AT, error="HTTP 422")
        self.db.commit()

        for transition, kwargs in (
            (alert_state.mark_sent, {}),
            (alert_state.mark_delivered, {}),
            (alert_state.acknowledge, {"method": "in_app_button"}),
            (alert_state.cancel, {"reason": "test", "future_only": False}),
        ):
            with self.assertRaises(DuplicateEventError):
                transition(self.db, self.alert, now=SENT_AT + timedelta(hours=1), **kwargs)
            self.db.rollback()
        self.assertEqual(self.db.get(Alert, self.alert.id).status, "failed")

    def test_scheduled_alert_cannot_be_acknowledged_or_delivered(self):
        with self.assertRaises(DuplicateEventError):
            alert_state.acknowledge(self.db, self.alert, method="in_app_button", now=SENT_AT)
        self.db.rollback()
        with self.assertRaises(DuplicateEventError):
            alert_state.mark_delivered(self.db, self.alert, now=SENT_AT)
        self.db.rollback()

    def test_second_delivery_receipt_is_a_duplicate(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT)
        alert_state.mark_delivered(self.db, self.alert, now=SENT_AT)
        self.db.commit()
        with self.assertRaises(DuplicateEventError):
            alert_state.mark_delivered(self.db, self.alert, now=SENT_AT)
        self.db.rollback()

    def test_sent_requires_the_matching_claim(self):
        self.alert.claimed_by = "worker-a"
        self.alert.claimed_at = SENT_AT
        self.db.commit()

        with self.assertRaises(DuplicateEventError):
            alert_state.mark_sent(self.db, self.alert, now=SENT_AT, claimed_by="worker-b")
        self.db.rollback()

        alert_state.mark_sent(self.db, self.alert, now=SENT_AT, claimed_by="worker-a")
        self.db.commit()
        self.assertEqual(self.alert.status, "sent")
        self.assertIsNone(self.alert.claimed_by)

    def test_future_only_cancel_leaves_due_alerts(self):
        with self.assertRaises(DuplicateEventError):
            alert_state.cancel(self.db, self.alert, now=utc(2025, 6, 19, 1), reason="deadline_updated")
        self.db.rollback()

        alert_state.cancel(self.db, self.alert, now=utc(2025, 6, 18), reason="deadline_updated")
        self.db.commit()
        self.assertEqual(self.alert.status, "cancelled")
        self.assertEqual(self.alert.cancelled_at, utc(2025, 6, 18))

    def test_unknown_acknowledgment_method_is_rejected(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT)
        with self.assertRaises(ValueError):
            alert_state.acknowledge(self.db, self.alert, method="carrier_pigeon", now=SENT_AT)

    def test_get_alert_raises_for_missing_id(self):
        with self.assertRaises(AlertNotFoundError):
            alert_state.get_alert(self.db, 9999)


class SnoozeTest(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        self.deadline = add_deadline(self.db)
        self.alert = add_alert(self.db, self.deadline)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def test_snooze_and_unsnooze(self):
        now = utc(2025, 6, 18)
        alert_state.snooze(
            self.db,
            self.alert,
            until=utc(2025, 6, 19, 9),
            now=now,
            due_at=self.deadline.due_at,
        )
        self.db.commit()
        self.assertEqual(self.alert.status, "scheduled")
        self.assertEqual(self.alert.snoozed_until, utc(2025, 6, 19, 9))

        alert_state.unsnooze(self.db, self.alert, now=now + timedelta(hours=1))
        self.db.commit()
        self.assertIsNone(self.alert.snoozed_until)

        history = alert_history(self.db, self.alert.id)
        self.assertEqual([entry.action for entry in history], ["scheduled", "snoozed"])
        self.assertTrue(history[0].details["unsnoozed"])

    def test_cannot_snooze_past_due_date(self):
        with self.assertRaises(AlertStateError):
            alert_state.snooze(
                self.db,
                self.alert,
                until=utc(2025, 6, 21),
                now=utc(2025, 6, 18),
                due_at=self.deadline.due_at,
            )

    def test_overdue_reminder_may_be_pushed_further(self):
        overdue = add_alert(
            self.db,
            self.deadline,
            scheduled_for=utc(2025, 6, 22),
            scheduled_urgency="critical",
        )
        self.db.commit()
        alert_state.snooze(
            self.db,
            overdue,
            until=utc(2025, 6, 23),
            now=utc(2025, 6, 21),
            due_at=self.deadline.due_at,
        )
        self.assertEqual(overdue.snoozed_until, utc(2025, 6, 23))

    def test_snooze_time_must_be_in_the_future(self):
        with self.assertRaises(AlertStateError):
            alert_state.snooze(self.db, self.alert, until=utc(2025, 6, 17), now=utc(2025, 6, 18))

    def test_only_scheduled_alerts_can_be_snoozed(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT)
        self.db.commit()
        with self.assertRaises(AlertStateError):
            alert_state.snooze(self.db, self.alert, until=SENT_AT + timedelta(hours=1), now=SENT_AT)
        with self.assertRaises(AlertStateError):
            alert_state.unsnooze(self.db, self.alert, now=SENT_AT)

    def test_cancel_clears_snooze(self):
        alert_state.snooze(self.db, self.alert, until=utc(2025, 6, 19, 9), now=utc(2025, 6, 18))
        alert_state.cancel(self.db, self.alert, now=utc(2025, 6, 18, 1), reason="deadline_deleted")
        self.db.commit()
        self.assertIsNone(self.alert.snoozed_until)


class AuditLogTest(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        self.deadline = add_deadline(self.db)
        self.alert = add_alert(self.db, self.deadline)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def test_timestamps_never_go_backwards(self):
        alert_state.mark_sent(self.db, self.alert, now=SENT_AT)
        # A receipt processed with a stale clock reading.
        alert_state.mark_delivered(self.db, self.alert, now=SENT_AT - timedelta(minutes=5))
        self.db.commit()

        history = list(reversed(alert_history(self.db, self.alert.id)))
        self.assertEqual([entry.action for entry in history], ["sent", "delivered"])
        self.assertGreaterEqual(history[1].timestamp, history[0].timestamp)

    def test_entries_are_append_only(self):
        entry = record_audit(self.db, self.alert, "scheduled", at=SENT_AT)
        self.db.commit()

        entry.action = "sent"
        with self.assertRaises(RuntimeError):
            self.db.flush()
        self.db.rollback()

    def test_unknown_action_is_rejected(self):
        with self.assertRaises(ValueError):
            record_audit(self.db, self.alert, "archived", at=SENT_AT)


if __name__ == "__main__":
    unittest.main()
