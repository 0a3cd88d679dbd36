import unittest
from datetime import timedelta

from compliance_alerts.core.constants import URGENCY_TIERS
from compliance_alerts.core.urgency import (
    classify_urgency,
    days_before,
    urgency_for_days,
    urgency_rank,
)
from helpers import utc


class UrgencyTest(unittest.TestCase):
    def test_days_before_rounds_up_partial_days(self):
        due = utc(2025, 6, 20)
        self.assertEqual(days_before(due, due), 0)
        self.assertEqual(days_before(due, due - timedelta(hours=1)), 1)
        self.assertEqual(days_before(due, due - timedelta(days=1)), 1)
        self.assertEqual(days_before(due, due - timedelta(days=1, seconds=1)), 2)
        self.assertEqual(days_before(due, due + timedelta(hours=1)), 0)
        self.assertEqual(days_before(due, due + timedelta(days=2)), -2)

    def test_tier_boundaries_are_inclusive(self):
        self.assertEqual(urgency_for_days(-5), "critical")
        self.assertEqual(urgency_for_days(0), "critical")
        self.assertEqual(urgency_for_days(1), "high")
        self.assertEqual(urgency_for_days(2), "medium")
        self.assertEqual(urgency_for_days(7), "medium")
        self.assertEqual(urgency_for_days(8), "early")
        self.assertEqual(urgency_for_days(365), "early")

    def test_every_day_count_maps_to_exactly_one_tier(self):
        for days in range(-30, 60):
            self.assertIn(urgency_for_days(days), URGENCY_TIERS)

    def test_urgency_never_decreases_as_due_date_approaches(self):
        due = utc(2025, 6, 20)
        previous = None
        for hours in range(24 * 40, -48, -6):
            tier = classify_urgency(due, due - timedelta(hours=hours))
            if previous is not None:
                self.assertLessEqual(urgency_rank(tier), urgency_rank(previous))
            previous = tier

    def test_naive_times_are_treated_as_utc(self):
        due = utc(2025, 6, 20)
        self.assertEqual(classify_urgency(due, due.replace(tzinfo=None) - timedelta(days=1)), "high")


if __name__ == "__main__":
    unittest.main()
