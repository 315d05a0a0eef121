from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from billing.exceptions import InvalidRateConfig
from billing.rate_config import dump_rate_config, validate_rate_config
from billing.services.payouts import (
    TierGapWarning,
    compute_payout,
    compute_payout_breakdown,
    compute_total_payout,
    payout_for_event,
    preview_payout,
)


def _event(studio=0, online=0):
    return SimpleNamespace(pk=None, students_studio=studio, students_online=online)


TIERED = {
    "type": "tiered",
    "tiers": [
        {"min": 0, "max": 9, "rate": 40},
        {"min": 10, "max": 15, "rate": 50},
        {"min": 16, "max": None, "rate": 55},
    ],
}


class FlatPayoutTests(SimpleTestCase):
    def test_bonus_above_threshold(self):
        config = validate_rate_config({"type": "flat", "base_rate": 45, "bonus_threshold": 15, "bonus_per_student": 3})

        self.assertEqual(compute_payout(_event(studio=20), config), Decimal("60.00"))
        self.assertEqual(compute_payout(_event(studio=15), config), Decimal("45.00"))

    def test_below_minimum_is_not_penalised_without_penalty(self):
        config = validate_rate_config({"type": "flat", "base_rate": 45, "minimum_threshold": 5})

        self.assertEqual(compute_payout(_event(studio=1), config), Decimal("45.00"))

    def test_penalty_is_floored_by_max_discount(self):
        config = validate_rate_config(
            {
                "type": "flat",
                "base_rate": 50,
                "max_discount": 10,
                "minimum_threshold": 10,
                "studio_penalty_per_student": 5,
            }
        )

        breakdown = compute_payout_breakdown(_event(studio=2), config)

        self.assertEqual(breakdown.penalty, Decimal("40.00"))
        self.assertTrue(breakdown.floor_applied)
        self.assertEqual(breakdown.total, Decimal("40.00"))

    def test_online_penalty_is_capped_by_max_discount(self):
        config = validate_rate_config(
            {"type": "flat", "base_rate": 50, "online_penalty_per_student": 4, "max_discount": 10}
        )

        small = compute_payout_breakdown(_event(studio=8, online=2), config)
        large = compute_payout_breakdown(_event(studio=8, online=6), config)

        self.assertEqual(small.penalty, Decimal("8.00"))
        self.assertEqual(small.total, Decimal("42.00"))
        self.assertFalse(small.floor_applied)
        self.assertEqual(large.penalty, Decimal("24.00"))
        self.assertTrue(large.floor_applied)
        self.assertEqual(large.total, Decimal("40.00"))

    def test_penalty_without_floor_clamps_at_zero(self):
        config = validate_rate_config(
            {"type": "flat", "base_rate": 20, "minimum_threshold": 10, "studio_penalty_per_student": 5}
        )

        self.assertEqual(compute_payout(_event(studio=0), config), Decimal("0.00"))

    def test_missing_headcounts_count_as_zero(self):
        config = validate_rate_config({"type": "flat", "base_rate": 45, "online_bonus_per_student": 2})

        self.assertEqual(compute_payout(SimpleNamespace(students_studio=None, students_online=None), config), Decimal("45.00"))


class OtherVariantTests(SimpleTestCase):
    def test_tiered_rate_follows_headcount(self):
        self.assertEqual(compute_payout(_event(studio=12), TIERED), Decimal("50.00"))
        self.assertEqual(compute_payout(_event(studio=0), TIERED), Decimal("40.00"))
        self.assertEqual(compute_payout(_event(studio=30), TIERED), Decimal("55.00"))

    def test_tiered_payout_is_non_decreasing_for_ascending_rates(self):
        config = validate_rate_config(TIERED)
        payouts = [compute_payout(_event(studio=n), config) for n in range(0, 40)]

        self.assertEqual(payouts, sorted(payouts))

    def test_tier_gap_pays_zero_and_warns(self):
        config = validate_rate_config(
            {"type": "tiered", "tiers": [{"min": 0, "max": 9, "rate": 40}, {"min": 12, "max": None, "rate": 55}]}
        )

        with self.assertLogs("billing.services.payouts", level="WARNING"):
            with self.assertWarns(TierGapWarning):
                breakdown = compute_payout_breakdown(_event(studio=10), config)

        self.assertTrue(breakdown.tier_gap)
        self.assertEqual(breakdown.total, Decimal("0.00"))

    def test_per_student_pays_flat_rate_per_event(self):
        config = validate_rate_config({"type": "per_student", "rate_per_student": 12})

        self.assertEqual(compute_payout(_event(studio=1), config), Decimal("12.00"))
        self.assertEqual(compute_payout(_event(studio=25), config), Decimal("12.00"))

    def test_online_bonus_respects_ceiling(self):
        config = validate_rate_config(
            {"type": "flat", "base_rate": 45, "online_bonus_per_student": 2.5, "online_bonus_ceiling": 5}
        )

        breakdown = compute_payout_breakdown(_event(online=8), config)

        self.assertEqual(breakdown.online_bonus, Decimal("12.50"))
        self.assertEqual(breakdown.total, Decimal("57.50"))

    def test_online_bonus_applies_to_tiered_configs(self):
        config = dict(TIERED, online_bonus_per_student=2.5, online_bonus_ceiling=5)

        self.assertEqual(compute_payout(_event(studio=12, online=3), config), Decimal("57.50"))


class PayoutContractTests(SimpleTestCase):
    def test_payout_survives_reserialization(self):
        raw = dict(TIERED, online_bonus_per_student=2.5, online_bonus_ceiling=5)
        config = validate_rate_config(raw)
        reloaded = validate_rate_config(dump_rate_config(config))

        for studio, online in [(0, 0), (9, 2), (10, 7), (16, 1), (40, 12)]:
            event = _event(studio=studio, online=online)
            self.assertEqual(compute_payout(event, config), compute_payout(event, reloaded))

    def test_corrupt_config_raises(self):
        with self.assertRaises(InvalidRateConfig):
            compute_payout(_event(studio=3), {"type": "flat", "base_rate": -1})
        with self.assertRaises(InvalidRateConfig):
            compute_payout(_event(studio=3), "flat")

    def test_total_payout_sums_events(self):
        config = {"type": "flat", "base_rate": 45, "bonus_threshold": 15, "bonus_per_student": 3}
        events = [_event(studio=20), _event(studio=10), _event(studio=16)]

        self.assertEqual(compute_total_payout(events, config), Decimal("153.00"))

    def test_unassigned_event_pays_zero(self):
        event = SimpleNamespace(pk=1, students_studio=10, students_online=0, billing_entity=None)

        self.assertEqual(payout_for_event(event), Decimal("0.00"))

    def test_preview_reports_breakdown(self):
        breakdown = preview_payout({"type": "flat", "base_rate": 45, "bonus_threshold": 15, "bonus_per_student": 3}, 18, 0)

        self.assertEqual(breakdown.as_dict()["bonus"], "9.00")
        self.assertEqual(breakdown.as_dict()["total"], "54.00")
