from datetime import date, datetime
import unittest

from attendance_engine.schemas import AttendancePolicy, PerformancePenaltyRule
from attendance_engine.services.exemption import ExemptionDecision, LateOccurrence
from attendance_engine.services.penalty import MODE_DISABLED, calculate_penalty, ladder_penalty


def _ladder_policy(**overrides) -> AttendancePolicy:
    values = {
        "performance_penalty_enabled": True,
        "performance_penalty_mode": "capped",
        "capped_penalty_type": "ladder",
        "max_performance_penalty": 250,
        "performance_penalty_rules": [
            PerformancePenaltyRule(min_minutes=0, max_minutes=5, penalty=50),
            PerformancePenaltyRule(min_minutes=5, max_minutes=15, penalty=100),
            PerformancePenaltyRule(min_minutes=15, max_minutes=999, penalty=200),
        ],
    }
    values.update(overrides)
    return AttendancePolicy(**values)


def _decision(minutes: int, *, on_duty: datetime | None = None, forgiven: bool = False) -> ExemptionDecision:
    occurrence = LateOccurrence(work_date=date(2026, 10, 14), raw_minutes=minutes, on_duty=on_duty)
    return ExemptionDecision(occurrence=occurrence, forgiven=forgiven, billable_minutes=0 if forgiven else minutes)


class PenaltyCalculatorTests(unittest.TestCase):
    def test_ladder_scenarios(self) -> None:
        policy = _ladder_policy()

        self.assertEqual(ladder_penalty(12, policy)[0], 100)
        self.assertEqual(ladder_penalty(40, policy)[0], 200)
        self.assertEqual(ladder_penalty(0, policy)[0], 0)

    def test_ladder_is_monotonic(self) -> None:
        policy = _ladder_policy()
        amounts = [ladder_penalty(minutes, policy)[0] for minutes in range(0, 600)]

        self.assertEqual(amounts, sorted(amounts))

    def test_gap_between_tiers_keeps_lower_tier_penalty(self) -> None:
        policy = _ladder_policy(
            performance_penalty_rules=[
                PerformancePenaltyRule(min_minutes=0, max_minutes=5, penalty=50),
                PerformancePenaltyRule(min_minutes=10, max_minutes=999, penalty=100),
            ]
        )

        self.assertEqual(ladder_penalty(4, policy)[0], 50)
        self.assertEqual(ladder_penalty(7, policy)[0], 50)
        self.assertEqual(ladder_penalty(12, policy)[0], 100)
        amounts = [ladder_penalty(minutes, policy)[0] for minutes in range(0, 600)]
        self.assertEqual(amounts, sorted(amounts))

    def test_minutes_past_bounded_last_tier_use_cap(self) -> None:
        policy = _ladder_policy(
            max_performance_penalty=150,
            performance_penalty_rules=[
                PerformancePenaltyRule(min_minutes=5, max_minutes=15, penalty=50),
                PerformancePenaltyRule(min_minutes=15, max_minutes=30, penalty=100),
            ],
        )
        amounts = [ladder_penalty(minutes, policy)[0] for minutes in range(0, 120)]

        self.assertEqual(amounts[3], 0)
        self.assertEqual(amounts[40], 150)
        self.assertEqual(amounts, sorted(amounts))

    def test_ladder_tier_is_clamped_to_cap(self) -> None:
        amount, tier, capped = ladder_penalty(40, _ladder_policy(max_performance_penalty=150))

        self.assertEqual(amount, 150)
        self.assertEqual(tier.penalty, 200)
        self.assertTrue(capped)

    def test_no_billable_minutes_means_no_penalty(self) -> None:
        result = calculate_penalty([_decision(10, forgiven=True)], _ladder_policy())

        self.assertEqual(result.amount, 0)
        self.assertEqual(result.billable_minutes, 0)

    def test_disabled_penalty(self) -> None:
        result = calculate_penalty([_decision(30)], AttendancePolicy())

        self.assertEqual(result.amount, 0)
        self.assertEqual(result.mode, MODE_DISABLED)

    def test_ladder_uses_monthly_total(self) -> None:
        result = calculate_penalty([_decision(4), _decision(8)], _ladder_policy())

        self.assertEqual(result.billable_minutes, 12)
        self.assertEqual(result.amount, 100)
        self.assertEqual(result.mode, "capped/ladder")

    def test_fixed_cap_per_minute(self) -> None:
        policy = _ladder_policy(capped_penalty_type="fixedCap", capped_penalty_per_minute=5)

        self.assertEqual(calculate_penalty([_decision(30)], policy).amount, 150)
        capped = calculate_penalty([_decision(100)], policy)
        self.assertEqual(capped.amount, 250)
        self.assertTrue(capped.capped)

    def test_unlimited_per_minute_counts_past_threshold(self) -> None:
        policy = AttendancePolicy(
            performance_penalty_enabled=True,
            performance_penalty_mode="unlimited",
            unlimited_penalty_threshold_time="09:01",
            unlimited_penalty_calc_type="perMinute",
            unlimited_penalty_per_minute=5,
        )

        result = calculate_penalty([_decision(10, on_duty=datetime(2026, 10, 14, 9, 11))], policy)

        self.assertEqual(result.amount, 50)
        self.assertEqual(result.mode, "unlimited/perMinute")

    def test_unlimited_fixed_amount_per_occurrence(self) -> None:
        policy = AttendancePolicy(
            performance_penalty_enabled=True,
            performance_penalty_mode="unlimited",
            unlimited_penalty_threshold_time="09:01",
            unlimited_penalty_calc_type="fixed",
            unlimited_penalty_fixed_amount=50,
        )
        decisions = [
            _decision(10, on_duty=datetime(2026, 10, 14, 9, 11)),
            _decision(30, on_duty=datetime(2026, 10, 14, 9, 31)),
        ]

        self.assertEqual(calculate_penalty(decisions, policy).amount, 100)


if __name__ == "__main__":
    unittest.main()
