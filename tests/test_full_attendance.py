import unittest

from attendance_engine.schemas import AttendancePolicy, EmployeeStats, FullAttendanceRule
from attendance_engine.services.full_attendance import LAST_WORKDAY_CHECKOUT, evaluate_full_attendance


def _stats(**values) -> EmployeeStats:
    return EmployeeStats(user_id="u1", year=2026, month=10, **values)


def _policy(rules: list[FullAttendanceRule] | None = None, **overrides) -> AttendancePolicy:
    values = {
        "full_attendance_enabled": True,
        "full_attendance_bonus": 200,
        "full_attendance_rules": rules or [],
    }
    values.update(overrides)
    return AttendancePolicy(**values)


class FullAttendanceEvaluatorTests(unittest.TestCase):
    def test_disabled_gives_no_verdict_and_no_bonus(self) -> None:
        verdict = evaluate_full_attendance(_stats(late_count=5), AttendancePolicy())

        self.assertIsNone(verdict.is_full_attendance)
        self.assertEqual(verdict.bonus, 0)

    def test_disabled_rules_never_disqualify(self) -> None:
        rules = [FullAttendanceRule(type="late", enabled=False), FullAttendanceRule(type="absenteeism", enabled=False)]

        verdict = evaluate_full_attendance(_stats(late_count=3, absenteeism_count=1), _policy(rules))

        self.assertTrue(verdict.is_full_attendance)
        self.assertEqual(verdict.bonus, 200)

    def test_zero_threshold_with_non_zero_stat_disqualifies(self) -> None:
        verdict = evaluate_full_attendance(_stats(missing_count=1), _policy([FullAttendanceRule(type="missing")]))

        self.assertFalse(verdict.is_full_attendance)
        self.assertEqual(verdict.bonus, 0)
        self.assertEqual(verdict.disqualifiers, ("missing",))

    def test_positive_threshold_is_a_tolerance(self) -> None:
        policy = _policy([FullAttendanceRule(type="late", threshold=2)])

        self.assertTrue(evaluate_full_attendance(_stats(late_count=2), policy).is_full_attendance)
        self.assertFalse(evaluate_full_attendance(_stats(late_count=3), policy).is_full_attendance)

    def test_hour_rules_include_serious_sick_leave(self) -> None:
        stats = _stats()
        stats.leave_hours["serious_sick"] = 32
        policy = _policy([FullAttendanceRule(type="sick", threshold=24, unit="hours")])

        verdict = evaluate_full_attendance(stats, policy)

        self.assertFalse(verdict.is_full_attendance)
        self.assertEqual(verdict.disqualifiers, ("sick",))

    def test_default_rules_tolerate_comp_time_when_adjustment_allowed(self) -> None:
        stats = _stats()
        stats.leave_hours["comp_time"] = 4

        self.assertTrue(evaluate_full_attendance(stats, _policy()).is_full_attendance)
        self.assertFalse(
            evaluate_full_attendance(stats, _policy(full_attendance_allow_adjustment=False)).is_full_attendance
        )

    def test_last_workday_checkout_requirement(self) -> None:
        stats = _stats()

        strict = evaluate_full_attendance(
            stats,
            _policy(full_attendance_require_last_workday_checkout=True),
            last_workday_checkout_missing=True,
        )
        lenient = evaluate_full_attendance(stats, _policy(), last_workday_checkout_missing=True)

        self.assertFalse(strict.is_full_attendance)
        self.assertIn(LAST_WORKDAY_CHECKOUT, strict.disqualifiers)
        self.assertTrue(lenient.is_full_attendance)


if __name__ == "__main__":
    unittest.main()
