from datetime import date, datetime
import unittest

from attendance_engine.schemas import AttendancePolicy, CrossDayCheckout, CrossDayRule, LateRule, LeaveApproval
from attendance_engine.services.lateness import (
    CHECKOUT_PRIOR_WORKDAY,
    CHECKOUT_WEEKEND,
    CHECKOUT_YESTERDAY,
    RULE_SOURCE_BASELINE,
    RULE_SOURCE_CROSS_DAY,
    RULE_SOURCE_FIRST_DAY,
    RULE_SOURCE_LATE_RULE,
    RULE_SOURCE_LEAVE_END,
    RULE_SOURCE_WORK_START,
    CheckoutFact,
    LateContext,
    PreviousCheckout,
    evaluate_late_minutes,
    resolve_previous_checkout,
    select_late_rule,
)

WORK_DATE = date(2026, 10, 14)


def _ladder_policy(**overrides) -> AttendancePolicy:
    values = {
        "late_rules": [
            LateRule(previous_day_checkout_time="18:30", late_threshold_time="09:01"),
            LateRule(previous_day_checkout_time="20:30", late_threshold_time="09:31"),
            LateRule(previous_day_checkout_time="24:00", late_threshold_time="13:31"),
        ]
    }
    values.update(overrides)
    return AttendancePolicy(**values)


def _previous(minutes: int, *, from_approval: bool = False) -> PreviousCheckout:
    return PreviousCheckout(
        day=date(2026, 10, 13),
        minutes=minutes,
        from_approval=from_approval,
        governed_by=CHECKOUT_YESTERDAY,
    )


def _evaluate(policy: AttendancePolicy, on_duty: datetime | None, previous: PreviousCheckout | None, **kwargs):
    return evaluate_late_minutes(
        LateContext(work_date=WORK_DATE, on_duty=on_duty, previous_checkout=previous, policy=policy, **kwargs)
    )


class LateEvaluatorTests(unittest.TestCase):
    def test_single_rule_scenario_counts_four_minutes(self) -> None:
        policy = AttendancePolicy(
            work_start_time="09:00",
            work_end_time="18:30",
            late_rules=[LateRule(previous_day_checkout_time="18:00", late_threshold_time="09:01")],
        )

        result = _evaluate(policy, datetime(2026, 10, 14, 9, 5), _previous(18 * 60 + 10))

        self.assertEqual(result.raw_minutes, 4)
        self.assertEqual(result.threshold_time, "09:01")
        self.assertEqual(result.rule_source, RULE_SOURCE_LATE_RULE)

    def test_later_checkout_earns_later_threshold(self) -> None:
        policy = _ladder_policy()

        result = _evaluate(policy, datetime(2026, 10, 14, 9, 40), _previous(21 * 60))

        self.assertEqual(result.threshold_time, "09:31")
        self.assertEqual(result.raw_minutes, 9)

    def test_checkout_before_every_boundary_uses_baseline(self) -> None:
        policy = _ladder_policy()

        result = _evaluate(policy, datetime(2026, 10, 14, 9, 10), _previous(17 * 60))

        self.assertEqual(result.threshold_time, "09:01")
        self.assertEqual(result.rule_source, RULE_SOURCE_BASELINE)
        self.assertEqual(result.raw_minutes, 9)

    def test_missing_previous_checkout_uses_baseline(self) -> None:
        result = _evaluate(_ladder_policy(), datetime(2026, 10, 14, 9, 1, 59), None)

        self.assertEqual(result.rule_source, RULE_SOURCE_BASELINE)
        self.assertEqual(result.raw_minutes, 0)

    def test_no_rules_falls_back_to_work_start(self) -> None:
        result = _evaluate(AttendancePolicy(), datetime(2026, 10, 14, 9, 3), None)

        self.assertEqual(result.rule_source, RULE_SOURCE_WORK_START)
        self.assertEqual(result.raw_minutes, 3)

    def test_midnight_threshold_means_no_lateness(self) -> None:
        policy = AttendancePolicy(
            late_rules=[LateRule(previous_day_checkout_time="18:00", late_threshold_time="24:00")],
        )

        result = _evaluate(policy, datetime(2026, 10, 14, 15, 0), _previous(18 * 60 + 30))

        self.assertEqual(result.raw_minutes, 0)
        self.assertIsNone(result.threshold_minutes)

    def test_first_day_on_job_is_never_late(self) -> None:
        result = _evaluate(_ladder_policy(), datetime(2026, 10, 14, 11, 0), None, is_first_day_on_job=True)

        self.assertEqual(result.raw_minutes, 0)
        self.assertEqual(result.rule_source, RULE_SOURCE_FIRST_DAY)

    def test_cross_day_approval_checkout_overrides_late_rules(self) -> None:
        policy = _ladder_policy(
            cross_day_checkout=CrossDayCheckout(
                enabled=True,
                rules=[CrossDayRule(checkout_time="20:30", next_day_checkin_time="09:30")],
                max_checkout_time="24:00",
                next_day_checkin_time="13:30",
            )
        )
        after_midnight = 24 * 60 + 30

        result = _evaluate(policy, datetime(2026, 10, 14, 13, 0), _previous(after_midnight, from_approval=True))

        self.assertEqual(result.rule_source, RULE_SOURCE_CROSS_DAY)
        self.assertEqual(result.threshold_time, "13:30")
        self.assertEqual(result.raw_minutes, 0)

    def test_cross_day_ignores_device_checkouts(self) -> None:
        policy = _ladder_policy(
            cross_day_checkout=CrossDayCheckout(
                enabled=True,
                rules=[CrossDayRule(checkout_time="20:30", next_day_checkin_time="10:00")],
            )
        )

        result = _evaluate(policy, datetime(2026, 10, 14, 9, 45), _previous(21 * 60))

        self.assertEqual(result.rule_source, RULE_SOURCE_LATE_RULE)
        self.assertEqual(result.raw_minutes, 14)

    def test_hourly_leave_over_threshold_moves_it_past_lunch(self) -> None:
        approval = LeaveApproval(
            proc_inst_id="p-1",
            leave_type="事假",
            start=datetime(2026, 10, 14, 9, 0),
            end=datetime(2026, 10, 14, 12, 0),
            duration=3,
            duration_unit="hour",
        )

        result = _evaluate(_ladder_policy(), datetime(2026, 10, 14, 13, 40), None, approvals=(approval,))

        self.assertEqual(result.rule_source, RULE_SOURCE_LEAVE_END)
        self.assertEqual(result.threshold_time, "13:30")
        self.assertEqual(result.raw_minutes, 10)

    def test_half_day_leave_in_day_units_moves_threshold(self) -> None:
        approval = LeaveApproval(
            proc_inst_id="p-2",
            leave_type="年假",
            start=datetime(2026, 10, 14, 9, 0),
            end=datetime(2026, 10, 14, 12, 0),
            duration=0.5,
            duration_unit="天",
        )

        result = _evaluate(_ladder_policy(), datetime(2026, 10, 14, 13, 25), None, approvals=(approval,))

        self.assertEqual(result.rule_source, RULE_SOURCE_LEAVE_END)
        self.assertEqual(result.threshold_time, "13:30")
        self.assertEqual(result.raw_minutes, 0)

    def test_date_only_day_leave_covers_the_whole_morning(self) -> None:
        approval = LeaveApproval(
            proc_inst_id="p-3",
            leave_type="事假",
            start=datetime(2026, 10, 14),
            end=datetime(2026, 10, 14),
            duration=0.5,
            duration_unit="day",
        )

        result = _evaluate(_ladder_policy(), datetime(2026, 10, 14, 15, 0), None, approvals=(approval,))

        self.assertEqual(result.rule_source, RULE_SOURCE_LEAVE_END)
        self.assertEqual(result.raw_minutes, 0)

    def test_select_late_rule_picks_greatest_boundary_not_after_checkout(self) -> None:
        rules = _ladder_policy().late_rules

        self.assertEqual(select_late_rule(rules, 20 * 60 + 30).late_threshold_time, "09:31")
        self.assertEqual(select_late_rule(rules, 24 * 60 + 15).late_threshold_time, "13:31")
        self.assertIsNone(select_late_rule([], 20 * 60))


class PreviousCheckoutTests(unittest.TestCase):
    def _facts(self, table: dict[date, CheckoutFact]):
        def lookup(day: date) -> CheckoutFact:
            return table.get(day, CheckoutFact(day=day, is_workday=day.weekday() < 5))

        return lookup

    def test_yesterday_workday_checkout(self) -> None:
        table = {date(2026, 10, 19): CheckoutFact(day=date(2026, 10, 19), is_workday=True, off_duty=datetime(2026, 10, 19, 21, 0))}

        result = resolve_previous_checkout(date(2026, 10, 20), self._facts(table), policy=AttendancePolicy())

        self.assertEqual(result.governed_by, CHECKOUT_YESTERDAY)
        self.assertEqual(result.minutes, 21 * 60)

    def test_monday_uses_friday_when_weekend_was_quiet(self) -> None:
        table = {date(2026, 10, 16): CheckoutFact(day=date(2026, 10, 16), is_workday=True, off_duty=datetime(2026, 10, 16, 20, 30))}

        result = resolve_previous_checkout(date(2026, 10, 19), self._facts(table), policy=AttendancePolicy())

        self.assertEqual(result.governed_by, CHECKOUT_PRIOR_WORKDAY)
        self.assertEqual(result.day, date(2026, 10, 16))
        self.assertEqual(result.minutes, 20 * 60 + 30)

    def test_long_weekend_shift_governs_monday(self) -> None:
        table = {
            date(2026, 10, 16): CheckoutFact(day=date(2026, 10, 16), is_workday=True, off_duty=datetime(2026, 10, 16, 18, 30)),
            date(2026, 10, 17): CheckoutFact(
                day=date(2026, 10, 17),
                is_workday=False,
                off_duty=datetime(2026, 10, 17, 22, 0),
                worked_minutes=9 * 60,
            ),
        }

        result = resolve_previous_checkout(
            date(2026, 10, 19),
            self._facts(table),
            policy=AttendancePolicy(weekend_overtime_threshold=8),
        )

        self.assertEqual(result.governed_by, CHECKOUT_WEEKEND)
        self.assertEqual(result.minutes, 22 * 60)

    def test_short_weekend_shift_does_not_govern(self) -> None:
        table = {
            date(2026, 10, 16): CheckoutFact(day=date(2026, 10, 16), is_workday=True, off_duty=datetime(2026, 10, 16, 18, 40)),
            date(2026, 10, 18): CheckoutFact(
                day=date(2026, 10, 18),
                is_workday=False,
                off_duty=datetime(2026, 10, 18, 23, 0),
                worked_minutes=2 * 60,
            ),
        }

        result = resolve_previous_checkout(date(2026, 10, 19), self._facts(table), policy=AttendancePolicy())

        self.assertEqual(result.governed_by, CHECKOUT_PRIOR_WORKDAY)


if __name__ == "__main__":
    unittest.main()
