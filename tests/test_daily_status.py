from datetime import date, datetime
import unittest

from attendance_engine.schemas import (
    AttendancePolicy,
    CheckType,
    DayStatus,
    LateRule,
    LeaveApproval,
    PunchRecord,
    PunchSource,
    TimeResult,
)
from attendance_engine.services.calendar import resolve_day
from attendance_engine.services.daily_status import classify_day, summarize_punches, worked_minutes
from attendance_engine.services.leave_coverage import daily_leave_hours

WORK_DATE = date(2026, 10, 14)
POLICY = AttendancePolicy(
    late_rules=[LateRule(previous_day_checkout_time="18:30", late_threshold_time="09:01")],
    overtime_checkpoints=["19:30", "20:30"],
)


def _punch(check_type: CheckType, hour: int | None, minute: int = 0, **kwargs) -> PunchRecord:
    work_date = kwargs.pop("work_date", WORK_DATE)
    user_check_time = datetime.combine(work_date, datetime.min.time()).replace(hour=hour, minute=minute) if hour is not None else None
    return PunchRecord(
        user_id="u1",
        work_date=work_date,
        check_type=check_type,
        user_check_time=user_check_time,
        time_result=kwargs.pop("time_result", TimeResult.NORMAL.value if hour is not None else TimeResult.NOT_SIGNED.value),
        **kwargs,
    )


def _classify(records: list[PunchRecord], *, work_date: date = WORK_DATE, approvals=None, as_of=None):
    return classify_day(
        work_date,
        records=records,
        classification=resolve_day(work_date, holidays={}, policy=POLICY),
        approvals=approvals or {},
        policy=POLICY,
        full_day_hours=8,
        as_of=as_of,
    )


class DailyClassificationTests(unittest.TestCase):
    def test_regular_day_is_normal(self) -> None:
        outcome = _classify([_punch(CheckType.ON_DUTY, 8, 55), _punch(CheckType.OFF_DUTY, 18, 40)])

        self.assertEqual(outcome.status.status, DayStatus.NORMAL)
        self.assertEqual(outcome.status.on_duty_time, "08:55")
        self.assertEqual(outcome.status.off_duty_time, "18:40")
        self.assertEqual(outcome.status.attendance_contribution, 1)
        self.assertFalse(outcome.status.has_abnormality)

    def test_late_day_is_abnormal(self) -> None:
        outcome = _classify([_punch(CheckType.ON_DUTY, 9, 20), _punch(CheckType.OFF_DUTY, 18, 40)])

        self.assertEqual(outcome.status.status, DayStatus.ABNORMAL)
        self.assertEqual(outcome.status.late_minutes, 19)
        self.assertIn("LATE", outcome.status.flags)
        self.assertTrue(outcome.is_late)

    def test_missing_checkout_is_incomplete(self) -> None:
        outcome = _classify([_punch(CheckType.ON_DUTY, 8, 50), _punch(CheckType.OFF_DUTY, None)])

        self.assertEqual(outcome.status.status, DayStatus.INCOMPLETE)
        self.assertTrue(outcome.status.missing_off_duty)
        self.assertFalse(outcome.status.missing_on_duty)

    def test_both_sides_unsigned_is_absenteeism(self) -> None:
        outcome = _classify([_punch(CheckType.ON_DUTY, None), _punch(CheckType.OFF_DUTY, None)])

        self.assertEqual(outcome.status.status, DayStatus.ABNORMAL)
        self.assertTrue(outcome.status.is_absenteeism)
        self.assertFalse(outcome.status.missing_on_duty)
        self.assertEqual(outcome.status.attendance_contribution, 0)

    def test_leave_covering_the_morning_prevents_missing_punch(self) -> None:
        approval = LeaveApproval(
            proc_inst_id="p1",
            leave_type="年假",
            start=datetime(2026, 10, 14, 9, 0),
            end=datetime(2026, 10, 14, 12, 0),
            duration=3,
        )
        records = [
            _punch(CheckType.ON_DUTY, None, proc_inst_id="p1"),
            _punch(CheckType.OFF_DUTY, 18, 35),
        ]

        outcome = _classify(records, approvals={"p1": approval})

        self.assertEqual(outcome.status.status, DayStatus.NORMAL)
        self.assertFalse(outcome.status.missing_on_duty)
        self.assertEqual(outcome.status.leave_hours, 3)
        self.assertIn("PARTIAL_LEAVE", outcome.status.flags)

    def test_leave_hours_match_daily_leave_total(self) -> None:
        morning = LeaveApproval(
            proc_inst_id="p1",
            leave_type="年假",
            start=datetime(2026, 10, 14, 9, 0),
            end=datetime(2026, 10, 14, 12, 0),
            duration=0.5,
            duration_unit="day",
        )
        unlinked = LeaveApproval(
            proc_inst_id="p2",
            leave_type="事假",
            start=datetime(2026, 10, 14, 14, 0),
            end=datetime(2026, 10, 14, 16, 0),
            duration=2,
        )
        approvals = {"p1": morning, "p2": unlinked}
        records = [
            _punch(CheckType.ON_DUTY, None, proc_inst_id="p1"),
            _punch(CheckType.OFF_DUTY, 18, 35, proc_inst_id="p1"),
        ]

        outcome = _classify(records, approvals=approvals)

        expected = daily_leave_hours(records, approvals, WORK_DATE, policy=POLICY, full_day_hours=8)
        self.assertEqual(expected, 4)
        self.assertEqual(outcome.status.leave_hours, expected)
        self.assertEqual(outcome.leave_breakdown, ((morning, 4),))

    def test_cleared_day_has_no_record(self) -> None:
        placeholder = _punch(CheckType.ON_DUTY, None, source_type=PunchSource.MANUAL_EDIT.value)

        outcome = _classify([placeholder])

        self.assertEqual(outcome.status.status, DayStatus.NO_RECORD)
        self.assertIn("CLEARED", outcome.status.flags)

    def test_no_records_is_not_absenteeism(self) -> None:
        outcome = _classify([])

        self.assertEqual(outcome.status.status, DayStatus.NO_RECORD)
        self.assertFalse(outcome.status.is_absenteeism)

    def test_pending_day_skips_missing_checks(self) -> None:
        outcome = _classify([_punch(CheckType.ON_DUTY, 8, 55), _punch(CheckType.OFF_DUTY, None)], as_of=WORK_DATE)

        self.assertFalse(outcome.status.missing_off_duty)
        self.assertEqual(outcome.status.status, DayStatus.NORMAL)

    def test_workday_overtime_and_weekend_work_flags(self) -> None:
        workday = _classify([_punch(CheckType.ON_DUTY, 8, 55), _punch(CheckType.OFF_DUTY, 20, 45)])
        saturday = date(2026, 10, 17)
        weekend = _classify(
            [
                _punch(CheckType.ON_DUTY, 10, 0, work_date=saturday),
                _punch(CheckType.OFF_DUTY, 16, 0, work_date=saturday),
            ],
            work_date=saturday,
        )

        self.assertEqual(workday.status.overtime_checkpoint, "20:30")
        self.assertIn("OVERTIME", workday.status.flags)
        self.assertIn("WEEKEND_WORK", weekend.status.flags)
        self.assertFalse(weekend.status.is_workday)
        self.assertEqual(weekend.status.late_minutes, 0)

    def test_punch_summary_takes_earliest_in_and_latest_out(self) -> None:
        summary = summarize_punches(
            [
                _punch(CheckType.ON_DUTY, 9, 10),
                _punch(CheckType.ON_DUTY, 8, 58),
                _punch(CheckType.OFF_DUTY, 18, 31),
                _punch(CheckType.OFF_DUTY, 19, 2),
            ]
        )

        self.assertEqual(summary.on_duty, datetime(2026, 10, 14, 8, 58))
        self.assertEqual(summary.off_duty, datetime(2026, 10, 14, 19, 2))

    def test_worked_minutes_deduct_lunch(self) -> None:
        minutes = worked_minutes(WORK_DATE, datetime(2026, 10, 14, 9, 0), datetime(2026, 10, 14, 18, 30), POLICY)

        self.assertEqual(minutes, 480)


if __name__ == "__main__":
    unittest.main()
