from __future__ import annotations

from dataclasses import dataclass

from attendance_engine.schemas import ActualAttendanceRules, AttendancePolicy
from attendance_engine.services.calendar import MonthCalendarSummary
from attendance_engine.services.leave_coverage import PAID_LEAVE_CATEGORIES, is_full_day_leave


@dataclass(frozen=True)
class DayAttendanceFacts:
    is_workday: bool
    is_statutory_holiday: bool = False
    is_remote_full_day: bool = False
    has_on_duty: bool = False
    has_off_duty: bool = False
    worked_hours: float = 0.0
    is_late: bool = False
    is_missing: bool = False
    is_absenteeism: bool = False
    leave_hours: float = 0.0
    leave_categories: tuple[str, ...] = ()
    full_day_hours: float = 8.0


def should_attendance_days(summary: MonthCalendarSummary, policy: AttendancePolicy) -> float:
    rules = policy.attendance_days_rules
    if not rules.enabled:
        return float(summary.workdays)
    if rules.should_attendance_calc_method == "fixed":
        return float(rules.fixed_should_attendance_days or 0)
    days = summary.workdays
    if rules.include_holidays_in_should:
        days += summary.statutory_holidays
    return float(days)


def category_counts_as_attendance(category: str, rules: ActualAttendanceRules) -> bool:
    if category == "comp_time":
        return rules.count_comp_time_as_attendance
    if category in PAID_LEAVE_CATEGORIES:
        return rules.count_paid_leave_as_attendance
    if category == "trip":
        return rules.count_trip_as_attendance
    if category == "out":
        return rules.count_out_as_attendance
    if category in {"sick", "serious_sick"}:
        return rules.count_sick_leave_as_attendance
    if category == "personal":
        return rules.count_personal_leave_as_attendance
    return False


def day_contribution(facts: DayAttendanceFacts, policy: AttendancePolicy) -> float:
    rules = policy.attendance_days_rules.actual_attendance_rules

    if facts.is_statutory_holiday:
        return 1.0 if rules.count_holiday_as_attendance else 0.0
    if not facts.is_workday:
        return 0.0
    if facts.is_remote_full_day and policy.remote_work_rules.count_as_normal_attendance:
        return 1.0

    if facts.leave_hours > 0:
        leave_counts = bool(facts.leave_categories) and all(
            category_counts_as_attendance(category, rules) for category in facts.leave_categories
        )
        if is_full_day_leave(facts.leave_hours, facts.full_day_hours):
            return 1.0 if leave_counts else 0.0
        if leave_counts:
            return 1.0
        if rules.count_half_day_leave_as_half:
            return 0.5

    if facts.is_absenteeism:
        return 0.0
    if facts.is_missing:
        return 1.0 if rules.count_missing_as_attendance else 0.0
    if not (facts.has_on_duty and facts.has_off_duty):
        return 0.0
    if facts.worked_hours < rules.min_work_hours_for_full_day:
        return 0.0
    if facts.is_late and not rules.count_late_as_attendance:
        return 0.0
    return 1.0
