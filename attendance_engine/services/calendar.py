from __future__ import annotations

from calendar import monthrange
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, timedelta

from attendance_engine.schemas import AttendancePolicy, EmployeeProfile, HolidayInfo, RemoteDay

SOURCE_WEEKDAY = "WEEKDAY"
SOURCE_HOLIDAY_CALENDAR = "HOLIDAY_CALENDAR"
SOURCE_WORKDAY_SWAP = "WORKDAY_SWAP"

MAX_LOOKBACK_DAYS = 14


@dataclass(frozen=True)
class DayClassification:
    day: date
    is_workday: bool
    is_statutory_holiday: bool
    source: str
    holiday_name: str | None = None
    is_remote: bool = False
    remote_mode: str | None = None
    remote_scope: str | None = None
    remote_start: str | None = None
    remote_end: str | None = None

    @property
    def is_remote_full_day(self) -> bool:
        return self.is_remote and self.remote_mode == "day"


@dataclass(frozen=True)
class MonthCalendarSummary:
    workdays: int
    statutory_holidays: int
    first_workday: date | None
    last_workday: date | None


def sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def _remote_scope_covers(entry: RemoteDay, employee: EmployeeProfile | None) -> bool:
    if entry.scope == "all":
        return True
    if employee is None:
        return False
    if entry.scope == "department":
        return bool(set(entry.department_ids) & set(employee.department_ids))
    return employee.user_id in entry.user_ids


def find_remote_day(
    day: date,
    *,
    policy: AttendancePolicy,
    employee: EmployeeProfile | None = None,
) -> RemoteDay | None:
    rules = policy.remote_work_rules
    if not rules.enabled:
        return None
    if rules.allowed_days_of_week and sunday_based_weekday(day) not in rules.allowed_days_of_week:
        return None
    for entry in rules.remote_days:
        if entry.day == day and _remote_scope_covers(entry, employee):
            return entry
    return None


def resolve_day(
    day: date,
    *,
    holidays: Mapping[date, HolidayInfo],
    policy: AttendancePolicy,
    employee: EmployeeProfile | None = None,
) -> DayClassification:
    swap_rules = policy.workday_swap_rules
    follows_calendar = not swap_rules.enabled or swap_rules.auto_follow_national_holiday

    is_workday = day.weekday() < 5
    source = SOURCE_WEEKDAY
    holiday_name: str | None = None

    info = holidays.get(day) if follows_calendar else None
    if info is not None:
        is_workday = not info.holiday
        source = SOURCE_HOLIDAY_CALENDAR
        holiday_name = info.name or None

    if swap_rules.enabled:
        for custom_day in swap_rules.custom_days:
            if custom_day.day == day:
                is_workday = custom_day.type == "workday"
                source = SOURCE_WORKDAY_SWAP
                holiday_name = custom_day.reason or holiday_name
                break

    is_statutory_holiday = (
        info is not None and info.holiday and day.weekday() < 5 and not is_workday
    )

    remote = find_remote_day(day, policy=policy, employee=employee)
    if remote is None:
        return DayClassification(
            day=day,
            is_workday=is_workday,
            is_statutory_holiday=is_statutory_holiday,
            source=source,
            holiday_name=holiday_name,
        )
    return DayClassification(
        day=day,
        is_workday=is_workday,
        is_statutory_holiday=is_statutory_holiday,
        source=source,
        holiday_name=holiday_name,
        is_remote=True,
        remote_mode=remote.time_mode,
        remote_scope=remote.scope,
        remote_start=remote.start_time,
        remote_end=remote.end_time,
    )


def month_days(year: int, month: int) -> list[date]:
    days_in_month = monthrange(year, month)[1]
    first = date(year, month, 1)
    return [first + timedelta(days=offset) for offset in range(days_in_month)]


def summarize_month(
    year: int,
    month: int,
    *,
    holidays: Mapping[date, HolidayInfo],
    policy: AttendancePolicy,
    employee: EmployeeProfile | None = None,
    since: date | None = None,
) -> MonthCalendarSummary:
    workdays = 0
    statutory_holidays = 0
    first_workday: date | None = None
    last_workday: date | None = None
    for day in month_days(year, month):
        classification = resolve_day(day, holidays=holidays, policy=policy, employee=employee)
        if classification.is_workday:
            first_workday = first_workday or day
            last_workday = day
        if since is not None and day < since:
            continue
        if classification.is_workday:
            workdays += 1
        elif classification.is_statutory_holiday:
            statutory_holidays += 1
    return MonthCalendarSummary(
        workdays=workdays,
        statutory_holidays=statutory_holidays,
        first_workday=first_workday,
        last_workday=last_workday,
    )
