from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from attendance_engine.schemas import AttendancePolicy, LeaveApproval, LeaveDisplayRule, PunchRecord
from attendance_engine.services.clock import minutes_since, overlap_minutes, parse_hhmm

_HOURS_EPSILON = 1e-6

LEAVE_TYPE_CATEGORIES = {
    "年假": "annual",
    "annual": "annual",
    "病假": "sick",
    "sick": "sick",
    "事假": "personal",
    "personal": "personal",
    "出差": "trip",
    "trip": "trip",
    "外出": "out",
    "out": "out",
    "调休": "comp_time",
    "comptime": "comp_time",
    "comp_time": "comp_time",
    "丧假": "bereavement",
    "bereavement": "bereavement",
    "陪产假": "paternity",
    "paternity": "paternity",
    "产假": "maternity",
    "maternity": "maternity",
    "育儿假": "parental",
    "parental": "parental",
    "婚假": "marriage",
    "marriage": "marriage",
}
PAID_LEAVE_CATEGORIES = {"annual", "bereavement", "paternity", "maternity", "parental", "marriage"}
NON_LEAVE_BIZ_TYPES = {"overtime", "加班"}


@dataclass(frozen=True)
class Coverage:
    covered: bool
    proc_inst_id: str | None = None
    leave_type: str | None = None


def leave_category(approval: LeaveApproval) -> str:
    key = approval.leave_type.strip()
    category = LEAVE_TYPE_CATEGORIES.get(key) or LEAVE_TYPE_CATEGORIES.get(key.lower())
    if category is not None:
        return category
    return LEAVE_TYPE_CATEGORIES.get(approval.biz_type.strip().lower(), "other")


def stat_category(category: str) -> str:
    """Outings are reported together with business trips."""
    return "trip" if category == "out" else category


def is_leave_approval(approval: LeaveApproval) -> bool:
    return approval.biz_type.strip().lower() not in NON_LEAVE_BIZ_TYPES


def is_full_day_leave(total_hours: float, full_day_hours: float) -> bool:
    return total_hours + _HOURS_EPSILON >= full_day_hours


def approval_total_hours(approval: LeaveApproval, full_day_hours: float) -> float:
    if approval.duration_unit == "day":
        return approval.duration * full_day_hours
    return approval.duration


def approval_is_full_day(approval: LeaveApproval, full_day_hours: float) -> bool:
    return is_full_day_leave(approval_total_hours(approval, full_day_hours), full_day_hours)


def _covered_dates(approval: LeaveApproval) -> list[date]:
    first = approval.start.date()
    last = approval.end.date()
    # an interval ending exactly at midnight does not touch the next day
    if approval.end > approval.start and approval.end == datetime.combine(last, datetime.min.time()):
        last -= timedelta(days=1)
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def _working_minutes(start_minutes: int, end_minutes: int, policy: AttendancePolicy) -> int:
    work_start = parse_hhmm(policy.work_start_time)
    work_end = parse_hhmm(policy.work_end_time)
    span = overlap_minutes(start_minutes, end_minutes, work_start, work_end)
    lunch = overlap_minutes(
        max(start_minutes, work_start),
        min(end_minutes, work_end),
        parse_hhmm(policy.lunch_start_time),
        parse_hhmm(policy.lunch_end_time),
    )
    return max(0, span - lunch)


def _full_window_minutes(policy: AttendancePolicy) -> int:
    return _working_minutes(0, 24 * 60, policy)


def approval_hours_on_day(
    approval: LeaveApproval,
    day: date,
    *,
    policy: AttendancePolicy,
    full_day_hours: float,
) -> float:
    covered = _covered_dates(approval)
    if day not in covered:
        return 0.0

    if approval.duration_unit == "day":
        remaining = approval.duration * full_day_hours if approval.duration > 0 else len(covered) * full_day_hours
        for covered_day in covered:
            share = min(full_day_hours, max(0.0, remaining))
            if covered_day == day:
                return share
            remaining -= share
        return 0.0

    if len(covered) == 1 and approval.duration > 0:
        return min(approval.duration, full_day_hours)

    start_minutes = minutes_since(day, approval.start) if day == approval.start.date() else 0
    end_minutes = minutes_since(day, approval.end) if day == approval.end.date() else 24 * 60
    worked = _working_minutes(start_minutes, end_minutes, policy)
    if worked >= _full_window_minutes(policy):
        return full_day_hours
    return min(full_day_hours, worked / 60)


def linked_approvals(
    records: Iterable[PunchRecord],
    approvals: Mapping[str, LeaveApproval],
) -> list[LeaveApproval]:
    result: list[LeaveApproval] = []
    seen: set[str] = set()
    for record in records:
        proc_inst_id = record.proc_inst_id
        if not proc_inst_id or proc_inst_id in seen:
            continue
        seen.add(proc_inst_id)
        approval = approvals.get(proc_inst_id)
        if approval is not None and is_leave_approval(approval):
            result.append(approval)
    return result


def daily_leave_breakdown(
    records: Iterable[PunchRecord],
    approvals: Mapping[str, LeaveApproval],
    day: date,
    *,
    policy: AttendancePolicy,
    full_day_hours: float,
) -> tuple[tuple[LeaveApproval, float], ...]:
    """Hours each linked leave approval contributes to `day`; approvals contributing nothing are dropped."""
    breakdown = []
    for approval in linked_approvals(records, approvals):
        hours = approval_hours_on_day(approval, day, policy=policy, full_day_hours=full_day_hours)
        if hours > 0:
            breakdown.append((approval, hours))
    return tuple(breakdown)


def daily_leave_hours(
    records: Iterable[PunchRecord],
    approvals: Mapping[str, LeaveApproval],
    day: date,
    *,
    policy: AttendancePolicy,
    full_day_hours: float,
    breakdown: Sequence[tuple[LeaveApproval, float]] | None = None,
) -> float:
    if breakdown is None:
        breakdown = daily_leave_breakdown(records, approvals, day, policy=policy, full_day_hours=full_day_hours)
    return round(sum(hours for _, hours in breakdown), 4)


def approval_covers(approval: LeaveApproval, at: datetime) -> bool:
    if approval.duration_unit == "day":
        return at.date() in _covered_dates(approval)
    return approval.start <= at < approval.end


def check_time_covered(
    records: Iterable[PunchRecord],
    approvals: Mapping[str, LeaveApproval],
    at: datetime,
) -> Coverage:
    for approval in linked_approvals(records, approvals):
        if approval_covers(approval, at):
            return Coverage(covered=True, proc_inst_id=approval.proc_inst_id, leave_type=approval.leave_type)
    return Coverage(covered=False)


def format_leave_display(leave_type: str, hours: float, rules: Iterable[LeaveDisplayRule]) -> str:
    for rule in rules:
        if rule.leave_type == leave_type:
            return rule.short_term_label if hours <= rule.short_term_hours else rule.long_term_label
    return f"{leave_type} {hours:g}h"
