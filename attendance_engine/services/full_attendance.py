from __future__ import annotations

from dataclasses import dataclass

from attendance_engine.schemas import AttendancePolicy, EmployeeStats, FullAttendanceRule

LAST_WORKDAY_CHECKOUT = "lastWorkdayCheckout"

_RULE_STAT_KEYS = {"compTime": "comp_time"}


@dataclass(frozen=True)
class FullAttendanceVerdict:
    is_full_attendance: bool | None
    bonus: float
    disqualifiers: tuple[str, ...] = ()


def rule_stat_value(stats: EmployeeStats, rule: FullAttendanceRule) -> float:
    if rule.type == "late":
        return stats.late_count
    if rule.type == "missing":
        return stats.missing_count
    if rule.type == "absenteeism":
        return stats.absenteeism_count

    key = _RULE_STAT_KEYS.get(rule.type, rule.type)
    source = stats.leave_hours if rule.unit == "hours" else stats.leave_counts
    value = source.get(key, 0)
    if key == "sick":
        value += source.get("serious_sick", 0)
    return value


def _rule_disqualifies(rule: FullAttendanceRule, value: float) -> bool:
    if rule.threshold == 0:
        return value > 0
    return value > rule.threshold


def _default_disqualifiers(stats: EmployeeStats, policy: AttendancePolicy) -> list[str]:
    reasons: list[str] = []
    if stats.late_count > 0:
        reasons.append("late")
    if stats.missing_count > 0:
        reasons.append("missing")
    if stats.absenteeism_count > 0:
        reasons.append("absenteeism")
    for category, hours in stats.leave_hours.items():
        if hours <= 0:
            continue
        if category == "comp_time" and policy.full_attendance_allow_adjustment:
            continue
        reasons.append(category)
    return reasons


def evaluate_full_attendance(
    stats: EmployeeStats,
    policy: AttendancePolicy,
    *,
    last_workday_checkout_missing: bool = False,
) -> FullAttendanceVerdict:
    if not policy.full_attendance_enabled:
        return FullAttendanceVerdict(is_full_attendance=None, bonus=0.0)

    if policy.full_attendance_rules:
        reasons = [
            rule.type
            for rule in policy.full_attendance_rules
            if rule.enabled and _rule_disqualifies(rule, rule_stat_value(stats, rule))
        ]
    else:
        reasons = _default_disqualifiers(stats, policy)

    if last_workday_checkout_missing and policy.full_attendance_require_last_workday_checkout:
        reasons.append(LAST_WORKDAY_CHECKOUT)

    is_full = not reasons
    return FullAttendanceVerdict(
        is_full_attendance=is_full,
        bonus=policy.full_attendance_bonus if is_full else 0.0,
        disqualifiers=tuple(dict.fromkeys(reasons)),
    )
