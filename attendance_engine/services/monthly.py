from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime

from attendance_engine.errors import AttendanceEngineError, EvaluationError
from attendance_engine.schemas import (
    AttendancePolicy,
    DayStatus,
    EmployeeComputationFailure,
    EmployeeMonthInput,
    EmployeeStats,
    HolidayInfo,
    LateLedgerEntry,
    LeaveApproval,
    MonthlyBatchResult,
    PunchRecord,
)
from attendance_engine.services.attendance_days import should_attendance_days
from attendance_engine.services.calendar import DayClassification, month_days, resolve_day, summarize_month
from attendance_engine.services.clock import format_hhmm
from attendance_engine.services.daily_status import checkout_fact, classify_day
from attendance_engine.services.exemption import LateOccurrence, apply_exemptions
from attendance_engine.services.full_attendance import evaluate_full_attendance
from attendance_engine.services.lateness import CheckoutFact, resolve_previous_checkout
from attendance_engine.services.leave_coverage import (
    approval_total_hours,
    format_leave_display,
    leave_category,
    stat_category,
)
from attendance_engine.services.overtime import summarize_overtime
from attendance_engine.services.penalty import calculate_penalty
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.monthly")


def _record_order(record: PunchRecord) -> tuple[bool, datetime, str, str]:
    return (
        record.user_check_time is None,
        record.user_check_time or datetime.min,
        record.check_type.value,
        record.source_type,
    )


def _group_records(employee_id: str, records: Iterable[PunchRecord]) -> dict[date, list[PunchRecord]]:
    grouped: dict[date, list[PunchRecord]] = defaultdict(list)
    for record in records:
        if record.user_id != employee_id:
            raise EvaluationError(f"Punch record for user {record.user_id} found in the month of {employee_id}.")
        if record.user_check_time is not None and abs((record.user_check_time.date() - record.work_date).days) > 1:
            raise EvaluationError(
                f"Punch at {record.user_check_time.isoformat()} cannot belong to work date {record.work_date}."
            )
        grouped[record.work_date].append(record)
    for day_records in grouped.values():
        day_records.sort(key=_record_order)
    return grouped


def _approval_map(approvals: Mapping[str, LeaveApproval] | Iterable[LeaveApproval]) -> dict[str, LeaveApproval]:
    if isinstance(approvals, Mapping):
        return dict(approvals)
    return {approval.proc_inst_id: approval for approval in approvals}


def calculate_employee_monthly(
    month_input: EmployeeMonthInput,
    *,
    year: int,
    month: int,
    policy: AttendancePolicy,
    approvals: Mapping[str, LeaveApproval] | Iterable[LeaveApproval] = (),
    holidays: Mapping[date, HolidayInfo] | None = None,
    as_of: date | None = None,
    policy_version: int | None = None,
) -> EmployeeStats:
    if month < 1 or month > 12:
        raise ValueError(f"Invalid month: {month}")

    employee = month_input.employee
    holiday_map = holidays or {}
    approval_map = _approval_map(approvals)
    full_day_hours = policy.full_day_hours_for(employee.office)
    by_day = _group_records(employee.user_id, month_input.records)

    classifications: dict[date, DayClassification] = {}

    def classify(day: date) -> DayClassification:
        if day not in classifications:
            classifications[day] = resolve_day(day, holidays=holiday_map, policy=policy, employee=employee)
        return classifications[day]

    def facts(day: date) -> CheckoutFact:
        return checkout_fact(day, by_day.get(day, []), classify(day), policy)

    stats = EmployeeStats(
        user_id=employee.user_id,
        name=employee.name,
        year=year,
        month=month,
        policy_version=policy_version,
    )
    occurrences: list[LateOccurrence] = []
    overtime_results = []
    approval_hours: dict[str, float] = {}
    approvals_seen: dict[str, LeaveApproval] = {}
    actual_days = 0.0

    for day in month_days(year, month):
        if as_of is not None and day > as_of:
            break
        if employee.hired_date is not None and day < employee.hired_date:
            continue

        classification = classify(day)
        previous = resolve_previous_checkout(day, facts, policy=policy) if classification.is_workday else None
        outcome = classify_day(
            day,
            records=by_day.get(day, []),
            classification=classification,
            approvals=approval_map,
            policy=policy,
            full_day_hours=full_day_hours,
            previous_checkout=previous,
            is_first_day_on_job=employee.hired_date == day,
            as_of=as_of,
        )
        daily = outcome.status
        stats.days.append(daily)
        actual_days += daily.attendance_contribution

        if outcome.is_late:
            stats.late_count += 1
            stats.late_minutes += outcome.late.raw_minutes
            occurrences.append(
                LateOccurrence(
                    work_date=day,
                    raw_minutes=outcome.late.raw_minutes,
                    on_duty=outcome.on_duty,
                    threshold_minutes=outcome.late.threshold_minutes,
                    rule_source=outcome.late.rule_source,
                )
            )
        stats.missing_count += int(daily.missing_on_duty) + int(daily.missing_off_duty)
        stats.absenteeism_count += int(daily.is_absenteeism)
        overtime_results.append(outcome.overtime)
        for approval, hours in outcome.leave_breakdown:
            approvals_seen[approval.proc_inst_id] = approval
            approval_hours[approval.proc_inst_id] = approval_hours.get(approval.proc_inst_id, 0.0) + hours

    serious_sick_hours = policy.serious_sick_days * full_day_hours
    for proc_inst_id, hours in approval_hours.items():
        approval = approvals_seen[proc_inst_id]
        category = stat_category(leave_category(approval))
        total_hours = approval_total_hours(approval, full_day_hours)
        if category == "sick" and serious_sick_hours > 0 and total_hours > serious_sick_hours:
            category = "serious_sick"
        stats.leave_counts[category] += 1
        stats.leave_hours[category] = round(stats.leave_hours[category] + hours, 2)
        if any(rule.leave_type == approval.leave_type for rule in policy.leave_display_rules):
            stats.leave_labels.append(
                format_leave_display(approval.leave_type, total_hours, policy.leave_display_rules)
            )

    exemption = apply_exemptions(occurrences, policy)
    stats.billable_late_minutes = exemption.billable_minutes
    stats.exempted_late_count = exemption.forgiven_count
    stats.exemption_used = exemption.quota_used
    stats.late_ledger = [
        LateLedgerEntry(
            work_date=decision.occurrence.work_date,
            raw_minutes=decision.occurrence.raw_minutes,
            forgiven=decision.forgiven,
            billable_minutes=decision.billable_minutes,
            threshold_time=(
                format_hhmm(decision.occurrence.threshold_minutes)
                if decision.occurrence.threshold_minutes is not None
                else None
            ),
            on_duty_time=(
                decision.occurrence.on_duty.strftime("%H:%M") if decision.occurrence.on_duty is not None else None
            ),
            rule_source=decision.occurrence.rule_source,
        )
        for decision in exemption.decisions
    ]
    stats.performance_penalty = calculate_penalty(exemption.decisions, policy).amount

    overtime = summarize_overtime(overtime_results, policy)
    stats.overtime_total_minutes = overtime.total_minutes
    stats.overtime_buckets = overtime.buckets
    stats.weekend_overtime_minutes = overtime.weekend_minutes

    hired_in_month = employee.hired_date if employee.hired_date and employee.hired_date >= date(year, month, 1) else None
    calendar_summary = summarize_month(
        year,
        month,
        holidays=holiday_map,
        policy=policy,
        employee=employee,
        since=hired_in_month,
    )
    stats.should_attendance_days = should_attendance_days(calendar_summary, policy)
    stats.actual_attendance_days = round(actual_days, 2)

    verdict = evaluate_full_attendance(
        stats,
        policy,
        last_workday_checkout_missing=_last_workday_checkout_missing(stats, calendar_summary.last_workday, as_of),
    )
    stats.is_full_attendance = verdict.is_full_attendance
    stats.full_attendance_bonus = verdict.bonus
    stats.full_attendance_disqualifiers = list(verdict.disqualifiers)
    return stats


def _last_workday_checkout_missing(stats: EmployeeStats, last_workday: date | None, as_of: date | None) -> bool:
    if last_workday is None:
        return False
    if as_of is not None and as_of <= last_workday:
        return False
    for daily in stats.days:
        if daily.work_date != last_workday:
            continue
        if daily.is_full_day_leave or (daily.status == DayStatus.NO_RECORD and "CLEARED" in daily.flags):
            return False
        return daily.off_duty_time is None
    return False


def calculate_monthly_batch(
    inputs: Sequence[EmployeeMonthInput],
    *,
    year: int,
    month: int,
    policy: AttendancePolicy,
    approvals: Mapping[str, LeaveApproval] | Iterable[LeaveApproval] = (),
    holidays: Mapping[date, HolidayInfo] | None = None,
    as_of: date | None = None,
    policy_version: int | None = None,
    max_workers: int | None = None,
) -> MonthlyBatchResult:
    approval_map = _approval_map(approvals)
    holiday_map = dict(holidays or {})

    def _compute(item: EmployeeMonthInput) -> EmployeeStats | EmployeeComputationFailure:
        user_id = item.employee.user_id
        try:
            return calculate_employee_monthly(
                item,
                year=year,
                month=month,
                policy=policy,
                approvals=approval_map,
                holidays=holiday_map,
                as_of=as_of,
                policy_version=policy_version,
            )
        except AttendanceEngineError as exc:
            logger.warning(
                "monthly_employee_failed",
                extra={"user_id": user_id, "year": year, "month": month, "code": exc.code, "reason": str(exc)},
            )
            return EmployeeComputationFailure(user_id=user_id, code=exc.code, message=str(exc))
        except Exception as exc:
            logger.exception(
                "monthly_employee_failed",
                extra={"user_id": user_id, "year": year, "month": month, "code": EvaluationError.code},
            )
            return EmployeeComputationFailure(
                user_id=user_id,
                code=EvaluationError.code,
                message=f"{exc.__class__.__name__}: {exc}",
            )

    workers = get_settings().monthly_batch_max_workers if max_workers is None else max_workers
    if workers > 1 and len(inputs) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(_compute, inputs))
    else:
        outcomes = [_compute(item) for item in inputs]

    result = MonthlyBatchResult(year=year, month=month, policy_version=policy_version)
    for outcome in outcomes:
        if isinstance(outcome, EmployeeComputationFailure):
            result.failures.append(outcome)
        else:
            result.results.append(outcome)

    logger.info(
        "monthly_batch_complete",
        extra={
            "year": year,
            "month": month,
            "policy_version": policy_version,
            "employee_count": len(inputs),
            "failure_count": len(result.failures),
            "workers": workers,
        },
    )
    return result
