from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime

from attendance_engine.schemas import (
    AttendancePolicy,
    CheckType,
    DailyAttendanceStatus,
    DayStatus,
    LeaveApproval,
    PunchRecord,
    PunchSource,
    TimeResult,
)
from attendance_engine.services.attendance_days import DayAttendanceFacts, day_contribution
from attendance_engine.services.calendar import DayClassification
from attendance_engine.services.clock import at_minutes, minutes_since, overlap_minutes, parse_hhmm
from attendance_engine.services.lateness import (
    RULE_SOURCE_NO_PUNCH,
    CheckoutFact,
    LateContext,
    LateEvaluation,
    PreviousCheckout,
    evaluate_late_minutes,
)
from attendance_engine.services.leave_coverage import (
    check_time_covered,
    daily_leave_breakdown,
    daily_leave_hours,
    is_full_day_leave,
    leave_category,
    linked_approvals,
)
from attendance_engine.services.overtime import OvertimeResult, bucket_overtime

_LATE_RESULTS = {TimeResult.LATE.value, TimeResult.SERIOUS_LATE.value}


@dataclass(frozen=True)
class PunchSummary:
    on_duty: datetime | None
    off_duty: datetime | None
    on_duty_from_approval: bool
    off_duty_from_approval: bool
    has_on_duty_approve: bool
    has_off_duty_approve: bool
    manual_late: bool
    device_absenteeism: bool
    is_placeholder: bool
    is_manual: bool


@dataclass(frozen=True)
class DayOutcome:
    status: DailyAttendanceStatus
    late: LateEvaluation
    is_late: bool
    overtime: OvertimeResult
    leave_breakdown: tuple[tuple[LeaveApproval, float], ...]
    on_duty: datetime | None = None


def summarize_punches(records: Sequence[PunchRecord]) -> PunchSummary:
    on_records = [record for record in records if record.check_type == CheckType.ON_DUTY and record.is_signed]
    off_records = [record for record in records if record.check_type == CheckType.OFF_DUTY and record.is_signed]
    on_record = min(on_records, key=lambda record: record.user_check_time) if on_records else None
    off_record = max(off_records, key=lambda record: record.user_check_time) if off_records else None

    manual_records = [record for record in records if record.source_type == PunchSource.MANUAL_EDIT.value]
    is_placeholder = bool(records) and len(manual_records) == len(records) and all(
        record.time_result == TimeResult.NOT_SIGNED.value and record.user_check_time is None
        for record in records
    )
    return PunchSummary(
        on_duty=on_record.user_check_time if on_record else None,
        off_duty=off_record.user_check_time if off_record else None,
        on_duty_from_approval=bool(on_record and on_record.is_approval),
        off_duty_from_approval=bool(off_record and off_record.is_approval),
        has_on_duty_approve=any(r.check_type == CheckType.ON_DUTY and r.is_approval for r in records),
        has_off_duty_approve=any(r.check_type == CheckType.OFF_DUTY and r.is_approval for r in records),
        manual_late=any(
            r.check_type == CheckType.ON_DUTY and r.time_result in _LATE_RESULTS for r in manual_records
        ),
        device_absenteeism=any(r.time_result == TimeResult.ABSENTEEISM.value for r in records),
        is_placeholder=is_placeholder,
        is_manual=bool(manual_records),
    )


def worked_minutes(work_date: date, on_duty: datetime | None, off_duty: datetime | None, policy: AttendancePolicy) -> int:
    if on_duty is None or off_duty is None or off_duty <= on_duty:
        return 0
    start = minutes_since(work_date, on_duty)
    end = minutes_since(work_date, off_duty)
    lunch = overlap_minutes(start, end, parse_hhmm(policy.lunch_start_time), parse_hhmm(policy.lunch_end_time))
    return max(0, end - start - lunch)


def checkout_fact(
    day: date,
    records: Sequence[PunchRecord],
    classification: DayClassification,
    policy: AttendancePolicy,
) -> CheckoutFact:
    punches = summarize_punches(records)
    return CheckoutFact(
        day=day,
        is_workday=classification.is_workday,
        off_duty=punches.off_duty,
        off_duty_from_approval=punches.off_duty_from_approval,
        worked_minutes=worked_minutes(day, punches.on_duty, punches.off_duty, policy),
    )


def _display_time(value: datetime | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


def _side_covered(
    minutes: int,
    *,
    work_date: date,
    records: Sequence[PunchRecord],
    approvals: Mapping[str, LeaveApproval],
    classification: DayClassification,
) -> bool:
    if check_time_covered(records, approvals, at_minutes(work_date, minutes)).covered:
        return True
    if classification.is_remote and classification.remote_mode == "hour":
        start = parse_hhmm(classification.remote_start or "00:00")
        end = parse_hhmm(classification.remote_end or "00:00")
        return start <= minutes < end
    return False


def classify_day(
    work_date: date,
    *,
    records: Sequence[PunchRecord],
    classification: DayClassification,
    approvals: Mapping[str, LeaveApproval],
    policy: AttendancePolicy,
    full_day_hours: float,
    previous_checkout: PreviousCheckout | None = None,
    is_first_day_on_job: bool = False,
    as_of: date | None = None,
) -> DayOutcome:
    punches = summarize_punches(records)
    flags: list[str] = []

    leaves = linked_approvals(records, approvals)
    breakdown = daily_leave_breakdown(records, approvals, work_date, policy=policy, full_day_hours=full_day_hours)
    leave_hours = daily_leave_hours(
        records, approvals, work_date, policy=policy, full_day_hours=full_day_hours, breakdown=breakdown
    )
    full_day_leave = leave_hours > 0 and is_full_day_leave(leave_hours, full_day_hours)
    remote_full_day = classification.is_remote_full_day
    pending = as_of is not None and work_date >= as_of

    missing_on = False
    missing_off = False
    absenteeism = False
    checks_apply = (
        classification.is_workday
        and bool(records)
        and not punches.is_placeholder
        and not full_day_leave
        and not remote_full_day
        and not pending
    )
    if checks_apply:
        work_start = parse_hhmm(policy.work_start_time)
        work_end = parse_hhmm(policy.work_end_time)
        coverage = {"work_date": work_date, "records": records, "approvals": approvals, "classification": classification}
        missing_on = punches.on_duty is None and not _side_covered(work_start, **coverage)
        # the off-duty side is covered when leave spans the last working minute
        missing_off = punches.off_duty is None and not _side_covered(work_end - 1, **coverage)
        if (missing_on and missing_off) or (punches.device_absenteeism and punches.on_duty is None):
            absenteeism = True
            missing_on = False
            missing_off = False

    late = LateEvaluation(raw_minutes=0, threshold_minutes=None, rule_source=RULE_SOURCE_NO_PUNCH)
    if (
        classification.is_workday
        and not full_day_leave
        and not remote_full_day
        and punches.on_duty is not None
        and not punches.on_duty_from_approval
    ):
        late = evaluate_late_minutes(
            LateContext(
                work_date=work_date,
                on_duty=punches.on_duty,
                previous_checkout=previous_checkout,
                policy=policy,
                approvals=tuple(leaves),
                is_first_day_on_job=is_first_day_on_job,
            )
        )
    is_late = late.raw_minutes > 0 or (punches.manual_late and classification.is_workday)

    overtime = bucket_overtime(
        work_date=work_date,
        off_duty=punches.off_duty,
        policy=policy,
        is_workday=classification.is_workday,
        on_duty=punches.on_duty,
    )
    worked = worked_minutes(work_date, punches.on_duty, punches.off_duty, policy)

    contribution = day_contribution(
        DayAttendanceFacts(
            is_workday=classification.is_workday,
            is_statutory_holiday=classification.is_statutory_holiday,
            is_remote_full_day=remote_full_day,
            has_on_duty=punches.on_duty is not None,
            has_off_duty=punches.off_duty is not None,
            worked_hours=worked / 60,
            is_late=is_late,
            is_missing=missing_on or missing_off,
            is_absenteeism=absenteeism,
            leave_hours=leave_hours,
            leave_categories=tuple(leave_category(approval) for approval, _ in breakdown),
            full_day_hours=full_day_hours,
        ),
        policy,
    )

    if not records or punches.is_placeholder:
        status = DayStatus.NO_RECORD
    elif missing_on or missing_off:
        status = DayStatus.INCOMPLETE
    elif is_late or absenteeism:
        status = DayStatus.ABNORMAL
    elif pending and punches.on_duty is None and punches.off_duty is None:
        status = DayStatus.NO_RECORD
    else:
        status = DayStatus.NORMAL

    if punches.is_placeholder:
        flags.append("CLEARED")
    elif punches.is_manual:
        flags.append("MANUAL_EDIT")
    if classification.is_statutory_holiday:
        flags.append("STATUTORY_HOLIDAY")
    if classification.is_remote:
        flags.append("REMOTE")
    if is_late:
        flags.append("LATE")
    if missing_on:
        flags.append("MISSING_ON_DUTY")
    if missing_off:
        flags.append("MISSING_OFF_DUTY")
    if absenteeism:
        flags.append("ABSENTEEISM")
    if full_day_leave:
        flags.append("FULL_DAY_LEAVE")
    elif leave_hours > 0:
        flags.append("PARTIAL_LEAVE")
    if overtime.checkpoint is not None:
        flags.append("OVERTIME")
    if overtime.is_weekend and overtime.minutes > 0:
        flags.append("WEEKEND_WORK")

    daily = DailyAttendanceStatus(
        work_date=work_date,
        status=status,
        records=list(records),
        on_duty_time=_display_time(punches.on_duty),
        off_duty_time=_display_time(punches.off_duty),
        has_abnormality=status in {DayStatus.ABNORMAL, DayStatus.INCOMPLETE},
        has_on_duty_approve=punches.has_on_duty_approve,
        has_off_duty_approve=punches.has_off_duty_approve,
        is_workday=classification.is_workday,
        is_statutory_holiday=classification.is_statutory_holiday,
        is_remote=classification.is_remote,
        late_minutes=late.raw_minutes,
        missing_on_duty=missing_on,
        missing_off_duty=missing_off,
        is_absenteeism=absenteeism,
        leave_hours=leave_hours,
        is_full_day_leave=full_day_leave,
        worked_hours=round(worked / 60, 2),
        overtime_checkpoint=overtime.checkpoint,
        overtime_minutes=overtime.minutes,
        attendance_contribution=contribution,
        flags=flags,
    )
    return DayOutcome(
        status=daily,
        late=late,
        is_late=is_late,
        overtime=overtime,
        leave_breakdown=breakdown,
        on_duty=punches.on_duty,
    )
