from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime

from attendance_engine.schemas import (
    AttendancePolicy,
    CheckType,
    EmployeeProfile,
    LeaveApproval,
    ManualEditLabel,
    ManualEditRequest,
    ManualEditResult,
    PunchRecord,
    PunchSource,
    TimeResult,
)
from attendance_engine.services.calendar import resolve_day
from attendance_engine.services.clock import at_minutes, parse_hhmm
from attendance_engine.services.daily_status import classify_day
from attendance_engine.services.leave_coverage import LEAVE_TYPE_CATEGORIES

logger = logging.getLogger("attendance_engine.manual_edits")

LABEL_ALIASES = {
    "清空": ManualEditLabel.CLEAR,
    "√": ManualEditLabel.NORMAL,
    "正常": ManualEditLabel.NORMAL,
    "迟到": ManualEditLabel.LATE,
    "加班": ManualEditLabel.OVERTIME,
    "缺卡": ManualEditLabel.MISSING,
}


def normalize_label(label: str) -> ManualEditLabel | str:
    value = label.strip()
    if value in LABEL_ALIASES:
        return LABEL_ALIASES[value]
    try:
        return ManualEditLabel(value.lower())
    except ValueError:
        return value


def is_leave_label(label: str) -> bool:
    return label in LEAVE_TYPE_CATEGORIES or label.lower() in LEAVE_TYPE_CATEGORIES


def _at(work_date: date, hhmm: str) -> datetime:
    return at_minutes(work_date, parse_hhmm(hhmm))


def _record(
    request: ManualEditRequest,
    *,
    check_type: CheckType,
    source: PunchSource = PunchSource.MANUAL_EDIT,
    time_result: TimeResult = TimeResult.NORMAL,
    user_time: str | None,
    base_time: str,
    proc_inst_id: str | None = None,
    label: str | None = None,
) -> PunchRecord:
    return PunchRecord(
        user_id=request.user_id,
        work_date=request.work_date,
        check_type=check_type,
        source_type=source.value,
        time_result=time_result.value,
        user_check_time=_at(request.work_date, user_time) if user_time else None,
        base_check_time=_at(request.work_date, base_time),
        proc_inst_id=proc_inst_id,
        time_result_desc=label,
    )


def _placeholder(request: ManualEditRequest, check_type: CheckType) -> PunchRecord:
    return PunchRecord(
        user_id=request.user_id,
        work_date=request.work_date,
        check_type=check_type,
        source_type=PunchSource.MANUAL_EDIT.value,
        time_result=TimeResult.NOT_SIGNED.value,
        time_result_desc=ManualEditLabel.CLEAR.value,
    )


def build_manual_records(
    request: ManualEditRequest,
    *,
    policy: AttendancePolicy,
    approvals: Mapping[str, LeaveApproval],
) -> tuple[list[PunchRecord], bool]:
    """Replacement record set for one employee day, and whether a leave label was validated."""
    label = normalize_label(request.label)
    start = policy.work_start_time
    end = policy.work_end_time
    on_time = request.on_duty_time
    off_time = request.off_duty_time

    if label == ManualEditLabel.CLEAR:
        return [_placeholder(request, CheckType.ON_DUTY), _placeholder(request, CheckType.OFF_DUTY)], False

    if label in {ManualEditLabel.NORMAL, ManualEditLabel.LATE, ManualEditLabel.OVERTIME}:
        on_result = TimeResult.LATE if label == ManualEditLabel.LATE else TimeResult.NORMAL
        return [
            _record(request, check_type=CheckType.ON_DUTY, time_result=on_result, user_time=on_time or start, base_time=start, label=label.value),
            _record(request, check_type=CheckType.OFF_DUTY, user_time=off_time or end, base_time=end, label=label.value),
        ], False

    if label == ManualEditLabel.MISSING:
        missing_on = on_time is None
        return [
            _record(
                request,
                check_type=CheckType.ON_DUTY,
                time_result=TimeResult.NOT_SIGNED if missing_on else TimeResult.NORMAL,
                user_time=on_time,
                base_time=start,
                label=label.value,
            ),
            _record(
                request,
                check_type=CheckType.OFF_DUTY,
                time_result=TimeResult.NORMAL if missing_on else TimeResult.NOT_SIGNED,
                user_time=(off_time or end) if missing_on else None,
                base_time=end,
                label=label.value,
            ),
        ], False

    text = str(label)
    approval = approvals.get(request.proc_inst_id) if request.proc_inst_id else None
    if is_leave_label(text) and approval is not None:
        return [
            _record(
                request,
                check_type=CheckType.ON_DUTY,
                source=PunchSource.APPROVE,
                user_time=on_time or start,
                base_time=start,
                proc_inst_id=approval.proc_inst_id,
                label=text,
            ),
            _record(
                request,
                check_type=CheckType.OFF_DUTY,
                source=PunchSource.APPROVE,
                user_time=off_time or end,
                base_time=end,
                proc_inst_id=approval.proc_inst_id,
                label=text,
            ),
        ], True

    return [
        _record(
            request,
            check_type=CheckType.ON_DUTY,
            user_time=on_time or start,
            base_time=start,
            proc_inst_id=request.proc_inst_id,
            label=text,
        )
    ], False


def build_manual_edit(
    request: ManualEditRequest,
    *,
    policy: AttendancePolicy,
    approvals: Mapping[str, LeaveApproval] | None = None,
) -> ManualEditResult:
    approval_map = dict(approvals or {})
    approval_map.update({approval.proc_inst_id: approval for approval in request.approvals})
    records, leave_validated = build_manual_records(request, policy=policy, approvals=approval_map)
    employee = EmployeeProfile(
        user_id=request.user_id,
        office=request.office,
        department_ids=request.department_ids,
    )

    outcome = classify_day(
        request.work_date,
        records=records,
        classification=resolve_day(request.work_date, holidays=request.holidays, policy=policy, employee=employee),
        approvals=approval_map,
        policy=policy,
        full_day_hours=policy.full_day_hours_for(request.office),
    )
    if is_leave_label(request.label) and not leave_validated:
        logger.warning(
            "manual_edit_leave_unvalidated",
            extra={"user_id": request.user_id, "work_date": request.work_date.isoformat(), "label": request.label},
        )
    return ManualEditResult(
        user_id=request.user_id,
        work_date=request.work_date,
        label=request.label,
        status=outcome.status.status,
        leave_validated=leave_validated,
        records=records,
    )
