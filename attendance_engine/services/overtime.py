from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from attendance_engine.schemas import AttendancePolicy, OvertimeBucket
from attendance_engine.services.clock import minutes_since, parse_hhmm


@dataclass(frozen=True)
class OvertimeResult:
    checkpoint: str | None
    minutes: int
    is_weekend: bool = False


@dataclass
class OvertimeSummary:
    total_minutes: int = 0
    weekend_minutes: int = 0
    buckets: dict[str, OvertimeBucket] = field(default_factory=dict)


def weekend_checkout_governs(weekend_hours: float, policy: AttendancePolicy) -> bool:
    return weekend_hours >= policy.weekend_overtime_threshold


def bucket_overtime(
    *,
    work_date: date,
    off_duty: datetime | None,
    policy: AttendancePolicy,
    is_workday: bool,
    on_duty: datetime | None = None,
) -> OvertimeResult:
    if off_duty is None:
        return OvertimeResult(checkpoint=None, minutes=0, is_weekend=not is_workday)

    if not is_workday:
        if on_duty is None or off_duty <= on_duty:
            return OvertimeResult(checkpoint=None, minutes=0, is_weekend=True)
        return OvertimeResult(
            checkpoint=None,
            minutes=int((off_duty - on_duty).total_seconds() // 60),
            is_weekend=True,
        )

    off_minutes = minutes_since(work_date, off_duty)
    work_end = parse_hhmm(policy.work_end_time)
    reached: str | None = None
    for checkpoint in policy.overtime_checkpoints:
        if parse_hhmm(checkpoint) > off_minutes:
            break
        reached = checkpoint
    if reached is None or off_minutes <= work_end:
        return OvertimeResult(checkpoint=None, minutes=0)
    return OvertimeResult(checkpoint=reached, minutes=off_minutes - work_end)


def summarize_overtime(results: Iterable[OvertimeResult], policy: AttendancePolicy) -> OvertimeSummary:
    summary = OvertimeSummary(
        buckets={checkpoint: OvertimeBucket() for checkpoint in policy.overtime_checkpoints},
    )
    for result in results:
        if result.is_weekend:
            summary.weekend_minutes += result.minutes
            continue
        if result.checkpoint is None:
            continue
        bucket = summary.buckets.setdefault(result.checkpoint, OvertimeBucket())
        bucket.minutes += result.minutes
        bucket.count += 1
        summary.total_minutes += result.minutes
    return summary
