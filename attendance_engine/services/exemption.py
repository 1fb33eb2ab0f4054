from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from attendance_engine.schemas import AttendancePolicy


@dataclass(frozen=True)
class LateOccurrence:
    work_date: date
    raw_minutes: int
    on_duty: datetime | None = None
    threshold_minutes: int | None = None
    rule_source: str = ""


@dataclass(frozen=True)
class ExemptionDecision:
    occurrence: LateOccurrence
    forgiven: bool
    billable_minutes: int


@dataclass(frozen=True)
class ExemptionResult:
    decisions: tuple[ExemptionDecision, ...]
    quota_used: int

    @property
    def billable_minutes(self) -> int:
        return sum(decision.billable_minutes for decision in self.decisions)

    @property
    def forgiven_count(self) -> int:
        return sum(1 for decision in self.decisions if decision.forgiven)

    @property
    def billable_occurrences(self) -> list[LateOccurrence]:
        return [decision.occurrence for decision in self.decisions if not decision.forgiven]


def apply_exemptions(occurrences: Iterable[LateOccurrence], policy: AttendancePolicy) -> ExemptionResult:
    """Forgive late occurrences in date order until the monthly quota runs out.

    An occurrence longer than the per-use cap is billed in full and does not
    consume quota. Whether occurrence N is forgiven depends on the quota spent
    by occurrences 1..N-1, so the fold never runs out of date order.
    """
    enabled = policy.late_exemption_enabled
    quota = policy.late_exemption_count if enabled else 0
    used = 0
    decisions: list[ExemptionDecision] = []
    for occurrence in sorted(occurrences, key=lambda item: item.work_date):
        eligible = enabled and occurrence.raw_minutes <= policy.late_exemption_minutes
        if eligible and used < quota:
            used += 1
            decisions.append(ExemptionDecision(occurrence=occurrence, forgiven=True, billable_minutes=0))
            continue
        decisions.append(
            ExemptionDecision(
                occurrence=occurrence,
                forgiven=False,
                billable_minutes=max(0, occurrence.raw_minutes),
            )
        )
    return ExemptionResult(decisions=tuple(decisions), quota_used=used)
