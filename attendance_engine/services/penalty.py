from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from attendance_engine.schemas import AttendancePolicy, PerformancePenaltyRule
from attendance_engine.services.clock import at_minutes, parse_hhmm
from attendance_engine.services.exemption import ExemptionDecision

MODE_DISABLED = "disabled"


@dataclass(frozen=True)
class PenaltyResult:
    amount: float
    mode: str
    billable_minutes: int
    tier: PerformancePenaltyRule | None = None
    capped: bool = False


def _clamp(amount: float, cap: float | None) -> tuple[float, bool]:
    if cap is not None and amount > cap:
        return cap, True
    return amount, False


def ladder_penalty(total_minutes: float, policy: AttendancePolicy) -> tuple[float, PerformancePenaltyRule | None, bool]:
    if total_minutes <= 0:
        return 0.0, None, False
    ladder = sorted(policy.performance_penalty_rules, key=lambda rule: rule.min_minutes)
    tier: PerformancePenaltyRule | None = None
    for rule in ladder:
        if rule.min_minutes > total_minutes:
            break
        tier = rule
    if tier is None:
        return 0.0, None, False
    if tier is ladder[-1] and total_minutes >= tier.upper_bound:
        if policy.max_performance_penalty is None:
            return float(tier.penalty), tier, False
        return float(policy.max_performance_penalty), None, True
    # minutes in a gap between tiers stay on the tier below
    amount, capped = _clamp(tier.penalty, policy.max_performance_penalty)
    return amount, tier, capped


def _minutes_past_unlimited_threshold(decision: ExemptionDecision, threshold: int) -> int:
    occurrence = decision.occurrence
    if occurrence.on_duty is None:
        return decision.billable_minutes
    past = int((occurrence.on_duty - at_minutes(occurrence.work_date, threshold)).total_seconds() // 60)
    return max(0, min(decision.billable_minutes, past))


def calculate_penalty(decisions: Iterable[ExemptionDecision], policy: AttendancePolicy) -> PenaltyResult:
    billable = [decision for decision in decisions if not decision.forgiven and decision.billable_minutes > 0]
    total_minutes = sum(decision.billable_minutes for decision in billable)

    if not policy.performance_penalty_enabled:
        return PenaltyResult(amount=0.0, mode=MODE_DISABLED, billable_minutes=total_minutes)
    if total_minutes <= 0:
        return PenaltyResult(amount=0.0, mode=policy.performance_penalty_mode, billable_minutes=0)

    if policy.performance_penalty_mode == "unlimited":
        threshold = parse_hhmm(policy.unlimited_penalty_threshold_time or policy.work_start_time)
        past_minutes = [_minutes_past_unlimited_threshold(decision, threshold) for decision in billable]
        if policy.unlimited_penalty_calc_type == "fixed":
            occurrences = sum(1 for minutes in past_minutes if minutes > 0)
            amount = occurrences * (policy.unlimited_penalty_fixed_amount or 0)
            mode = "unlimited/fixed"
        else:
            amount = sum(past_minutes) * (policy.unlimited_penalty_per_minute or 0)
            mode = "unlimited/perMinute"
        return PenaltyResult(amount=round(amount, 2), mode=mode, billable_minutes=total_minutes)

    if policy.capped_penalty_type == "fixedCap":
        amount, capped = _clamp(total_minutes * (policy.capped_penalty_per_minute or 0), policy.max_performance_penalty)
        return PenaltyResult(
            amount=round(amount, 2),
            mode="capped/fixedCap",
            billable_minutes=total_minutes,
            capped=capped,
        )

    amount, tier, capped = ladder_penalty(total_minutes, policy)
    return PenaltyResult(
        amount=round(amount, 2),
        mode="capped/ladder",
        billable_minutes=total_minutes,
        tier=tier,
        capped=capped,
    )
