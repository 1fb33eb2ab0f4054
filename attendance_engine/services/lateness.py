from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from attendance_engine.schemas import AttendancePolicy, LateRule, LeaveApproval
from attendance_engine.services.calendar import MAX_LOOKBACK_DAYS
from attendance_engine.services.clock import MINUTES_PER_DAY, at_minutes, format_hhmm, minutes_since, parse_hhmm
from attendance_engine.services.overtime import weekend_checkout_governs

RULE_SOURCE_NO_PUNCH = "NO_PUNCH"
RULE_SOURCE_FIRST_DAY = "FIRST_DAY_ON_JOB"
RULE_SOURCE_CROSS_DAY = "CROSS_DAY_CHECKOUT"
RULE_SOURCE_LATE_RULE = "LATE_RULE"
RULE_SOURCE_BASELINE = "BASELINE_RULE"
RULE_SOURCE_WORK_START = "WORK_START"
RULE_SOURCE_LEAVE_END = "LEAVE_END"

CHECKOUT_YESTERDAY = "YESTERDAY"
CHECKOUT_WEEKEND = "WEEKEND"
CHECKOUT_PRIOR_WORKDAY = "PRIOR_WORKDAY"


@dataclass(frozen=True)
class CheckoutFact:
    day: date
    is_workday: bool
    off_duty: datetime | None = None
    off_duty_from_approval: bool = False
    worked_minutes: int = 0


@dataclass(frozen=True)
class PreviousCheckout:
    day: date
    minutes: int
    from_approval: bool
    governed_by: str


@dataclass(frozen=True)
class LateContext:
    work_date: date
    on_duty: datetime | None
    previous_checkout: PreviousCheckout | None
    policy: AttendancePolicy
    approvals: tuple[LeaveApproval, ...] = ()
    is_first_day_on_job: bool = False


@dataclass(frozen=True)
class LateEvaluation:
    raw_minutes: int
    threshold_minutes: int | None
    rule_source: str

    @property
    def threshold_time(self) -> str | None:
        if self.threshold_minutes is None:
            return None
        return format_hhmm(self.threshold_minutes)


def select_late_rule(rules: Sequence[LateRule], previous_checkout_minutes: int | None) -> LateRule | None:
    if not rules:
        return None
    ordered = sorted(rules, key=lambda rule: parse_hhmm(rule.previous_day_checkout_time))
    selected = ordered[0]
    if previous_checkout_minutes is None:
        return selected
    for rule in ordered:
        if parse_hhmm(rule.previous_day_checkout_time) > previous_checkout_minutes:
            break
        selected = rule
    return selected


def _cross_day_threshold(previous: PreviousCheckout | None, policy: AttendancePolicy) -> int | None:
    settings = policy.cross_day_checkout
    if not settings.enabled or previous is None or not previous.from_approval:
        return None
    matched = [
        parse_hhmm(rule.next_day_checkin_time)
        for rule in settings.effective_rules()
        if previous.minutes >= parse_hhmm(rule.checkout_time)
    ]
    return max(matched) if matched else None


def _date_only_day_leave(approval: LeaveApproval, work_date: date) -> bool:
    if approval.duration_unit != "day":
        return False
    if approval.start.time() != time.min or approval.end.time() != time.min:
        return False
    return approval.start.date() <= work_date <= approval.end.date()


def _shift_for_leave(threshold: int, context: LateContext) -> tuple[int, bool]:
    threshold_at = at_minutes(context.work_date, threshold)
    lunch_end = parse_hhmm(context.policy.lunch_end_time)
    shifted = threshold
    for approval in context.approvals:
        if approval.start <= threshold_at < approval.end:
            leave_end = minutes_since(context.work_date, approval.end)
        elif _date_only_day_leave(approval, context.work_date):
            leave_end = MINUTES_PER_DAY
        else:
            continue
        shifted = max(shifted, leave_end, lunch_end)
    return shifted, shifted != threshold


def evaluate_late_minutes(context: LateContext) -> LateEvaluation:
    if context.on_duty is None:
        return LateEvaluation(raw_minutes=0, threshold_minutes=None, rule_source=RULE_SOURCE_NO_PUNCH)
    if context.is_first_day_on_job:
        return LateEvaluation(raw_minutes=0, threshold_minutes=None, rule_source=RULE_SOURCE_FIRST_DAY)

    policy = context.policy
    previous = context.previous_checkout
    threshold = _cross_day_threshold(previous, policy)
    rule_source = RULE_SOURCE_CROSS_DAY
    if threshold is None:
        previous_minutes = previous.minutes if previous is not None else None
        rule = select_late_rule(policy.late_rules, previous_minutes)
        if rule is None:
            threshold = parse_hhmm(policy.work_start_time)
            rule_source = RULE_SOURCE_WORK_START
        else:
            threshold = parse_hhmm(rule.late_threshold_time)
            qualifies = previous_minutes is not None and parse_hhmm(rule.previous_day_checkout_time) <= previous_minutes
            rule_source = RULE_SOURCE_LATE_RULE if qualifies else RULE_SOURCE_BASELINE

    if threshold >= MINUTES_PER_DAY:
        return LateEvaluation(raw_minutes=0, threshold_minutes=None, rule_source=rule_source)

    threshold, shifted = _shift_for_leave(threshold, context)
    if shifted:
        rule_source = RULE_SOURCE_LEAVE_END

    late_seconds = (context.on_duty - at_minutes(context.work_date, threshold)).total_seconds()
    return LateEvaluation(
        raw_minutes=max(0, int(late_seconds // 60)),
        threshold_minutes=threshold,
        rule_source=rule_source,
    )


def _as_previous_checkout(fact: CheckoutFact, governed_by: str) -> PreviousCheckout | None:
    if fact.off_duty is None:
        return None
    return PreviousCheckout(
        day=fact.day,
        minutes=minutes_since(fact.day, fact.off_duty),
        from_approval=fact.off_duty_from_approval,
        governed_by=governed_by,
    )


def resolve_previous_checkout(
    work_date: date,
    facts: Callable[[date], CheckoutFact],
    *,
    policy: AttendancePolicy,
) -> PreviousCheckout | None:
    """Yesterday's checkout, or after a run of non-workdays the checkout that governs today.

    The scan covers at most ``MAX_LOOKBACK_DAYS`` days. Weekend work at or above
    the weekend overtime threshold makes the latest weekend checkout govern;
    otherwise the most recent prior workday's checkout does.
    """
    yesterday = facts(work_date - timedelta(days=1))
    if yesterday.is_workday:
        return _as_previous_checkout(yesterday, CHECKOUT_YESTERDAY)

    weekend_minutes = 0
    latest_weekend: CheckoutFact | None = None
    prior_workday: CheckoutFact | None = None
    for offset in range(1, MAX_LOOKBACK_DAYS + 1):
        fact = facts(work_date - timedelta(days=offset))
        if fact.is_workday:
            prior_workday = fact
            break
        weekend_minutes += max(0, fact.worked_minutes)
        if latest_weekend is None and fact.off_duty is not None:
            latest_weekend = fact

    if latest_weekend is not None and weekend_checkout_governs(weekend_minutes / 60, policy):
        return _as_previous_checkout(latest_weekend, CHECKOUT_WEEKEND)
    if prior_workday is not None:
        return _as_previous_checkout(prior_workday, CHECKOUT_PRIOR_WORKDAY)
    return None
