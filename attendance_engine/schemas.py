from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from attendance_engine.services.clock import parse_hhmm, to_local_date, to_local_naive

OPEN_ENDED_MINUTES = 999

COUNT_ONLY_RULE_TYPES = {"late", "missing", "absenteeism"}
LEAVE_RULE_TYPES = {
    "trip",
    "compTime",
    "annual",
    "sick",
    "personal",
    "bereavement",
    "paternity",
    "maternity",
    "parental",
    "marriage",
}

LEAVE_CATEGORIES = (
    "annual",
    "sick",
    "serious_sick",
    "personal",
    "trip",
    "comp_time",
    "bereavement",
    "paternity",
    "maternity",
    "parental",
    "marriage",
    "other",
)


class CheckType(str, enum.Enum):
    ON_DUTY = "OnDuty"
    OFF_DUTY = "OffDuty"


class PunchSource(str, enum.Enum):
    ATM = "ATM"
    APPROVE = "APPROVE"
    MANUAL_EDIT = "MANUAL_EDIT"
    IMPORT = "IMPORT"


class TimeResult(str, enum.Enum):
    NORMAL = "Normal"
    LATE = "Late"
    EARLY = "Early"
    NOT_SIGNED = "NotSigned"
    SERIOUS_LATE = "SeriousLate"
    ABSENTEEISM = "Absenteeism"


class DayStatus(str, enum.Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    INCOMPLETE = "incomplete"
    NO_RECORD = "noRecord"


def _check_hhmm(value: str) -> str:
    parse_hhmm(value)
    return value.strip()


HHMM = Annotated[str, AfterValidator(_check_hhmm)]


class _PolicyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class LateRule(_PolicyModel):
    previous_day_checkout_time: HHMM
    late_threshold_time: HHMM
    description: str = ""


class PerformancePenaltyRule(_PolicyModel):
    min_minutes: float = Field(ge=0)
    max_minutes: float = Field(gt=0)
    penalty: float = Field(ge=0)
    description: str = ""

    @property
    def upper_bound(self) -> float:
        if self.max_minutes == OPEN_ENDED_MINUTES:
            return float("inf")
        return self.max_minutes

    def contains(self, minutes: float) -> bool:
        return self.min_minutes <= minutes < self.upper_bound


class LeaveDisplayRule(_PolicyModel):
    leave_type: str
    short_term_hours: float = Field(ge=0)
    short_term_label: str
    long_term_label: str


class FullAttendanceRule(_PolicyModel):
    type: str
    display_name: str = ""
    enabled: bool = True
    threshold: float = Field(default=0, ge=0)
    unit: Literal["count", "hours"] = "count"


class ActualAttendanceRules(_PolicyModel):
    count_late_as_attendance: bool = True
    count_missing_as_attendance: bool = False
    count_half_day_leave_as_half: bool = True
    min_work_hours_for_full_day: float = Field(default=4, ge=0)
    count_holiday_as_attendance: bool = True
    count_comp_time_as_attendance: bool = True
    count_paid_leave_as_attendance: bool = True
    count_trip_as_attendance: bool = True
    count_out_as_attendance: bool = True
    count_sick_leave_as_attendance: bool = False
    count_personal_leave_as_attendance: bool = False


class AttendanceDaysRules(_PolicyModel):
    enabled: bool = True
    should_attendance_calc_method: Literal["workdays", "fixed", "custom"] = "workdays"
    fixed_should_attendance_days: float | None = Field(default=None, ge=0)
    include_holidays_in_should: bool = True
    actual_attendance_rules: ActualAttendanceRules = Field(default_factory=ActualAttendanceRules)


class CustomDay(_PolicyModel):
    day: date = Field(alias="date")
    type: Literal["workday", "holiday"]
    reason: str = ""


class WorkdaySwapRules(_PolicyModel):
    enabled: bool = False
    auto_follow_national_holiday: bool = True
    custom_days: list[CustomDay] = Field(default_factory=list)


class RemoteDay(_PolicyModel):
    day: date = Field(alias="date")
    reason: str = ""
    time_mode: Literal["day", "hour"] = "day"
    start_time: HHMM | None = None
    end_time: HHMM | None = None
    scope: Literal["all", "department", "individual"] = "all"
    department_ids: list[str] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)

    @field_validator("department_ids", "user_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value

    @model_validator(mode="after")
    def _validate_mode_and_scope(self) -> "RemoteDay":
        if self.time_mode == "hour":
            if self.start_time is None or self.end_time is None:
                raise ValueError(f"Remote day {self.day} in hour mode needs start_time and end_time.")
            if parse_hhmm(self.start_time) >= parse_hhmm(self.end_time):
                raise ValueError(f"Remote day {self.day} start_time must be before end_time.")
        if self.scope == "department" and not self.department_ids:
            raise ValueError(f"Remote day {self.day} with department scope needs department_ids.")
        if self.scope == "individual" and not self.user_ids:
            raise ValueError(f"Remote day {self.day} with individual scope needs user_ids.")
        return self


class RemoteWorkRules(_PolicyModel):
    enabled: bool = False
    require_approval: bool = False
    count_as_normal_attendance: bool = True
    max_days_per_month: int | None = Field(default=None, ge=0)
    allowed_days_of_week: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    remote_days: list[RemoteDay] = Field(default_factory=list)

    @field_validator("allowed_days_of_week")
    @classmethod
    def _check_days_of_week(cls, value: list[int]) -> list[int]:
        invalid = [item for item in value if item < 0 or item > 6]
        if invalid:
            raise ValueError(f"allowed_days_of_week must be within 0..6, got {invalid}.")
        return value


class CrossDayRule(_PolicyModel):
    checkout_time: HHMM
    next_day_checkin_time: HHMM
    description: str = ""


class CrossDayCheckout(_PolicyModel):
    enabled: bool = False
    rules: list[CrossDayRule] = Field(default_factory=list)
    max_checkout_time: HHMM | None = None
    next_day_checkin_time: HHMM | None = None

    def effective_rules(self) -> list[CrossDayRule]:
        rules = list(self.rules)
        if self.max_checkout_time and self.next_day_checkin_time:
            rules.append(
                CrossDayRule(
                    checkout_time=self.max_checkout_time,
                    next_day_checkin_time=self.next_day_checkin_time,
                )
            )
        return rules


class AttendancePolicy(_PolicyModel):
    work_start_time: HHMM = "09:00"
    work_end_time: HHMM = "18:30"
    lunch_start_time: HHMM = "12:00"
    lunch_end_time: HHMM = "13:30"

    late_rules: list[LateRule] = Field(default_factory=list)
    late_exemption_enabled: bool = False
    late_exemption_count: int = Field(default=0, ge=0)
    late_exemption_minutes: float = Field(default=0, ge=0)

    performance_penalty_enabled: bool = False
    performance_penalty_mode: Literal["unlimited", "capped"] = "capped"
    unlimited_penalty_threshold_time: HHMM | None = None
    unlimited_penalty_calc_type: Literal["perMinute", "fixed"] | None = None
    unlimited_penalty_per_minute: float | None = Field(default=None, ge=0)
    unlimited_penalty_fixed_amount: float | None = Field(default=None, ge=0)
    capped_penalty_type: Literal["ladder", "fixedCap"] | None = None
    capped_penalty_per_minute: float | None = Field(default=None, ge=0)
    max_performance_penalty: float | None = Field(default=None, ge=0)
    performance_penalty_rules: list[PerformancePenaltyRule] = Field(default_factory=list)

    leave_display_rules: list[LeaveDisplayRule] = Field(default_factory=list)

    full_attendance_enabled: bool = False
    full_attendance_bonus: float = Field(default=0, ge=0)
    full_attendance_allow_adjustment: bool = True
    full_attendance_rules: list[FullAttendanceRule] = Field(default_factory=list)
    full_attendance_require_last_workday_checkout: bool = False

    attendance_days_rules: AttendanceDaysRules = Field(default_factory=AttendanceDaysRules)
    workday_swap_rules: WorkdaySwapRules = Field(default_factory=WorkdaySwapRules)
    remote_work_rules: RemoteWorkRules = Field(default_factory=RemoteWorkRules)

    overtime_checkpoints: list[str] = Field(default_factory=list)
    weekend_overtime_threshold: float = Field(default=8, ge=0)
    cross_day_checkout: CrossDayCheckout = Field(default_factory=CrossDayCheckout)

    full_day_hours: float = Field(default=8, gt=0)
    office_full_day_hours: dict[str, float] = Field(default_factory=dict)
    serious_sick_days: float = Field(default=3, ge=0)

    @field_validator("overtime_checkpoints")
    @classmethod
    def _check_checkpoints(cls, value: list[str]) -> list[str]:
        minutes = [parse_hhmm(item) for item in value]
        if any(later <= earlier for earlier, later in zip(minutes, minutes[1:])):
            raise ValueError("overtime_checkpoints must be strictly increasing.")
        return [item.strip() for item in value]

    @model_validator(mode="after")
    def _validate_document(self) -> "AttendancePolicy":
        if parse_hhmm(self.work_start_time) >= parse_hhmm(self.work_end_time):
            raise ValueError("work_start_time must be before work_end_time.")
        if parse_hhmm(self.lunch_start_time) > parse_hhmm(self.lunch_end_time):
            raise ValueError("lunch_start_time must not be after lunch_end_time.")

        boundaries = [parse_hhmm(rule.previous_day_checkout_time) for rule in self.late_rules]
        if len(boundaries) != len(set(boundaries)):
            raise ValueError("late_rules must not repeat a previous_day_checkout_time boundary.")

        self._validate_penalty_scheme()
        self._validate_full_attendance_rules()

        days_rules = self.attendance_days_rules
        if days_rules.should_attendance_calc_method == "fixed" and days_rules.fixed_should_attendance_days is None:
            raise ValueError("fixed_should_attendance_days is required when the calc method is 'fixed'.")

        custom_dates = [item.day for item in self.workday_swap_rules.custom_days]
        if len(custom_dates) != len(set(custom_dates)):
            raise ValueError("workday_swap_rules.custom_days must not repeat a date.")
        return self

    def _validate_penalty_scheme(self) -> None:
        ladder = sorted(self.performance_penalty_rules, key=lambda rule: rule.min_minutes)
        for rule in ladder:
            if rule.min_minutes >= rule.upper_bound:
                raise ValueError(f"Penalty tier [{rule.min_minutes}, {rule.max_minutes}) is empty.")
        for previous, current in zip(ladder, ladder[1:]):
            if current.min_minutes < previous.upper_bound:
                raise ValueError(
                    f"Penalty tiers [{previous.min_minutes}, {previous.max_minutes}) and "
                    f"[{current.min_minutes}, {current.max_minutes}) overlap."
                )
            if current.penalty < previous.penalty:
                raise ValueError("Penalty tiers must not decrease as minutes increase.")

        if not self.performance_penalty_enabled:
            return
        if self.performance_penalty_mode == "unlimited":
            if self.unlimited_penalty_threshold_time is None:
                raise ValueError("unlimited_penalty_threshold_time is required in unlimited mode.")
            if self.unlimited_penalty_calc_type is None:
                raise ValueError("unlimited_penalty_calc_type is required in unlimited mode.")
            if self.unlimited_penalty_calc_type == "perMinute" and self.unlimited_penalty_per_minute is None:
                raise ValueError("unlimited_penalty_per_minute is required for perMinute penalties.")
            if self.unlimited_penalty_calc_type == "fixed" and self.unlimited_penalty_fixed_amount is None:
                raise ValueError("unlimited_penalty_fixed_amount is required for fixed penalties.")
            return

        if self.capped_penalty_type is None:
            raise ValueError("capped_penalty_type is required in capped mode.")
        if self.max_performance_penalty is None:
            raise ValueError("max_performance_penalty is required in capped mode.")
        if self.capped_penalty_type == "ladder" and not ladder:
            raise ValueError("performance_penalty_rules must not be empty for ladder penalties.")
        if self.capped_penalty_type == "fixedCap" and self.capped_penalty_per_minute is None:
            raise ValueError("capped_penalty_per_minute is required for fixedCap penalties.")

    def _validate_full_attendance_rules(self) -> None:
        for rule in self.full_attendance_rules:
            if rule.type not in COUNT_ONLY_RULE_TYPES and rule.type not in LEAVE_RULE_TYPES:
                raise ValueError(f"Unknown full attendance rule type '{rule.type}'.")
            if rule.type in COUNT_ONLY_RULE_TYPES and rule.unit != "count":
                raise ValueError(f"Full attendance rule '{rule.type}' can only be measured in count.")

    def full_day_hours_for(self, office: str | None) -> float:
        if office and office in self.office_full_day_hours:
            return self.office_full_day_hours[office]
        return self.full_day_hours


class PunchRecord(BaseModel):
    user_id: str
    work_date: date
    check_type: CheckType
    source_type: str = PunchSource.ATM.value
    time_result: str = TimeResult.NORMAL.value
    location_result: str | None = None
    user_check_time: datetime | None = None
    base_check_time: datetime | None = None
    proc_inst_id: str | None = None
    time_result_desc: str | None = Field(default=None, alias="timeResult_Desc")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("work_date", mode="before")
    @classmethod
    def _coerce_work_date(cls, value: Any) -> Any:
        return to_local_date(value)

    @field_validator("user_check_time", "base_check_time", mode="before")
    @classmethod
    def _coerce_local_time(cls, value: Any) -> Any:
        return to_local_naive(value)

    @property
    def is_signed(self) -> bool:
        return self.user_check_time is not None and self.time_result != TimeResult.NOT_SIGNED.value

    @property
    def is_approval(self) -> bool:
        return self.source_type == PunchSource.APPROVE.value


class LeaveApproval(BaseModel):
    proc_inst_id: str
    biz_type: str = "leave"
    leave_type: str = ""
    start: datetime
    end: datetime
    duration: float = Field(default=0, ge=0)
    duration_unit: Literal["hour", "day"] = "hour"

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_local_time(cls, value: Any) -> Any:
        return to_local_naive(value)

    @field_validator("duration_unit", mode="before")
    @classmethod
    def _normalize_unit(cls, value: Any) -> Any:
        normalized = str(value or "hour").strip().lower()
        if normalized in {"hour", "hours", "小时", "percent_hour"}:
            return "hour"
        if normalized in {"day", "days", "天", "halfday", "percent_day"}:
            return "day"
        return normalized

    @model_validator(mode="after")
    def _check_interval(self) -> "LeaveApproval":
        if self.end < self.start:
            raise ValueError(f"Approval {self.proc_inst_id} ends before it starts.")
        return self


class HolidayInfo(BaseModel):
    holiday: bool
    name: str = ""
    wage: float | None = None


class EmployeeProfile(BaseModel):
    user_id: str
    name: str = ""
    department_ids: list[str] = Field(default_factory=list)
    office: str | None = None
    hired_date: date | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("department_ids", mode="before")
    @classmethod
    def _stringify_departments(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value

    @field_validator("hired_date", mode="before")
    @classmethod
    def _coerce_hired_date(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return to_local_date(value)


class DailyAttendanceStatus(BaseModel):
    work_date: date
    status: DayStatus
    records: list[PunchRecord] = Field(default_factory=list)
    on_duty_time: str | None = None
    off_duty_time: str | None = None
    has_abnormality: bool = False
    has_on_duty_approve: bool = False
    has_off_duty_approve: bool = False
    is_workday: bool = True
    is_statutory_holiday: bool = False
    is_remote: bool = False
    late_minutes: int = 0
    missing_on_duty: bool = False
    missing_off_duty: bool = False
    is_absenteeism: bool = False
    leave_hours: float = 0
    is_full_day_leave: bool = False
    worked_hours: float = 0
    overtime_checkpoint: str | None = None
    overtime_minutes: int = 0
    attendance_contribution: float = 0
    flags: list[str] = Field(default_factory=list)


class LateLedgerEntry(BaseModel):
    work_date: date
    raw_minutes: int
    forgiven: bool
    billable_minutes: int
    threshold_time: str | None = None
    on_duty_time: str | None = None
    rule_source: str


class OvertimeBucket(BaseModel):
    minutes: int = 0
    count: int = 0


def _zero_leave_map() -> dict[str, float]:
    return {category: 0 for category in LEAVE_CATEGORIES}


class EmployeeStats(BaseModel):
    user_id: str
    name: str = ""
    year: int
    month: int
    policy_version: int | None = None

    late_count: int = 0
    late_minutes: int = 0
    billable_late_minutes: int = 0
    exempted_late_count: int = 0
    exemption_used: int = 0
    missing_count: int = 0
    absenteeism_count: int = 0

    leave_counts: dict[str, float] = Field(default_factory=_zero_leave_map)
    leave_hours: dict[str, float] = Field(default_factory=_zero_leave_map)
    leave_labels: list[str] = Field(default_factory=list)

    overtime_total_minutes: int = 0
    overtime_buckets: dict[str, OvertimeBucket] = Field(default_factory=dict)
    weekend_overtime_minutes: int = 0

    performance_penalty: float = 0
    is_full_attendance: bool | None = None
    full_attendance_bonus: float = 0
    full_attendance_disqualifiers: list[str] = Field(default_factory=list)
    should_attendance_days: float = 0
    actual_attendance_days: float = 0

    days: list[DailyAttendanceStatus] = Field(default_factory=list)
    late_ledger: list[LateLedgerEntry] = Field(default_factory=list)


class EmployeeMonthInput(BaseModel):
    employee: EmployeeProfile
    records: list[PunchRecord] = Field(default_factory=list)


class EmployeeComputationFailure(BaseModel):
    user_id: str
    code: str
    message: str


class MonthlyBatchResult(BaseModel):
    year: int
    month: int
    policy_version: int | None = None
    results: list[EmployeeStats] = Field(default_factory=list)
    failures: list[EmployeeComputationFailure] = Field(default_factory=list)


class MonthlyStatsRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    as_of: date | None = None
    company_key: str | None = None
    employees: list[EmployeeMonthInput] = Field(default_factory=list)
    approvals: list[LeaveApproval] = Field(default_factory=list)
    holidays: dict[date, HolidayInfo] = Field(default_factory=dict)


class ManualEditLabel(str, enum.Enum):
    CLEAR = "clear"
    NORMAL = "normal"
    LATE = "late"
    OVERTIME = "overtime"
    MISSING = "missing"


class ManualEditRequest(BaseModel):
    user_id: str
    work_date: date
    label: str = Field(min_length=1, max_length=64)
    on_duty_time: HHMM | None = None
    off_duty_time: HHMM | None = None
    proc_inst_id: str | None = None
    company_key: str | None = None
    approvals: list[LeaveApproval] = Field(default_factory=list)
    holidays: dict[date, HolidayInfo] = Field(default_factory=dict)
    office: str | None = None
    department_ids: list[str] = Field(default_factory=list)

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        return value.strip()


class ManualEditResult(BaseModel):
    user_id: str
    work_date: date
    label: str
    status: DayStatus
    leave_validated: bool = False
    records: list[PunchRecord] = Field(default_factory=list)


class PolicySaveRequest(BaseModel):
    document: dict[str, Any]
    change_reason: str | None = Field(default=None, max_length=1000)


class PolicyRollbackRequest(BaseModel):
    version: int = Field(ge=1)
    change_reason: str | None = Field(default=None, max_length=1000)


class PolicyVersionRead(BaseModel):
    id: int
    company_key: str
    version: int
    is_active: bool
    created_by: str
    change_reason: str | None = None
    rolled_back_from: int | None = None
    created_at: datetime
    document: dict[str, Any]

    model_config = ConfigDict(from_attributes=True)
