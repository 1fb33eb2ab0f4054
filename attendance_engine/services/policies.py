from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.audit import SYSTEM_CONTEXT, AuditContext, record_audit
from attendance_engine.errors import PolicyValidationError, validation_details
from attendance_engine.models import PolicyDocument
from attendance_engine.schemas import AttendancePolicy

logger = logging.getLogger("attendance_engine.policies")

DEFAULT_POLICY_DOCUMENT: dict[str, Any] = {
    "workStartTime": "09:00",
    "workEndTime": "18:30",
    "lunchStartTime": "12:00",
    "lunchEndTime": "13:30",
    "lateRules": [
        {"previousDayCheckoutTime": "18:30", "lateThresholdTime": "09:01", "description": "前一天18:30打卡，9:01算迟到"},
        {"previousDayCheckoutTime": "20:30", "lateThresholdTime": "09:31", "description": "前一天20:30打卡，9:31算迟到"},
        {"previousDayCheckoutTime": "24:00", "lateThresholdTime": "13:31", "description": "前一天24:00打卡，13:31算迟到"},
    ],
    "lateExemptionEnabled": True,
    "lateExemptionCount": 3,
    "lateExemptionMinutes": 15,
    "performancePenaltyEnabled": True,
    "performancePenaltyMode": "capped",
    "unlimitedPenaltyThresholdTime": "09:01",
    "unlimitedPenaltyCalcType": "perMinute",
    "unlimitedPenaltyPerMinute": 5,
    "unlimitedPenaltyFixedAmount": 50,
    "cappedPenaltyType": "ladder",
    "cappedPenaltyPerMinute": 5,
    "maxPerformancePenalty": 250,
    "performancePenaltyRules": [
        {"minMinutes": 0, "maxMinutes": 5, "penalty": 50, "description": "0-5分钟扣50元"},
        {"minMinutes": 5, "maxMinutes": 15, "penalty": 100, "description": "5-15分钟扣100元"},
        {"minMinutes": 15, "maxMinutes": 30, "penalty": 150, "description": "15-30分钟扣150元"},
        {"minMinutes": 30, "maxMinutes": 45, "penalty": 200, "description": "30-45分钟扣200元"},
        {"minMinutes": 45, "maxMinutes": 999, "penalty": 250, "description": "大于45分钟扣250元"},
    ],
    "leaveDisplayRules": [
        {"leaveType": "病假", "shortTermHours": 24, "shortTermLabel": "病假<=24小时", "longTermLabel": "病假>24小时"},
    ],
    "fullAttendanceEnabled": True,
    "fullAttendanceBonus": 200,
    "fullAttendanceAllowAdjustment": True,
    "fullAttendanceRequireLastWorkdayCheckout": True,
    "fullAttendanceRules": [
        {"type": "trip", "displayName": "出差", "enabled": False, "threshold": 0, "unit": "hours"},
        {"type": "compTime", "displayName": "调休", "enabled": False, "threshold": 0, "unit": "hours"},
        {"type": "late", "displayName": "迟到", "enabled": True, "threshold": 0, "unit": "count"},
        {"type": "missing", "displayName": "缺卡", "enabled": True, "threshold": 0, "unit": "count"},
        {"type": "absenteeism", "displayName": "旷工", "enabled": True, "threshold": 0, "unit": "count"},
        {"type": "annual", "displayName": "年假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "sick", "displayName": "病假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "personal", "displayName": "事假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "bereavement", "displayName": "丧假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "paternity", "displayName": "陪产假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "maternity", "displayName": "产假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "parental", "displayName": "育儿假", "enabled": True, "threshold": 0, "unit": "hours"},
        {"type": "marriage", "displayName": "婚假", "enabled": True, "threshold": 0, "unit": "hours"},
    ],
    "overtimeCheckpoints": ["19:30", "20:30", "22:00", "24:00"],
    "weekendOvertimeThreshold": 8,
    "attendanceDaysRules": {
        "enabled": True,
        "shouldAttendanceCalcMethod": "workdays",
        "includeHolidaysInShould": True,
        "actualAttendanceRules": {
            "countLateAsAttendance": True,
            "countMissingAsAttendance": False,
            "countHalfDayLeaveAsHalf": True,
            "minWorkHoursForFullDay": 4,
            "countHolidayAsAttendance": True,
            "countCompTimeAsAttendance": True,
            "countPaidLeaveAsAttendance": True,
            "countTripAsAttendance": True,
            "countOutAsAttendance": True,
            "countSickLeaveAsAttendance": False,
            "countPersonalLeaveAsAttendance": False,
        },
    },
    "workdaySwapRules": {"enabled": True, "autoFollowNationalHoliday": True, "customDays": []},
    "remoteWorkRules": {
        "enabled": True,
        "requireApproval": False,
        "countAsNormalAttendance": True,
        "allowedDaysOfWeek": [1, 2, 3, 4, 5],
        "remoteDays": [],
    },
    "crossDayCheckout": {
        "enabled": True,
        "rules": [
            {"checkoutTime": "20:30", "nextDayCheckinTime": "09:30", "description": "晚上8点半打卡，第二天可以早上9点半打卡"},
        ],
        "maxCheckoutTime": "24:00",
        "nextDayCheckinTime": "13:30",
    },
    "fullDayHours": 8,
    "officeFullDayHours": {"成都": 8.5},
    "seriousSickDays": 3,
}


@dataclass(frozen=True)
class ActivePolicy:
    company_key: str
    version: int | None
    policy: AttendancePolicy


def load_policy(document: Mapping[str, Any]) -> AttendancePolicy:
    try:
        return AttendancePolicy.model_validate(dict(document))
    except ValidationError as exc:
        raise PolicyValidationError("Policy document is invalid", errors=validation_details(exc.errors())) from exc


def normalize_policy_document(policy: AttendancePolicy) -> dict[str, Any]:
    return policy.model_dump(mode="json", by_alias=True)


def default_policy() -> AttendancePolicy:
    return load_policy(DEFAULT_POLICY_DOCUMENT)


def _next_version(db: Session, company_key: str) -> int:
    current = db.scalar(select(func.max(PolicyDocument.version)).where(PolicyDocument.company_key == company_key))
    return int(current or 0) + 1


def save_policy_version(
    db: Session,
    *,
    company_key: str,
    document: Mapping[str, Any],
    context: AuditContext = SYSTEM_CONTEXT,
    change_reason: str | None = None,
    rolled_back_from: int | None = None,
) -> PolicyDocument:
    action = "POLICY_ROLLED_BACK" if rolled_back_from is not None else "POLICY_SAVED"
    try:
        policy = load_policy(document)
    except PolicyValidationError as exc:
        record_audit(
            db,
            context,
            action=action,
            success=False,
            entity_type="policy_document",
            entity_id=company_key,
            details={"reason": exc.message, "errors": exc.errors},
        )
        raise

    version = _next_version(db, company_key)
    db.execute(
        update(PolicyDocument)
        .where(PolicyDocument.company_key == company_key, PolicyDocument.is_active.is_(True))
        .values(is_active=False)
    )
    row = PolicyDocument(
        company_key=company_key,
        version=version,
        document=normalize_policy_document(policy),
        is_active=True,
        created_by=context.actor_id,
        change_reason=change_reason,
        rolled_back_from=rolled_back_from,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Policy version {version} for {company_key} was published concurrently",
        ) from exc
    db.refresh(row)

    logger.info(
        "policy_version_published",
        extra={
            "request_id": context.request_id,
            "company_key": company_key,
            "version": version,
            "rolled_back_from": rolled_back_from,
        },
    )
    record_audit(
        db,
        context,
        action=action,
        success=True,
        entity_type="policy_document",
        entity_id=f"{company_key}:{version}",
        details={"version": version, "change_reason": change_reason, "rolled_back_from": rolled_back_from},
    )
    return row


def get_active_document(db: Session, company_key: str) -> PolicyDocument | None:
    return db.scalar(
        select(PolicyDocument)
        .where(PolicyDocument.company_key == company_key, PolicyDocument.is_active.is_(True))
        .order_by(PolicyDocument.version.desc())
        .limit(1)
    )


def get_active_policy(db: Session, company_key: str) -> ActivePolicy:
    """Active policy for a company; the built-in default (version None) when nothing was published."""
    row = get_active_document(db, company_key)
    if row is None:
        return ActivePolicy(company_key=company_key, version=None, policy=default_policy())
    return ActivePolicy(company_key=company_key, version=row.version, policy=load_policy(row.document))


def get_policy_version(db: Session, company_key: str, version: int) -> PolicyDocument:
    row = db.scalar(
        select(PolicyDocument).where(PolicyDocument.company_key == company_key, PolicyDocument.version == version)
    )
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Policy version not found")
    return row


def list_policy_versions(db: Session, company_key: str) -> list[PolicyDocument]:
    return list(
        db.scalars(
            select(PolicyDocument)
            .where(PolicyDocument.company_key == company_key)
            .order_by(PolicyDocument.version.desc())
        ).all()
    )


def rollback_policy(
    db: Session,
    *,
    company_key: str,
    version: int,
    context: AuditContext = SYSTEM_CONTEXT,
    change_reason: str | None = None,
) -> PolicyDocument:
    target = get_policy_version(db, company_key, version)
    return save_policy_version(
        db,
        company_key=company_key,
        document=dict(target.document),
        context=context,
        change_reason=change_reason or f"Rollback to version {version}",
        rolled_back_from=version,
    )
