from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from attendance_engine.audit import record_audit
from attendance_engine.db import get_db
from attendance_engine.routers.common import audit_context
from attendance_engine.schemas import ManualEditRequest, ManualEditResult, MonthlyBatchResult, MonthlyStatsRequest
from attendance_engine.services.manual_edits import build_manual_edit
from attendance_engine.services.monthly import calculate_monthly_batch
from attendance_engine.services.policies import get_active_policy
from attendance_engine.settings import get_settings

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/monthly-stats", response_model=MonthlyBatchResult)
def monthly_stats(
    payload: MonthlyStatsRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> MonthlyBatchResult:
    company_key = payload.company_key or get_settings().default_company_key
    active = get_active_policy(db, company_key)
    request.state.flags = {"company_key": company_key, "policy_version": active.version}
    return calculate_monthly_batch(
        payload.employees,
        year=payload.year,
        month=payload.month,
        policy=active.policy,
        approvals=payload.approvals,
        holidays=payload.holidays,
        as_of=payload.as_of,
        policy_version=active.version,
    )


@router.post("/manual-edit", response_model=ManualEditResult)
def manual_edit(
    payload: ManualEditRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ManualEditResult:
    company_key = payload.company_key or get_settings().default_company_key
    active = get_active_policy(db, company_key)
    result = build_manual_edit(payload, policy=active.policy)
    request.state.employee_id = payload.user_id
    record_audit(
        db,
        audit_context(request),
        action="ATTENDANCE_MANUAL_EDIT",
        success=True,
        entity_type="attendance_day",
        entity_id=f"{payload.user_id}:{payload.work_date.isoformat()}",
        details={
            "company_key": company_key,
            "policy_version": active.version,
            "label": payload.label,
            "status": result.status.value,
            "leave_validated": result.leave_validated,
        },
    )
    return result
