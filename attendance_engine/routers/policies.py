from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.routers.common import audit_context
from attendance_engine.schemas import PolicyRollbackRequest, PolicySaveRequest, PolicyVersionRead
from attendance_engine.services.policies import (
    DEFAULT_POLICY_DOCUMENT,
    get_active_document,
    get_policy_version,
    list_policy_versions,
    load_policy,
    normalize_policy_document,
    rollback_policy,
    save_policy_version,
)

router = APIRouter(prefix="/api/policies", tags=["policies"])


@router.get("/{company_key}")
def read_active_policy(company_key: str, db: Session = Depends(get_db)) -> dict:
    row = get_active_document(db, company_key)
    if row is None:
        return {
            "company_key": company_key,
            "version": None,
            "is_default": True,
            "document": normalize_policy_document(load_policy(DEFAULT_POLICY_DOCUMENT)),
        }
    return {
        "company_key": company_key,
        "version": row.version,
        "is_default": False,
        "document": row.document,
    }


@router.put("/{company_key}", response_model=PolicyVersionRead)
def publish_policy(
    company_key: str,
    payload: PolicySaveRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PolicyVersionRead:
    row = save_policy_version(
        db,
        company_key=company_key,
        document=payload.document,
        context=audit_context(request),
        change_reason=payload.change_reason,
    )
    return PolicyVersionRead.model_validate(row)


@router.get("/{company_key}/versions", response_model=list[PolicyVersionRead])
def read_policy_versions(company_key: str, db: Session = Depends(get_db)) -> list[PolicyVersionRead]:
    return [PolicyVersionRead.model_validate(row) for row in list_policy_versions(db, company_key)]


@router.get("/{company_key}/versions/{version}", response_model=PolicyVersionRead)
def read_policy_version(company_key: str, version: int, db: Session = Depends(get_db)) -> PolicyVersionRead:
    return PolicyVersionRead.model_validate(get_policy_version(db, company_key, version))


@router.post("/{company_key}/rollback", response_model=PolicyVersionRead)
def rollback_policy_version(
    company_key: str,
    payload: PolicyRollbackRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PolicyVersionRead:
    row = rollback_policy(
        db,
        company_key=company_key,
        version=payload.version,
        context=audit_context(request),
        change_reason=payload.change_reason,
    )
    return PolicyVersionRead.model_validate(row)
