from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.models import AuditActorType, AuditLog

logger = logging.getLogger("attendance_engine.audit")


@dataclass(frozen=True)
class AuditContext:
    """Who triggered a change and from which request."""

    actor_id: str = "system"
    actor_type: AuditActorType = AuditActorType.SYSTEM
    request_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None


SYSTEM_CONTEXT = AuditContext()


def record_audit(
    db: Session,
    context: AuditContext,
    *,
    action: str,
    success: bool,
    entity_type: str,
    entity_id: str,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Persist one audit row in its own commit; returns None when the write failed."""
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=context.actor_type,
        actor_id=context.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=context.ip,
        user_agent=context.user_agent,
        success=success,
        details=details or {},
    )
    db.add(entry)
    log_fields = {
        "request_id": context.request_id,
        "action": action,
        "actor_type": context.actor_type.value,
        "actor_id": context.actor_id,
        "entity": f"{entity_type}:{entity_id}",
    }
    try:
        db.commit()
    except Exception:
        # the audited change has its own commit
        db.rollback()
        logger.exception("audit_log_write_failed", extra=log_fields)
        return None

    logger.info("audit_event", extra={**log_fields, "success": success, "details": details or {}})
    return entry
