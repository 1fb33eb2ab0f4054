from __future__ import annotations

from fastapi import Request

from attendance_engine.audit import AuditContext
from attendance_engine.models import AuditActorType


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def audit_context(request: Request) -> AuditContext:
    """Audit identity for the request; an X-Actor-Id header marks an admin action."""
    actor = (request.headers.get("x-actor-id") or "").strip()
    request.state.actor_id = actor or "system"
    return AuditContext(
        actor_id=request.state.actor_id,
        actor_type=AuditActorType.ADMIN if actor else AuditActorType.SYSTEM,
        request_id=getattr(request.state, "request_id", None),
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
