from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class AttendanceEngineError(Exception):
    code = "ENGINE_ERROR"


class PolicyValidationError(AttendanceEngineError):
    """The policy document is internally inconsistent and cannot be evaluated."""

    code = "POLICY_INVALID"

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class EvaluationError(AttendanceEngineError):
    """Punch or approval data for one employee could not be evaluated."""

    code = "EVALUATION_FAILED"


def validation_details(errors: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Flatten pydantic error entries into `{loc, msg, type}` with a dotted location."""
    return [
        {
            "loc": ".".join(str(part) for part in item.get("loc", ())),
            "msg": str(item.get("msg", "")),
            "type": str(item.get("type", "")),
        }
        for item in errors
    ]


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
