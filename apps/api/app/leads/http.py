from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.leads.errors import (
    ActivityNotFound,
    AgentNotFound,
    AssignmentClosed,
    AssignmentNotFound,
    DuplicateActiveAssignment,
    InvalidLeadStatus,
    InvalidPolicyValue,
    InvalidSlabTable,
    LeadEngineError,
    LeadNotFound,
    LeadVersionConflict,
    NoEligibleAgent,
    NoSlabMatch,
    UnknownSweep,
)


@dataclass
class ActorUser:
    user_id: str
    permissions: set[str] = field(default_factory=set)
    is_super_admin: bool = False
    correlation_id: str | None = None
    agent_id: int | None = None


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    normalized_roles = {str(role).lower() for role in auth_user.roles}
    return ActorUser(
        user_id=auth_user.sub,
        permissions=set(auth_user.roles),
        is_super_admin="admin" in normalized_roles or "system.admin" in normalized_roles,
        correlation_id=correlation_id,
        agent_id=auth_user.agent_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if user.is_super_admin:
        return
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _status_for(exc: LeadEngineError) -> int:
    if isinstance(exc, (LeadNotFound, AssignmentNotFound, AgentNotFound, ActivityNotFound, UnknownSweep)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (InvalidPolicyValue, InvalidLeadStatus, InvalidSlabTable)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    conflicts = (AssignmentClosed, DuplicateActiveAssignment, LeadVersionConflict, NoEligibleAgent, NoSlabMatch)
    if isinstance(exc, conflicts):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def handle_error(request: Request, exc: HTTPException | LeadEngineError, *, code: str) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return error_response(
            request,
            status_code=exc.status_code,
            code=code,
            message=str(exc.detail),
            details=exc.detail,
        )
    details: dict[str, Any] = {"error": type(exc).__name__}
    if isinstance(exc, InvalidPolicyValue):
        details["policy_key"] = exc.key
        details["reason"] = exc.reason
    return error_response(
        request,
        status_code=_status_for(exc),
        code=code,
        message=str(exc),
        details=details,
    )
