from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mockchain.service.plan import ExternalTarget, NormalizedStep
from mockchain.storage.models import RequestLog

_ERROR_CODES = {
    "validation_error",
    "unauthorized",
    "forbidden",
    "not_found",
    "conflict",
    "server_error",
}


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _ERROR_CODES:
            raise ValueError(f"unknown error code {value}")
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class ExecuteChainOptions(BaseModel):
    suppress_next_calls: bool = False
    user_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ExecuteChainRequest(BaseModel):
    """Debug execution of an ad-hoc plan.

    ``plan`` is a list of raw step configurations in the stored format;
    ``root`` is the root-call snapshot templates can address.
    """

    plan: List[Any] = Field(default_factory=list)
    root: Dict[str, Any] = Field(default_factory=dict)
    options: ExecuteChainOptions = Field(default_factory=ExecuteChainOptions)


class ChainStepSummary(BaseModel):
    name: str
    state: str = Field(..., pattern="^(executed|skipped|failed)$")
    status: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    latency_ms: Optional[int] = None
    log_id: Optional[int] = None


class ExecuteChainResponse(BaseModel):
    suppressed: bool = False
    steps: List[ChainStepSummary] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)


class PlanStepView(BaseModel):
    name: str
    kind: str
    method: str
    target: Optional[str] = None
    delay_ms: int = 0
    timeout_ms: int = 0
    persist: bool = True
    notify: bool = False
    auth_mode: str = "same-user"

    @classmethod
    def from_step(cls, step: NormalizedStep) -> "PlanStepView":
        target = step.target
        if isinstance(target, ExternalTarget):
            kind, where = "external", target.url
        else:
            kind = "internal"
            where = (
                f"/{target.workspace}/{target.project}{target.logical_path}"
                if target.logical_path
                else None
            )
        return cls(
            name=step.name,
            kind=kind,
            method=target.method,
            target=where,
            delay_ms=step.delay_ms,
            timeout_ms=step.timeout_ms,
            persist=step.log.persist,
            notify=step.log.notify,
            auth_mode=step.auth_mode,
        )


class AdvancedConfigRequest(BaseModel):
    config: Any

    @field_validator("config")
    @classmethod
    def _validate_config(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value
        if isinstance(value, dict) and isinstance(
            value.get("nextCalls", value.get("next_calls")), list
        ):
            return value
        raise ValueError("config must be a list of steps or an object with a nextCalls list")


class AdvancedConfigResponse(BaseModel):
    stateful_endpoint_id: int
    config: Any = None
    steps: List[PlanStepView] = Field(default_factory=list)


class RequestLogOut(BaseModel):
    id: int
    project_id: Optional[int] = None
    endpoint_id: Optional[int] = None
    stateful_endpoint_id: Optional[int] = None
    user_id: Optional[str] = None
    request_method: str
    request_path: str
    request_headers: Dict[str, Any] = Field(default_factory=dict)
    request_body: Any = None
    response_status_code: Optional[int] = None
    response_body: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    latency_ms: int = 0
    created_at: datetime

    @classmethod
    def from_model(cls, log: RequestLog) -> "RequestLogOut":
        return cls(
            id=log.id,
            project_id=log.project_id,
            endpoint_id=log.endpoint_id,
            stateful_endpoint_id=log.stateful_endpoint_id,
            user_id=log.user_id,
            request_method=log.request_method,
            request_path=log.request_path,
            request_headers=log.request_headers,
            request_body=log.request_body,
            response_status_code=log.response_status_code,
            response_body=log.response_body,
            ip_address=log.ip_address,
            latency_ms=log.latency_ms,
            created_at=log.created_at,
        )


class RequestLogList(BaseModel):
    count: int
    items: List[RequestLogOut] = Field(default_factory=list)
