from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from mockchain.config import Settings, get_settings
from mockchain.logging import get_logger, log_chain_trace, sanitize_error_message
from mockchain.service.conditions import evaluate
from mockchain.service.dispatch import (
    NEXT_CALL_FLAGS,
    USER_ID_HEADER,
    ExternalFetcher,
    InternalRequest,
    ResponseCapture,
    RouteMeta,
    infer_item_id,
    merge_headers,
)
from mockchain.service.plan import AUTH_SAME_USER, ExternalTarget, NormalizedStep
from mockchain.service.resolver import TargetResolver
from mockchain.service.templating import ChainContext, render, render_string

HandlerInvoker = Callable[[InternalRequest, ResponseCapture], Awaitable[Any]]

_ID_METHODS = frozenset({"PUT", "PATCH", "DELETE"})


@dataclass
class Executed:
    step_name: str
    status: int
    body: Any
    history_entry: Dict[str, Any]
    prev: Dict[str, Any]
    latency_ms: int = 0
    log_id: Optional[int] = None


@dataclass
class Skipped:
    step_name: str
    reason: str


@dataclass
class Failed:
    step_name: str
    error: str


StepResult = Union[Executed, Skipped, Failed]


@dataclass
class ChainRunResult:
    results: List[StepResult] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    suppressed: bool = False

    @property
    def executed(self) -> List[Executed]:
        return [r for r in self.results if isinstance(r, Executed)]

    def summary(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for result in self.results:
            if isinstance(result, Executed):
                rows.append(
                    {
                        "name": result.step_name,
                        "state": "executed",
                        "status": result.status,
                        "latency_ms": result.latency_ms,
                        "log_id": result.log_id,
                    }
                )
            elif isinstance(result, Skipped):
                rows.append({"name": result.step_name, "state": "skipped", "reason": result.reason})
            else:
                rows.append(
                    {
                        "name": result.step_name,
                        "state": "failed",
                        "error": sanitize_error_message(result.error),
                    }
                )
        return rows


def build_root_context(
    *,
    method: str,
    path: str,
    headers: Optional[Dict[str, Any]] = None,
    body: Any = None,
    query: Optional[Dict[str, Any]] = None,
    status: Optional[int] = None,
    response_body: Any = None,
    workspace: Optional[str] = None,
    project: Optional[str] = None,
    project_id: Optional[int] = None,
    user: Optional[Dict[str, Any]] = None,
    log_id: Optional[int] = None,
    suppress_next_calls: bool = False,
) -> Dict[str, Any]:
    """Snapshot of a root call in the shape chained-call templates address."""
    request = {
        "method": method.upper(),
        "path": path,
        "headers": dict(headers or {}),
        "body": body,
        "query": dict(query or {}),
    }
    response = {"status": status, "body": response_body}
    return {
        "req": request,
        "request": request,
        "res": response,
        "response": response,
        "workspace": workspace,
        "project": project,
        "project_id": project_id,
        "user": user,
        "log": {"id": log_id},
        "flags": {"suppress_next_calls": suppress_next_calls},
        "history": [],
    }


def _root_suppressed(root: Dict[str, Any]) -> bool:
    flags = root.get("flags")
    if not isinstance(flags, dict):
        return False
    return bool(flags.get("suppressNextCalls") or flags.get("suppress_next_calls"))


def _root_request(root: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("req", "request"):
        value = root.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _root_names(root: Dict[str, Any]) -> tuple:
    workspace = root.get("workspace") or root.get("workspaceName")
    project = root.get("project") or root.get("projectName")
    return workspace, project


def _user_id(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if isinstance(user, dict) and user.get("id") is not None:
        return str(user["id"])
    return None


class ChainRunner:
    """Runs a chained-call plan step by step against one root call.

    Steps run strictly in order. A step whose condition is false or whose
    target cannot be resolved is skipped; a step that raises fails. Both
    clear ``prev`` and neither is added to history, and neither stops the
    remaining steps.
    """

    def __init__(
        self,
        store: Any,
        *,
        invoke_handler: Optional[HandlerInvoker] = None,
        resolver: Optional[TargetResolver] = None,
        fetcher: Optional[ExternalFetcher] = None,
        log_writer: Any = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.invoke_handler = invoke_handler
        self.resolver = resolver or TargetResolver(store)
        self.fetcher = fetcher or ExternalFetcher(
            connect_timeout=self.settings.external_connect_timeout
        )
        self.log_writer = log_writer
        self.logger = get_logger(__name__)

    def bind_handler(self, invoke_handler: HandlerInvoker) -> None:
        self.invoke_handler = invoke_handler

    async def run_plan(
        self,
        plan: List[NormalizedStep],
        root: Dict[str, Any],
        *,
        user: Optional[Dict[str, Any]] = None,
        suppress_next_calls: bool = False,
    ) -> ChainRunResult:
        root = root or {}
        if suppress_next_calls or _root_suppressed(root):
            self.logger.debug("chain_run_suppressed", steps=len(plan or []))
            return ChainRunResult(suppressed=True)

        steps = list(plan or [])
        if len(steps) > self.settings.chain_max_steps:
            self.logger.warning(
                "chain_plan_truncated",
                steps=len(steps),
                max_steps=self.settings.chain_max_steps,
            )
            steps = steps[: self.settings.chain_max_steps]

        seeded = root.get("history")
        ctx = ChainContext(
            root=root,
            prev=None,
            history=list(seeded) if isinstance(seeded, list) else [],
        )
        acting_user = user if user is not None else root.get("user")
        result = ChainRunResult(history=ctx.history)

        with structlog.contextvars.bound_contextvars(chain_id=uuid.uuid4().hex[:12]):
            self.logger.info("chain_run_started", steps=len(steps))
            for position, step in enumerate(steps, start=1):
                outcome = await self.execute_step(step, ctx, user=acting_user, position=position)
                result.results.append(outcome)
                if isinstance(outcome, Executed):
                    ctx.history.append(outcome.history_entry)
                    ctx.prev = outcome.prev
                else:
                    ctx.prev = None
            log_chain_trace(result.summary(), logger=self.logger)
            self.logger.info(
                "chain_run_completed",
                executed=len(result.executed),
                total=len(result.results),
            )
        return result

    async def execute_step(
        self,
        step: NormalizedStep,
        ctx: ChainContext,
        *,
        user: Optional[Dict[str, Any]] = None,
        position: int = 0,
    ) -> StepResult:
        """Run one step against ``ctx`` without mutating it."""
        if not evaluate(step.condition, ctx.root, ctx.prev):
            self.logger.info("chain_step_skipped", step=step.name, reason="condition_false")
            return Skipped(step.name, "condition_false")

        try:
            if isinstance(step.target, ExternalTarget):
                return await self._run_external(step, ctx, user)
            return await self._run_internal(step, ctx, user)
        except asyncio.TimeoutError:
            self.logger.warning("chain_step_failed", step=step.name, position=position, error="timeout")
            return Failed(step.name, "timeout")
        except Exception as exc:
            self.logger.warning(
                "chain_step_failed",
                step=step.name,
                position=position,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return Failed(step.name, str(exc) or type(exc).__name__)

    def _delay_seconds(self, step: NormalizedStep) -> float:
        return min(step.delay_ms, self.settings.chain_max_delay_ms) / 1000.0

    def _timeout_seconds(self, step: NormalizedStep) -> Optional[float]:
        timeout_ms = step.timeout_ms or self.settings.chain_default_timeout_ms
        return timeout_ms / 1000.0 if timeout_ms > 0 else None

    def _outbound_headers(
        self, step: NormalizedStep, ctx: ChainContext, user: Optional[Dict[str, Any]]
    ) -> Dict[str, str]:
        rendered = render(step.headers_template or {}, ctx)
        headers = merge_headers(
            _root_request(ctx.root).get("headers"),
            rendered if isinstance(rendered, dict) else {},
        )
        headers.setdefault("content-type", "application/json")
        user_id = _user_id(user)
        if user_id:
            headers[USER_ID_HEADER] = user_id
        return headers

    async def _run_external(
        self, step: NormalizedStep, ctx: ChainContext, user: Optional[Dict[str, Any]]
    ) -> StepResult:
        target = step.target
        payload = render(step.payload_template, ctx)
        headers = self._outbound_headers(step, ctx, user)

        delay = self._delay_seconds(step)
        if delay > 0:
            await asyncio.sleep(delay)

        started = time.perf_counter()
        response = await asyncio.wait_for(
            self.fetcher.fetch(target.method, target.url, headers=headers, body=payload),
            timeout=self._timeout_seconds(step),
        )
        latency_ms = int((time.perf_counter() - started) * 1000)
        status, body = response["status"], response["body"]
        self.logger.info(
            "chain_step_executed", step=step.name, url=target.url, status=status, latency_ms=latency_ms
        )

        log_id = await self._persist(
            step,
            ctx,
            user,
            project_id=ctx.root.get("project_id"),
            endpoint_id=None,
            stateful_endpoint_id=None,
            method=target.method,
            path=target.url,
            headers=headers,
            payload=payload,
            status=status,
            body=body,
            latency_ms=latency_ms,
        )
        return self._executed(
            step, payload, headers, status, body, response.get("headers") or {}, latency_ms, log_id
        )

    async def _run_internal(
        self, step: NormalizedStep, ctx: ChainContext, user: Optional[Dict[str, Any]]
    ) -> StepResult:
        target = step.target
        default_workspace, default_project = _root_names(ctx.root)
        rendered_path = (
            render_string(target.logical_path, ctx) if target.logical_path else None
        )
        resolved = self.resolver.resolve(
            target,
            default_workspace=default_workspace,
            default_project=default_project,
            logical_path=rendered_path,
        )
        if resolved is None:
            self.logger.info("chain_step_skipped", step=step.name, reason="target_unresolved")
            return Skipped(step.name, "target_unresolved")
        if self.invoke_handler is None:
            raise RuntimeError("no stateful handler bound for internal dispatch")

        payload = render(step.payload_template, ctx)
        headers = self._outbound_headers(step, ctx, user)

        item_id = resolved.id_in_url
        if item_id is None and resolved.method in _ID_METHODS:
            prev_body = ctx.prev.get("body") if isinstance(ctx.prev, dict) else None
            item_id = infer_item_id(payload, prev_body)
            if item_id is None:
                self.logger.warning(
                    "chain_step_item_id_missing", step=step.name, method=resolved.method
                )
        item_path = resolved.base_path + (f"/{item_id}" if item_id is not None else "")
        base_url = f"/{resolved.workspace_name}/{resolved.project_name}"

        request = InternalRequest(
            method=resolved.method,
            headers=headers,
            body=payload,
            base_url=base_url,
            original_url=base_url + item_path,
            universal=RouteMeta(
                method=resolved.method,
                workspace_name=resolved.workspace_name,
                project_name=resolved.project_name,
                project_id=resolved.project_id,
                base_path=resolved.base_path,
                raw_path=item_path,
                sub_path=resolved.sub_path,
                stateful_id=resolved.endpoint_id,
                stateless_id=resolved.origin_id,
                id_in_url=item_id,
            ),
            flags=NEXT_CALL_FLAGS,
            user=user,
        )

        delay = self._delay_seconds(step)
        if delay > 0:
            await asyncio.sleep(delay)

        capture = ResponseCapture()
        started = time.perf_counter()
        await asyncio.wait_for(
            self.invoke_handler(request, capture), timeout=self._timeout_seconds(step)
        )
        latency_ms = int((time.perf_counter() - started) * 1000)
        status, body = capture.status_code, capture.body
        self.logger.info(
            "chain_step_executed",
            step=step.name,
            path=request.original_url,
            status=status,
            latency_ms=latency_ms,
        )

        log_id = await self._persist(
            step,
            ctx,
            user,
            project_id=resolved.project_id,
            endpoint_id=resolved.origin_id,
            stateful_endpoint_id=resolved.endpoint_id,
            method=resolved.method,
            path=request.original_url,
            headers=headers,
            payload=payload,
            status=status,
            body=body,
            latency_ms=latency_ms,
        )
        return self._executed(
            step, payload, headers, status, body, dict(capture.headers), latency_ms, log_id
        )

    async def _persist(
        self,
        step: NormalizedStep,
        ctx: ChainContext,
        user: Optional[Dict[str, Any]],
        *,
        project_id: Optional[int],
        endpoint_id: Optional[int],
        stateful_endpoint_id: Optional[int],
        method: str,
        path: str,
        headers: Dict[str, str],
        payload: Any,
        status: int,
        body: Any,
        latency_ms: int,
    ) -> Optional[int]:
        if not step.log.persist or self.log_writer is None:
            return None
        root_log = ctx.root.get("log")
        parent_log_id = root_log.get("id") if isinstance(root_log, dict) else None
        log = await self.log_writer.write_step(
            parent_log_id=parent_log_id,
            step_name=step.name,
            request_headers=headers,
            project_id=project_id,
            method=method,
            path=path,
            endpoint_id=endpoint_id,
            stateful_endpoint_id=stateful_endpoint_id,
            user_id=_user_id(user) if step.auth_mode == AUTH_SAME_USER else None,
            request_body=payload,
            status_code=status,
            response_body=body,
            latency_ms=latency_ms,
            notify=step.log.notify,
        )
        return log.id if log is not None else None

    @staticmethod
    def _executed(
        step: NormalizedStep,
        payload: Any,
        headers: Dict[str, str],
        status: int,
        body: Any,
        response_headers: Dict[str, str],
        latency_ms: int,
        log_id: Optional[int],
    ) -> Executed:
        # prev.headers are the response headers; request headers stay under prev.request
        request = {"body": payload, "headers": headers}
        history_entry = {
            "request": request,
            "response": {"body": body, "headers": response_headers},
            "res": {"status": status, "body": body},
            "status": status,
        }
        prev = {
            "status": status,
            "body": body,
            "headers": response_headers,
            "request": request,
            "response": body,
        }
        return Executed(
            step_name=step.name,
            status=status,
            body=body,
            history_entry=history_entry,
            prev=prev,
            latency_ms=latency_ms,
            log_id=log_id,
        )


__all__ = [
    "ChainRunResult",
    "ChainRunner",
    "Executed",
    "Failed",
    "Skipped",
    "StepResult",
    "build_root_context",
]
