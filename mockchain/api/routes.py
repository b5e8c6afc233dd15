from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from mockchain.api.schemas import (
    AdvancedConfigRequest,
    AdvancedConfigResponse,
    ChainStepSummary,
    Envelope,
    ExecuteChainRequest,
    ExecuteChainResponse,
    PlanStepView,
    RequestLogList,
    RequestLogOut,
)
from mockchain.logging import get_logger
from mockchain.service.dispatch import (
    InternalRequest,
    RequestFlags,
    ResponseCapture,
    RouteMeta,
    decode_body,
)
from mockchain.service.errors import NotFoundError
from mockchain.service.plan import build_plan
from mockchain.service.resolver import split_item_path
from mockchain.service.runtime import get_runtime
from mockchain.storage.common import normalize_path
from mockchain.storage.memory import DEFAULT_LOG_PAGE_SIZE, MAX_LOG_PAGE_SIZE

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

# registered last: it matches any /<workspace>/<project>/<path>
mock_router = APIRouter()

_MOCK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


# -- chained-call debug / management -------------------------------------------


@router.post("/nextcalls/execute", response_model=Envelope, tags=["nextcalls"])
async def execute_next_calls(body: ExecuteChainRequest):
    """Build and run a plan synchronously, returning the per-step summary."""
    runtime = get_runtime()
    plan = build_plan(body.plan)
    user = {"id": body.options.user_id} if body.options.user_id else body.root.get("user")
    result = await runtime.chain_runner.run_plan(
        plan,
        body.root,
        user=user,
        suppress_next_calls=body.options.suppress_next_calls,
    )
    response = ExecuteChainResponse(
        suppressed=result.suppressed,
        steps=[ChainStepSummary(**row) for row in result.summary()],
        history=result.history,
    )
    return Envelope(status="ok", data=response.model_dump())


def _advanced_config_view(stateful) -> AdvancedConfigResponse:
    return AdvancedConfigResponse(
        stateful_endpoint_id=stateful.id,
        config=stateful.advanced_config,
        steps=[PlanStepView.from_step(step) for step in build_plan(stateful.advanced_config)],
    )


@router.get(
    "/stateful-endpoints/{stateful_id}/advanced-config",
    response_model=Envelope,
    tags=["nextcalls"],
)
async def get_advanced_config(stateful_id: int):
    runtime = get_runtime()
    stateful = runtime.store.get_stateful_endpoint(stateful_id)
    if not stateful:
        raise NotFoundError(
            "stateful endpoint not found", detail={"stateful_endpoint_id": stateful_id}
        )
    return Envelope(status="ok", data=_advanced_config_view(stateful).model_dump())


@router.put(
    "/stateful-endpoints/{stateful_id}/advanced-config",
    response_model=Envelope,
    tags=["nextcalls"],
)
async def put_advanced_config(stateful_id: int, body: AdvancedConfigRequest):
    runtime = get_runtime()
    stateful = runtime.store.set_advanced_config(stateful_id, body.config)
    if not stateful:
        raise NotFoundError(
            "stateful endpoint not found", detail={"stateful_endpoint_id": stateful_id}
        )
    logger.info(
        "advanced_config_updated",
        stateful_endpoint_id=stateful_id,
        steps=len(stateful.next_calls_config()),
    )
    return Envelope(status="ok", data=_advanced_config_view(stateful).model_dump())


# -- request logs ----------------------------------------------------------------


@router.get("/projects/{project_id}/logs", response_model=Envelope, tags=["logs"])
async def list_project_logs(
    project_id: int,
    method: Optional[str] = Query(None),
    status_code: Optional[int] = Query(None),
    stateful_endpoint_id: Optional[int] = Query(None),
    limit: int = Query(DEFAULT_LOG_PAGE_SIZE),
    offset: int = Query(0),
):
    runtime = get_runtime()
    if not runtime.store.get_project(project_id):
        raise NotFoundError("project not found", detail={"project_id": project_id})
    count, logs = runtime.store.list_request_logs(
        project_id,
        method=method,
        status_code=status_code,
        stateful_endpoint_id=stateful_endpoint_id,
        limit=max(1, min(MAX_LOG_PAGE_SIZE, limit)),
        offset=max(0, offset),
    )
    payload = RequestLogList(count=count, items=[RequestLogOut.from_model(log) for log in logs])
    return Envelope(status="ok", data=payload.model_dump(mode="json"))


@router.get("/logs/{log_id}", response_model=Envelope, tags=["logs"])
async def get_log(log_id: int):
    runtime = get_runtime()
    log = runtime.store.get_request_log(log_id)
    if not log:
        raise NotFoundError("request log not found", detail={"log_id": log_id})
    return Envelope(status="ok", data=RequestLogOut.from_model(log).model_dump(mode="json"))


# -- universal mock route --------------------------------------------------------


@mock_router.api_route(
    "/{workspace}/{project}/{path:path}", methods=_MOCK_METHODS, include_in_schema=False
)
async def universal_mock(workspace: str, project: str, path: str, request: Request):
    """Serve a stateful mock endpoint and trigger its chained calls."""
    runtime = get_runtime()
    logical_path = normalize_path("/" + path)
    base_path, id_in_url = split_item_path(logical_path)
    method = request.method.upper()
    internal = InternalRequest(
        method=method,
        headers={key.lower(): value for key, value in request.headers.items()},
        body=decode_body(await request.body()),
        base_url=f"/{workspace}/{project}",
        original_url=f"/{workspace}/{project}{logical_path}",
        universal=RouteMeta(
            method=method,
            workspace_name=workspace,
            project_name=project,
            base_path=base_path,
            raw_path=logical_path,
            id_in_url=id_in_url,
        ),
        flags=RequestFlags(),
        client_ip=request.client.host if request.client else None,
        query=dict(request.query_params),
    )
    capture = ResponseCapture()
    await runtime.handler.handle(internal, capture)
    headers = {k: v for k, v in capture.headers.items() if k != "content-type"}
    return JSONResponse(status_code=capture.status_code, content=capture.body, headers=headers)
