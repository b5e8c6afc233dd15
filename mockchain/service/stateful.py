from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from jsonschema import Draft202012Validator

from mockchain.config import get_settings
from mockchain.logging import get_logger, sanitize_error_message
from mockchain.service.chain import build_root_context
from mockchain.service.dispatch import InternalRequest, ResponseCapture
from mockchain.service.plan import build_plan
from mockchain.service.templating import render_with_scope
from mockchain.storage.models import StatefulEndpoint, StatefulResponse, collection_name

FULL_ROUTE_REQUIRED = "Full route required: /:workspace/:project/..."

_FIELD_TYPES = frozenset({"number", "string", "boolean", "object", "array"})


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def item_json_schema(schema: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """JSON Schema equivalent of a field -> ``{"type", "required"}`` endpoint schema."""
    properties: Dict[str, Any] = {"id": {}}
    required: List[str] = []
    for key, rule in schema.items():
        rule = rule if isinstance(rule, dict) else {}
        kind = rule.get("type")
        properties[key] = {"type": kind} if kind in _FIELD_TYPES else {}
        if rule.get("required") is True and not partial:
            required.append(key)
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def validate_item(
    item: Dict[str, Any], schema: Dict[str, Any], *, partial: bool = False
) -> Optional[str]:
    """Check ``item`` against an endpoint schema.

    Returns the first problem found, or ``None``. Unknown fields are reported
    before missing ones, missing before mistyped. ``None`` values count as
    absent. An empty schema accepts anything; ``partial`` skips the
    required-field check (updates).
    """
    if not schema:
        return None
    present = {key: value for key, value in item.items() if value is not None}
    json_schema = item_json_schema(schema, partial=partial)
    errors = list(Draft202012Validator(json_schema).iter_errors(present))
    if not errors:
        return None

    kinds = {error.validator for error in errors}
    if "additionalProperties" in kinds:
        unknown = [key for key in present if key not in json_schema["properties"]]
        return f"Unknown field: {unknown[0]}"
    if "required" in kinds:
        missing = [key for key in json_schema["required"] if key not in present]
        return f"Missing required field: {missing[0]}"

    order = list(schema)
    type_errors = sorted(
        (e for e in errors if e.validator == "type" and e.path),
        key=lambda e: order.index(e.path[0]) if e.path[0] in order else len(order),
    )
    if type_errors:
        first = type_errors[0]
        return (
            f"Invalid type for {first.path[0]}: expected {first.validator_value}, "
            f"got {_type_name(first.instance)}"
        )
    return errors[0].message


def id_key(value: Any) -> Optional[str]:
    """Comparable form of an item id; ``7``, ``7.0`` and ``"7"`` are the same id."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _coerce_id(raw: str) -> Any:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return raw


def _find_index(items: List[Dict[str, Any]], item_id: Any) -> int:
    wanted = id_key(item_id)
    for index, item in enumerate(items):
        if isinstance(item, dict) and id_key(item.get("id")) == wanted:
            return index
    return -1


def _next_id(items: List[Dict[str, Any]]) -> int:
    highest = 0
    for item in items:
        value = item.get("id") if isinstance(item, dict) else None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            highest = max(highest, int(value))
    return highest + 1


def _owner_conflict(item: Dict[str, Any], user_id: Optional[str]) -> bool:
    owner = item.get("user_id")
    return owner is not None and id_key(owner) != id_key(user_id)


class StatefulRequestHandler:
    """CRUD over the item collection of a stateful endpoint.

    Serves both root calls coming from the universal mock route and chained
    calls dispatched in-process by :class:`ChainRunner`. Errors never escape
    :meth:`handle`; they become a 500 on the response capture.
    """

    def __init__(
        self,
        store: Any,
        *,
        chain_runner: Any = None,
        log_writer: Any = None,
        inline_chains: bool = False,
    ) -> None:
        self.store = store
        self.chain_runner = chain_runner
        self.log_writer = log_writer
        self.inline_chains = inline_chains
        self.logger = get_logger(__name__)
        self._chain_tasks: Set[asyncio.Task] = set()

    async def handle(self, request: InternalRequest, response: ResponseCapture) -> ResponseCapture:
        started = time.perf_counter()
        try:
            await self._dispatch(request, response)
        except Exception as exc:
            self.logger.exception(
                "stateful_handler_failed",
                method=request.method,
                path=request.original_url,
                error=str(exc),
            )
            response.status(500).json(
                {"message": "Internal Server Error", "error": sanitize_error_message(str(exc))}
            )
        if not request.flags.is_next_call:
            latency_ms = int((time.perf_counter() - started) * 1000)
            await self._after_root_call(request, response, latency_ms)
        return response

    async def wait_for_chains(self) -> None:
        """Wait for chained-call runs started in the background."""
        if self._chain_tasks:
            await asyncio.gather(*list(self._chain_tasks), return_exceptions=True)

    # -- dispatch ------------------------------------------------------------

    def _resolve_endpoint(
        self, request: InternalRequest
    ) -> Tuple[Optional[int], Optional[StatefulEndpoint]]:
        meta = request.universal
        project_id = meta.project_id
        if project_id is None:
            project = self.store.find_project_by_names(meta.workspace_name, meta.project_name)
            project_id = project.id if project else None
        if meta.stateful_id is not None:
            endpoint = self.store.get_stateful_endpoint(meta.stateful_id)
        elif project_id is not None:
            endpoint = self.store.find_stateful_endpoint(project_id, request.method, meta.base_path)
        else:
            endpoint = None
        if endpoint is not None and not endpoint.is_active:
            endpoint = None
        return project_id, endpoint

    async def _dispatch(self, request: InternalRequest, response: ResponseCapture) -> None:
        meta = request.universal
        if not meta.workspace_name or not meta.project_name:
            response.status(400).json({"message": FULL_ROUTE_REQUIRED})
            return

        project_id, endpoint = self._resolve_endpoint(request)
        request.locals["project_id"] = project_id
        if project_id is None:
            response.status(404).json(
                {"message": f"Project {meta.workspace_name}/{meta.project_name} not found"}
            )
            return
        if endpoint is None:
            response.status(404).json(
                {"message": "Stateful endpoint not found", "path": meta.base_path}
            )
            return
        request.locals["stateful_endpoint"] = endpoint

        # collections are keyed by the stored names, whatever casing the URL used
        stored_names = self.store.project_names_for_folder(endpoint.folder_id)
        workspace_name, project_name = stored_names or (meta.workspace_name, meta.project_name)
        coll_name = collection_name(endpoint.path, workspace_name, project_name)
        collection = self.store.get_item_collection(coll_name)
        if collection is None:
            response.status(500).json(
                {"message": "Stateful data not initialized for path", "path": endpoint.path}
            )
            return

        user_id = request.user_id
        if not self.store.is_folder_public(endpoint.folder_id) and not user_id:
            response.status(401).json({"message": "Authentication required"})
            return

        responses = self.store.list_stateful_responses(endpoint.id)
        items = [item for item in collection.data_current if isinstance(item, dict)]
        item_id = meta.id_in_url
        method = request.method.upper()
        op = _CrudOperation(self, request, response, endpoint, responses, coll_name, items, user_id)

        if method == "GET":
            await op.read(item_id)
        elif method == "POST":
            await op.create()
        elif method in ("PUT", "PATCH"):
            await op.update(item_id)
        elif method == "DELETE":
            await op.delete(item_id)
        else:
            response.status(405).json({"message": f"Method {method} not allowed"})

    # -- root-call follow-up -------------------------------------------------

    async def _after_root_call(
        self, request: InternalRequest, response: ResponseCapture, latency_ms: int
    ) -> None:
        endpoint: Optional[StatefulEndpoint] = request.locals.get("stateful_endpoint")
        project_id = request.locals.get("project_id")
        log = None
        if self.log_writer is not None and project_id is not None:
            origin = self.store.get_endpoint(endpoint.endpoint_id) if endpoint else None
            log = await self.log_writer.write(
                project_id=project_id,
                method=request.method,
                path=request.original_url,
                endpoint_id=endpoint.endpoint_id if endpoint else None,
                stateful_endpoint_id=endpoint.id if endpoint else None,
                user_id=request.user_id,
                request_headers=request.headers,
                request_body=request.body,
                status_code=response.status_code,
                response_body=response.body,
                ip_address=request.client_ip,
                latency_ms=latency_ms,
                notify=bool(origin and origin.send_notification),
            )

        if endpoint is None or self.chain_runner is None or request.flags.suppress_next_calls:
            return
        plan = build_plan(endpoint.advanced_config)
        if not plan:
            return

        user_id = request.user_id
        user = request.user or ({"id": user_id} if user_id else None)
        meta = request.universal
        root = build_root_context(
            method=request.method,
            path=request.original_url,
            headers=request.headers,
            body=request.body,
            query=request.query,
            status=response.status_code,
            response_body=response.body,
            workspace=meta.workspace_name,
            project=meta.project_name,
            project_id=project_id,
            user=user,
            log_id=log.id if log is not None else None,
        )
        run = self.chain_runner.run_plan(plan, root, user=user)
        if self.inline_chains:
            await run
            return
        task = asyncio.create_task(run)
        self._chain_tasks.add(task)
        task.add_done_callback(self._chain_finished)

    def _chain_finished(self, task: asyncio.Task) -> None:
        self._chain_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("chain_run_crashed", error=str(exc))


class _CrudOperation:
    """One CRUD call against a loaded item collection."""

    def __init__(
        self,
        handler: StatefulRequestHandler,
        request: InternalRequest,
        response: ResponseCapture,
        endpoint: StatefulEndpoint,
        responses: List[StatefulResponse],
        coll_name: str,
        items: List[Dict[str, Any]],
        user_id: Optional[str],
    ) -> None:
        self.handler = handler
        self.store = handler.store
        self.request = request
        self.response = response
        self.endpoint = endpoint
        self.responses = responses
        self.coll_name = coll_name
        self.items = items
        self.user_id = user_id
        self.schema = endpoint.schema or {}

    def _pick(self, status: int, name: Optional[str]) -> Optional[StatefulResponse]:
        by_status = [r for r in self.responses if r.status_code == status]
        if name:
            for candidate in by_status:
                if candidate.name.lower() == name.lower():
                    return candidate
        return by_status[0] if by_status else None

    async def _reply(
        self,
        status: int,
        *,
        name: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Any = None,
        fallback: str = "",
        error: Optional[str] = None,
    ) -> None:
        configured = self._pick(status, name)
        template = configured.response_body if configured else {"message": fallback or f"HTTP {status}"}
        scope = {
            "params": params or {},
            "user": {"id": self.user_id},
            "body": self.request.body,
        }
        rendered = render_with_scope(copy.deepcopy(template), scope)
        body: Dict[str, Any] = rendered if isinstance(rendered, dict) else {}
        if data is not None:
            body["data"] = data
        if error:
            body["error"] = error
        if configured is not None and configured.delay_ms > 0:
            limit = get_settings().chain_max_delay_ms
            await asyncio.sleep(min(configured.delay_ms, limit) / 1000.0)
        self.response.status(status).json(body)

    def _save(self, items: List[Dict[str, Any]]) -> None:
        self.store.save_current_items(self.coll_name, items)

    async def read(self, item_id: Optional[str]) -> None:
        if item_id is None:
            await self._reply(200, name="Get All Success", data=self.items)
            return
        index = _find_index(self.items, item_id)
        if index < 0:
            await self._reply(
                404,
                name="Get Detail Not Found",
                params={"id": item_id},
                fallback=f"Item {item_id} not found.",
            )
            return
        await self._reply(
            200, name="Get Detail Success", params={"id": item_id}, data=self.items[index]
        )

    async def create(self) -> None:
        payload = self.request.body
        if not isinstance(payload, dict):
            await self._reply(
                400,
                name="Schema Invalid",
                fallback="Invalid data.",
                error="Request body must be a JSON object",
            )
            return
        problem = validate_item(payload, self.schema)
        if problem:
            await self._reply(400, name="Schema Invalid", fallback="Invalid data.", error=problem)
            return

        new_item = dict(payload)
        if new_item.get("id") is None:
            new_item["id"] = _next_id(self.items)
        if _find_index(self.items, new_item["id"]) >= 0:
            await self._reply(
                409, name="ID Conflict", params={"id": new_item["id"]}, fallback="Conflict."
            )
            return
        if self.user_id is not None:
            new_item["user_id"] = _coerce_id(self.user_id)
        self._save(self.items + [new_item])
        await self._reply(
            201, name="Create Success", params={"id": new_item["id"]}, data=new_item
        )

    async def update(self, item_id: Optional[str]) -> None:
        if item_id is None:
            await self._reply(404, name="Not Found", fallback="Item id required.")
            return
        index = _find_index(self.items, item_id)
        if index < 0:
            await self._reply(
                404, name="Not Found", params={"id": item_id}, fallback=f"Item {item_id} not found."
            )
            return
        current = self.items[index]
        if _owner_conflict(current, self.user_id):
            await self._reply(403, params={"id": item_id}, fallback="Forbidden: not the owner.")
            return
        payload = self.request.body if self.request.body is not None else {}
        if not isinstance(payload, dict):
            await self._reply(
                400,
                name="Schema Invalid",
                params={"id": item_id},
                fallback="Invalid data.",
                error="Request body must be a JSON object",
            )
            return
        problem = validate_item(payload, self.schema, partial=True)
        if problem:
            await self._reply(
                400, name="Schema Invalid", params={"id": item_id}, fallback="Invalid data.", error=problem
            )
            return

        new_id = payload.get("id")
        if new_id is not None and id_key(new_id) != id_key(current.get("id")):
            if _find_index(self.items, new_id) >= 0:
                await self._reply(
                    409,
                    name="ID Conflict",
                    params={"id": item_id, "id_new": new_id},
                    fallback="Conflict.",
                )
                return

        updated = {**current, **payload}
        if "user_id" in current:
            updated["user_id"] = current["user_id"]
        items = list(self.items)
        items[index] = updated
        self._save(items)
        await self._reply(200, name="Update Success", params={"id": item_id}, data=updated)

    async def delete(self, item_id: Optional[str]) -> None:
        if item_id is None:
            caller = id_key(self.user_id)
            removed = [i for i in self.items if id_key(i.get("user_id")) == caller]
            kept = [i for i in self.items if id_key(i.get("user_id")) != caller]
            self._save(kept)
            await self._reply(200, name="Delete All Success", data=removed)
            return
        index = _find_index(self.items, item_id)
        if index < 0:
            await self._reply(
                404, name="Not Found", params={"id": item_id}, fallback=f"Item {item_id} not found."
            )
            return
        target = self.items[index]
        if _owner_conflict(target, self.user_id):
            await self._reply(403, params={"id": item_id}, fallback="Forbidden: not the owner.")
            return
        self._save(self.items[:index] + self.items[index + 1 :])
        await self._reply(200, name="Delete Success", params={"id": item_id}, data=target)


__all__ = [
    "FULL_ROUTE_REQUIRED",
    "StatefulRequestHandler",
    "id_key",
    "item_json_schema",
    "validate_item",
]
