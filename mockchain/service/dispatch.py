from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from mockchain.logging import get_logger
from mockchain.service.templating import stringify

logger = get_logger(__name__)

# hop-by-hop and length headers are recomputed per request
HEADER_BLOCKLIST = frozenset(
    {"content-length", "host", "connection", "accept-encoding", "transfer-encoding"}
)

USER_ID_HEADER = "x-mock-user-id"


class ExternalDispatchError(Exception):
    """Raised when an external chained call cannot complete."""


def merge_headers(
    base: Optional[Mapping[str, Any]], overrides: Optional[Mapping[str, Any]] = None
) -> Dict[str, str]:
    """Case-insensitive merge with lower-cased keys; ``overrides`` win.

    Keys from :data:`HEADER_BLOCKLIST` and ``None`` values are dropped.
    """
    merged: Dict[str, str] = {}
    for source in (base or {}, overrides or {}):
        for key, value in source.items():
            if not isinstance(key, str):
                continue
            lower = key.strip().lower()
            if not lower or lower in HEADER_BLOCKLIST or value is None:
                continue
            merged[lower] = stringify(value)
    return merged


class ResponseCapture:
    """Collects what the stateful handler writes instead of sending it."""

    def __init__(self) -> None:
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.body: Any = None
        self.finished = False

    def status(self, code: int) -> "ResponseCapture":
        self.status_code = int(code)
        return self

    def set(self, key: str, value: Any) -> "ResponseCapture":
        self.headers[str(key).lower()] = str(value)
        return self

    set_header = set

    def json(self, body: Any) -> "ResponseCapture":
        self.headers.setdefault("content-type", "application/json")
        self.body = body
        self.finished = True
        return self

    def send(self, body: Any = None) -> "ResponseCapture":
        self.body = body
        self.finished = True
        return self

    def to_json(self) -> Dict[str, Any]:
        return {"status": self.status_code, "headers": dict(self.headers), "body": self.body}


@dataclass
class RouteMeta:
    """Routing metadata attached to a request for the stateful handler."""

    method: str
    workspace_name: Optional[str] = None
    project_name: Optional[str] = None
    project_id: Optional[int] = None
    base_path: str = "/"
    raw_path: str = "/"
    sub_path: str = ""
    stateful_id: Optional[int] = None
    stateless_id: Optional[int] = None
    id_in_url: Optional[str] = None


@dataclass(frozen=True)
class RequestFlags:
    is_next_call: bool = False
    suppress_next_calls: bool = False


# every in-process chained dispatch carries these flags
NEXT_CALL_FLAGS = RequestFlags(is_next_call=True, suppress_next_calls=True)


@dataclass
class InternalRequest:
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    base_url: str = "/"
    original_url: str = "/"
    universal: RouteMeta = field(default_factory=lambda: RouteMeta(method="GET"))
    flags: RequestFlags = field(default_factory=RequestFlags)
    user: Optional[Dict[str, Any]] = None
    client_ip: Optional[str] = None
    query: Dict[str, str] = field(default_factory=dict)
    locals: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        if isinstance(self.user, dict) and self.user.get("id") is not None:
            return str(self.user["id"])
        header = self.headers.get(USER_ID_HEADER)
        return header or None


def decode_body(raw: bytes | str | None) -> Any:
    """JSON when it parses, text otherwise."""
    if raw is None:
        return None
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class ExternalFetcher:
    """Issues external chained calls with httpx."""

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect_timeout: float = 5.0,
        total_timeout: Optional[float] = None,
    ) -> None:
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.total_timeout = total_timeout

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> Dict[str, Any]:
        method = method.upper()
        kwargs: Dict[str, Any] = {"headers": headers or {}}
        if method not in ("GET", "HEAD") and body is not None:
            if isinstance(body, (str, bytes)):
                kwargs["content"] = body
            else:
                kwargs["content"] = json.dumps(body, default=str)
        timeout = httpx.Timeout(self.total_timeout, connect=self.connect_timeout)
        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=timeout, follow_redirects=False
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ExternalDispatchError(f"external call timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise ExternalDispatchError(f"external call failed: {exc}") from exc
        return {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": decode_body(response.content),
        }


def _pick_id(candidate: Any) -> Any:
    if isinstance(candidate, dict):
        for key in ("id", "_id"):
            value = candidate.get(key)
            if value is not None and value != "":
                return value
    return None


def infer_item_id(payload: Any, prev_body: Any) -> Optional[str]:
    """Item id for a PUT/DELETE/PATCH step whose path has none.

    Looks at the rendered payload first, then at the previous step's body
    (``id``/``_id``, then the last element of ``data_current``, ``data`` or a
    top-level list).
    """
    found = _pick_id(payload)
    if found is None:
        found = _pick_id(prev_body)
    if found is None:
        collection: Any = None
        if isinstance(prev_body, dict):
            for key in ("data_current", "data"):
                if isinstance(prev_body.get(key), list):
                    collection = prev_body[key]
                    break
            if collection is None and isinstance(prev_body.get("data"), dict):
                found = _pick_id(prev_body["data"])
        elif isinstance(prev_body, list):
            collection = prev_body
        if collection:
            found = _pick_id(collection[-1])
    return None if found is None else str(found)


__all__ = [
    "ExternalDispatchError",
    "ExternalFetcher",
    "HEADER_BLOCKLIST",
    "InternalRequest",
    "NEXT_CALL_FLAGS",
    "RequestFlags",
    "ResponseCapture",
    "RouteMeta",
    "USER_ID_HEADER",
    "decode_body",
    "infer_item_id",
    "merge_headers",
]
