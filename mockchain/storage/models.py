from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class Workspace:
    id: int
    name: str
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Project:
    id: int
    workspace_id: int
    name: str
    description: Optional[str] = None
    ws_global_enabled: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Folder:
    id: int
    project_id: int
    name: str
    is_public: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Endpoint:
    """Origin endpoint as managed by the project UI (stateless by default)."""

    id: int
    folder_id: int
    name: str
    method: str
    path: str
    is_stateful: bool = False
    is_active: bool = True
    send_notification: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class StatefulEndpoint:
    """CRUD-backed implementation attached to an origin endpoint.

    ``advanced_config`` holds the ordered chained-call configuration, either
    a list of step dicts or an object with a ``nextCalls`` list.
    """

    id: int
    endpoint_id: int
    folder_id: int
    method: str
    path: str
    is_active: bool = True
    schema: Dict[str, Any] = field(default_factory=dict)
    advanced_config: Any = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def next_calls_config(self) -> List[Any]:
        cfg = self.advanced_config
        if isinstance(cfg, list):
            return cfg
        if isinstance(cfg, dict):
            steps = cfg.get("nextCalls", cfg.get("next_calls"))
            if isinstance(steps, list):
                return steps
        return []


@dataclass
class StatefulResponse:
    id: int
    endpoint_id: int
    name: str
    status_code: int
    response_body: Any = None
    delay_ms: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ItemCollection:
    """Schemaless item data of one stateful path inside one project."""

    collection: str
    data_default: List[Dict[str, Any]] = field(default_factory=list)
    data_current: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class RequestLog:
    id: int
    project_id: Optional[int]
    request_method: str
    request_path: str
    endpoint_id: Optional[int] = None
    stateful_endpoint_id: Optional[int] = None
    user_id: Optional[str] = None
    request_headers: Dict[str, Any] = field(default_factory=dict)
    request_body: Any = None
    response_status_code: Optional[int] = None
    response_body: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    latency_ms: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Notification:
    id: int
    project_request_log_id: int
    endpoint_id: Optional[int]
    user_id: Optional[str]
    is_stateful: bool = False
    is_read: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


def collection_name(path: str, workspace: str, project: str) -> str:
    """Item collection key: ``users.WS.PJ`` for ``/users`` in workspace WS, project PJ."""

    base = (path or "").strip().strip("/")
    if not base:
        raise ValueError("Invalid path for item collection.")
    return f"{base}.{workspace}.{project}"
