from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mockchain.logging import get_logger
from mockchain.storage.common import default_responses, normalize_method
from mockchain.storage.errors import ConstraintViolation
from mockchain.storage.models import (
    Endpoint,
    Folder,
    ItemCollection,
    Notification,
    Project,
    RequestLog,
    StatefulEndpoint,
    StatefulResponse,
    Workspace,
    collection_name,
)

MAX_LOG_PAGE_SIZE = 500
DEFAULT_LOG_PAGE_SIZE = 100


class MemoryStore:
    """In-memory backing store for tests and local development.

    Holds both sides of the platform: the relational metadata (workspaces,
    projects, folders, endpoints, responses, request logs) and the
    schemaless item collections of stateful endpoints.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.workspaces: Dict[int, Workspace] = {}
        self.projects: Dict[int, Project] = {}
        self.folders: Dict[int, Folder] = {}
        self.endpoints: Dict[int, Endpoint] = {}
        self.stateful_endpoints: Dict[int, StatefulEndpoint] = {}
        self.stateful_responses: Dict[int, List[StatefulResponse]] = {}
        self.collections: Dict[str, ItemCollection] = {}
        self.request_logs: Dict[int, RequestLog] = {}
        self.notifications: Dict[int, Notification] = {}
        self._seq: Dict[str, int] = {}
        self._seq_lock = threading.Lock()
        # RLock so store methods may call each other
        self._data_lock = threading.RLock()

    def _next_id(self, kind: str) -> int:
        with self._seq_lock:
            value = self._seq.get(kind, 0) + 1
            self._seq[kind] = value
            return value

    # -- workspaces / projects / folders / endpoints -------------------------

    def create_workspace(self, name: str) -> Workspace:
        with self._data_lock:
            if any(ws.name.lower() == name.lower() for ws in self.workspaces.values()):
                raise ConstraintViolation("workspace name exists", {"name": name})
            ws = Workspace(id=self._next_id("workspace"), name=name)
            self.workspaces[ws.id] = ws
            return ws

    def get_workspace(self, workspace_id: int) -> Optional[Workspace]:
        return self.workspaces.get(workspace_id)

    def create_project(
        self,
        workspace_id: int,
        name: str,
        *,
        description: Optional[str] = None,
        ws_global_enabled: bool = False,
    ) -> Project:
        with self._data_lock:
            if workspace_id not in self.workspaces:
                raise ConstraintViolation("workspace missing", {"workspace_id": workspace_id})
            if any(
                p.workspace_id == workspace_id and p.name.lower() == name.lower()
                for p in self.projects.values()
            ):
                raise ConstraintViolation(
                    "project name exists", {"workspace_id": workspace_id, "name": name}
                )
            project = Project(
                id=self._next_id("project"),
                workspace_id=workspace_id,
                name=name,
                description=description,
                ws_global_enabled=ws_global_enabled,
            )
            self.projects[project.id] = project
            return project

    def get_project(self, project_id: int) -> Optional[Project]:
        return self.projects.get(project_id)

    def create_folder(self, project_id: int, name: str, *, is_public: bool = True) -> Folder:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation("project missing", {"project_id": project_id})
            folder = Folder(
                id=self._next_id("folder"),
                project_id=project_id,
                name=name,
                is_public=is_public,
            )
            self.folders[folder.id] = folder
            return folder

    def get_folder(self, folder_id: int) -> Optional[Folder]:
        return self.folders.get(folder_id)

    def create_endpoint(
        self,
        folder_id: int,
        name: str,
        method: str,
        path: str,
        *,
        send_notification: bool = False,
    ) -> Endpoint:
        with self._data_lock:
            if folder_id not in self.folders:
                raise ConstraintViolation("folder missing", {"folder_id": folder_id})
            endpoint = Endpoint(
                id=self._next_id("endpoint"),
                folder_id=folder_id,
                name=name,
                method=normalize_method(method),
                path=path,
                send_notification=send_notification,
            )
            self.endpoints[endpoint.id] = endpoint
            return endpoint

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        return self.endpoints.get(endpoint_id)

    def make_stateful(
        self,
        endpoint_id: int,
        *,
        schema: Optional[Dict[str, Any]] = None,
        advanced_config: Any = None,
    ) -> StatefulEndpoint:
        """Attach a stateful implementation, default responses and an empty collection."""
        with self._data_lock:
            endpoint = self.endpoints.get(endpoint_id)
            if not endpoint:
                raise ConstraintViolation("endpoint missing", {"endpoint_id": endpoint_id})
            existing = self.find_stateful_by_origin(endpoint_id)
            if existing:
                existing.is_active = True
                endpoint.is_stateful = True
                return existing
            stateful = StatefulEndpoint(
                id=self._next_id("stateful_endpoint"),
                endpoint_id=endpoint.id,
                folder_id=endpoint.folder_id,
                method=endpoint.method,
                path=endpoint.path,
                schema=dict(schema or {}),
                advanced_config=copy.deepcopy(advanced_config),
            )
            self.stateful_endpoints[stateful.id] = stateful
            endpoint.is_stateful = True
            self.stateful_responses[stateful.id] = [
                StatefulResponse(
                    id=self._next_id("stateful_response"),
                    endpoint_id=stateful.id,
                    name=item["name"],
                    status_code=item["status_code"],
                    response_body=item["response_body"],
                )
                for item in default_responses(stateful.method, stateful.path)
            ]
            names = self.project_names_for_folder(endpoint.folder_id)
            if names:
                key = collection_name(stateful.path, *names)
                self.collections.setdefault(key, ItemCollection(collection=key))
            return stateful

    def revert_to_stateless(self, endpoint_id: int) -> bool:
        with self._data_lock:
            stateful = self.find_stateful_by_origin(endpoint_id)
            if not stateful:
                return False
            stateful.is_active = False
            endpoint = self.endpoints.get(endpoint_id)
            if endpoint:
                endpoint.is_stateful = False
            return True

    def project_names_for_folder(self, folder_id: int) -> Optional[Tuple[str, str]]:
        folder = self.folders.get(folder_id)
        project = self.projects.get(folder.project_id) if folder else None
        workspace = self.workspaces.get(project.workspace_id) if project else None
        if not workspace or not project:
            return None
        return workspace.name, project.name

    # -- resolution ----------------------------------------------------------

    def find_project_by_names(self, workspace_name: str, project_name: str) -> Optional[Project]:
        if not workspace_name or not project_name:
            return None
        with self._data_lock:
            for project in self.projects.values():
                workspace = self.workspaces.get(project.workspace_id)
                if (
                    workspace
                    and workspace.name.lower() == workspace_name.lower()
                    and project.name.lower() == project_name.lower()
                ):
                    return project
        return None

    def list_active_stateful_endpoints(self, method: str, path: str) -> List[StatefulEndpoint]:
        method = normalize_method(method)
        with self._data_lock:
            return [
                ep
                for ep in sorted(self.stateful_endpoints.values(), key=lambda e: e.id)
                if ep.is_active and ep.method.upper() == method and ep.path == path
            ]

    def endpoint_belongs_to_project(
        self, endpoint_id: int, workspace_name: str, project_name: str
    ) -> bool:
        endpoint = self.endpoints.get(endpoint_id)
        if not endpoint:
            return False
        names = self.project_names_for_folder(endpoint.folder_id)
        if not names:
            return False
        return (
            names[0].lower() == (workspace_name or "").lower()
            and names[1].lower() == (project_name or "").lower()
        )

    def find_stateful_endpoint(
        self, project_id: int, method: str, path: str
    ) -> Optional[StatefulEndpoint]:
        for candidate in self.list_active_stateful_endpoints(method, path):
            folder = self.folders.get(candidate.folder_id)
            if folder and folder.project_id == project_id:
                return candidate
        return None

    def find_stateful_by_origin(self, endpoint_id: int) -> Optional[StatefulEndpoint]:
        for ep in self.stateful_endpoints.values():
            if ep.endpoint_id == endpoint_id:
                return ep
        return None

    def get_stateful_endpoint(self, stateful_id: int) -> Optional[StatefulEndpoint]:
        return self.stateful_endpoints.get(stateful_id)

    def set_advanced_config(self, stateful_id: int, config: Any) -> Optional[StatefulEndpoint]:
        with self._data_lock:
            stateful = self.stateful_endpoints.get(stateful_id)
            if not stateful:
                return None
            stateful.advanced_config = copy.deepcopy(config)
            stateful.updated_at = datetime.utcnow()
            return stateful

    def set_schema(self, stateful_id: int, schema: Dict[str, Any]) -> Optional[StatefulEndpoint]:
        with self._data_lock:
            stateful = self.stateful_endpoints.get(stateful_id)
            if not stateful:
                return None
            stateful.schema = dict(schema)
            stateful.updated_at = datetime.utcnow()
            return stateful

    def list_stateful_responses(self, stateful_id: int) -> List[StatefulResponse]:
        return list(self.stateful_responses.get(stateful_id, []))

    def is_folder_public(self, folder_id: int) -> bool:
        folder = self.folders.get(folder_id)
        return bool(folder and folder.is_public)

    # -- item collections ----------------------------------------------------

    def get_item_collection(self, name: str) -> Optional[ItemCollection]:
        with self._data_lock:
            found = self.collections.get(name)
            return copy.deepcopy(found) if found else None

    def seed_items(self, name: str, data_default: List[Dict[str, Any]]) -> ItemCollection:
        with self._data_lock:
            items = copy.deepcopy(list(data_default))
            coll = ItemCollection(
                collection=name,
                data_default=items,
                data_current=copy.deepcopy(items),
            )
            self.collections[name] = coll
            return copy.deepcopy(coll)

    def save_current_items(self, name: str, items: List[Dict[str, Any]]) -> ItemCollection:
        with self._data_lock:
            coll = self.collections.get(name)
            if coll is None:
                coll = ItemCollection(collection=name)
                self.collections[name] = coll
            coll.data_current = copy.deepcopy(list(items))
            coll.updated_at = datetime.utcnow()
            return copy.deepcopy(coll)

    def reset_items(self, name: str) -> Optional[ItemCollection]:
        with self._data_lock:
            coll = self.collections.get(name)
            if coll is None:
                return None
            coll.data_current = copy.deepcopy(coll.data_default)
            coll.updated_at = datetime.utcnow()
            return copy.deepcopy(coll)

    # -- request logs / notifications ----------------------------------------

    def insert_request_log(
        self,
        *,
        project_id: Optional[int],
        request_method: str,
        request_path: str,
        endpoint_id: Optional[int] = None,
        stateful_endpoint_id: Optional[int] = None,
        user_id: Optional[str] = None,
        request_headers: Optional[Dict[str, Any]] = None,
        request_body: Any = None,
        response_status_code: Optional[int] = None,
        response_body: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        latency_ms: int = 0,
    ) -> RequestLog:
        log = RequestLog(
            id=self._next_id("request_log"),
            project_id=project_id,
            endpoint_id=endpoint_id,
            stateful_endpoint_id=stateful_endpoint_id,
            user_id=user_id,
            request_method=request_method,
            request_path=request_path,
            request_headers=copy.deepcopy(request_headers or {}),
            request_body=copy.deepcopy(request_body if request_body is not None else {}),
            response_status_code=response_status_code,
            response_body=copy.deepcopy(response_body or {}),
            ip_address=ip_address,
            latency_ms=max(0, int(latency_ms or 0)),
        )
        with self._data_lock:
            self.request_logs[log.id] = log
        return log

    def get_request_log(self, log_id: int) -> Optional[RequestLog]:
        return self.request_logs.get(log_id)

    def list_request_logs(
        self,
        project_id: Optional[int] = None,
        *,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        stateful_endpoint_id: Optional[int] = None,
        limit: int = DEFAULT_LOG_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[int, List[RequestLog]]:
        limit = max(1, min(MAX_LOG_PAGE_SIZE, int(limit)))
        offset = max(0, int(offset))
        with self._data_lock:
            rows = [
                log
                for log in self.request_logs.values()
                if (project_id is None or log.project_id == project_id)
                and (method is None or log.request_method.upper() == method.upper())
                and (status_code is None or log.response_status_code == status_code)
                and (
                    stateful_endpoint_id is None
                    or log.stateful_endpoint_id == stateful_endpoint_id
                )
            ]
        rows.sort(key=lambda log: log.id, reverse=True)
        return len(rows), rows[offset : offset + limit]

    def create_notification(
        self,
        project_request_log_id: int,
        *,
        endpoint_id: Optional[int],
        user_id: Optional[str],
        is_stateful: bool,
    ) -> Notification:
        if project_request_log_id not in self.request_logs:
            raise ConstraintViolation(
                "request log missing", {"project_request_log_id": project_request_log_id}
            )
        notif = Notification(
            id=self._next_id("notification"),
            project_request_log_id=project_request_log_id,
            endpoint_id=endpoint_id,
            user_id=user_id,
            is_stateful=is_stateful,
        )
        with self._data_lock:
            self.notifications[notif.id] = notif
        return notif

    def list_notifications(self, user_id: Optional[str] = None) -> List[Notification]:
        return [
            n
            for n in sorted(self.notifications.values(), key=lambda n: n.id)
            if user_id is None or n.user_id == user_id
        ]
