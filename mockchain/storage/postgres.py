from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from mockchain.logging import get_logger
from mockchain.storage.common import default_responses, normalize_method, parse_jsonb
from mockchain.storage.errors import ConstraintViolation
from mockchain.storage.memory import DEFAULT_LOG_PAGE_SIZE, MAX_LOG_PAGE_SIZE
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


_SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id SERIAL PRIMARY KEY,
        workspace_id INTEGER NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT,
        websocket_enabled BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (workspace_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS folders (
        id SERIAL PRIMARY KEY,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        is_public BOOLEAN NOT NULL DEFAULT true,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoints (
        id SERIAL PRIMARY KEY,
        folder_id INTEGER NOT NULL REFERENCES folders(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        method TEXT NOT NULL,
        path TEXT NOT NULL,
        is_stateful BOOLEAN NOT NULL DEFAULT false,
        is_active BOOLEAN NOT NULL DEFAULT true,
        send_notification BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoints_ful (
        id SERIAL PRIMARY KEY,
        origin_id INTEGER NOT NULL UNIQUE REFERENCES endpoints(id) ON DELETE CASCADE,
        folder_id INTEGER NOT NULL REFERENCES folders(id) ON DELETE CASCADE,
        method TEXT NOT NULL,
        path TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT true,
        schema JSONB NOT NULL DEFAULT '{}'::jsonb,
        advanced_config JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_responses_ful (
        id SERIAL PRIMARY KEY,
        endpoint_id INTEGER NOT NULL REFERENCES endpoints_ful(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        status_code INTEGER NOT NULL,
        response_body JSONB,
        delay_ms INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_data_ful (
        collection TEXT PRIMARY KEY,
        data_default JSONB NOT NULL DEFAULT '[]'::jsonb,
        data_current JSONB NOT NULL DEFAULT '[]'::jsonb,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_request_logs (
        id SERIAL PRIMARY KEY,
        project_id INTEGER REFERENCES projects(id) ON DELETE SET NULL,
        endpoint_id INTEGER,
        stateful_endpoint_id INTEGER,
        user_id TEXT,
        request_method TEXT NOT NULL,
        request_path TEXT NOT NULL,
        request_headers JSONB NOT NULL DEFAULT '{}'::jsonb,
        request_body JSONB,
        response_status_code INTEGER,
        response_body JSONB NOT NULL DEFAULT '{}'::jsonb,
        ip_address TEXT,
        latency_ms INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id SERIAL PRIMARY KEY,
        project_request_log_id INTEGER NOT NULL REFERENCES project_request_logs(id) ON DELETE CASCADE,
        endpoint_id INTEGER,
        user_id TEXT,
        is_stateful BOOLEAN NOT NULL DEFAULT false,
        is_read BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
]


class PostgresStore:
    """Postgres-backed store with the same surface as :class:`MemoryStore`."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA_SQL:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready", tables=len(_SCHEMA_SQL))

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # -- row mappers ---------------------------------------------------------

    @staticmethod
    def _stateful_from_row(row: Dict[str, Any]) -> StatefulEndpoint:
        return StatefulEndpoint(
            id=row["id"],
            endpoint_id=row["origin_id"],
            folder_id=row["folder_id"],
            method=row["method"],
            path=row["path"],
            is_active=row["is_active"],
            schema=parse_jsonb(row.get("schema")) or {},
            advanced_config=parse_jsonb(row.get("advanced_config")),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _log_from_row(row: Dict[str, Any]) -> RequestLog:
        return RequestLog(
            id=row["id"],
            project_id=row.get("project_id"),
            endpoint_id=row.get("endpoint_id"),
            stateful_endpoint_id=row.get("stateful_endpoint_id"),
            user_id=row.get("user_id"),
            request_method=row["request_method"],
            request_path=row["request_path"],
            request_headers=parse_jsonb(row.get("request_headers")) or {},
            request_body=parse_jsonb(row.get("request_body")),
            response_status_code=row.get("response_status_code"),
            response_body=parse_jsonb(row.get("response_body")) or {},
            ip_address=row.get("ip_address"),
            latency_ms=row.get("latency_ms") or 0,
            created_at=row["created_at"],
        )

    # -- workspaces / projects / folders / endpoints -------------------------

    def create_workspace(self, name: str) -> Workspace:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "INSERT INTO workspaces (name) VALUES (%s) RETURNING *", (name,)
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("workspace name exists", {"name": name})
        return Workspace(id=row["id"], name=row["name"], created_at=row["created_at"])

    def get_workspace(self, workspace_id: int) -> Optional[Workspace]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workspaces WHERE id = %s", (workspace_id,)
            ).fetchone()
        if not row:
            return None
        return Workspace(id=row["id"], name=row["name"], created_at=row["created_at"])

    def create_project(
        self,
        workspace_id: int,
        name: str,
        *,
        description: Optional[str] = None,
        ws_global_enabled: bool = False,
    ) -> Project:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO projects (workspace_id, name, description, websocket_enabled)
                    VALUES (%s, %s, %s, %s) RETURNING *
                    """,
                    (workspace_id, name, description, ws_global_enabled),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("workspace missing", {"workspace_id": workspace_id})
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "project name exists", {"workspace_id": workspace_id, "name": name}
            )
        return self._project_from_row(row)

    @staticmethod
    def _project_from_row(row: Dict[str, Any]) -> Project:
        return Project(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            description=row.get("description"),
            ws_global_enabled=bool(row.get("websocket_enabled")),
            created_at=row["created_at"],
        )

    def get_project(self, project_id: int) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = %s", (project_id,)).fetchone()
        return self._project_from_row(row) if row else None

    def create_folder(self, project_id: int, name: str, *, is_public: bool = True) -> Folder:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "INSERT INTO folders (project_id, name, is_public) VALUES (%s, %s, %s) RETURNING *",
                    (project_id, name, is_public),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("project missing", {"project_id": project_id})
        return Folder(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            is_public=row["is_public"],
            created_at=row["created_at"],
        )

    def get_folder(self, folder_id: int) -> Optional[Folder]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM folders WHERE id = %s", (folder_id,)).fetchone()
        if not row:
            return None
        return Folder(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            is_public=row["is_public"],
            created_at=row["created_at"],
        )

    def create_endpoint(
        self,
        folder_id: int,
        name: str,
        method: str,
        path: str,
        *,
        send_notification: bool = False,
    ) -> Endpoint:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO endpoints (folder_id, name, method, path, send_notification)
                    VALUES (%s, %s, %s, %s, %s) RETURNING *
                    """,
                    (folder_id, name, normalize_method(method), path, send_notification),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("folder missing", {"folder_id": folder_id})
        return self._endpoint_from_row(row)

    @staticmethod
    def _endpoint_from_row(row: Dict[str, Any]) -> Endpoint:
        return Endpoint(
            id=row["id"],
            folder_id=row["folder_id"],
            name=row["name"],
            method=row["method"],
            path=row["path"],
            is_stateful=row["is_stateful"],
            is_active=row["is_active"],
            send_notification=row["send_notification"],
            created_at=row["created_at"],
        )

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM endpoints WHERE id = %s", (endpoint_id,)).fetchone()
        return self._endpoint_from_row(row) if row else None

    def make_stateful(
        self,
        endpoint_id: int,
        *,
        schema: Optional[Dict[str, Any]] = None,
        advanced_config: Any = None,
    ) -> StatefulEndpoint:
        endpoint = self.get_endpoint(endpoint_id)
        if not endpoint:
            raise ConstraintViolation("endpoint missing", {"endpoint_id": endpoint_id})
        existing = self.find_stateful_by_origin(endpoint_id)
        with self._connect() as conn:
            if existing:
                conn.execute("UPDATE endpoints_ful SET is_active = true WHERE id = %s", (existing.id,))
                conn.execute("UPDATE endpoints SET is_stateful = true WHERE id = %s", (endpoint_id,))
                existing.is_active = True
                return existing
            row = conn.execute(
                """
                INSERT INTO endpoints_ful (origin_id, folder_id, method, path, schema, advanced_config)
                VALUES (%s, %s, %s, %s, %s, %s) RETURNING *
                """,
                (
                    endpoint.id,
                    endpoint.folder_id,
                    endpoint.method,
                    endpoint.path,
                    json.dumps(schema or {}),
                    json.dumps(advanced_config) if advanced_config is not None else None,
                ),
            ).fetchone()
            conn.execute("UPDATE endpoints SET is_stateful = true WHERE id = %s", (endpoint_id,))
            for item in default_responses(endpoint.method, endpoint.path):
                conn.execute(
                    """
                    INSERT INTO endpoint_responses_ful (endpoint_id, name, status_code, response_body)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (row["id"], item["name"], item["status_code"], json.dumps(item["response_body"])),
                )
        names = self.project_names_for_folder(endpoint.folder_id)
        if names:
            key = collection_name(endpoint.path, *names)
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO endpoint_data_ful (collection) VALUES (%s) ON CONFLICT DO NOTHING",
                    (key,),
                )
        return self._stateful_from_row(row)

    def revert_to_stateless(self, endpoint_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE endpoints_ful SET is_active = false WHERE origin_id = %s", (endpoint_id,)
            )
            conn.execute("UPDATE endpoints SET is_stateful = false WHERE id = %s", (endpoint_id,))
        return bool(cur.rowcount)

    def project_names_for_folder(self, folder_id: int) -> Optional[Tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT w.name AS workspace_name, p.name AS project_name
                FROM folders f
                JOIN projects p ON p.id = f.project_id
                JOIN workspaces w ON w.id = p.workspace_id
                WHERE f.id = %s
                """,
                (folder_id,),
            ).fetchone()
        if not row:
            return None
        return row["workspace_name"], row["project_name"]

    # -- resolution ----------------------------------------------------------

    def find_project_by_names(self, workspace_name: str, project_name: str) -> Optional[Project]:
        if not workspace_name or not project_name:
            return None
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT p.* FROM projects p
                JOIN workspaces w ON w.id = p.workspace_id
                WHERE lower(w.name) = lower(%s) AND lower(p.name) = lower(%s)
                LIMIT 1
                """,
                (workspace_name, project_name),
            ).fetchone()
        return self._project_from_row(row) if row else None

    def list_active_stateful_endpoints(self, method: str, path: str) -> List[StatefulEndpoint]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM endpoints_ful
                WHERE is_active = true AND upper(method) = %s AND path = %s
                ORDER BY id
                """,
                (normalize_method(method), path),
            ).fetchall()
        return [self._stateful_from_row(row) for row in rows]

    def endpoint_belongs_to_project(
        self, endpoint_id: int, workspace_name: str, project_name: str
    ) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM endpoints e
                JOIN folders f ON f.id = e.folder_id
                JOIN projects p ON p.id = f.project_id
                JOIN workspaces w ON w.id = p.workspace_id
                WHERE e.id = %s AND lower(w.name) = lower(%s) AND lower(p.name) = lower(%s)
                LIMIT 1
                """,
                (endpoint_id, workspace_name or "", project_name or ""),
            ).fetchone()
        return bool(row)

    def find_stateful_endpoint(
        self, project_id: int, method: str, path: str
    ) -> Optional[StatefulEndpoint]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT ef.* FROM endpoints_ful ef
                JOIN folders f ON f.id = ef.folder_id
                WHERE f.project_id = %s AND ef.is_active = true
                  AND upper(ef.method) = %s AND ef.path = %s
                ORDER BY ef.id
                LIMIT 1
                """,
                (project_id, normalize_method(method), path),
            ).fetchone()
        return self._stateful_from_row(row) if row else None

    def find_stateful_by_origin(self, endpoint_id: int) -> Optional[StatefulEndpoint]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM endpoints_ful WHERE origin_id = %s", (endpoint_id,)
            ).fetchone()
        return self._stateful_from_row(row) if row else None

    def get_stateful_endpoint(self, stateful_id: int) -> Optional[StatefulEndpoint]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM endpoints_ful WHERE id = %s", (stateful_id,)
            ).fetchone()
        return self._stateful_from_row(row) if row else None

    def set_advanced_config(self, stateful_id: int, config: Any) -> Optional[StatefulEndpoint]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE endpoints_ful SET advanced_config = %s, updated_at = now()
                WHERE id = %s RETURNING *
                """,
                (json.dumps(config) if config is not None else None, stateful_id),
            ).fetchone()
        return self._stateful_from_row(row) if row else None

    def set_schema(self, stateful_id: int, schema: Dict[str, Any]) -> Optional[StatefulEndpoint]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE endpoints_ful SET schema = %s, updated_at = now() WHERE id = %s RETURNING *",
                (json.dumps(schema), stateful_id),
            ).fetchone()
        return self._stateful_from_row(row) if row else None

    def list_stateful_responses(self, stateful_id: int) -> List[StatefulResponse]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM endpoint_responses_ful WHERE endpoint_id = %s ORDER BY id",
                (stateful_id,),
            ).fetchall()
        return [
            StatefulResponse(
                id=row["id"],
                endpoint_id=row["endpoint_id"],
                name=row["name"],
                status_code=row["status_code"],
                response_body=parse_jsonb(row.get("response_body")),
                delay_ms=row.get("delay_ms") or 0,
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def is_folder_public(self, folder_id: int) -> bool:
        folder = self.get_folder(folder_id)
        return bool(folder and folder.is_public)

    # -- item collections ----------------------------------------------------

    @staticmethod
    def _collection_from_row(row: Dict[str, Any]) -> ItemCollection:
        return ItemCollection(
            collection=row["collection"],
            data_default=parse_jsonb(row.get("data_default")) or [],
            data_current=parse_jsonb(row.get("data_current")) or [],
            updated_at=row["updated_at"],
        )

    def get_item_collection(self, name: str) -> Optional[ItemCollection]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM endpoint_data_ful WHERE collection = %s", (name,)
            ).fetchone()
        return self._collection_from_row(row) if row else None

    def seed_items(self, name: str, data_default: List[Dict[str, Any]]) -> ItemCollection:
        payload = json.dumps(list(data_default))
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO endpoint_data_ful (collection, data_default, data_current)
                VALUES (%s, %s, %s)
                ON CONFLICT (collection) DO UPDATE
                SET data_default = EXCLUDED.data_default,
                    data_current = EXCLUDED.data_current,
                    updated_at = now()
                RETURNING *
                """,
                (name, payload, payload),
            ).fetchone()
        return self._collection_from_row(row)

    def save_current_items(self, name: str, items: List[Dict[str, Any]]) -> ItemCollection:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO endpoint_data_ful (collection, data_current)
                VALUES (%s, %s)
                ON CONFLICT (collection) DO UPDATE
                SET data_current = EXCLUDED.data_current, updated_at = now()
                RETURNING *
                """,
                (name, json.dumps(list(items))),
            ).fetchone()
        return self._collection_from_row(row)

    def reset_items(self, name: str) -> Optional[ItemCollection]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE endpoint_data_ful SET data_current = data_default, updated_at = now()
                WHERE collection = %s RETURNING *
                """,
                (name,),
            ).fetchone()
        return self._collection_from_row(row) if row else None

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
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO project_request_logs (
                    project_id, endpoint_id, stateful_endpoint_id, user_id,
                    request_method, request_path, request_headers, request_body,
                    response_status_code, response_body, ip_address, latency_ms
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    project_id,
                    endpoint_id,
                    stateful_endpoint_id,
                    user_id,
                    request_method,
                    request_path,
                    json.dumps(request_headers or {}),
                    json.dumps(request_body if request_body is not None else {}),
                    response_status_code,
                    json.dumps(response_body or {}),
                    ip_address,
                    max(0, int(latency_ms or 0)),
                ),
            ).fetchone()
        return self._log_from_row(row)

    def get_request_log(self, log_id: int) -> Optional[RequestLog]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_request_logs WHERE id = %s", (log_id,)
            ).fetchone()
        return self._log_from_row(row) if row else None

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
        clauses: List[str] = []
        params: List[Any] = []
        if project_id is not None:
            clauses.append("project_id = %s")
            params.append(project_id)
        if method:
            clauses.append("upper(request_method) = %s")
            params.append(method.upper())
        if status_code is not None:
            clauses.append("response_status_code = %s")
            params.append(status_code)
        if stateful_endpoint_id is not None:
            clauses.append("stateful_endpoint_id = %s")
            params.append(stateful_endpoint_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) AS count FROM project_request_logs {where}", params
            ).fetchone()
            rows = conn.execute(
                f"SELECT * FROM project_request_logs {where} ORDER BY id DESC LIMIT %s OFFSET %s",
                [*params, limit, offset],
            ).fetchall()
        return int(count_row["count"]), [self._log_from_row(row) for row in rows]

    def create_notification(
        self,
        project_request_log_id: int,
        *,
        endpoint_id: Optional[int],
        user_id: Optional[str],
        is_stateful: bool,
    ) -> Notification:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO notifications (project_request_log_id, endpoint_id, user_id, is_stateful)
                    VALUES (%s, %s, %s, %s) RETURNING *
                    """,
                    (project_request_log_id, endpoint_id, user_id, is_stateful),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "request log missing", {"project_request_log_id": project_request_log_id}
            )
        return self._notification_from_row(row)

    @staticmethod
    def _notification_from_row(row: Dict[str, Any]) -> Notification:
        return Notification(
            id=row["id"],
            project_request_log_id=row["project_request_log_id"],
            endpoint_id=row.get("endpoint_id"),
            user_id=row.get("user_id"),
            is_stateful=row["is_stateful"],
            is_read=row["is_read"],
            created_at=row["created_at"],
        )

    def list_notifications(self, user_id: Optional[str] = None) -> List[Notification]:
        with self._connect() as conn:
            if user_id is None:
                rows = conn.execute("SELECT * FROM notifications ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM notifications WHERE user_id = %s ORDER BY id", (user_id,)
                ).fetchall()
        return [self._notification_from_row(row) for row in rows]
