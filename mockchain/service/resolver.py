from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from mockchain.logging import get_logger
from mockchain.service.plan import InternalTarget
from mockchain.storage.common import normalize_method, normalize_path

_ID_PLACEHOLDER_SUFFIX = re.compile(r"/:id$")
_NUMERIC_SEGMENT = re.compile(r"^(.*)/(\d+)$")


@dataclass(frozen=True)
class ResolvedTarget:
    method: str
    workspace_name: str
    project_name: str
    project_id: int
    # stateful implementation id and its origin endpoint id
    endpoint_id: int
    origin_id: int
    logical_path: str
    base_path: str
    sub_path: str = ""
    id_in_url: Optional[str] = None


def split_item_path(path: str) -> Tuple[str, Optional[str]]:
    """``/users/7`` -> (``/users``, ``"7"``); ``/users/:id`` -> (``/users``, None)."""
    clean = normalize_path(path)
    clean = _ID_PLACEHOLDER_SUFFIX.sub("", clean) or "/"
    match = _NUMERIC_SEGMENT.match(clean)
    if match and match.group(1):
        return match.group(1), match.group(2)
    return clean, None


class TargetResolver:
    """Maps an internal step target onto a stateful endpoint implementation."""

    def __init__(self, store: Any) -> None:
        self.store = store
        self.logger = get_logger(__name__)

    def resolve(
        self,
        target: InternalTarget,
        *,
        default_workspace: Optional[str] = None,
        default_project: Optional[str] = None,
        logical_path: Optional[str] = None,
    ) -> Optional[ResolvedTarget]:
        """Find the implementation for ``target`` or return ``None``.

        ``logical_path`` overrides the target's own path, typically the path
        after template rendering. Lookup is by project name pair first, then by
        method and collection path among active implementations, keeping only
        the candidate whose origin endpoint lives in that project.
        """
        workspace = target.workspace or default_workspace
        project_name = target.project or default_project
        raw_path = logical_path if logical_path is not None else target.logical_path
        if not workspace or not project_name or not raw_path:
            self.logger.info(
                "chain_target_unroutable",
                workspace=workspace,
                project=project_name,
                path=raw_path,
            )
            return None

        base_path, id_in_url = split_item_path(raw_path)
        method = normalize_method(target.method)

        project = self.store.find_project_by_names(workspace, project_name)
        if not project:
            self.logger.info(
                "chain_target_project_missing", workspace=workspace, project=project_name
            )
            return None

        candidates = self.store.list_active_stateful_endpoints(method, base_path)
        for candidate in candidates:
            if self.store.endpoint_belongs_to_project(
                candidate.endpoint_id, workspace, project_name
            ):
                stored = self.store.project_names_for_folder(candidate.folder_id)
                return ResolvedTarget(
                    method=method,
                    workspace_name=stored[0] if stored else workspace,
                    project_name=stored[1] if stored else project_name,
                    project_id=project.id,
                    endpoint_id=candidate.id,
                    origin_id=candidate.endpoint_id,
                    logical_path=normalize_path(raw_path),
                    base_path=base_path,
                    id_in_url=id_in_url,
                )

        self.logger.info(
            "chain_target_endpoint_missing",
            method=method,
            path=base_path,
            project_id=project.id,
            candidates=len(candidates),
        )
        return None


__all__ = ["ResolvedTarget", "TargetResolver", "split_item_path"]
