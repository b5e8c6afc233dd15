"""Placeholder rendering for chained-call payloads, headers and paths.

Placeholders take the form ``{{expr}}``. An expression is resolved in one of
two ways, tried in order:

1. ``{{<n>.<path>}}`` addresses the n-th history entry (1-based).
2. any other ``{{<path>}}`` is a dot-path into a scope exposing ``root``,
   ``prev``, ``history`` and the ``request`` / ``response`` aliases.

A string that is exactly one placeholder keeps the resolved value's native
type. Every other string is interpolated and always yields a string.
Rendering never raises; anything unresolvable becomes ``""``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mockchain.logging import get_logger

logger = get_logger(__name__)


class _Missing:
    """Marker for a dot-path that did not resolve."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_HISTORY_EXPR = re.compile(r"^(\d+)\.(.+)$")


def get_path(obj: Any, path: str) -> Any:
    """Walk ``path`` (dot separated) through dicts and lists.

    Returns :data:`MISSING` as soon as a segment cannot be followed, including
    when an intermediate value is ``None``.
    """
    if path is None:
        return MISSING
    current = obj
    for part in str(path).split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)):
            if part == "length":
                current = len(current)
                continue
            try:
                index = int(part)
            except ValueError:
                return MISSING
            if index < 0 or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def stringify(value: Any) -> str:
    """String form of a resolved value for in-string interpolation."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


@dataclass
class ChainContext:
    """Template context of one chained-call run.

    ``root`` is the snapshot of the originating call, ``prev`` the outcome of
    the step that ran last (``None`` after a skip or failure) and ``history``
    the executed steps in order.
    """

    root: Dict[str, Any] = field(default_factory=dict)
    prev: Optional[Dict[str, Any]] = None
    history: List[Dict[str, Any]] = field(default_factory=list)

    def history_entry(self, position: int) -> Any:
        if position < 1 or position > len(self.history):
            return MISSING
        return self.history[position - 1]

    def scope(self) -> Dict[str, Any]:
        root = self.root or {}
        prev = self.prev
        request: Any = None
        if isinstance(prev, dict) and prev.get("request") is not None:
            request = prev.get("request")
        if request is None:
            request = root.get("req")
        if request is None:
            request = root.get("request")

        response: Any = None
        if isinstance(prev, dict) and "response" in prev:
            response = _normalize_response(prev.get("response"))
        if response is None:
            response = root.get("res")
        if response is None:
            response = root.get("response")

        return {
            "root": root,
            "prev": prev,
            "history": self.history,
            "request": request if request is not None else {},
            "response": response if response is not None else {},
        }

    def lookup(self, expr: str) -> Any:
        expr = expr.strip()
        match = _HISTORY_EXPR.match(expr)
        if match:
            entry = self.history_entry(int(match.group(1)))
            if entry is MISSING:
                return MISSING
            return get_path(entry, match.group(2))
        return get_path(self.scope(), expr)


def _normalize_response(raw: Any) -> Any:
    if raw is None:
        return None
    if isinstance(raw, dict) and "body" in raw:
        return raw
    return {"body": raw}


def _render_string(template: str, resolve) -> Any:
    whole = _PLACEHOLDER.fullmatch(template)
    if whole:
        value = resolve(whole.group(1))
        return "" if value is MISSING or value is None else value

    def _sub(match: "re.Match[str]") -> str:
        return stringify(resolve(match.group(1)))

    return _PLACEHOLDER.sub(_sub, template)


def _render_node(node: Any, resolve) -> Any:
    if isinstance(node, str):
        return _render_string(node, resolve)
    if isinstance(node, dict):
        return {key: _render_node(value, resolve) for key, value in node.items()}
    if isinstance(node, list):
        return [_render_node(value, resolve) for value in node]
    return node


def _safe_resolver(lookup):
    def _resolve(expr: str) -> Any:
        try:
            return lookup(expr)
        except Exception as exc:
            logger.warning("template_expression_failed", expr=expr, error=str(exc))
            return MISSING

    return _resolve


def render(node: Any, ctx: ChainContext) -> Any:
    """Render strings inside ``node`` recursively against ``ctx``."""
    return _render_node(node, _safe_resolver(ctx.lookup))


def render_string(template: Any, ctx: ChainContext) -> str:
    """Render a template that must come out as a string (paths, header values)."""
    if template is None:
        return ""
    resolve = _safe_resolver(ctx.lookup)
    return _PLACEHOLDER.sub(
        lambda match: stringify(resolve(match.group(1))), str(template)
    )


def render_with_scope(node: Any, scope: Dict[str, Any]) -> Any:
    """Render against a plain scope dict, e.g. ``{"params": {"id": 3}}``."""
    return _render_node(node, _safe_resolver(lambda expr: get_path(scope, expr.strip())))


__all__ = [
    "MISSING",
    "ChainContext",
    "get_path",
    "render",
    "render_string",
    "render_with_scope",
    "stringify",
]
