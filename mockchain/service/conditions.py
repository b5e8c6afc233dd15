from __future__ import annotations

import math
from typing import Any, Dict, Optional

from mockchain.logging import get_logger
from mockchain.service.templating import MISSING, get_path

logger = get_logger(__name__)


def _to_number(value: Any) -> float:
    """Numeric coercion; null counts as 0, a missing path and non-numbers as NaN."""
    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def strict_equals(left: Any, right: Any) -> bool:
    """Equality where values of different kinds never match (``1 != "1"``, ``True != 1``)."""
    if left is MISSING or right is MISSING:
        return left is right
    if _kind(left) != _kind(right):
        return False
    return left == right


def _truthy(value: Any) -> bool:
    # empty containers count as present
    if value is None or value is MISSING:
        return False
    if isinstance(value, (dict, list, tuple)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _status_source(root: Dict[str, Any], prev: Optional[Dict[str, Any]]) -> Any:
    if prev is not None:
        return prev
    res = (root or {}).get("res")
    if res is None:
        res = (root or {}).get("response")
    return res


def evaluate(
    condition: Any,
    root: Optional[Dict[str, Any]] = None,
    prev: Optional[Dict[str, Any]] = None,
) -> bool:
    """Decide whether a step runs.

    ``None`` or an empty string always runs, a boolean is returned as is, a
    number is compared with the status of ``prev`` (or the root response), and
    a dict ``{"source", "path", "op", "value"}`` compares the value found at
    ``path``. Never raises; malformed conditions evaluate to ``False``.
    """
    if condition is None or condition == "":
        return True
    try:
        if isinstance(condition, bool):
            return condition
        if isinstance(condition, (int, float)):
            source = _status_source(root or {}, prev)
            status = get_path(source, "status") if isinstance(source, dict) else MISSING
            return _to_number(status) == float(condition)
        if isinstance(condition, dict):
            return _evaluate_rule(condition, root or {}, prev)
        return False
    except Exception as exc:
        logger.warning(
            "chain_condition_evaluation_failed", condition=repr(condition), error=str(exc)
        )
        return False


def _evaluate_rule(
    rule: Dict[str, Any], root: Dict[str, Any], prev: Optional[Dict[str, Any]]
) -> bool:
    source_name = rule.get("source") or ("prev" if prev is not None else "root")
    if source_name == "prev":
        source: Any = prev
    else:
        source = root.get("res")
        if source is None:
            source = root.get("response")

    path = rule.get("path")
    if path is None or path == "":
        value: Any = source if source is not None else MISSING
    else:
        value = get_path(source, str(path))

    op = rule.get("op") or "truey"
    expected = rule.get("value")
    if op == "eq":
        return strict_equals(value, expected)
    if op == "neq":
        return not strict_equals(value, expected)
    if op == "gt":
        return _to_number(value) > _to_number(expected)
    if op == "lt":
        return _to_number(value) < _to_number(expected)
    if op in ("in", "notin"):
        if not isinstance(expected, (list, tuple)):
            return False
        found = any(strict_equals(value, item) for item in expected)
        return found if op == "in" else not found
    if op == "exists":
        return value is not MISSING
    if op == "truey":
        return _truthy(value)
    logger.debug("chain_condition_unknown_op", op=op)
    return False


__all__ = ["evaluate", "strict_equals"]
