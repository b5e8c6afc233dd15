"""Common storage utilities shared between memory and postgres implementations."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional


def normalize_method(method: Any) -> str:
    if not isinstance(method, str) or not method.strip():
        return "GET"
    return method.strip().upper()


def normalize_path(raw: Optional[str]) -> str:
    """Collapse duplicate slashes, drop query and trailing slash, ensure a leading slash."""
    if not raw:
        return "/"
    path = raw.split("?", 1)[0]
    while "//" in path:
        path = path.replace("//", "/")
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    if not path.startswith("/"):
        path = "/" + path
    return path or "/"


def parse_jsonb(raw: Any) -> Any:
    """JSONB columns come back as Python values, older rows may hold a JSON string.

    Args:
        raw: Raw column value

    Returns:
        Decoded value, or the raw value when it is not valid JSON
    """
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def resource_label(endpoint_path: str) -> str:
    """``/shop/orders`` -> ``Orders``; used in default response messages."""
    segments = [seg for seg in (endpoint_path or "").split("/") if seg]
    last = segments[-1] if segments else "Resource"
    return last[:1].upper() + last[1:]


def default_responses(method: str, path: str) -> List[Dict[str, Any]]:
    """Default response set created when an endpoint becomes stateful.

    Bodies may reference ``{{params.id}}``; the stateful handler renders them
    per request.
    """
    label = resource_label(path)
    by_method: Dict[str, List[Dict[str, Any]]] = {
        "GET": [
            {"name": "Get All Success", "status_code": 200, "response_body": [{}]},
            {"name": "Get Detail Success", "status_code": 200, "response_body": {}},
            {
                "name": "Get Detail Not Found",
                "status_code": 404,
                "response_body": {"message": f"{label} with id {{{{params.id}}}} not found."},
            },
        ],
        "POST": [
            {
                "name": "Create Success",
                "status_code": 201,
                "response_body": {"message": f"New {label} item added successfully."},
            },
            {
                "name": "Schema Invalid",
                "status_code": 400,
                "response_body": {"message": f"Invalid data: request does not match {label} object schema."},
            },
            {
                "name": "ID Conflict",
                "status_code": 409,
                "response_body": {
                    "message": f"{label} {{{{params.id}}}} conflict: {{{{params.id}}}} already exists."
                },
            },
        ],
        "PUT": [
            {
                "name": "Update Success",
                "status_code": 200,
                "response_body": {"message": f"{label} with id {{{{params.id}}}} updated successfully."},
            },
            {
                "name": "Schema Invalid",
                "status_code": 400,
                "response_body": {"message": f"Invalid data: request does not match {label} schema."},
            },
            {
                "name": "ID Conflict",
                "status_code": 409,
                "response_body": {
                    "message": f"Update id {{{{params.id}}}} conflict: {label} id {{{{params.id_new}}}} in request body already exists."
                },
            },
            {
                "name": "Not Found",
                "status_code": 404,
                "response_body": {"message": f"{label} with id {{{{params.id}}}} not found."},
            },
        ],
        "DELETE": [
            {
                "name": "Delete All Success",
                "status_code": 200,
                "response_body": {"message": f"Delete all data with {label} successfully."},
            },
            {
                "name": "Delete Success",
                "status_code": 200,
                "response_body": {"message": f"{label} with id {{{{params.id}}}} deleted successfully."},
            },
            {
                "name": "Not Found",
                "status_code": 404,
                "response_body": {"message": f"{label} with id {{{{params.id}}}} to delete not found."},
            },
        ],
    }
    by_method["PATCH"] = by_method["PUT"]
    return [dict(item) for item in by_method.get(normalize_method(method), [])]
