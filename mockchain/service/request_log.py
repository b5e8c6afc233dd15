from __future__ import annotations

from typing import Any, Dict, Optional

from mockchain.logging import get_logger
from mockchain.storage.models import RequestLog

NEXT_CALL_MARKER = "__nextcall"


def normalize_response_body(value: Any) -> Dict[str, Any]:
    """Log rows always hold an object: ``None`` -> ``{}``, scalars/lists -> ``{"data": v}``."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    return {"data": value}


def next_call_headers(
    headers: Optional[Dict[str, Any]], *, parent_log_id: Optional[int], step_name: str
) -> Dict[str, Any]:
    marked: Dict[str, Any] = dict(headers or {})
    marked[NEXT_CALL_MARKER] = {
        "parent_log_id": parent_log_id,
        "next_call_name": step_name,
        "is_nextcall": True,
    }
    return marked


class RequestLogWriter:
    """Persists request-log rows for root calls and chained steps.

    Writes are best effort: a failing store is reported on the operational
    log and the caller gets ``None``.
    """

    def __init__(self, store: Any, notifier: Any = None) -> None:
        self.store = store
        self.notifier = notifier
        self.logger = get_logger(__name__)

    async def write(
        self,
        *,
        project_id: Optional[int],
        method: str,
        path: str,
        endpoint_id: Optional[int] = None,
        stateful_endpoint_id: Optional[int] = None,
        user_id: Optional[str] = None,
        request_headers: Optional[Dict[str, Any]] = None,
        request_body: Any = None,
        status_code: Optional[int] = None,
        response_body: Any = None,
        ip_address: Optional[str] = None,
        latency_ms: int = 0,
        notify: bool = False,
    ) -> Optional[RequestLog]:
        try:
            log = self.store.insert_request_log(
                project_id=project_id,
                request_method=method.upper(),
                request_path=path,
                endpoint_id=endpoint_id,
                stateful_endpoint_id=stateful_endpoint_id,
                user_id=user_id,
                request_headers=request_headers or {},
                request_body=request_body,
                response_status_code=status_code,
                response_body=normalize_response_body(response_body),
                ip_address=ip_address,
                latency_ms=latency_ms,
            )
        except Exception as exc:
            self.logger.warning(
                "request_log_write_failed", method=method, path=path, error=str(exc)
            )
            return None

        if notify and self.notifier is not None:
            try:
                await self.notifier.notify(
                    log,
                    endpoint_id=endpoint_id,
                    is_stateful=stateful_endpoint_id is not None,
                )
            except Exception as exc:
                self.logger.warning(
                    "request_log_notify_failed", log_id=log.id, error=str(exc)
                )
        return log

    async def write_step(
        self,
        *,
        parent_log_id: Optional[int],
        step_name: str,
        request_headers: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Optional[RequestLog]:
        """Log one chained step; headers carry the chain marker with the parent link."""
        headers = next_call_headers(
            request_headers, parent_log_id=parent_log_id, step_name=step_name
        )
        fields.setdefault("ip_address", None)
        return await self.write(request_headers=headers, **fields)


__all__ = [
    "NEXT_CALL_MARKER",
    "RequestLogWriter",
    "next_call_headers",
    "normalize_response_body",
]
