from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# header and field names whose values never reach the log output in full
_CREDENTIAL_MARKERS = ("password", "secret", "token", "api_key", "authorization", "cookie")

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind the id of the HTTP request being served, minting one if absent."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _redact_pii(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-looking fields, keeping two characters at each end."""
    for key, value in list(event_dict.items()):
        if not isinstance(value, str) or len(value) <= 4:
            continue
        if any(marker in key.lower() for marker in _CREDENTIAL_MARKERS):
            event_dict[key] = f"{value[:2]}***{value[-2:]}"
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    """Install the structlog pipeline.

    ``chain_id`` and other values bound through ``structlog.contextvars``
    are merged into every event emitted while a chain runs.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true") and not _env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_chain_trace(trace: list, logger: Optional[Any] = None) -> None:
    """Emit the per-step outcome summary of one chained-call run."""
    log = logger or get_logger("mockchain.chain")
    log.info("chain_trace", steps=len(trace), trace=trace)


_SENSITIVE_ERROR_PATTERNS = [
    re.compile(r"(?i)(select|insert|update|delete)\s+.{0,50}"),
    re.compile(r"(?i)connection\s+.*\s+(failed|refused|timeout)"),
    re.compile(r"(?i)/(?:home|var|etc|usr|opt|tmp)/[^\s]+"),
    re.compile(r"(?i)(password|secret|token|key|api.?key)\s*[:=]\s*[^\s]+"),
    re.compile(r"(?i)traceback\s*\(most recent call last\)"),
]

_MAX_ERROR_LENGTH = 500


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Scrub queries, file paths and credentials from error text.

    Applied to errors placed in a mock response body and to the per-step
    summary returned by the debug execution route.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"
    for pattern in _SENSITIVE_ERROR_PATTERNS:
        error = pattern.sub(replacement, error)
    if len(error) > _MAX_ERROR_LENGTH:
        error = error[: _MAX_ERROR_LENGTH - 3] + "..."
    return error
