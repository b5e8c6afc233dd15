from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

from mockchain.logging import get_logger
from mockchain.storage.common import normalize_method

logger = get_logger(__name__)

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)
_ROUTED_PATH = re.compile(r"^/([^/]+)/([^/]+)(/.*)$")

AUTH_SAME_USER = "same-user"


@dataclass(frozen=True)
class InternalTarget:
    """Another endpoint of this platform, dispatched in-process.

    ``workspace``/``project``/``logical_path`` are ``None`` when the configured
    target did not match ``/<workspace>/<project>/<path>``; the resolver
    cannot route such a step and it is skipped at runtime.
    """

    method: str
    workspace: Optional[str] = None
    project: Optional[str] = None
    logical_path: Optional[str] = None


@dataclass(frozen=True)
class ExternalTarget:
    """An absolute ``http(s)`` URL, dispatched over the network."""

    method: str
    url: str
    # path component of ``url``, kept for request logs
    path: str = "/"


StepTarget = Union[InternalTarget, ExternalTarget]


@dataclass(frozen=True)
class StepLogOptions:
    persist: bool = True
    notify: bool = False


@dataclass(frozen=True)
class NormalizedStep:
    name: str
    target: StepTarget
    payload_template: Any = None
    headers_template: Dict[str, Any] = field(default_factory=dict)
    condition: Any = None
    delay_ms: int = 0
    timeout_ms: int = 0
    log: StepLogOptions = field(default_factory=StepLogOptions)
    auth_mode: str = AUTH_SAME_USER

    @property
    def is_external(self) -> bool:
        return isinstance(self.target, ExternalTarget)


def _non_negative_int(*candidates: Any) -> int:
    for value in candidates:
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isnan(number) or math.isinf(number):
            continue
        return max(0, int(number))
    return 0


def _parse_target(raw_target: Any, method: str) -> StepTarget:
    target = raw_target.strip() if isinstance(raw_target, str) else ""
    if _ABSOLUTE_URL.match(target):
        return ExternalTarget(method=method, url=target, path=urlsplit(target).path or "/")
    match = _ROUTED_PATH.match(target)
    if not match:
        return InternalTarget(method=method)
    return InternalTarget(
        method=method,
        workspace=match.group(1),
        project=match.group(2),
        logical_path=match.group(3),
    )


def _step_name(raw: Dict[str, Any], position: int) -> str:
    name = raw.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    step_id = raw.get("id")
    if step_id is not None and step_id != "":
        return f"step-{step_id}"
    return f"step-{position}"


def build_step(raw: Any, position: int) -> NormalizedStep:
    """Normalize one raw step configuration; unusable fields fall back to defaults."""
    entry: Dict[str, Any] = raw if isinstance(raw, dict) else {}
    method = normalize_method(entry.get("method"))
    raw_target = entry.get("target_endpoint", entry.get("targetEndpoint"))

    log_cfg = entry.get("log") if isinstance(entry.get("log"), dict) else {}
    auth_cfg = entry.get("auth") if isinstance(entry.get("auth"), dict) else {}
    headers = entry.get("headers") if isinstance(entry.get("headers"), dict) else {}
    auth_mode = auth_cfg.get("mode")

    return NormalizedStep(
        name=_step_name(entry, position),
        target=_parse_target(raw_target, method),
        payload_template=entry.get("body"),
        headers_template=dict(headers),
        condition=entry.get("condition"),
        delay_ms=_non_negative_int(entry.get("delayMs"), entry.get("delay_ms")),
        timeout_ms=_non_negative_int(entry.get("timeoutMs"), entry.get("timeout_ms")),
        log=StepLogOptions(
            persist=log_cfg.get("persist") is not False,
            notify=log_cfg.get("notify") is True,
        ),
        auth_mode=auth_mode if isinstance(auth_mode, str) and auth_mode else AUTH_SAME_USER,
    )


def build_plan(raw_config: Any) -> List[NormalizedStep]:
    """Turn a stored next-call configuration into an ordered plan.

    Accepts the bare list or an object carrying ``nextCalls``/``next_calls``.
    Anything else yields an empty plan. Never raises.
    """
    if isinstance(raw_config, dict):
        raw_config = raw_config.get("nextCalls", raw_config.get("next_calls"))
    if not isinstance(raw_config, list):
        return []
    plan: List[NormalizedStep] = []
    for position, raw in enumerate(raw_config, start=1):
        try:
            plan.append(build_step(raw, position))
        except Exception as exc:
            # keeps the plan total; the step still exists but cannot be routed
            logger.warning("chain_plan_step_invalid", position=position, error=str(exc))
            plan.append(
                NormalizedStep(name=f"step-{position}", target=InternalTarget(method="GET"))
            )
    return plan


__all__ = [
    "AUTH_SAME_USER",
    "ExternalTarget",
    "InternalTarget",
    "NormalizedStep",
    "StepLogOptions",
    "StepTarget",
    "build_plan",
    "build_step",
]
