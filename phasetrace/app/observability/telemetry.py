from __future__ import annotations

import json
import logging
from typing import Any

from phasetrace.app.tracing.contracts import TraceResult

TRACE_EVENT = "trace_event"


def build_trace_payload(
    url: str,
    result: TraceResult | None = None,
    error: BaseException | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"url": url}
    if error is not None:
        payload["status"] = "error"
        payload["error_class"] = type(error).__name__
        payload["error_message"] = str(error)
        return payload
    payload["status"] = "ok"
    if result is not None:
        payload.update(result.model_dump())
    return payload


def emit_trace_telemetry(
    url: str,
    result: TraceResult | None = None,
    error: BaseException | None = None,
    logger: logging.Logger | None = None,
) -> None:
    active_logger = logger or logging.getLogger(__name__)
    payload = build_trace_payload(url, result=result, error=error)
    level = logging.WARNING if error is not None else logging.INFO
    active_logger.log(level, "%s %s", TRACE_EVENT, json.dumps(payload, sort_keys=True))
