from __future__ import annotations

import os
import shlex
from dataclasses import dataclass

DEFAULT_APP_VERSION = "0.1.0"
LOG_LEVELS = {"critical", "error", "warning", "info", "debug"}


@dataclass(frozen=True)
class AppConfig:
    app_name: str
    app_version: str
    host: str
    port: int
    log_level: str
    trace_timeout_seconds: float
    trace_follow_redirects: bool
    trace_max_redirects: int
    trace_user_agent: str
    dns_flush_enabled: bool
    dns_flush_command: tuple[str, ...] | None


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_bool_env(name: str, default: bool) -> bool:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _read_int_env(name: str, default: int) -> int:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_command_env(name: str) -> tuple[str, ...] | None:
    value = _read_optional_env(name)
    if value is None:
        return None
    try:
        parts = shlex.split(value)
    except ValueError:
        return None
    return tuple(parts) if parts else None


def _read_log_level_env(name: str, default: str) -> str:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    return normalized if normalized in LOG_LEVELS else default


def load_app_config() -> AppConfig:
    app_version = os.getenv("APP_VERSION", DEFAULT_APP_VERSION).strip() or (
        DEFAULT_APP_VERSION
    )
    return AppConfig(
        app_name=os.getenv("APP_NAME", "phasetrace").strip() or "phasetrace",
        app_version=app_version,
        host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=_read_int_env("PORT", default=3000),
        log_level=_read_log_level_env("LOG_LEVEL", default="info"),
        trace_timeout_seconds=_read_float_env("TRACE_TIMEOUT_SECONDS", default=30.0),
        trace_follow_redirects=_read_bool_env("TRACE_FOLLOW_REDIRECTS", default=True),
        trace_max_redirects=_read_int_env("TRACE_MAX_REDIRECTS", default=10),
        trace_user_agent=_read_optional_env("TRACE_USER_AGENT")
        or f"phasetrace/{app_version}",
        dns_flush_enabled=_read_bool_env("DNS_FLUSH_ENABLED", default=True),
        dns_flush_command=_read_command_env("DNS_FLUSH_COMMAND"),
    )
