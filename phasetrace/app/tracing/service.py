from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass

import httpcore
import httpx

from phasetrace.app.tracing.contracts import PhaseTimestamps, TraceResult
from phasetrace.app.tracing.flusher import (
    CacheFlusher,
    CacheFlushError,
    build_cache_flusher,
)
from phasetrace.app.tracing.instrumentation import (
    Clock,
    PhaseRecorder,
    Resolver,
    TracingTransport,
    resolve_host,
    utc_now_ms,
)
from phasetrace.core.config import AppConfig

LOGGER = logging.getLogger(__name__)


class TraceError(Exception):
    pass


class DnsFlushError(TraceError):
    pass


class TraceRequestError(TraceError):
    pass


@dataclass(frozen=True)
class TraceSettings:
    timeout_seconds: float = 30.0
    follow_redirects: bool = True
    max_redirects: int = 10
    user_agent: str = "phasetrace"


def trace_settings_from_config(config: AppConfig) -> TraceSettings:
    return TraceSettings(
        timeout_seconds=config.trace_timeout_seconds,
        follow_redirects=config.trace_follow_redirects,
        max_redirects=config.trace_max_redirects,
        user_agent=config.trace_user_agent,
    )


def derive_trace_result(
    timestamps: PhaseTimestamps, started_at: int, finished_at: int
) -> TraceResult:
    """Turn one trace's stamps into durations.

    Durations are plain subtractions; a phase whose hooks did not both fire is
    reported as ``None``.
    """
    return TraceResult(
        dns_lookup_ms=_interval(timestamps.dns_start, timestamps.dns_done),
        tcp_connect_ms=_interval(timestamps.connect_start, timestamps.connect_done),
        tls_handshake_ms=_interval(timestamps.tls_start, timestamps.tls_done),
        time_to_first_byte_ms=_interval(started_at, timestamps.first_response_byte),
        total_time_ms=finished_at - started_at,
    )


def _interval(start: int | None, end: int | None) -> int | None:
    if start is None or end is None:
        return None
    return end - start


class PhaseTracer:
    def __init__(
        self,
        flusher: CacheFlusher,
        settings: TraceSettings | None = None,
        *,
        clock: Clock = utc_now_ms,
        resolver: Resolver = resolve_host,
        network_backend: httpcore.NetworkBackend | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._flusher = flusher
        self._settings = settings or TraceSettings()
        self._clock = clock
        self._resolver = resolver
        self._network_backend = network_backend
        self._ssl_context = ssl_context

    def trace(self, url: str) -> TraceResult:
        try:
            self._flusher.flush()
        except CacheFlushError as exc:
            raise DnsFlushError(f"failed to flush DNS: {exc}") from exc

        recorder = PhaseRecorder(self._clock)
        transport = TracingTransport(
            recorder,
            resolver=self._resolver,
            network_backend=self._network_backend,
            ssl_context=self._ssl_context,
        )
        started_at = recorder.now()
        try:
            with httpx.Client(
                transport=transport,
                timeout=self._settings.timeout_seconds,
                follow_redirects=self._settings.follow_redirects,
                max_redirects=self._settings.max_redirects,
                headers={"User-Agent": self._settings.user_agent},
            ) as client:
                response = client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TraceRequestError(str(exc) or type(exc).__name__) from exc
        finished_at = recorder.now()

        LOGGER.debug("Traced %s with status %s", url, response.status_code)
        return derive_trace_result(recorder.timestamps, started_at, finished_at)


def build_phase_tracer(config: AppConfig) -> PhaseTracer:
    return PhaseTracer(
        build_cache_flusher(config),
        trace_settings_from_config(config),
    )
