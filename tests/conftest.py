from __future__ import annotations

import socket
import ssl
from dataclasses import replace
from typing import Any, Iterable

import httpcore
import pytest

from phasetrace.app.tracing.flusher import CacheFlushError
from phasetrace.core.config import AppConfig, load_app_config

OK_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/plain\r\n"
    b"Content-Length: 2\r\n"
    b"\r\n"
    b"ok"
)


class FakeStream(httpcore.NetworkStream):
    def __init__(self, response: bytes) -> None:
        self._pending = response
        self.written = bytearray()
        self.tls_hostname: str | None = None
        self.closed = False

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        chunk, self._pending = self._pending[:max_bytes], self._pending[max_bytes:]
        return chunk

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self.written.extend(buffer)

    def close(self) -> None:
        self.closed = True

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.NetworkStream:
        self.tls_hostname = server_hostname
        return self

    def get_extra_info(self, info: str) -> Any:
        return None


class FakeBackend(httpcore.NetworkBackend):
    """Serves one canned response per new connection and records each attempt."""

    def __init__(self, responses: Iterable[bytes] = (OK_RESPONSE,)) -> None:
        self._responses = list(responses)
        self.connect_calls: list[tuple[str, int]] = []
        self.streams: list[FakeStream] = []
        self.error: Exception | None = None
        self.refused: set[str] = set()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        self.connect_calls.append((host, port))
        if self.error is not None:
            raise self.error
        if host in self.refused:
            raise httpcore.ConnectError("[Errno 111] Connection refused")
        response = self._responses.pop(0) if self._responses else OK_RESPONSE
        stream = FakeStream(response)
        self.streams.append(stream)
        return stream

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        raise httpcore.ConnectError("unix sockets are not served by FakeBackend")

    def sleep(self, seconds: float) -> None:
        return None


class FakeResolver:
    def __init__(self, addresses: dict[str, list[str]] | None = None) -> None:
        self._addresses = addresses or {}
        self.lookups: list[str] = []

    def __call__(self, host: str, port: int) -> list[str]:
        self.lookups.append(host)
        if host not in self._addresses:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return self._addresses[host]


class SteppingClock:
    def __init__(self, start: int = 1_700_000_000_000, step: int = 5) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> int:
        self.current += self.step
        return self.current


class RecordingFlusher:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = 0
        self._error = error

    def flush(self) -> None:
        self.calls += 1
        if self._error is not None:
            raise self._error


class FailingFlusher(RecordingFlusher):
    def __init__(self) -> None:
        super().__init__(CacheFlushError("command not found: resolvectl"))


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver(
        {
            "example.test": ["192.0.2.10"],
            "mirror.example.test": ["192.0.2.20"],
            "dual.example.test": ["2001:db8::10", "192.0.2.30"],
        }
    )


@pytest.fixture
def stepping_clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def app_config() -> AppConfig:
    return replace(load_app_config(), dns_flush_enabled=False)


@pytest.fixture
def make_backend() -> type[FakeBackend]:
    return FakeBackend


@pytest.fixture
def recording_flusher() -> RecordingFlusher:
    return RecordingFlusher()


@pytest.fixture
def failing_flusher() -> FailingFlusher:
    return FailingFlusher()
