from __future__ import annotations

import ipaddress
import socket
import ssl
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator

import httpcore
import httpx

from phasetrace.app.tracing.contracts import PhaseTimestamps

Clock = Callable[[], int]
Resolver = Callable[[str, int], list[str]]

_EXCEPTION_MAP: tuple[tuple[type[Exception], type[httpx.TransportError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.PoolTimeout, httpx.PoolTimeout),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
    (httpcore.RemoteProtocolError, httpx.RemoteProtocolError),
    (httpcore.LocalProtocolError, httpx.LocalProtocolError),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.ProtocolError, httpx.ProtocolError),
)


def utc_now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def resolve_host(host: str, port: int) -> list[str]:
    addresses: list[str] = []
    for *_, sockaddr in socket.getaddrinfo(host, port, type=socket.SOCK_STREAM):
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    return True


class PhaseRecorder:
    """Stamps phase boundaries of one trace into its own PhaseTimestamps.

    The recorder is the single observer shared by the network backend, the
    streams it opens and the ``trace`` request extension. Hooks fired by a
    later connection overwrite earlier stamps.
    """

    def __init__(self, clock: Clock = utc_now_ms) -> None:
        self.timestamps = PhaseTimestamps()
        self._clock = clock
        self._awaiting_response = False

    def now(self) -> int:
        return self._clock()

    def dns_start(self) -> None:
        self.timestamps.dns_start = self._clock()

    def dns_done(self) -> None:
        self.timestamps.dns_done = self._clock()

    def connect_start(self) -> None:
        self.timestamps.connect_start = self._clock()

    def connect_done(self) -> None:
        self.timestamps.connect_done = self._clock()

    def tls_start(self) -> None:
        self.timestamps.tls_start = self._clock()

    def tls_done(self) -> None:
        self.timestamps.tls_done = self._clock()

    def request_written(self) -> None:
        self._awaiting_response = True

    def response_bytes(self) -> None:
        if not self._awaiting_response:
            return
        self._awaiting_response = False
        self.timestamps.first_response_byte = self._clock()

    def trace_event(self, event_name: str, info: dict[str, Any]) -> None:
        # httpcore emits this once per request, on fresh and pooled connections.
        if event_name.endswith(".send_request_headers.started"):
            self.timestamps.connection_obtained = self._clock()


class ObservedNetworkStream(httpcore.NetworkStream):
    def __init__(self, stream: httpcore.NetworkStream, recorder: PhaseRecorder) -> None:
        self._stream = stream
        self._recorder = recorder

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        data = self._stream.read(max_bytes, timeout)
        if data:
            self._recorder.response_bytes()
        return data

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self._stream.write(buffer, timeout)
        self._recorder.request_written()

    def close(self) -> None:
        self._stream.close()

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.NetworkStream:
        self._recorder.tls_start()
        tls_stream = self._stream.start_tls(ssl_context, server_hostname, timeout)
        self._recorder.tls_done()
        return ObservedNetworkStream(tls_stream, self._recorder)

    def get_extra_info(self, info: str) -> Any:
        return self._stream.get_extra_info(info)


class TracingNetworkBackend(httpcore.NetworkBackend):
    """Resolves hosts itself so DNS and TCP connect are timed separately."""

    def __init__(
        self,
        recorder: PhaseRecorder,
        *,
        resolver: Resolver = resolve_host,
        backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        self._recorder = recorder
        self._resolver = resolver
        self._backend = backend or httpcore.SyncBackend()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        addresses = [host]
        if not _is_ip_literal(host):
            self._recorder.dns_start()
            try:
                addresses = self._lookup(host, port, timeout)
            finally:
                self._recorder.dns_done()

        self._recorder.connect_start()
        last_error: Exception | None = None
        for address in addresses:
            try:
                stream = self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                last_error = exc
                continue
            self._recorder.connect_done()
            return ObservedNetworkStream(stream, self._recorder)
        raise last_error or httpcore.ConnectError(f"no address to connect for {host}")

    def _lookup(self, host: str, port: int, timeout: float | None) -> list[str]:
        # getaddrinfo has no deadline of its own; bound it by the connect timeout.
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._resolver, host, port)
        try:
            addresses = future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise httpcore.ConnectTimeout(
                f"DNS lookup for {host} timed out after {timeout:g}s"
            ) from exc
        except (socket.gaierror, UnicodeError) as exc:
            raise httpcore.ConnectError(f"DNS lookup failed for {host}: {exc}") from exc
        finally:
            executor.shutdown(wait=False)
        if not addresses:
            raise httpcore.ConnectError(f"DNS lookup failed for {host}: no addresses")
        return addresses

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        stream = self._backend.connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options
        )
        return ObservedNetworkStream(stream, self._recorder)

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


@contextmanager
def _map_httpcore_exceptions(request: httpx.Request) -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        for source, target in _EXCEPTION_MAP:
            if isinstance(exc, source):
                raise target(str(exc) or source.__name__, request=request) from exc
        raise


class TracingTransport(httpx.BaseTransport):
    """httpx transport over a private httpcore pool wired to a PhaseRecorder.

    Response bodies are read to completion inside the transport, so every
    request finishes its transfer before control returns to the client.
    """

    def __init__(
        self,
        recorder: PhaseRecorder,
        *,
        resolver: Resolver = resolve_host,
        network_backend: httpcore.NetworkBackend | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._recorder = recorder
        self._pool = httpcore.ConnectionPool(
            ssl_context=ssl_context or httpx.create_ssl_context(),
            network_backend=TracingNetworkBackend(
                recorder, resolver=resolver, backend=network_backend
            ),
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        url = httpcore.URL(
            scheme=request.url.raw_scheme,
            host=request.url.raw_host,
            port=request.url.port,
            target=request.url.raw_path,
        )
        with _map_httpcore_exceptions(request):
            response = self._pool.request(
                request.method,
                url,
                headers=request.headers.raw,
                content=request.stream,
                extensions={
                    **request.extensions,
                    "trace": self._recorder.trace_event,
                },
            )
        return httpx.Response(
            status_code=response.status,
            headers=response.headers,
            content=response.content,
            extensions=response.extensions,
        )

    def close(self) -> None:
        self._pool.close()
