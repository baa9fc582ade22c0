from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict


class TraceRequest(BaseModel):
    url: str


@dataclass
class PhaseTimestamps:
    """Epoch milliseconds (UTC) stamped by the tracing hooks.

    A field stays ``None`` when its hook never fired, e.g. TLS fields on a
    plaintext connection or DNS fields when the host is an IP literal.
    """

    dns_start: int | None = None
    dns_done: int | None = None
    connect_start: int | None = None
    connect_done: int | None = None
    tls_start: int | None = None
    tls_done: int | None = None
    connection_obtained: int | None = None
    first_response_byte: int | None = None


class TraceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    dns_lookup_ms: int | None
    tcp_connect_ms: int | None
    tls_handshake_ms: int | None
    time_to_first_byte_ms: int | None
    total_time_ms: int
