from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from phasetrace.app.observability.telemetry import emit_trace_telemetry
from phasetrace.app.tracing.contracts import TraceRequest, TraceResult
from phasetrace.app.tracing.service import TraceError, build_phase_tracer
from phasetrace.core.config import AppConfig, load_app_config

LOGGER = logging.getLogger(__name__)


class Tracer(Protocol):
    def trace(self, url: str) -> TraceResult: ...


def create_app(
    config: AppConfig | None = None,
    tracer: Tracer | None = None,
) -> FastAPI:
    resolved_config = config or load_app_config()
    active_tracer = tracer or build_phase_tracer(resolved_config)

    app = FastAPI(title=resolved_config.app_name, version=resolved_config.app_version)

    @app.exception_handler(StarletteHTTPException)
    async def plain_text_http_error(
        _request: Request, exc: StarletteHTTPException
    ) -> PlainTextResponse:
        detail = str(exc.detail)
        if exc.status_code == 405:
            detail = "Invalid request method"
        return PlainTextResponse(
            content=detail,
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.get("/health")
    async def health() -> Response:
        return Response(status_code=200)

    @app.post("/")
    async def trace(request: Request) -> JSONResponse:
        try:
            payload = TraceRequest.model_validate_json(await request.body())
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail="Invalid request body") from exc

        try:
            result = await asyncio.to_thread(active_tracer.trace, payload.url)
        except TraceError as exc:
            emit_trace_telemetry(payload.url, error=exc, logger=LOGGER)
            raise HTTPException(
                status_code=500, detail=f"Error tracing URL: {exc}"
            ) from exc

        emit_trace_telemetry(payload.url, result=result, logger=LOGGER)
        return JSONResponse(content=result.model_dump())

    return app
