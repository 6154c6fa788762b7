"""
Middleware for trace ID propagation and request context management.

This middleware:
- Reuses X-Trace-ID / X-Request-ID from the caller or generates a new trace ID
- Binds trace and request IDs into the logging context for the request
- Wraps the request in an "http.request" span and records RED metrics
- Echoes both IDs back in the response headers
"""
import time
from typing import Callable

from fastapi import HTTPException, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_trace_id,
)
from .metrics import record_http_request
from .tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)


def _format_otel_trace_id(hex_id: str) -> str:
    if len(hex_id) != 32:
        return hex_id
    return f"{hex_id[0:8]}-{hex_id[8:12]}-{hex_id[12:16]}-{hex_id[16:20]}-{hex_id[20:32]}"


class TraceIDMiddleware(BaseHTTPMiddleware):
    """
    Handle trace ID propagation and request context.

    Priority for the trace ID: X-Trace-ID header, then X-Request-ID header,
    then the active OpenTelemetry span, then a freshly generated UUID.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not trace_id:
            otel_trace_id = get_trace_id_from_context()
            trace_id = _format_otel_trace_id(otel_trace_id) if otel_trace_id else generate_trace_id()

        request_id = generate_request_id()
        set_trace_id(trace_id)
        set_request_id(request_id)

        tracer = get_tracer()
        with tracer.start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)

            start_time = time.time()
            request.state.start_time = start_time
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)

                process_time = time.time() - start_time
                latency_ms = int(process_time * 1000)
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration_seconds=process_time,
                )
                logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    latency_ms=latency_ms,
                )

                response.headers["X-Trace-ID"] = trace_id
                response.headers["X-Request-ID"] = request_id
                return response

            except HTTPException as exc:
                # Metrics for HTTPException are recorded by the exception handler.
                set_span_attribute("http.status_code", exc.status_code)
                set_span_attribute("error", True)
                raise
            except Exception as e:
                process_time = time.time() - start_time
                record_exception(e)
                set_span_status(StatusCode.ERROR, str(e))
                set_span_attribute("http.status_code", 500)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=500,
                    duration_seconds=process_time,
                )
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=int(process_time * 1000),
                    exc_info=True,
                )
                raise
            finally:
                set_trace_id(None)
                set_request_id(None)
