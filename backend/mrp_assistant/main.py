import os
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.logging import configure_logging, get_logger, get_trace_id
from .core.metrics import record_http_request
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import assistant, health, metrics
from .services.query.enums import get_enum_normalizer

# JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

enable_otlp = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "") != ""
configure_tracing(enable_otlp=enable_otlp)

app = FastAPI(
    title="MRP Assistant API",
    description="Tool-calling assistant over the MRP document store",
    version="0.1.0"
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


@app.on_event("startup")
async def startup_event():
    """Load local resources on application startup."""
    logger.info("app_startup_started")

    if get_enum_normalizer().initialize():
        logger.info("app_startup_enum_synonyms_ready")
    else:
        logger.warning(
            "app_startup_enum_synonyms_unavailable",
            message="Status and type values will be passed to the store unchanged.",
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    shutdown_tracing()
    logger.info("app_shutdown_completed")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    start_time = getattr(request.state, "start_time", time.time())
    duration = time.time() - start_time

    trace_id = get_trace_id() or get_trace_id_from_context()

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.detail)

    record_http_request(
        method=request.method,
        endpoint=request.url.path,
        status_code=exc.status_code,
        duration_seconds=duration,
    )

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code,
            "trace_id": trace_id,
        }
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    trace_id = get_trace_id() or get_trace_id_from_context()

    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "status_code": 500,
            "trace_id": trace_id,
        }
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(assistant.router, prefix="/assistant", tags=["Assistant"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
