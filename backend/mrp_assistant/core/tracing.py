"""
OpenTelemetry distributed tracing configuration.

Features:
- Span creation for assistant sessions, engine calls, tool calls and store queries
- Trace export via OTLP (OpenTelemetry Protocol) when an endpoint is configured
- Trace context propagation via W3C TraceContext headers

Configuration:
- OTEL_SERVICE_NAME: Service name (default: mrp_assistant_api)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (e.g. http://localhost:4317)
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0 for 100% sampling)
"""
import os
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from .logging import get_logger

logger = get_logger(__name__)

_tracer: Optional[Tracer] = None
_tracer_provider: Optional[TracerProvider] = None

__all__ = [
    "StatusCode",
    "configure_tracing",
    "get_tracer",
    "extract_trace_context",
    "get_trace_id_from_context",
    "set_span_attribute",
    "set_span_status",
    "record_exception",
    "instrument_fastapi",
    "shutdown_tracing",
]


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
    enable_otlp: bool = False,
) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Service name identifier (defaults to OTEL_SERVICE_NAME or mrp_assistant_api)
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
        sampling_rate: Sampling rate (0.0 to 1.0, default: 1.0 for 100% sampling)
        enable_otlp: Enable OTLP exporter (default: False)
    """
    global _tracer, _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "mrp_assistant_api")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "0.1.0",
    })

    if sampling_rate < 1.0:
        _tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if enable_otlp and otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info(
                "tracing_otlp_configured",
                endpoint=otlp_endpoint,
                sampling_rate=sampling_rate,
            )
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
                message="Tracing will continue without OTLP export",
            )

    trace.set_tracer_provider(_tracer_provider)
    _tracer = trace.get_tracer(__name__)

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=enable_otlp,
    )


def get_tracer() -> Tracer:
    """
    Get the tracer used for assistant spans.

    Falls back to the globally registered provider (a no-op provider when
    configure_tracing() has not been called, e.g. in unit tests).
    """
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def extract_trace_context(headers: Dict[str, str]) -> Optional[Dict[str, str]]:
    """
    Extract W3C trace context from incoming HTTP headers.

    Returns:
        Dictionary of propagation headers, or None when absent/invalid
    """
    propagator = TraceContextTextMapPropagator()
    try:
        context = propagator.extract(headers)
        if context:
            trace_context: Dict[str, str] = {}
            propagator.inject(trace_context, context)
            return trace_context or None
    except Exception as e:
        logger.debug(
            "trace_context_extraction_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
    return None


def get_trace_id_from_context() -> Optional[str]:
    """Get trace ID (32 hex chars) from the current span, if any."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format(span_context.trace_id, "032x")
    return None


def set_span_attribute(key: str, value: Any) -> None:
    """Set an attribute on the current span."""
    trace.get_current_span().set_attribute(key, value)


def set_span_status(status_code: StatusCode, description: Optional[str] = None) -> None:
    """Set status on the current span."""
    trace.get_current_span().set_status(Status(status_code, description))


def record_exception(exception: BaseException) -> None:
    """Record an exception on the current span and mark it as failed."""
    current_span = trace.get_current_span()
    current_span.record_exception(exception)
    current_span.set_status(Status(StatusCode.ERROR, str(exception)))


def instrument_fastapi(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: FastAPI application instance
    """
    try:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("tracing_fastapi_instrumented")
    except Exception as e:
        logger.warning(
            "tracing_fastapi_instrumentation_failed",
            error=str(e),
            error_type=type(e).__name__,
            message="Tracing will continue without automatic FastAPI instrumentation",
        )


def shutdown_tracing() -> None:
    """Shutdown tracing and flush all spans."""
    if _tracer_provider:
        try:
            _tracer_provider.shutdown()
            logger.info("tracing_shutdown")
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
