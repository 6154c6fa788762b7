"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- LLM Metrics: engine call latency, errors, tokens, estimated cost
- Tool Metrics: tool executions, latency, empty results
- Session Metrics: outcomes and rounds per assistant session
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from mrp_assistant.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of reasoning engine calls",
    ["provider", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Reasoning engine call latency in seconds",
    ["provider", "model"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 60.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of failed reasoning engine calls",
    ["provider", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Tokens consumed by reasoning engine calls",
    ["provider", "model", "direction"],
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated reasoning engine cost in USD",
    ["provider", "model"],
    registry=registry,
)

# ============================================================================
# TOOL METRICS
# ============================================================================

tool_executions_total = Counter(
    "tool_executions_total",
    "Total number of tool executions",
    ["tool", "outcome"],
    registry=registry,
)

tool_execution_duration_seconds = Histogram(
    "tool_execution_duration_seconds",
    "Tool execution latency in seconds",
    ["tool"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
    registry=registry,
)

tool_empty_results_total = Counter(
    "tool_empty_results_total",
    "Total number of query tool calls that returned zero records",
    ["tool"],
    registry=registry,
)

# ============================================================================
# SESSION METRICS
# ============================================================================

assistant_sessions_total = Counter(
    "assistant_sessions_total",
    "Total number of assistant sessions by termination reason",
    ["provider", "termination"],
    registry=registry,
)

assistant_session_rounds = Histogram(
    "assistant_session_rounds",
    "Reasoning engine rounds used per assistant session",
    buckets=[1, 2, 3, 4, 5, 6, 8, 10],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Strips query strings and trailing slashes so that label cardinality stays
    bounded.

    Examples:
        /assistant/query?debug=1 -> /assistant/query
        /health/ -> /health
    """
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Record HTTP request metrics (RED metrics).

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Request path (normalized here)
        status_code: HTTP status code
        duration_seconds: Request duration in seconds
    """
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_llm_request(provider: str, model: str, duration_ms: float) -> None:
    """
    Record one reasoning engine call, successful or not.

    Args:
        provider: Provider adapter name ("openai", "gemini")
        model: Model identifier
        duration_ms: Call latency in milliseconds
    """
    llm_requests_total.labels(provider=provider, model=model).inc()
    llm_request_duration_seconds.labels(provider=provider, model=model).observe(duration_ms / 1000.0)


def record_llm_error(provider: str, error_type: str) -> None:
    """Record a failed reasoning engine call by error category."""
    llm_errors_total.labels(provider=provider, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    provider: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """
    Record token usage and estimated cost for one engine call.

    Args:
        provider: Provider adapter name
        model: Model identifier
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        cost_usd: Estimated cost (0 when no pricing is known)
    """
    if input_tokens:
        llm_tokens_total.labels(provider=provider, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(provider=provider, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(provider=provider, model=model).inc(cost_usd)


def record_tool_execution(tool: str, success: bool, duration_ms: float) -> None:
    """
    Record one tool execution.

    Args:
        tool: Tool name (unknown names are collapsed to "unknown")
        success: Whether the tool returned a successful result
        duration_ms: Execution time in milliseconds
    """
    tool_executions_total.labels(tool=tool, outcome="success" if success else "failure").inc()
    tool_execution_duration_seconds.labels(tool=tool).observe(duration_ms / 1000.0)


def record_tool_empty_result(tool: str) -> None:
    """Record a query tool call that matched no records."""
    tool_empty_results_total.labels(tool=tool).inc()


def record_assistant_session(provider: str, termination: str, rounds: int) -> None:
    """
    Record the outcome of one assistant session.

    Args:
        provider: Provider adapter name
        termination: Termination reason ("final_text", "round_limit", ...)
        rounds: Number of engine rounds consumed
    """
    assistant_sessions_total.labels(provider=provider, termination=termination).inc()
    assistant_session_rounds.observe(rounds)


def update_resource_metrics() -> None:
    """Update system resource metrics (CPU, memory); called on scrape."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Prometheus metrics text format
    """
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST


def tool_metric_label(tool_name: Optional[str], known: bool) -> str:
    """Collapse unknown tool names so engine hallucinations cannot explode label cardinality."""
    if not tool_name or not known:
        return "unknown"
    return tool_name
