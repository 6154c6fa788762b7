"""
Unit tests for OpenTelemetry distributed tracing.

Tests verify:
- Tracing configuration works correctly
- Trace context extraction handles valid and invalid headers
- Sessions, engine calls and tool calls produce nested spans
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from fakes import ScriptedProvider
from mrp_assistant.core import tracing
from mrp_assistant.core.tracing import (
    configure_tracing,
    extract_trace_context,
    get_trace_id_from_context,
    get_tracer,
)
from mrp_assistant.services.ai.orchestration import ConversationDriver
from mrp_assistant.services.ai.schema import AssistantOptions, ToolCall, TurnResult
from mrp_assistant.services.tools.catalog import build_default_catalog
from mrp_assistant.services.tools.dispatcher import ToolDispatcher

TRACEPARENT = "00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01"


@pytest.fixture
def span_exporter(monkeypatch):
    """Route assistant spans into an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("tests"))
    return exporter


class TestTracingConfiguration:
    """Test tracing configuration and setup."""

    def test_configure_tracing_defaults(self):
        """Tracing can be configured without an OTLP endpoint."""
        configure_tracing(enable_otlp=False)

        assert get_tracer() is not None

    def test_no_trace_id_outside_a_span(self):
        """Without an active span there is no trace id."""
        assert get_trace_id_from_context() is None


class TestTraceContextPropagation:
    """W3C trace context extraction."""

    def test_extract_valid_traceparent(self):
        """A valid traceparent header is extracted."""
        context = extract_trace_context({"traceparent": TRACEPARENT})

        assert context["traceparent"] == TRACEPARENT

    def test_extract_missing_or_invalid_header(self):
        """Missing or malformed headers yield None."""
        assert extract_trace_context({}) is None
        assert extract_trace_context({"traceparent": "not-a-traceparent"}) is None


class TestAssistantSpans:
    """Spans emitted by the conversation driver and dispatcher."""

    @pytest.mark.asyncio
    async def test_session_engine_and_tool_spans(self, environment, span_exporter):
        """A tool round yields engine and tool spans under the session span."""
        provider = ScriptedProvider([
            TurnResult(tool_calls=[ToolCall(id="c1", name="get_count", arguments={"collection": "orders"})]),
            TurnResult(text="3 orders."),
        ])
        catalog = build_default_catalog()
        driver = ConversationDriver(
            provider,
            ToolDispatcher(catalog, environment),
            catalog,
            AssistantOptions(system_prompt="test"),
        )

        await driver.run("How many orders?")

        spans = {}
        for span in span_exporter.get_finished_spans():
            spans.setdefault(span.name, []).append(span)
        session = spans["assistant.session"][0]
        tool_span = spans["assistant.tool_call"][0]

        assert len(spans["assistant.engine_call"]) == 2
        assert session.attributes["assistant.rounds"] == 2
        assert session.attributes["assistant.termination"] == "final_text"
        assert tool_span.attributes["tool.name"] == "get_count"
        assert tool_span.attributes["tool.success"] is True
        assert tool_span.context.trace_id == session.context.trace_id

    @pytest.mark.asyncio
    async def test_failed_tool_span_has_error_status(self, environment, span_exporter):
        """Failed tool calls mark their span as an error."""
        dispatcher = ToolDispatcher(build_default_catalog(), environment)

        await dispatcher.dispatch(ToolCall(id="c1", name="no_such_tool"))

        (span,) = span_exporter.get_finished_spans()
        assert span.attributes["tool.success"] is False
        assert not span.status.is_ok
