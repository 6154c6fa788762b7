"""
Tests for the reasoning engine adapters, using httpx.MockTransport instead of
a live API.
"""
import json

import httpx
import pytest

from mrp_assistant.core.circuit_breaker import CircuitBreaker
from mrp_assistant.services.ai.providers import GeminiStreamProvider, OpenAIChatProvider, estimate_cost_usd
from mrp_assistant.services.ai.providers.gemini import to_gemini_contents
from mrp_assistant.services.ai.schema import (
    ConversationMessage,
    ProviderError,
    ProviderTimeoutError,
    SamplingParams,
    TokenUsage,
    ToolCall,
    ToolSpec,
)

TOOLS = [
    ToolSpec(
        name="query_orders",
        description="Query customer orders",
        parameters={"type": "object", "properties": {"orderNumber": {"type": "string"}}},
    )
]
HISTORY = [ConversationMessage.user("Status of CO-001?")]
SAMPLING = SamplingParams(temperature=0.1, max_output_tokens=256)


def _openai(handler, **kwargs):
    return OpenAIChatProvider(
        api_base="https://llm.test/v1/",
        api_key=kwargs.pop("api_key", "sk-test"),
        model="gpt-4o-mini",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _gemini(handler):
    return GeminiStreamProvider(
        api_base="https://gemini.test/v1beta",
        api_key="g-test",
        model="gemini-2.5-flash",
        transport=httpx.MockTransport(handler),
    )


def _sse(*chunks):
    body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
    return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body.encode())


# ============================================================================
# OPENAI-COMPATIBLE ADAPTER
# ============================================================================


@pytest.mark.asyncio
async def test_openai_request_and_tool_call_parsing():
    """The adapter posts the chat payload and parses function calls."""
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{
                "finish_reason": "tool_calls",
                "message": {
                    "content": None,
                    "tool_calls": [{
                        "id": "call_abc",
                        "type": "function",
                        "function": {"name": "query_orders", "arguments": '{"orderNumber": "CO-001"}'},
                    }],
                },
            }],
            "usage": {"prompt_tokens": 120, "completion_tokens": 15},
        })

    turn = await _openai(handler).send_turn(HISTORY, TOOLS, "system text", SAMPLING)

    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system text"}
    assert seen["body"]["tools"][0]["function"]["name"] == "query_orders"
    assert seen["body"]["max_tokens"] == 256
    assert turn.text is None
    assert turn.tool_calls == [ToolCall(id="call_abc", name="query_orders", arguments='{"orderNumber": "CO-001"}')]
    assert turn.usage == TokenUsage(prompt_tokens=120, completion_tokens=15)


@pytest.mark.asyncio
async def test_openai_history_replays_tool_calls_and_results():
    """Assistant tool calls and tool results are re-sent in OpenAI's shape."""
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"finish_reason": "stop", "message": {"content": "Pending."}}]})

    history = HISTORY + [
        ConversationMessage.assistant(None, [ToolCall(id="c1", name="query_orders", arguments={"orderNumber": "CO-001"})]),
        ConversationMessage.tool("c1", "query_orders", '{"count": 1}'),
    ]

    turn = await _openai(handler).send_turn(history, TOOLS, "sys", SAMPLING)

    messages = seen["body"]["messages"]
    assert messages[2]["tool_calls"][0]["function"]["arguments"] == '{"orderNumber": "CO-001"}'
    assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": '{"count": 1}'}
    assert turn.text == "Pending."
    assert turn.usage.total_tokens == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status, category", [(401, "auth"), (429, "quota"), (503, "server_error"), (400, "bad_request")])
async def test_openai_http_errors_are_categorized(status, category):
    """HTTP failures surface as ProviderError with a category."""
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(ProviderError) as excinfo:
        await _openai(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == category
    assert excinfo.value.status_code == status
    assert "nope" in str(excinfo.value)


@pytest.mark.asyncio
async def test_openai_content_filter_is_a_safety_block():
    """A content-filtered completion is a provider error, not an empty answer."""
    def handler(request):
        return httpx.Response(200, json={"choices": [{"finish_reason": "content_filter", "message": {}}]})

    with pytest.raises(ProviderError) as excinfo:
        await _openai(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "safety_block"


@pytest.mark.asyncio
async def test_openai_malformed_body():
    """A response without choices is reported as malformed."""
    def handler(request):
        return httpx.Response(200, json={"object": "chat.completion"})

    with pytest.raises(ProviderError) as excinfo:
        await _openai(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "malformed_response"


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_a_request():
    """No key means no HTTP call."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(ProviderError) as excinfo:
        await _openai(handler, api_key=None).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "auth"
    assert calls == []


@pytest.mark.asyncio
async def test_transport_timeout_becomes_provider_timeout():
    """httpx timeouts are reported as ProviderTimeoutError."""
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(ProviderTimeoutError):
        await _openai(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)


@pytest.mark.asyncio
async def test_connection_error_is_a_network_error():
    """Connection failures surface as network ProviderErrors."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError) as excinfo:
        await _openai(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "network"


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling():
    """Once the breaker opens, calls are refused locally."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": {"message": "overloaded"}})

    breaker = CircuitBreaker(name="llm_test", failure_threshold=0.5, min_requests_for_threshold=1)
    provider = _openai(handler, circuit_breaker=breaker)

    with pytest.raises(ProviderError):
        await provider.send_turn(HISTORY, TOOLS, "sys", SAMPLING)
    with pytest.raises(ProviderError) as excinfo:
        await provider.send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "circuit_open"
    assert len(calls) == 1


# ============================================================================
# GEMINI STREAMING ADAPTER
# ============================================================================


@pytest.mark.asyncio
async def test_gemini_stream_is_folded_into_one_turn():
    """Text chunks concatenate, thoughts are dropped and the last usage wins."""
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return _sse(
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "thinking...", "thought": True}]}}]},
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "Order CO-001 "}]}}],
             "usageMetadata": {"promptTokenCount": 80, "candidatesTokenCount": 3}},
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "is pending."}]}, "finishReason": "STOP"}],
             "usageMetadata": {"promptTokenCount": 80, "candidatesTokenCount": 9}},
        )

    turn = await _gemini(handler).send_turn(HISTORY, TOOLS, "system text", SAMPLING)

    assert seen["url"].path == "/v1beta/models/gemini-2.5-flash:streamGenerateContent"
    assert seen["url"].params["alt"] == "sse"
    assert seen["key"] == "g-test"
    assert seen["body"]["systemInstruction"] == {"parts": [{"text": "system text"}]}
    assert seen["body"]["tools"][0]["functionDeclarations"][0]["name"] == "query_orders"
    assert seen["body"]["generationConfig"]["maxOutputTokens"] == 256
    assert turn.text == "Order CO-001 is pending."
    assert turn.finish_reason == "STOP"
    assert turn.usage == TokenUsage(prompt_tokens=80, completion_tokens=9)


@pytest.mark.asyncio
async def test_gemini_function_calls():
    """functionCall parts become tool calls with object arguments."""
    def handler(request):
        return _sse({
            "candidates": [{
                "content": {"parts": [
                    {"functionCall": {"name": "query_orders", "args": {"orderNumber": "CO-001"}}},
                    {"functionCall": {"name": "get_count", "args": {"collection": "orders"}}},
                ]},
                "finishReason": "STOP",
            }],
        })

    turn = await _gemini(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert [c.name for c in turn.tool_calls] == ["query_orders", "get_count"]
    assert turn.tool_calls[0].arguments == {"orderNumber": "CO-001"}
    assert turn.tool_calls[0].id != turn.tool_calls[1].id
    assert turn.text is None


@pytest.mark.asyncio
@pytest.mark.parametrize("chunk", [
    {"promptFeedback": {"blockReason": "SAFETY"}},
    {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]},
])
async def test_gemini_blocked_response(chunk):
    """Prompt or candidate blocks are safety-block provider errors."""
    def handler(request):
        return _sse(chunk)

    with pytest.raises(ProviderError) as excinfo:
        await _gemini(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "safety_block"


@pytest.mark.asyncio
async def test_gemini_http_error_reads_streamed_body():
    """Errors on the streaming endpoint still carry the API message."""
    def handler(request):
        return httpx.Response(429, json=[{"error": {"code": 429, "message": "Resource exhausted"}}])

    with pytest.raises(ProviderError) as excinfo:
        await _gemini(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "quota"
    assert "Resource exhausted" in str(excinfo.value)


@pytest.mark.asyncio
async def test_gemini_empty_stream_is_malformed():
    """A stream without data lines is not a valid turn."""
    def handler(request):
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=b": keep-alive\n\n")

    with pytest.raises(ProviderError) as excinfo:
        await _gemini(handler).send_turn(HISTORY, TOOLS, "sys", SAMPLING)

    assert excinfo.value.category == "malformed_response"


def test_to_gemini_contents_merges_tool_results():
    """Consecutive tool messages become one user turn of functionResponse parts."""
    history = [
        ConversationMessage.user("Hi"),
        ConversationMessage.assistant(None, [
            ToolCall(id="a", name="query_orders", arguments='{"orderNumber": "CO-001"}'),
            ToolCall(id="b", name="get_count", arguments={"collection": "orders"}),
        ]),
        ConversationMessage.tool("a", "query_orders", '{"count": 1}'),
        ConversationMessage.tool("b", "get_count", "not json"),
        ConversationMessage.assistant("Done."),
    ]

    contents = to_gemini_contents(history)

    assert [c["role"] for c in contents] == ["user", "model", "user", "model"]
    assert contents[1]["parts"][0] == {"functionCall": {"name": "query_orders", "args": {"orderNumber": "CO-001"}}}
    assert contents[2]["parts"] == [
        {"functionResponse": {"name": "query_orders", "response": {"count": 1}}},
        {"functionResponse": {"name": "get_count", "response": {"result": "not json"}}},
    ]
    assert contents[3]["parts"] == [{"text": "Done."}]


# ============================================================================
# COST
# ============================================================================


def test_estimate_cost_uses_pricing_table():
    """Known models are priced per input and output token."""
    usage = TokenUsage(prompt_tokens=2000, completion_tokens=1000)

    assert estimate_cost_usd("gpt-4o", usage) == pytest.approx(0.025)


def test_estimate_cost_for_unknown_model(monkeypatch):
    """Unknown models use the blended env rate, or cost nothing."""
    usage = TokenUsage(prompt_tokens=1500, completion_tokens=500)

    monkeypatch.delenv("LLM_COST_PER_1K_TOKENS", raising=False)
    assert estimate_cost_usd("local-model", usage) == 0.0

    monkeypatch.setenv("LLM_COST_PER_1K_TOKENS", "0.002")
    assert estimate_cost_usd("local-model", usage) == pytest.approx(0.004)
