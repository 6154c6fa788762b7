"""
Tests for the tool dispatcher: one ToolResult per ToolCall, never an exception.
"""
import asyncio
import json

import pytest
from pydantic import BaseModel

from mrp_assistant.services.ai.schema import ToolArgumentError, ToolCall, ToolExecutionError, ToolSpec
from mrp_assistant.services.store.base import StoreError
from mrp_assistant.services.tools.catalog import ToolCatalog, ToolDefinition, build_default_catalog
from mrp_assistant.services.tools.dispatcher import ToolDispatcher, parse_call_arguments


class SleepParams(BaseModel):
    seconds: float = 0.0
    label: str = ""


async def sleepy_handler(params, ctx):
    await asyncio.sleep(params.seconds)
    return {"label": params.label, "count": 1, "isEmpty": False}


async def broken_handler(params, ctx):
    raise RuntimeError("boom")


async def refusing_handler(params, ctx):
    raise ToolExecutionError("Nothing to apply", details={"reason": "test"})


def _definition(name, handler, params_model=SleepParams):
    spec = ToolSpec(name=name, description=name, parameters={"type": "object", "properties": {}})
    return ToolDefinition(spec=spec, params_model=params_model, handler=handler)


@pytest.fixture
def custom_catalog():
    return ToolCatalog([
        _definition("sleepy", sleepy_handler),
        _definition("broken", broken_handler),
        _definition("refusing", refusing_handler),
    ])


@pytest.fixture
def dispatcher(environment):
    return ToolDispatcher(build_default_catalog(), environment, tool_timeout_seconds=5)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================


@pytest.mark.parametrize("raw, expected", [
    (None, {}),
    ("", {}),
    ("  ", {}),
    ("null", {}),
    ('{"moNumber": "MO-1"}', {"moNumber": "MO-1"}),
    ({"limit": 5}, {"limit": 5}),
])
def test_parse_call_arguments_accepts_objects(raw, expected):
    """Objects (as JSON text or dicts) and empty input are accepted."""
    assert parse_call_arguments(raw) == expected


@pytest.mark.parametrize("raw", ["[1, 2]", '"text"', "{broken", 42])
def test_parse_call_arguments_rejects_non_objects(raw):
    """Anything that is not a JSON object is an argument error."""
    with pytest.raises(ToolArgumentError):
        parse_call_arguments(raw)


# ============================================================================
# ERROR MAPPING
# ============================================================================


@pytest.mark.asyncio
async def test_successful_call(dispatcher):
    """A valid call returns the handler's payload."""
    result = await dispatcher.dispatch(ToolCall(id="c1", name="query_orders", arguments='{"orderNumber": "CO-002"}'))

    assert result.success is True
    assert result.call_id == "c1"
    assert result.data["items"][0]["id"] == "o2"
    assert result.message_payload() == result.data
    assert result.execution_time_ms >= 0


@pytest.mark.asyncio
async def test_unknown_tool(dispatcher):
    """Unknown names fail with the list of available tools."""
    result = await dispatcher.dispatch(ToolCall(id="c1", name="drop_database", arguments={}))

    assert result.success is False
    assert result.error_type == "unknown_tool"
    assert "query_orders" in result.details["availableTools"]


@pytest.mark.asyncio
async def test_malformed_json_arguments(dispatcher):
    """Unparseable arguments fail only this call."""
    result = await dispatcher.dispatch(ToolCall(id="c1", name="query_orders", arguments='{"orderNumber": '))

    assert result.success is False
    assert result.error_type == "argument_error"
    assert "position" in result.details


@pytest.mark.asyncio
async def test_schema_violation_lists_fields(dispatcher):
    """Validation failures name the offending fields."""
    result = await dispatcher.dispatch(
        ToolCall(id="c1", name="get_system_alerts", arguments={"limit": 0, "severity": "urgent"})
    )

    assert result.error_type == "argument_error"
    fields = {detail["field"] for detail in result.details}
    assert fields == {"limit", "severity"}
    payload = result.message_payload()
    assert payload["success"] is False
    assert payload["errorType"] == "argument_error"


@pytest.mark.asyncio
async def test_unknown_argument_keys_are_ignored(dispatcher):
    """Extra keys from the engine do not fail the call."""
    result = await dispatcher.dispatch(
        ToolCall(id="c1", name="get_count", arguments={"collection": "orders", "verbose": True})
    )

    assert result.success is True
    assert result.data["count"] == 3


@pytest.mark.asyncio
async def test_handler_exception_becomes_execution_error(environment, custom_catalog):
    """Unexpected handler exceptions are caught and reported."""
    dispatcher = ToolDispatcher(custom_catalog, environment)

    result = await dispatcher.dispatch(ToolCall(id="c1", name="broken"))

    assert result.success is False
    assert result.error_type == "execution_error"
    assert result.error == "boom"


@pytest.mark.asyncio
async def test_tool_error_keeps_its_type_and_details(environment, custom_catalog):
    """ToolErrors raised by handlers pass their type and details through."""
    dispatcher = ToolDispatcher(custom_catalog, environment)

    result = await dispatcher.dispatch(ToolCall(id="c1", name="refusing"))

    assert result.error_type == "execution_error"
    assert result.details == {"reason": "test"}


@pytest.mark.asyncio
async def test_store_failure_becomes_store_error(dispatcher, store):
    """Store failures are reported as store errors."""
    store.fail_with = StoreError("connection reset")

    result = await dispatcher.dispatch(ToolCall(id="c1", name="query_orders", arguments={}))

    assert result.success is False
    assert result.error_type == "store_error"
    assert "connection reset" in result.error


@pytest.mark.asyncio
async def test_tool_timeout(environment, custom_catalog):
    """A call over its deadline fails with a timeout result."""
    dispatcher = ToolDispatcher(custom_catalog, environment, tool_timeout_seconds=0.05)

    result = await dispatcher.dispatch(ToolCall(id="c1", name="sleepy", arguments={"seconds": 1}))

    assert result.success is False
    assert result.error_type == "timeout"


# ============================================================================
# CONCURRENCY
# ============================================================================


@pytest.mark.asyncio
async def test_dispatch_all_keeps_call_order(environment, custom_catalog):
    """Results come back in call order regardless of completion order."""
    dispatcher = ToolDispatcher(custom_catalog, environment)
    calls = [
        ToolCall(id="slow", name="sleepy", arguments={"seconds": 0.05, "label": "first"}),
        ToolCall(id="bad", name="missing_tool"),
        ToolCall(id="fast", name="sleepy", arguments=json.dumps({"seconds": 0, "label": "third"})),
    ]

    results = await dispatcher.dispatch_all(calls, round_number=1)

    assert [r.call_id for r in results] == ["slow", "bad", "fast"]
    assert [r.success for r in results] == [True, False, True]
    assert results[0].data["label"] == "first"


@pytest.mark.asyncio
async def test_dispatch_all_runs_calls_concurrently(environment, custom_catalog):
    """Independent calls of one round overlap."""
    dispatcher = ToolDispatcher(custom_catalog, environment)
    calls = [ToolCall(id=f"c{i}", name="sleepy", arguments={"seconds": 0.2}) for i in range(5)]

    loop = asyncio.get_running_loop()
    start = loop.time()
    results = await dispatcher.dispatch_all(calls)
    elapsed = loop.time() - start

    assert all(r.success for r in results)
    assert elapsed < 0.8


@pytest.mark.asyncio
async def test_dispatch_all_with_no_calls(dispatcher):
    """An empty batch is a no-op."""
    assert await dispatcher.dispatch_all([]) == []
