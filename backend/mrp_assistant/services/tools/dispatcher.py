"""
Tool dispatcher: turns one engine-requested ToolCall into exactly one ToolResult.

dispatch() never raises. Unknown names, unparseable or invalid arguments,
handler failures and timeouts all become failed results that go back to the
engine, so one bad call never aborts its round.
"""
import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from mrp_assistant.core.logging import get_logger
from mrp_assistant.core.metrics import record_tool_empty_result, record_tool_execution, tool_metric_label
from mrp_assistant.core.tracing import StatusCode, get_tracer
from mrp_assistant.services.ai.schema import (
    ToolArgumentError,
    ToolCall,
    ToolError,
    ToolResult,
    UnknownToolError,
)
from mrp_assistant.services.store.base import StoreError
from mrp_assistant.services.tools.catalog import ToolCatalog
from mrp_assistant.services.tools.context import ToolEnvironment

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 20.0


def parse_call_arguments(raw: Any) -> Dict[str, Any]:
    """
    Decode engine-produced arguments into a JSON object.

    Raises:
        ToolArgumentError: if the arguments are not a JSON object
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(
                f"Arguments are not valid JSON: {e.msg}",
                details={"position": e.pos},
            ) from e
        if decoded is None:
            return {}
        if isinstance(decoded, dict):
            return decoded
    raise ToolArgumentError("Arguments must be a JSON object", details={"received": type(raw).__name__})


def validation_details(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]) or None,
            "message": item["msg"],
            "type": item["type"],
        }
        for item in error.errors(include_url=False)
    ]


class ToolDispatcher:
    """
    Executes tool calls against a catalog.

    Args:
        catalog: registered tools
        environment: store, translator and name directory shared by all calls
        tool_timeout_seconds: per-call deadline
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        environment: ToolEnvironment,
        tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        log: Optional[Any] = None,
    ):
        self.catalog = catalog
        self.environment = environment
        self.tool_timeout_seconds = tool_timeout_seconds
        self.log = log or logger

    async def dispatch_all(self, calls: Sequence[ToolCall], round_number: int = 0) -> List[ToolResult]:
        """Run all calls of one turn concurrently; results come back in call order."""
        if not calls:
            return []
        return list(await asyncio.gather(*(self.dispatch(call, round_number) for call in calls)))

    async def dispatch(self, call: ToolCall, round_number: int = 0) -> ToolResult:
        with structlog.contextvars.bound_contextvars(tool_call_id=call.id, tool=call.name):
            tracer = get_tracer()
            with tracer.start_as_current_span("assistant.tool_call") as span:
                span.set_attribute("tool.name", call.name)
                span.set_attribute("tool.call_id", call.id)
                span.set_attribute("assistant.round", round_number)
                result = await self._execute(call)
                span.set_attribute("tool.success", result.success)
                if not result.success:
                    span.set_status(StatusCode.ERROR, result.error or "")

            known = call.name in self.catalog
            record_tool_execution(tool_metric_label(call.name, known), result.success, result.execution_time_ms)
            if result.success and (result.data or {}).get("isEmpty"):
                record_tool_empty_result(tool_metric_label(call.name, known))

            if result.success:
                self.log.info(
                    "tool_call_succeeded",
                    duration_ms=result.execution_time_ms,
                    is_empty=(result.data or {}).get("isEmpty"),
                    count=(result.data or {}).get("count"),
                )
            else:
                self.log.warning(
                    "tool_call_failed",
                    error=result.error,
                    error_type=result.error_type,
                    duration_ms=result.execution_time_ms,
                )
            return result

    async def _execute(self, call: ToolCall) -> ToolResult:
        start = time.time()

        def failed(error: str, error_type: str, details: Any = None) -> ToolResult:
            return ToolResult(
                call_id=call.id,
                name=call.name,
                success=False,
                error=error,
                error_type=error_type,
                details=details,
                execution_time_ms=(time.time() - start) * 1000.0,
            )

        definition = self.catalog.get(call.name)
        if definition is None:
            error = UnknownToolError(
                f"Unknown operation '{call.name}'",
                details={"availableTools": self.catalog.names},
            )
            return failed(str(error), error.error_type, error.details)

        try:
            arguments = parse_call_arguments(call.arguments)
            params = definition.params_model.model_validate(arguments)
        except ToolArgumentError as e:
            return failed(str(e), e.error_type, e.details)
        except ValidationError as e:
            return failed(
                f"Invalid arguments for '{call.name}'",
                ToolArgumentError.error_type,
                validation_details(e),
            )

        context = self.environment.for_call(self.log)
        try:
            data = await asyncio.wait_for(definition.handler(params, context), timeout=self.tool_timeout_seconds)
        except asyncio.TimeoutError:
            return failed(f"'{call.name}' did not finish within {self.tool_timeout_seconds:g}s", "timeout")
        except ToolError as e:
            return failed(str(e), e.error_type, e.details)
        except StoreError as e:
            self.log.error("tool_store_error", error=str(e), error_type=type(e).__name__)
            return failed(f"Data store error: {e}", "store_error")
        except Exception as e:
            self.log.error(
                "tool_handler_exception",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return failed(str(e) or type(e).__name__, "execution_error")

        return ToolResult(
            call_id=call.id,
            name=call.name,
            success=True,
            data=data,
            execution_time_ms=(time.time() - start) * 1000.0,
        )
