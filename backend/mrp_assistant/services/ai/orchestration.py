"""
Conversation driver: the bounded reasoning loop behind the MRP assistant.

Each round sends the accumulated history, the tool catalog and the system
prompt to the reasoning engine, appends the engine's turn to the history,
then either executes the requested tool calls (and starts another round) or
finishes with the engine's text.

State machine per round:
    ROUND_START -> CALL_ENGINE -> TOOLS_REQUESTED -> EXECUTE_TOOLS -> ROUND_START
                               -> TEXT_RECEIVED -> DONE
                               -> NEITHER -> DONE_FALLBACK

Termination:
- final text                  -> DONE, success
- round cap reached           -> DONE_FALLBACK, success, "simplify" message
- neither text nor tool calls -> DONE_FALLBACK, success, clarifying message
- engine or round deadline    -> DONE_FALLBACK, success, "took too long" message
- provider error              -> FAILED, generic error, never retried
"""
import asyncio
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import structlog

from mrp_assistant.core.logging import generate_session_id, get_logger
from mrp_assistant.core.metrics import record_assistant_session
from mrp_assistant.core.tracing import StatusCode, get_tracer
from mrp_assistant.services.ai.prompts import build_system_prompt
from mrp_assistant.services.ai.providers import ReasoningProvider, get_provider
from mrp_assistant.services.ai.schema import (
    AssistantOptions,
    ConversationMessage,
    ProviderCredentials,
    ProviderError,
    ProviderTimeoutError,
    QueryResponse,
    TokenUsage,
    ToolLogEntry,
    ToolSpec,
    TurnResult,
)
from mrp_assistant.services.results.shaper import to_json
from mrp_assistant.services.store.base import DocumentStore
from mrp_assistant.services.tools.catalog import ToolCatalog, build_default_catalog
from mrp_assistant.services.tools.context import ToolEnvironment
from mrp_assistant.services.tools.dispatcher import ToolDispatcher

logger = get_logger(__name__)

ROUND_LIMIT_MESSAGE = (
    "I could not complete the answer within the allowed number of steps. "
    "Please simplify your request or split it into smaller questions."
)
EMPTY_TURN_MESSAGE = (
    "I am not sure how to answer that. Could you rephrase the question or add details "
    "such as an order number, a product name or a date range?"
)
TIMEOUT_MESSAGE = (
    "Answering this took too long. Please try again or narrow the question, "
    "for example with a shorter date range."
)
PROVIDER_FAILURE_MESSAGE = "The assistant is temporarily unavailable. Please try again later."
EMPTY_QUERY_MESSAGE = "Query must not be empty"


class Phase(str, Enum):
    ROUND_START = "round_start"
    CALL_ENGINE = "call_engine"
    EXECUTE_TOOLS = "execute_tools"
    DONE = "done"
    DONE_FALLBACK = "done_fallback"
    FAILED = "failed"


@dataclass
class SessionState:
    history: List[ConversationMessage]
    round: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    executed_tools: List[ToolLogEntry] = field(default_factory=list)
    phase: Phase = Phase.ROUND_START


# (termination reason, response text, error)
Outcome = Tuple[str, Optional[str], Optional[str]]


class ConversationDriver:
    """
    Runs one assistant session.

    Args:
        provider: reasoning engine adapter
        dispatcher: executes tool calls for the engine
        catalog: tools advertised to the engine
        options: round cap, deadlines and sampling
    """

    def __init__(
        self,
        provider: ReasoningProvider,
        dispatcher: ToolDispatcher,
        catalog: ToolCatalog,
        options: Optional[AssistantOptions] = None,
        log: Optional[Any] = None,
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.catalog = catalog
        self.options = options or AssistantOptions()
        self.log = log or logger

    async def run(self, query: str, history: Optional[List[ConversationMessage]] = None) -> QueryResponse:
        session_id = generate_session_id()
        start = time.time()

        if not query or not query.strip():
            return QueryResponse(
                success=False,
                error=EMPTY_QUERY_MESSAGE,
                termination_reason="invalid_request",
                session_id=session_id,
                model=self.provider.model,
            )

        state = SessionState(history=list(history or []) + [ConversationMessage.user(query.strip())])
        tools = self.catalog.specs()
        system_prompt = self.options.system_prompt or build_system_prompt()

        tracer = get_tracer()
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            with tracer.start_as_current_span("assistant.session") as span:
                span.set_attribute("assistant.session_id", session_id)
                span.set_attribute("llm.provider", self.provider.name)
                span.set_attribute("llm.model", self.provider.model)

                self.log.info(
                    "assistant_session_started",
                    provider=self.provider.name,
                    model=self.provider.model,
                    max_rounds=self.options.max_rounds,
                    history_length=len(state.history) - 1,
                )

                termination, text, error = await self._loop(state, tools, system_prompt)

                span.set_attribute("assistant.rounds", state.round)
                span.set_attribute("assistant.termination", termination)
                if error:
                    span.set_status(StatusCode.ERROR, error)

            processing_time_ms = (time.time() - start) * 1000.0
            cost = self.provider.estimate_cost(state.usage)
            record_assistant_session(self.provider.name, termination, state.round)

            self.log.info(
                "assistant_session_completed",
                termination=termination,
                rounds=state.round,
                tools_executed=len(state.executed_tools),
                tools_failed=sum(1 for t in state.executed_tools if not t.success),
                tokens_used=state.usage.total_tokens,
                estimated_cost_usd=round(cost, 6),
                processing_time_ms=processing_time_ms,
            )

        return QueryResponse(
            success=error is None,
            response=text,
            error=error,
            executed_tools=state.executed_tools,
            rounds=state.round,
            tokens_used=state.usage.total_tokens,
            usage=state.usage,
            processing_time_ms=processing_time_ms,
            estimated_cost_usd=cost,
            termination_reason=termination,
            session_id=session_id,
            model=self.provider.model,
        )

    async def _loop(self, state: SessionState, tools: List[ToolSpec], system_prompt: str) -> Outcome:
        while True:
            state.phase = Phase.ROUND_START
            if state.round >= self.options.max_rounds:
                state.phase = Phase.DONE_FALLBACK
                self.log.warning("assistant_round_limit_reached", rounds=state.round)
                return "round_limit", ROUND_LIMIT_MESSAGE, None

            state.round += 1
            with structlog.contextvars.bound_contextvars(round=state.round):
                self.log.debug("assistant_round_started", history_length=len(state.history))

                state.phase = Phase.CALL_ENGINE
                try:
                    turn = await self._call_engine(state, tools, system_prompt)
                except (asyncio.TimeoutError, ProviderTimeoutError):
                    state.phase = Phase.DONE_FALLBACK
                    self.log.warning("assistant_engine_timeout", timeout_seconds=self.options.engine_timeout_seconds)
                    return "timeout", TIMEOUT_MESSAGE, None
                except ProviderError as e:
                    state.phase = Phase.FAILED
                    self.log.error(
                        "assistant_provider_failed",
                        provider=e.provider or self.provider.name,
                        category=e.category,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    return "provider_error", None, PROVIDER_FAILURE_MESSAGE

                state.usage = state.usage + turn.usage
                # The engine's own turn precedes the results of the calls it made.
                state.history.append(ConversationMessage.assistant(turn.text, turn.tool_calls))

                if turn.tool_calls:
                    state.phase = Phase.EXECUTE_TOOLS
                    self.log.info(
                        "assistant_tools_requested",
                        tools=[call.name for call in turn.tool_calls],
                    )
                    try:
                        results = await asyncio.wait_for(
                            self.dispatcher.dispatch_all(turn.tool_calls, state.round),
                            timeout=self.options.round_timeout_seconds,
                        )
                    except asyncio.TimeoutError:
                        state.phase = Phase.DONE_FALLBACK
                        self.log.warning(
                            "assistant_round_timeout",
                            timeout_seconds=self.options.round_timeout_seconds,
                        )
                        return "timeout", TIMEOUT_MESSAGE, None

                    for result in results:
                        state.executed_tools.append(ToolLogEntry(
                            call_id=result.call_id,
                            name=result.name,
                            round=state.round,
                            success=result.success,
                            duration_ms=result.execution_time_ms,
                            error=result.error,
                            error_type=result.error_type,
                        ))
                        state.history.append(
                            ConversationMessage.tool(result.call_id, result.name, to_json(result.message_payload()))
                        )
                    continue

                if turn.text:
                    state.phase = Phase.DONE
                    return "final_text", turn.text, None

                state.phase = Phase.DONE_FALLBACK
                self.log.warning("assistant_empty_turn", finish_reason=turn.finish_reason)
                return "empty_turn", EMPTY_TURN_MESSAGE, None

    async def _call_engine(self, state: SessionState, tools: List[ToolSpec], system_prompt: str) -> TurnResult:
        tracer = get_tracer()
        with tracer.start_as_current_span("assistant.engine_call") as span:
            span.set_attribute("assistant.round", state.round)
            turn = await asyncio.wait_for(
                self.provider.send_turn(state.history, tools, system_prompt, self.options.sampling),
                timeout=self.options.engine_timeout_seconds,
            )
            span.set_attribute("llm.tool_calls", len(turn.tool_calls))
            span.set_attribute("llm.prompt_tokens", turn.usage.prompt_tokens)
            span.set_attribute("llm.completion_tokens", turn.usage.completion_tokens)
            return turn


_document_store: Optional[DocumentStore] = None
_catalog: Optional[ToolCatalog] = None


def get_document_store() -> DocumentStore:
    """
    Global Supabase-backed document store.

    Raises:
        RuntimeError: if Supabase is not configured
    """
    global _document_store
    if _document_store is None:
        from mrp_assistant.core.database import get_supabase_client
        from mrp_assistant.services.query.collections import store_table_names
        from mrp_assistant.services.store.supabase_store import SupabaseDocumentStore

        client = get_supabase_client()
        if client is None:
            raise RuntimeError("Document store is not configured (SUPABASE_URL / SUPABASE_SERVICE_KEY)")
        _document_store = SupabaseDocumentStore(client, table_names=store_table_names())
    return _document_store


def get_tool_catalog() -> ToolCatalog:
    global _catalog
    if _catalog is None:
        _catalog = build_default_catalog()
    return _catalog


async def process_query(
    query: str,
    credentials: Optional[ProviderCredentials] = None,
    history: Optional[List[ConversationMessage]] = None,
    options: Optional[AssistantOptions] = None,
    store: Optional[DocumentStore] = None,
    provider: Optional[ReasoningProvider] = None,
) -> QueryResponse:
    """
    Answer one user query.

    Args:
        query: the user's question
        credentials: which engine to use; unset fields come from the environment
        history: earlier turns of the conversation
        options: per-session overrides (round cap, deadlines, sampling, model)
        store: document store (defaults to the Supabase store)
        provider: engine adapter (defaults to one built from ``credentials``)

    Returns:
        QueryResponse; provider failures are reported in it, never raised
    """
    options = options or AssistantOptions()
    if provider is None:
        if options.model:
            base = credentials or ProviderCredentials(provider=os.getenv("LLM_PROVIDER", "openai"))
            credentials = base.model_copy(update={"model": options.model})
        provider = get_provider(credentials)

    catalog = get_tool_catalog()
    environment = ToolEnvironment(store=store or get_document_store())
    dispatcher = ToolDispatcher(catalog, environment, tool_timeout_seconds=options.tool_timeout_seconds)
    driver = ConversationDriver(provider, dispatcher, catalog, options)
    return await driver.run(query, history)
