"""
ReasoningProvider interface and the shared HTTP plumbing of its adapters.

Adapters only marshal requests and responses. The round loop, tool
execution and bookkeeping live in the conversation driver, which sees every
provider through ``send_turn``.

Design constraints:
- No vendor SDKs; plain httpx against the provider's REST API
- Every call goes through a circuit breaker and records LLM metrics
- Transport failures surface as ProviderError / ProviderTimeoutError only
"""
import json
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from mrp_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from mrp_assistant.core.logging import get_logger
from mrp_assistant.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)
from mrp_assistant.services.ai.schema import (
    ConversationMessage,
    ProviderError,
    ProviderTimeoutError,
    SamplingParams,
    TokenUsage,
    ToolSpec,
    TurnResult,
)

logger = get_logger(__name__)

# USD per 1K tokens: (input, output).
MODEL_PRICING_PER_1K: Dict[str, Tuple[float, float]] = {
    "gpt-4o": (0.005, 0.015),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gemini-2.5-pro": (0.00125, 0.005),
    "gemini-1.5-pro": (0.00125, 0.005),
    "gemini-2.5-flash": (0.0003, 0.0025),
    "gemini-1.5-flash": (0.000075, 0.0003),
}


def estimate_cost_usd(model: str, usage: TokenUsage) -> float:
    """
    Estimate the cost of ``usage`` for ``model``.

    Known models use the pricing table; otherwise LLM_COST_PER_1K_TOKENS
    (a blended rate) applies, defaulting to 0 rather than guessing.
    """
    pricing = MODEL_PRICING_PER_1K.get(model)
    if pricing is not None:
        input_rate, output_rate = pricing
        return (usage.prompt_tokens / 1000.0) * input_rate + (usage.completion_tokens / 1000.0) * output_rate
    blended = float(os.getenv("LLM_COST_PER_1K_TOKENS", "0.0") or "0.0")
    return (usage.total_tokens / 1000.0) * blended if blended > 0 else 0.0


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Best-effort decode of tool-call arguments for re-sending history."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        return decoded if isinstance(decoded, dict) else {"_value": decoded}
    return {}


class ReasoningProvider(ABC):
    """One turn against a reasoning engine."""

    name = "provider"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def send_turn(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> TurnResult:
        """
        Send the accumulated history and tool catalog; return the engine's turn.

        Raises:
            ProviderTimeoutError: the call exceeded its deadline
            ProviderError: any other failure to obtain a usable turn
        """

    def estimate_cost(self, usage: TokenUsage) -> float:
        return estimate_cost_usd(self.model, usage)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason_phrase


def _status_category(status_code: int) -> str:
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "quota"
    if status_code >= 500:
        return "server_error"
    return "bad_request"


class HTTPReasoningProvider(ReasoningProvider):
    """
    Base for httpx-backed adapters.

    ``transport`` lets tests substitute ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 60.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(model)
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name=f"llm_{self.name}",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        category = _status_category(response.status_code)
        raise ProviderError(
            f"{self.name} API error {response.status_code}: {_error_message(response)}",
            provider=self.name,
            status_code=response.status_code,
            category=category,
        )

    @abstractmethod
    async def _exchange(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> TurnResult:
        """Perform the HTTP exchange and parse the turn (no error mapping)."""

    async def send_turn(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> TurnResult:
        if not self.api_key:
            record_llm_error(self.name, "missing_api_key")
            raise ProviderError(f"{self.name} API key not configured", provider=self.name, category="auth")

        start = time.time()
        try:
            turn: TurnResult = await self.circuit_breaker.call_async(
                self._exchange, history, tools, system_prompt, sampling
            )
        except CircuitBreakerOpenError as exc:
            record_llm_error(self.name, "circuit_open")
            logger.warning("llm_circuit_open", provider=self.name)
            raise ProviderError(str(exc), provider=self.name, category="circuit_open") from exc
        except httpx.TimeoutException as exc:
            record_llm_error(self.name, "timeout")
            logger.warning(
                "llm_timeout",
                provider=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProviderTimeoutError(f"{self.name} request timed out", provider=self.name) from exc
        except httpx.HTTPError as exc:
            record_llm_error(self.name, "http_error")
            logger.warning(
                "llm_http_error",
                provider=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProviderError(f"{self.name} request failed: {exc}", provider=self.name, category="network") from exc
        except ProviderError as exc:
            record_llm_error(self.name, exc.category)
            logger.warning(
                "llm_provider_error",
                provider=self.name,
                category=exc.category,
                status_code=exc.status_code,
                error=str(exc),
            )
            raise
        except (ValueError, KeyError, TypeError) as exc:
            record_llm_error(self.name, "malformed_response")
            logger.error(
                "llm_malformed_response",
                provider=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise ProviderError(
                f"{self.name} returned an unreadable response", provider=self.name, category="malformed_response"
            ) from exc
        finally:
            record_llm_request(self.name, self.model, (time.time() - start) * 1000.0)

        record_llm_tokens_and_cost(
            provider=self.name,
            model=self.model,
            input_tokens=turn.usage.prompt_tokens,
            output_tokens=turn.usage.completion_tokens,
            cost_usd=self.estimate_cost(turn.usage),
        )
        return turn
