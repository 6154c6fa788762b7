"""
Pydantic models and error types shared by the conversation driver, the
provider adapters and the tool dispatcher.
"""
import os
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# CONVERSATION
# ============================================================================


class ToolCall(CamelModel):
    """
    A tool invocation requested by the reasoning engine.

    ``arguments`` is whatever the engine produced: a JSON object for part-based
    providers, a raw JSON string for function-calling providers. Parsing is
    the dispatcher's job so that malformed arguments fail only this call.
    """

    id: str
    name: str
    arguments: Any = Field(default_factory=dict)


class ConversationMessage(CamelModel):
    role: Literal["user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: Optional[str], tool_calls: Optional[List[ToolCall]] = None) -> "ConversationMessage":
        return cls(role="assistant", content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, call_id: str, name: str, content: str) -> "ConversationMessage":
        return cls(role="tool", content=content, tool_call_id=call_id, name=name)


class ToolSpec(BaseModel):
    """Declarative description of a tool as advertised to the engine."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: Dict[str, Any]


class ToolResult(CamelModel):
    """Outcome of one tool call; exactly one is produced per ToolCall."""

    call_id: str
    name: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    details: Optional[Any] = None
    execution_time_ms: float = 0.0

    def message_payload(self) -> Dict[str, Any]:
        """Body placed in the tool message returned to the engine."""
        if self.success:
            return self.data or {}
        payload: Dict[str, Any] = {"success": False, "error": self.error, "errorType": self.error_type}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class TokenUsage(CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class SamplingParams(CamelModel):
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(2048, gt=0)
    top_p: Optional[float] = Field(None, gt=0.0, le=1.0)


class TurnResult(CamelModel):
    """One engine turn: final text, tool calls, or (anomalously) neither."""

    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _blank_text_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class ToolLogEntry(CamelModel):
    """Per-call execution log entry; never carries record data."""

    call_id: str
    name: str
    round: int
    success: bool
    duration_ms: float
    error: Optional[str] = None
    error_type: Optional[str] = None


# ============================================================================
# ENTRY POINT
# ============================================================================


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)) or default)


class AssistantOptions(CamelModel):
    """Per-session knobs; defaults come from the environment."""

    max_rounds: int = Field(default_factory=lambda: int(os.getenv("ASSISTANT_MAX_ROUNDS", "5") or 5), ge=1, le=10)
    engine_timeout_seconds: float = Field(
        default_factory=lambda: _env_float("ASSISTANT_ENGINE_TIMEOUT_SECONDS", 60.0), gt=0
    )
    tool_timeout_seconds: float = Field(
        default_factory=lambda: _env_float("ASSISTANT_TOOL_TIMEOUT_SECONDS", 20.0), gt=0
    )
    round_timeout_seconds: float = Field(
        default_factory=lambda: _env_float("ASSISTANT_ROUND_TIMEOUT_SECONDS", 45.0), gt=0
    )
    sampling: SamplingParams = Field(default_factory=SamplingParams)
    model: Optional[str] = None
    system_prompt: Optional[str] = None


class ProviderCredentials(CamelModel):
    """Which engine to talk to and how to authenticate."""

    provider: Literal["openai", "gemini"] = "openai"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    model: Optional[str] = None


TerminationReason = Literal[
    "final_text",
    "round_limit",
    "empty_turn",
    "timeout",
    "provider_error",
    "invalid_request",
]


class QueryResponse(CamelModel):
    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    executed_tools: List[ToolLogEntry] = Field(default_factory=list)
    rounds: int = 0
    tokens_used: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_time_ms: float = 0.0
    estimated_cost_usd: float = 0.0
    termination_reason: TerminationReason = "final_text"
    session_id: Optional[str] = None
    model: Optional[str] = None


# ============================================================================
# ERRORS
# ============================================================================


class AssistantError(Exception):
    """Base class for assistant errors."""


class ProviderError(AssistantError):
    """
    The reasoning engine could not produce a turn (network, auth, quota,
    safety block, malformed response). Fatal for the session; never retried.
    """

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None, category: str = "provider_error"):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.category = category


class ProviderTimeoutError(ProviderError):
    """The engine call exceeded its deadline; the session ends in the fallback state."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message, provider=provider, category="timeout")


class ToolError(AssistantError):
    """Base for call-scoped errors that become failed ToolResults."""

    error_type = "tool_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.details = details


class UnknownToolError(ToolError):
    error_type = "unknown_tool"


class ToolArgumentError(ToolError):
    error_type = "argument_error"


class ToolExecutionError(ToolError):
    error_type = "execution_error"
