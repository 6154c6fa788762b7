"""
OpenAI-compatible chat completions adapter (batch JSON function calling).

Environment configuration (see get_provider):
- LLM_API_BASE: Base URL (default: https://api.openai.com/v1)
- LLM_API_KEY: bearer token
- LLM_MODEL: model name (default: gpt-4o-mini)
"""
import json
from typing import Any, Dict, List

from mrp_assistant.services.ai.providers.base import HTTPReasoningProvider
from mrp_assistant.services.ai.schema import (
    ConversationMessage,
    ProviderError,
    SamplingParams,
    TokenUsage,
    ToolCall,
    ToolSpec,
    TurnResult,
)

BLOCKED_FINISH_REASONS = ("content_filter",)


def _encode_arguments(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments or {}, ensure_ascii=False)


def to_openai_messages(history: List[ConversationMessage], system_prompt: str) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in history:
        if message.role == "tool":
            messages.append({
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content or "",
            })
        elif message.role == "assistant":
            entry: Dict[str, Any] = {"role": "assistant", "content": message.content}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": _encode_arguments(call.arguments)},
                    }
                    for call in message.tool_calls
                ]
            messages.append(entry)
        else:
            messages.append({"role": "user", "content": message.content or ""})
    return messages


def to_openai_tools(tools: List[ToolSpec]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
        }
        for t in tools
    ]


class OpenAIChatProvider(HTTPReasoningProvider):
    name = "openai"

    def build_payload(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(history, system_prompt),
            "temperature": sampling.temperature,
            "max_tokens": sampling.max_output_tokens,
        }
        if sampling.top_p is not None:
            payload["top_p"] = sampling.top_p
        if tools:
            payload["tools"] = to_openai_tools(tools)
            payload["tool_choice"] = "auto"
        return payload

    def parse_response(self, data: Dict[str, Any]) -> TurnResult:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("openai response contained no choices", provider=self.name, category="malformed_response")
        choice = choices[0]
        finish_reason = choice.get("finish_reason")
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise ProviderError(
                f"openai response blocked: {finish_reason}", provider=self.name, category="safety_block"
            )

        message = choice.get("message") or {}
        tool_calls = [
            ToolCall(
                id=call.get("id") or f"call_{index}",
                name=(call.get("function") or {}).get("name", ""),
                arguments=(call.get("function") or {}).get("arguments", ""),
            )
            for index, call in enumerate(message.get("tool_calls") or [])
        ]
        usage = data.get("usage") or {}
        return TurnResult(
            text=message.get("content"),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens") or 0),
                completion_tokens=int(usage.get("completion_tokens") or 0),
            ),
            finish_reason=finish_reason,
        )

    async def _exchange(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> TurnResult:
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        async with self._client() as client:
            response = await client.post(
                f"{self.api_base}/chat/completions",
                headers=headers,
                json=self.build_payload(history, tools, system_prompt, sampling),
            )
        self._raise_for_status(response)
        return self.parse_response(response.json())
