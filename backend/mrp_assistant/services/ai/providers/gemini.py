"""
Gemini adapter (part-based responses consumed as a server-sent-event stream).

The model streams ``candidates[0].content.parts`` incrementally: text parts
are concatenated, ``functionCall`` parts become tool calls, ``thought``
parts are dropped. Usage metadata is cumulative, so the last value wins.

Environment configuration (see get_provider):
- GEMINI_API_BASE: Base URL (default: https://generativelanguage.googleapis.com/v1beta)
- GEMINI_API_KEY: API key
- GEMINI_MODEL: model name (default: gemini-2.5-flash)
"""
import json
import uuid
from typing import Any, Dict, List, Optional

from mrp_assistant.core.logging import get_logger
from mrp_assistant.services.ai.providers.base import HTTPReasoningProvider, parse_arguments
from mrp_assistant.services.ai.schema import (
    ConversationMessage,
    ProviderError,
    SamplingParams,
    TokenUsage,
    ToolCall,
    ToolSpec,
    TurnResult,
)

logger = get_logger(__name__)

BLOCKED_FINISH_REASONS = ("SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII")


def _tool_response_body(content: Optional[str]) -> Dict[str, Any]:
    """functionResponse.response must be a JSON object."""
    if not content:
        return {}
    try:
        decoded = json.loads(content)
    except json.JSONDecodeError:
        return {"result": content}
    return decoded if isinstance(decoded, dict) else {"result": decoded}


def to_gemini_contents(history: List[ConversationMessage]) -> List[Dict[str, Any]]:
    """
    Map history onto Gemini contents.

    Consecutive tool messages are merged into one user turn of
    functionResponse parts, mirroring the model turn that requested them.
    """
    contents: List[Dict[str, Any]] = []
    for message in history:
        if message.role == "tool":
            part = {"functionResponse": {"name": message.name, "response": _tool_response_body(message.content)}}
            previous = contents[-1] if contents else None
            if previous and previous["role"] == "user" and all("functionResponse" in p for p in previous["parts"]):
                previous["parts"].append(part)
            else:
                contents.append({"role": "user", "parts": [part]})
        elif message.role == "assistant":
            parts: List[Dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            for call in message.tool_calls:
                parts.append({"functionCall": {"name": call.name, "args": parse_arguments(call.arguments)}})
            if parts:
                contents.append({"role": "model", "parts": parts})
        else:
            contents.append({"role": "user", "parts": [{"text": message.content or ""}]})
    return contents


class GeminiStreamProvider(HTTPReasoningProvider):
    name = "gemini"

    def build_payload(
        self,
        history: List[ConversationMessage],
        tools: List[ToolSpec],
        system_prompt: str,
        sampling: SamplingParams,
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": sampling.temperature,
            "maxOutputTokens": sampling.max_output_tokens,
        }
        if sampling.top_p is not None:
            generation_config["topP"] = sampling.top_p
        payload: Dict[str, Any] = {
            "contents": to_gemini_contents(history),
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": generation_config,
        }
        if tools:
            payload["tools"] = [{
                "functionDeclarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters} for t in tools
                ]
            }]
        return payload

    def _check_blocked(self, chunk: Dict[str, Any]) -> None:
        block_reason = (chunk.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ProviderError(f"gemini prompt blocked: {block_reason}", provider=self.name, category="safety_block")
        for candidate in chunk.get("candidates") or []:
            if candidate.get("finishReason") in BLOCKED_FINISH_REASONS:
                raise ProviderError(
                    f"gemini response blocked: {candidate['finishReason']}",
                    provider=self.name,
                    category="safety_block",
                )

    def parse_stream_chunks(self, chunks: List[Dict[str, Any]]) -> TurnResult:
        """Fold decoded SSE chunks into one TurnResult."""
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        usage: Dict[str, Any] = {}
        finish_reason = None

        for chunk in chunks:
            self._check_blocked(chunk)
            if chunk.get("usageMetadata"):
                usage = chunk["usageMetadata"]
            candidates = chunk.get("candidates") or []
            if not candidates:
                continue
            candidate = candidates[0]
            finish_reason = candidate.get("finishReason") or finish_reason
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("thought"):
                    continue
                if "functionCall" in part:
                    call = part["functionCall"]
                    tool_calls.append(ToolCall(
                        id=call.get("id") or f"gemini-{uuid.uuid4().hex[:12]}",
                        name=call.get("name", ""),
                        arguments=call.get("args") or {},
                    ))
                elif part.get("text"):
                    text_parts.append(part["text"])

        if finish_reason == "MAX_TOKENS":
            logger.warning("gemini_max_tokens_reached", model=self.model)

        return TurnResult(
            text="".join(text_parts) or None,
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=int(usage.get("promptTokenCount") or 0),
                completion_tokens=int(usage.get("candidatesTokenCount") or 0),
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
        url = f"{self.api_base}/models/{self.model}:streamGenerateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        chunks: List[Dict[str, Any]] = []
        async with self._client() as client:
            async with client.stream(
                "POST",
                url,
                params={"alt": "sse"},
                headers=headers,
                json=self.build_payload(history, tools, system_prompt, sampling),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if not payload or payload == "[DONE]":
                        continue
                    chunks.append(json.loads(payload))
        if not chunks:
            raise ProviderError("gemini stream contained no data", provider=self.name, category="malformed_response")
        return self.parse_stream_chunks(chunks)
