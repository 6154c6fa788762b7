"""
Reasoning engine adapters.

Environment configuration:
- LLM_PROVIDER: "openai" (default) or "gemini"
- LLM_API_BASE / LLM_API_KEY / LLM_MODEL for the OpenAI-compatible adapter
- GEMINI_API_BASE / GEMINI_API_KEY / GEMINI_MODEL for the Gemini adapter
- ASSISTANT_ENGINE_TIMEOUT_SECONDS: per-call HTTP timeout (default: 60)
"""
import os
from typing import Dict, Optional

from mrp_assistant.services.ai.providers.base import (
    HTTPReasoningProvider,
    ReasoningProvider,
    estimate_cost_usd,
)
from mrp_assistant.services.ai.providers.gemini import GeminiStreamProvider
from mrp_assistant.services.ai.providers.openai import OpenAIChatProvider
from mrp_assistant.services.ai.schema import ProviderCredentials

DEFAULT_MODELS = {"openai": "gpt-4o-mini", "gemini": "gemini-2.5-flash"}
DEFAULT_API_BASES = {
    "openai": "https://api.openai.com/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta",
}
_ENV_PREFIX = {"openai": "LLM", "gemini": "GEMINI"}

# One adapter (and so one circuit breaker) per provider/base/model/key.
_providers: Dict[tuple, ReasoningProvider] = {}


def get_provider(credentials: Optional[ProviderCredentials] = None) -> ReasoningProvider:
    """
    Get a provider adapter, filling unset credentials from the environment.

    Adapters are cached so that repeated sessions share circuit breaker state.
    """
    credentials = credentials or ProviderCredentials(provider=os.getenv("LLM_PROVIDER", "openai"))
    kind = credentials.provider
    prefix = _ENV_PREFIX[kind]
    api_base = credentials.api_base or os.getenv(f"{prefix}_API_BASE", DEFAULT_API_BASES[kind])
    api_key = credentials.api_key or os.getenv(f"{prefix}_API_KEY")
    model = credentials.model or os.getenv(f"{prefix}_MODEL", DEFAULT_MODELS[kind])
    timeout = float(os.getenv("ASSISTANT_ENGINE_TIMEOUT_SECONDS", "60") or "60")

    cache_key = (kind, api_base, model, api_key)
    if cache_key not in _providers:
        adapter_class = GeminiStreamProvider if kind == "gemini" else OpenAIChatProvider
        _providers[cache_key] = adapter_class(
            api_base=api_base,
            api_key=api_key,
            model=model,
            timeout_seconds=timeout,
        )
    return _providers[cache_key]


__all__ = [
    "GeminiStreamProvider",
    "HTTPReasoningProvider",
    "OpenAIChatProvider",
    "ReasoningProvider",
    "estimate_cost_usd",
    "get_provider",
]
