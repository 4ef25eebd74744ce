"""
Provider adapters — one per backend family.

- base: BaseProvider contract, request/result types, error mapping
- openai_provider: OpenAI chat completions (gpt, o-series)
- anthropic_provider: Anthropic messages API (Claude)
- google_provider: Gemini generateContent over REST
- ollama_provider: local Ollama server
"""

from modelrelay.llm.providers.anthropic_provider import AnthropicProvider
from modelrelay.llm.providers.base import (
    BaseProvider,
    GenerationOptions,
    NormalizedResult,
    ProviderRequest,
    ResultMetadata,
)
from modelrelay.llm.providers.google_provider import GoogleProvider
from modelrelay.llm.providers.ollama_provider import OllamaProvider
from modelrelay.llm.providers.openai_provider import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GenerationOptions",
    "GoogleProvider",
    "NormalizedResult",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderRequest",
    "ResultMetadata",
]
