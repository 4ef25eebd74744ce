"""
Anthropic adapter — messages API over the async Anthropic SDK.

Registry aliases (claude-4, claude-4-opus) are mapped to the ids the
API actually serves before the request is built.
"""

from __future__ import annotations

import logging
from typing import Any

import anthropic

from modelrelay.exceptions import ProviderUnavailableError
from modelrelay.llm.llm_config import ModelDescriptor, ProviderFamily
from modelrelay.llm.providers.base import (
    BaseProvider,
    GenerationOptions,
    NormalizedResult,
    ProviderRequest,
    error_for_status,
    response_to_dict,
)
from modelrelay.llm.tools import ToolCall, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096

MODEL_ALIASES = {
    "claude-4": "claude-sonnet-4-20250514",
    "claude-4-opus": "claude-opus-4-20250514",
}

KNOWN_MODELS = [
    ModelDescriptor("claude-opus-4-20250514", "Claude 4 Opus"),
    ModelDescriptor("claude-sonnet-4-20250514", "Claude 4 Sonnet"),
    ModelDescriptor("claude-3-7-sonnet-20250219", "Claude 3.7 Sonnet"),
    ModelDescriptor("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
    ModelDescriptor("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
]


class AnthropicProvider(BaseProvider):
    """Anthropic Claude models."""

    name = "anthropic"
    family = ProviderFamily.ANTHROPIC

    def _create_client(self) -> Any:
        return anthropic.AsyncAnthropic(api_key=self._api_key)

    @staticmethod
    def served_model(model_id: str) -> str:
        return MODEL_ALIASES.get(model_id, model_id)

    # --- Request building ---

    def build_request(self, prompt: str, options: GenerationOptions) -> ProviderRequest:
        params: dict[str, Any] = {
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.system_message:
            params["system"] = options.system_message
        if options.temperature is not None:
            params["temperature"] = options.temperature

        choice = options.tool_choice or "auto"
        # Anthropic has no "none" mode; such calls go out without tools
        if options.tool_definitions and choice != "none":
            params["tools"] = [t.to_anthropic() for t in options.tool_definitions]
            if choice == "auto":
                params["tool_choice"] = {"type": "auto"}
            elif choice == "any":
                params["tool_choice"] = {"type": "any"}
            else:
                params["tool_choice"] = {"type": "tool", "name": choice}

        return ProviderRequest(
            model=self.served_model(options.model),
            messages=[{"role": "user", "content": prompt}],
            params=params,
        )

    # --- Network ---

    async def _send_once(self, request: ProviderRequest) -> dict[str, Any]:
        try:
            response = await self.client.messages.create(
                model=request.model,
                messages=request.messages,
                **request.params,
            )
        except anthropic.APIConnectionError as e:
            raise ProviderUnavailableError(
                f"Anthropic is not reachable: {e}",
                provider=self.name,
                model=request.model,
            ) from e
        except anthropic.APIStatusError as e:
            raise error_for_status(
                e.status_code,
                f"Anthropic rejected the request for {request.model}: {e.message}",
                provider=self.name,
                model=request.model,
            ) from e
        except anthropic.APIError as e:
            raise ProviderUnavailableError(
                f"Anthropic call failed: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        return response_to_dict(response)

    # --- Tool round trip ---

    def extract_tool_calls(self, raw: dict[str, Any]) -> list[ToolCall]:
        calls = []
        for block in raw.get("content") or []:
            if block.get("type") != "tool_use":
                continue
            arguments = block.get("input")
            calls.append(ToolCall(
                id=block.get("id", ""),
                name=block.get("name", ""),
                arguments=arguments if isinstance(arguments, dict) else {},
            ))
        return calls

    def extend_with_tool_results(
        self,
        request: ProviderRequest,
        raw: dict[str, Any],
        results: list[ToolResult],
    ) -> ProviderRequest:
        params = dict(request.params)
        # tool_use blocks in history require the tools to stay declared
        if params.get("tool_choice", {}).get("type") in ("any", "tool"):
            params["tool_choice"] = {"type": "auto"}

        return ProviderRequest(
            model=request.model,
            messages=[
                *request.messages,
                {"role": "assistant", "content": raw.get("content") or []},
                {"role": "user", "content": [r.to_anthropic() for r in results]},
            ],
            params=params,
        )

    def normalize(self, raw: dict[str, Any], model_id: str) -> NormalizedResult:
        text_parts = [
            block.get("text", "")
            for block in raw.get("content") or []
            if block.get("type") == "text"
        ]
        return NormalizedResult(
            content="\n".join(text_parts),
            provider_name=self.name,
            model_id=model_id,
            raw_response=raw,
        )

    # --- Discovery ---

    async def _list_models(self) -> list[ModelDescriptor]:
        return list(KNOWN_MODELS)
