"""
OpenAI adapter — chat completions over the async OpenAI SDK.

Reasoning models (o1/o3/o4) differ from the gpt family:
- no system role: the system message is merged into the user turn
- ``max_completion_tokens`` instead of ``max_tokens``
- default temperature only

When the API refuses a reasoning model id, the request is retried once
on gpt-4.1 (or gpt-4.1-mini for *mini* ids) with standard parameters.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import openai

from modelrelay.exceptions import ProviderError, ProviderUnavailableError
from modelrelay.llm.llm_config import (
    DEFAULT_MODEL,
    ModelDescriptor,
    ProviderFamily,
    is_reasoning_model,
)
from modelrelay.llm.providers.base import (
    BaseProvider,
    GenerationOptions,
    NormalizedResult,
    ProviderRequest,
    error_for_status,
    merge_known_models,
    response_to_dict,
)
from modelrelay.llm.tools import ToolCall, ToolResult

logger = logging.getLogger(__name__)

REASONING_MAX_COMPLETION_TOKENS = 32000
GPT_41_MAX_TOKENS = 8000
STANDARD_MAX_TOKENS = 4096
STANDARD_TEMPERATURE = 0.7

KNOWN_MODELS = [
    ModelDescriptor("o4-mini", "o4-mini"),
    ModelDescriptor("o3", "o3"),
    ModelDescriptor("gpt-4.1", "GPT-4.1"),
    ModelDescriptor("gpt-4.1-mini", "GPT-4.1 mini"),
    ModelDescriptor("gpt-4o-mini", "GPT-4o mini"),
]

_CHAT_MODEL_MARKERS = ("gpt", "o1", "o3", "o4")


def _tool_choice(choice: str) -> Any:
    if choice == "auto":
        return "auto"
    if choice == "any":
        return "required"
    if choice == "none":
        return "none"
    return {"type": "function", "function": {"name": choice}}


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions (gpt and o-series models)."""

    name = "openai"
    family = ProviderFamily.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self._base_url = base_url

    def _create_client(self) -> Any:
        return openai.AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)

    # --- Request building ---

    def build_request(self, prompt: str, options: GenerationOptions) -> ProviderRequest:
        model = options.model or DEFAULT_MODEL
        reasoning = is_reasoning_model(model)
        messages: list[dict[str, Any]] = []
        params: dict[str, Any] = {}

        if reasoning:
            content = prompt
            if options.system_message:
                content = f"{options.system_message}\n\n---\n\n{prompt}"
            messages.append({"role": "user", "content": content})
            params["max_completion_tokens"] = (
                options.max_tokens or REASONING_MAX_COMPLETION_TOKENS
            )
        else:
            if options.system_message:
                messages.append({"role": "system", "content": options.system_message})
            messages.append({"role": "user", "content": prompt})
            default_tokens = (
                GPT_41_MAX_TOKENS if "gpt-4.1" in model else STANDARD_MAX_TOKENS
            )
            params["max_tokens"] = options.max_tokens or default_tokens
            params["temperature"] = (
                options.temperature
                if options.temperature is not None
                else STANDARD_TEMPERATURE
            )

        if options.tool_definitions:
            params["tools"] = [t.to_openai() for t in options.tool_definitions]
            params["tool_choice"] = _tool_choice(options.tool_choice or "auto")

        return ProviderRequest(model=model, messages=messages, params=params)

    # --- Network ---

    async def _send_once(self, request: ProviderRequest) -> dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=request.model,
                messages=request.messages,
                **request.params,
            )
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(
                f"OpenAI is not reachable: {e}",
                provider=self.name,
                model=request.model,
            ) from e
        except openai.APIStatusError as e:
            raise self._translate(e, request.model) from e
        except openai.APIError as e:
            raise ProviderUnavailableError(
                f"OpenAI call failed: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        return response_to_dict(response)

    def _translate(self, exc: openai.APIStatusError, model: str) -> ProviderError:
        return error_for_status(
            exc.status_code,
            f"OpenAI rejected the request for {model}: {exc.message}",
            provider=self.name,
            model=model,
        )

    def substitute_model(self, model_id: str) -> Optional[str]:
        if not is_reasoning_model(model_id):
            return None
        return "gpt-4.1-mini" if "mini" in model_id else "gpt-4.1"

    def apply_substitution(self, request: ProviderRequest, model_id: str) -> None:
        request.model = model_id
        request.params.pop("max_completion_tokens", None)
        request.params["max_tokens"] = STANDARD_MAX_TOKENS

    # --- Tool round trip ---

    @staticmethod
    def _message(raw: dict[str, Any]) -> dict[str, Any]:
        choices = raw.get("choices") or []
        if not choices:
            return {}
        return choices[0].get("message") or {}

    def extract_tool_calls(self, raw: dict[str, Any]) -> list[ToolCall]:
        calls = []
        for tc in self._message(raw).get("tool_calls") or []:
            function = tc.get("function") or {}
            raw_args = function.get("arguments") or "{}"
            try:
                args = json.loads(raw_args)
            except json.JSONDecodeError:
                logger.warning(
                    "tool_arguments_unparseable",
                    extra={"tool_name": function.get("name"), "provider": self.name},
                )
                args = {}
            calls.append(ToolCall(
                id=tc.get("id", ""),
                name=function.get("name", ""),
                arguments=args if isinstance(args, dict) else {},
                raw_arguments=raw_args,
            ))
        return calls

    def extend_with_tool_results(
        self,
        request: ProviderRequest,
        raw: dict[str, Any],
        results: list[ToolResult],
    ) -> ProviderRequest:
        message = self._message(raw)
        assistant = {
            "role": "assistant",
            "content": message.get("content"),
            "tool_calls": message.get("tool_calls", []),
        }
        params = dict(request.params)
        if "tool_choice" in params and params["tool_choice"] != "none":
            params["tool_choice"] = "auto"

        return ProviderRequest(
            model=request.model,
            messages=[*request.messages, assistant, *(r.to_openai() for r in results)],
            params=params,
        )

    def normalize(self, raw: dict[str, Any], model_id: str) -> NormalizedResult:
        return NormalizedResult(
            content=self._message(raw).get("content") or "",
            provider_name=self.name,
            model_id=model_id,
            raw_response=raw,
        )

    # --- Discovery ---

    async def _list_models(self) -> list[ModelDescriptor]:
        page = await self.client.models.list()
        discovered = [
            ModelDescriptor(m.id, m.id)
            for m in page.data
            if any(marker in m.id for marker in _CHAT_MODEL_MARKERS)
        ]
        return merge_known_models(KNOWN_MODELS, discovered)
