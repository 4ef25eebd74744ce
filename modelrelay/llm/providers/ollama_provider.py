"""
Ollama adapter — local inference server over httpx.

Never needs a credential. Tools use the OpenAI function format; tool
calls carry no id, so one is synthesized as ``{name}-{index}``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from modelrelay.exceptions import ProviderUnavailableError
from modelrelay.llm.llm_config import ModelDescriptor, ProviderFamily
from modelrelay.llm.providers.base import (
    BaseProvider,
    GenerationOptions,
    NormalizedResult,
    ProviderRequest,
    error_for_status,
)
from modelrelay.llm.tools import ToolCall, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:11434"


class OllamaProvider(BaseProvider):
    """Models served by a local Ollama instance (llama, deepseek, ...)."""

    name = "ollama"
    family = ProviderFamily.LOCAL
    requires_credential = False

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        request_timeout: float = 300.0,
        **kwargs: Any,
    ):
        super().__init__(None, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _create_client(self) -> Any:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._request_timeout)

    async def _close_client(self, client: Any) -> None:
        await client.aclose()

    # --- Request building ---

    def build_request(self, prompt: str, options: GenerationOptions) -> ProviderRequest:
        messages: list[dict[str, Any]] = []
        if options.system_message:
            messages.append({"role": "system", "content": options.system_message})
        messages.append({"role": "user", "content": prompt})

        params: dict[str, Any] = {"stream": False}
        model_options: dict[str, Any] = {}
        if options.temperature is not None:
            model_options["temperature"] = options.temperature
        if options.max_tokens:
            model_options["num_predict"] = options.max_tokens
        if model_options:
            params["options"] = model_options

        if options.tool_definitions and options.tool_choice != "none":
            params["tools"] = [t.to_openai() for t in options.tool_definitions]

        return ProviderRequest(model=options.model, messages=messages, params=params)

    # --- Network ---

    async def _send_once(self, request: ProviderRequest) -> dict[str, Any]:
        try:
            resp = await self.client.post(
                "/api/chat",
                json={"model": request.model, "messages": request.messages, **request.params},
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Ollama is not reachable at {self._base_url}: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or resp.text[:200]
            except ValueError:
                message = resp.text[:200]
            raise error_for_status(
                resp.status_code,
                f"Ollama rejected the request for {request.model}: {message}",
                provider=self.name,
                model=request.model,
            )
        return resp.json()

    # --- Tool round trip ---

    def extract_tool_calls(self, raw: dict[str, Any]) -> list[ToolCall]:
        calls = []
        message = raw.get("message") or {}
        for index, tc in enumerate(message.get("tool_calls") or []):
            function = tc.get("function") or {}
            name = function.get("name", "")
            args = function.get("arguments")
            calls.append(ToolCall(
                id=tc.get("id") or f"{name}-{index}",
                name=name,
                arguments=args if isinstance(args, dict) else {},
            ))
        return calls

    def extend_with_tool_results(
        self,
        request: ProviderRequest,
        raw: dict[str, Any],
        results: list[ToolResult],
    ) -> ProviderRequest:
        tool_messages = [
            {"role": "tool", "content": r.payload, "tool_name": r.name}
            for r in results
        ]
        return ProviderRequest(
            model=request.model,
            messages=[*request.messages, raw.get("message") or {}, *tool_messages],
            params=dict(request.params),
        )

    def normalize(self, raw: dict[str, Any], model_id: str) -> NormalizedResult:
        message = raw.get("message") or {}
        return NormalizedResult(
            content=message.get("content") or raw.get("response") or "",
            provider_name=self.name,
            model_id=model_id,
            raw_response=raw,
        )

    # --- Discovery ---

    async def _list_models(self) -> list[ModelDescriptor]:
        resp = await self.client.get("/api/tags")
        resp.raise_for_status()
        return [
            ModelDescriptor(m["name"], m["name"])
            for m in resp.json().get("models", [])
            if m.get("name")
        ]
