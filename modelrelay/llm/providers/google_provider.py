"""
Google Gemini adapter — Generative Language REST API via httpx.

Gemini function calls carry no id, so one is synthesized as
``{name}-{index}`` from the call's position in the response.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from modelrelay.exceptions import ProviderError, ProviderUnavailableError
from modelrelay.llm.llm_config import ModelDescriptor, ProviderFamily
from modelrelay.llm.providers.base import (
    BaseProvider,
    GenerationOptions,
    NormalizedResult,
    ProviderRequest,
    error_for_status,
    merge_known_models,
)
from modelrelay.llm.tools import ToolCall, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"

KNOWN_MODELS = [
    ModelDescriptor("gemini-2.5-pro", "Gemini 2.5 Pro"),
    ModelDescriptor("gemini-2.5-flash", "Gemini 2.5 Flash"),
    ModelDescriptor("gemini-2.0-flash", "Gemini 2.0 Flash"),
]

_CALLING_MODES = {"auto": "AUTO", "any": "ANY", "none": "NONE"}


class GoogleProvider(BaseProvider):
    """Google Gemini models."""

    name = "google"
    family = ProviderFamily.GOOGLE

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float = 300.0,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout

    def _create_client(self) -> Any:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._request_timeout)

    async def _close_client(self, client: Any) -> None:
        await client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key or ""}

    # --- Request building ---

    def build_request(self, prompt: str, options: GenerationOptions) -> ProviderRequest:
        params: dict[str, Any] = {}

        if options.system_message:
            params["systemInstruction"] = {"parts": [{"text": options.system_message}]}

        generation_config: dict[str, Any] = {}
        if options.max_tokens:
            generation_config["maxOutputTokens"] = options.max_tokens
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if generation_config:
            params["generationConfig"] = generation_config

        if options.tool_definitions:
            params["tools"] = [{
                "functionDeclarations": [t.to_gemini() for t in options.tool_definitions],
            }]
            choice = options.tool_choice or "auto"
            if choice in _CALLING_MODES:
                config: dict[str, Any] = {"mode": _CALLING_MODES[choice]}
            else:
                config = {"mode": "ANY", "allowedFunctionNames": [choice]}
            params["toolConfig"] = {"functionCallingConfig": config}

        return ProviderRequest(
            model=options.model or DEFAULT_MODEL,
            messages=[{"role": "user", "parts": [{"text": prompt}]}],
            params=params,
        )

    # --- Network ---

    async def _send_once(self, request: ProviderRequest) -> dict[str, Any]:
        try:
            resp = await self.client.post(
                f"/models/{request.model}:generateContent",
                json={"contents": request.messages, **request.params},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Gemini is not reachable: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        if resp.status_code >= 400:
            raise self._error_from_response(resp, request.model)
        return resp.json()

    def _error_from_response(self, resp: httpx.Response, model: str) -> ProviderError:
        try:
            error = resp.json().get("error", {})
        except ValueError:
            error = {}
        message = error.get("message") or resp.text[:200]

        status = resp.status_code
        # Gemini reports a bad key as 400 INVALID_ARGUMENT
        if status == 400 and "API_KEY_INVALID" in resp.text:
            status = 401

        return error_for_status(
            status,
            f"Gemini rejected the request for {model}: {message}",
            provider=self.name,
            model=model,
        )

    # --- Tool round trip ---

    @staticmethod
    def _parts(raw: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = raw.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    def extract_tool_calls(self, raw: dict[str, Any]) -> list[ToolCall]:
        calls = []
        for part in self._parts(raw):
            function_call = part.get("functionCall")
            if not function_call:
                continue
            name = function_call.get("name", "")
            args = function_call.get("args")
            calls.append(ToolCall(
                id=function_call.get("id") or f"{name}-{len(calls)}",
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
        params = dict(request.params)
        if "toolConfig" in params:
            params["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}

        return ProviderRequest(
            model=request.model,
            messages=[
                *request.messages,
                {"role": "model", "parts": self._parts(raw)},
                {"role": "user", "parts": [r.to_gemini() for r in results]},
            ],
            params=params,
        )

    def normalize(self, raw: dict[str, Any], model_id: str) -> NormalizedResult:
        text = "".join(part.get("text", "") for part in self._parts(raw))
        return NormalizedResult(
            content=text,
            provider_name=self.name,
            model_id=model_id,
            raw_response=raw,
        )

    # --- Discovery ---

    async def _list_models(self) -> list[ModelDescriptor]:
        resp = await self.client.get("/models", headers=self._headers)
        resp.raise_for_status()

        discovered = []
        for entry in resp.json().get("models", []):
            model_id = (entry.get("name") or "").replace("models/", "")
            if "gemini" in model_id:
                discovered.append(
                    ModelDescriptor(model_id, entry.get("displayName") or model_id)
                )
        return merge_known_models(KNOWN_MODELS, discovered)
