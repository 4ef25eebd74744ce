"""
Tests for the provider adapters.

OpenAI and Anthropic use mocked async SDK clients; Gemini and Ollama
use httpx.MockTransport. No test touches the network.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from modelrelay.exceptions import (
    AuthenticationRejectedError,
    BackendRejectedRequestError,
    MissingCredentialError,
    ProviderUnavailableError,
)
from modelrelay.llm.providers.anthropic_provider import AnthropicProvider
from modelrelay.llm.providers.base import (
    GenerationOptions,
    error_for_status,
    merge_known_models,
)
from modelrelay.llm.llm_config import ModelDescriptor
from modelrelay.llm.providers.google_provider import GoogleProvider
from modelrelay.llm.providers.ollama_provider import OllamaProvider
from modelrelay.llm.providers.openai_provider import OpenAIProvider
from modelrelay.llm.tools import FunctionToolExecutor, ToolDefinition


# ===========================================================================
# Helpers & Fixtures
# ===========================================================================

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"
OLLAMA_BASE = "http://ollama.test:11434"


def _status_error(module: Any, cls_name: str, status: int, url: str) -> Exception:
    request = httpx.Request("POST", url)
    response = httpx.Response(status, request=request, json={"error": {"message": "nope"}})
    return getattr(module, cls_name)("nope", response=response, body=None)


def _openai_completion(content: str = "GPT says hello", tool_calls: list | None = None) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"model": "gpt-4.1", "choices": [{"index": 0, "message": message}]}


def _mock_transport_client(handler: Callable[[httpx.Request], httpx.Response], base_url: str):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


@pytest.fixture
def search_tool():
    return ToolDefinition(
        name="web_search",
        description="Search the web",
        parameters={"query": {"type": "string"}},
        required=["query"],
    )


@pytest.fixture
def executor():
    return FunctionToolExecutor({"web_search": lambda query: {"results": [query]}})


@pytest.fixture
def mock_openai():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_openai_completion())
    return client


@pytest.fixture
def mock_anthropic():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value={
        "model": "claude-sonnet-4-20250514",
        "content": [{"type": "text", "text": "Claude says hello"}],
        "stop_reason": "end_turn",
    })
    return client


# ===========================================================================
# Test: shared helpers
# ===========================================================================

class TestErrorMapping:

    @pytest.mark.parametrize("status,cls", [
        (401, AuthenticationRejectedError),
        (403, AuthenticationRejectedError),
        (400, BackendRejectedRequestError),
        (404, BackendRejectedRequestError),
        (422, BackendRejectedRequestError),
        (408, ProviderUnavailableError),
        (429, ProviderUnavailableError),
        (500, ProviderUnavailableError),
        (503, ProviderUnavailableError),
        (None, ProviderUnavailableError),
    ])
    def test_status_mapping(self, status, cls):
        err = error_for_status(status, "msg", provider="openai", model="o3")
        assert type(err) is cls
        assert err.status_code == status

    def test_merge_known_models_dedupes_and_keeps_order(self):
        known = [ModelDescriptor("a", "A"), ModelDescriptor("b", "B")]
        found = [ModelDescriptor("b", "b"), ModelDescriptor("c", "c")]
        assert [m.id for m in merge_known_models(known, found)] == ["a", "b", "c"]


# ===========================================================================
# Test: OpenAIProvider
# ===========================================================================

class TestOpenAIRequestBuilding:
    """Model-family quirks stay inside the adapter."""

    def test_reasoning_model_merges_system_message(self):
        provider = OpenAIProvider("sk-test")
        req = provider.build_request(
            "Assess risk", GenerationOptions(model="o3", system_message="Be terse")
        )
        assert req.messages == [
            {"role": "user", "content": "Be terse\n\n---\n\nAssess risk"}
        ]
        assert req.params["max_completion_tokens"] == 32000
        assert "temperature" not in req.params
        assert "max_tokens" not in req.params

    def test_gpt41_gets_larger_token_limit(self):
        req = OpenAIProvider("sk-test").build_request(
            "Hi", GenerationOptions(model="gpt-4.1", system_message="sys")
        )
        assert req.messages[0] == {"role": "system", "content": "sys"}
        assert req.params["max_tokens"] == 8000
        assert req.params["temperature"] == 0.7

    def test_standard_model_defaults(self):
        req = OpenAIProvider("sk-test").build_request("Hi", GenerationOptions(model="gpt-4o"))
        assert req.params == {"max_tokens": 4096, "temperature": 0.7}

    def test_tools_translated(self, search_tool):
        req = OpenAIProvider("sk-test").build_request(
            "Hi",
            GenerationOptions(model="gpt-4o", tool_definitions=[search_tool], tool_choice="any"),
        )
        assert req.params["tools"][0]["function"]["name"] == "web_search"
        assert req.params["tool_choice"] == "required"


class TestOpenAIProvider:

    @pytest.mark.asyncio
    async def test_generate_normalizes_content(self, mock_openai):
        provider = OpenAIProvider("sk-test", client=mock_openai)
        result = await provider.generate_response("Hi", GenerationOptions(model="gpt-4.1"))

        assert result.content == "GPT says hello"
        assert result.provider_name == "openai"
        assert result.model_id == "gpt-4.1"
        assert result.raw_response["choices"]

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected_before_network(self, mock_openai):
        provider = OpenAIProvider("sk-test", client=mock_openai)
        with pytest.raises(BackendRejectedRequestError):
            await provider.generate_response("   ", GenerationOptions(model="gpt-4.1"))
        mock_openai.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_reasoning_model_substituted_once(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = [
            _status_error(openai, "BadRequestError", 400, OPENAI_URL),
            _openai_completion("from gpt-4.1"),
        ]
        provider = OpenAIProvider("sk-test", client=mock_openai)

        result = await provider.generate_response("Hi", GenerationOptions(model="o3"))

        assert result.content == "from gpt-4.1"
        assert result.model_id == "gpt-4.1"
        retry_kwargs = mock_openai.chat.completions.create.call_args_list[1].kwargs
        assert retry_kwargs["model"] == "gpt-4.1"
        assert retry_kwargs["max_tokens"] == 4096
        assert "max_completion_tokens" not in retry_kwargs

    @pytest.mark.asyncio
    async def test_mini_reasoning_model_substitutes_mini(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = [
            _status_error(openai, "NotFoundError", 404, OPENAI_URL),
            _openai_completion(),
        ]
        provider = OpenAIProvider("sk-test", client=mock_openai)
        result = await provider.generate_response("Hi", GenerationOptions(model="o4-mini"))
        assert result.model_id == "gpt-4.1-mini"

    @pytest.mark.asyncio
    async def test_substitute_also_rejected_surfaces(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = [
            _status_error(openai, "BadRequestError", 400, OPENAI_URL),
            _status_error(openai, "BadRequestError", 400, OPENAI_URL),
        ]
        provider = OpenAIProvider("sk-test", client=mock_openai)
        with pytest.raises(BackendRejectedRequestError):
            await provider.generate_response("Hi", GenerationOptions(model="o3"))
        assert mock_openai.chat.completions.create.call_count == 2

    @pytest.mark.asyncio
    async def test_rejected_gpt_model_not_substituted(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = _status_error(
            openai, "BadRequestError", 400, OPENAI_URL
        )
        provider = OpenAIProvider("sk-test", client=mock_openai)
        with pytest.raises(BackendRejectedRequestError) as exc_info:
            await provider.generate_response("Hi", GenerationOptions(model="gpt-4.1"))
        assert exc_info.value.status_code == 400
        assert mock_openai.chat.completions.create.call_count == 1

    @pytest.mark.asyncio
    async def test_auth_error_mapped(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = _status_error(
            openai, "AuthenticationError", 401, OPENAI_URL
        )
        provider = OpenAIProvider("sk-bad", client=mock_openai)
        with pytest.raises(AuthenticationRejectedError):
            await provider.generate_response("Hi", GenerationOptions(model="o3"))
        assert mock_openai.chat.completions.create.call_count == 1

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self, mock_openai):
        mock_openai.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", OPENAI_URL)
        )
        provider = OpenAIProvider("sk-test", client=mock_openai)
        with pytest.raises(ProviderUnavailableError):
            await provider.generate_response("Hi", GenerationOptions(model="gpt-4o"))

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, mock_openai, search_tool, executor):
        tool_call = {
            "id": "call_1",
            "type": "function",
            "function": {"name": "web_search", "arguments": '{"query": "rates"}'},
        }
        mock_openai.chat.completions.create.side_effect = [
            _openai_completion(None, tool_calls=[tool_call]),
            _openai_completion("Rates are up"),
        ]
        provider = OpenAIProvider("sk-test", client=mock_openai, tool_executor=executor)

        result = await provider.generate_response(
            "What are rates doing?",
            GenerationOptions(model="gpt-4.1", tool_definitions=[search_tool]),
        )

        assert result.content == "Rates are up"
        assert [r.tool_call_id for r in result.tool_results] == ["call_1"]
        follow_up = mock_openai.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert follow_up[-2]["role"] == "assistant"
        assert follow_up[-2]["tool_calls"] == [tool_call]
        assert follow_up[-1]["role"] == "tool"
        assert follow_up[-1]["tool_call_id"] == "call_1"
        assert json.loads(follow_up[-1]["content"]) == {"results": ["rates"]}

    def test_unparseable_arguments_become_empty(self):
        raw = _openai_completion(None, tool_calls=[{
            "id": "c", "function": {"name": "web_search", "arguments": "{not json"},
        }])
        calls = OpenAIProvider("sk-test").extract_tool_calls(raw)
        assert calls[0].arguments == {}
        assert calls[0].raw_arguments == "{not json"

    def test_client_without_key_raises_missing_credential(self):
        with pytest.raises(MissingCredentialError):
            OpenAIProvider(None).client


class TestOpenAIDiscovery:

    @pytest.mark.asyncio
    async def test_not_configured_returns_empty(self):
        assert await OpenAIProvider(None).discover_models() == []

    @pytest.mark.asyncio
    async def test_lists_and_merges_models(self, mock_openai):
        mock_openai.models.list = AsyncMock(return_value=MagicMock(data=[
            MagicMock(id="gpt-4o"),
            MagicMock(id="o3"),
            MagicMock(id="whisper-1"),
            MagicMock(id="text-embedding-3-small"),
        ]))
        provider = OpenAIProvider("sk-test", client=mock_openai)
        ids = [m.id for m in await provider.discover_models()]

        assert ids[:5] == ["o4-mini", "o3", "gpt-4.1", "gpt-4.1-mini", "gpt-4o-mini"]
        assert "gpt-4o" in ids
        assert ids.count("o3") == 1
        assert "whisper-1" not in ids

    @pytest.mark.asyncio
    async def test_unreachable_returns_empty(self, mock_openai):
        mock_openai.models.list = AsyncMock(side_effect=openai.APIConnectionError(
            request=httpx.Request("GET", "https://api.openai.com/v1/models")
        ))
        provider = OpenAIProvider("sk-test", client=mock_openai)
        assert await provider.discover_models() == []


# ===========================================================================
# Test: AnthropicProvider
# ===========================================================================

class TestAnthropicProvider:

    def test_alias_mapped_to_served_id(self):
        req = AnthropicProvider("sk-ant").build_request(
            "Hi", GenerationOptions(model="claude-4-opus", system_message="sys")
        )
        assert req.model == "claude-opus-4-20250514"
        assert req.params["system"] == "sys"
        assert req.params["max_tokens"] == 4096

    def test_tools_use_input_schema(self, search_tool):
        req = AnthropicProvider("sk-ant").build_request(
            "Hi", GenerationOptions(model="claude-4", tool_definitions=[search_tool])
        )
        assert "input_schema" in req.params["tools"][0]
        assert req.params["tool_choice"] == {"type": "auto"}

    def test_tool_choice_none_sends_no_tools(self, search_tool):
        req = AnthropicProvider("sk-ant").build_request(
            "Hi",
            GenerationOptions(model="claude-4", tool_definitions=[search_tool], tool_choice="none"),
        )
        assert "tools" not in req.params

    @pytest.mark.asyncio
    async def test_generate_normalizes_content(self, mock_anthropic):
        provider = AnthropicProvider("sk-ant", client=mock_anthropic)
        result = await provider.generate_response("Hi", GenerationOptions(model="claude-4"))

        assert result.content == "Claude says hello"
        assert result.provider_name == "anthropic"
        assert result.model_id == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, mock_anthropic, search_tool, executor):
        tool_use = {"type": "tool_use", "id": "toolu_1", "name": "web_search", "input": {"query": "fx"}}
        mock_anthropic.messages.create.side_effect = [
            {"content": [{"type": "text", "text": "Searching"}, tool_use], "stop_reason": "tool_use"},
            {"content": [{"type": "text", "text": "FX is flat"}], "stop_reason": "end_turn"},
        ]
        provider = AnthropicProvider("sk-ant", client=mock_anthropic, tool_executor=executor)

        result = await provider.generate_response(
            "FX?", GenerationOptions(model="claude-4", tool_definitions=[search_tool])
        )

        assert result.content == "FX is flat"
        follow_up = mock_anthropic.messages.create.call_args_list[1].kwargs
        assert follow_up["messages"][1]["role"] == "assistant"
        assert follow_up["messages"][2]["content"][0]["tool_use_id"] == "toolu_1"
        assert follow_up["tools"]

    @pytest.mark.asyncio
    async def test_rate_limit_mapped_to_unavailable(self, mock_anthropic):
        mock_anthropic.messages.create.side_effect = _status_error(
            anthropic, "RateLimitError", 429, ANTHROPIC_URL
        )
        provider = AnthropicProvider("sk-ant", client=mock_anthropic)
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await provider.generate_response("Hi", GenerationOptions(model="claude-4"))
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_discovery_static_list_when_configured(self):
        models = await AnthropicProvider("sk-ant").discover_models()
        assert "claude-sonnet-4-20250514" in [m.id for m in models]
        assert await AnthropicProvider(None).discover_models() == []


# ===========================================================================
# Test: GoogleProvider
# ===========================================================================

class TestGoogleProvider:

    @pytest.mark.asyncio
    async def test_generate_content(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"role": "model", "parts": [{"text": "Gemini here"}]}}],
            })

        provider = GoogleProvider("g-key", client=_mock_transport_client(handler, GEMINI_BASE))
        result = await provider.generate_response(
            "Hi", GenerationOptions(model="gemini-2.5-flash", system_message="sys")
        )

        assert result.content == "Gemini here"
        assert seen[0].url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert seen[0].headers["x-goog-api-key"] == "g-key"
        body = json.loads(seen[0].content)
        assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}
        assert body["contents"][0]["parts"][0]["text"] == "Hi"

    @pytest.mark.asyncio
    async def test_function_call_round_trip(self, search_tool, executor):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            if len(bodies) == 1:
                parts = [{"functionCall": {"name": "web_search", "args": {"query": "gdp"}}}]
            else:
                parts = [{"text": "GDP grew"}]
            return httpx.Response(200, json={"candidates": [{"content": {"role": "model", "parts": parts}}]})

        provider = GoogleProvider(
            "g-key",
            client=_mock_transport_client(handler, GEMINI_BASE),
            tool_executor=executor,
        )
        result = await provider.generate_response(
            "GDP?", GenerationOptions(model="gemini-2.5-pro", tool_definitions=[search_tool])
        )

        assert result.content == "GDP grew"
        assert result.tool_results[0].tool_call_id == "web_search-0"
        assert bodies[0]["tools"][0]["functionDeclarations"][0]["name"] == "web_search"
        response_part = bodies[1]["contents"][2]["parts"][0]["functionResponse"]
        assert response_part["name"] == "web_search"

    @pytest.mark.asyncio
    async def test_invalid_key_maps_to_auth(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {
                "message": "API key not valid", "details": [{"reason": "API_KEY_INVALID"}],
            }})

        provider = GoogleProvider("bad", client=_mock_transport_client(handler, GEMINI_BASE))
        with pytest.raises(AuthenticationRejectedError):
            await provider.generate_response("Hi", GenerationOptions(model="gemini-2.5-flash"))

    @pytest.mark.asyncio
    async def test_discovery_filters_gemini(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"models": [
                {"name": "models/gemini-2.5-flash", "displayName": "Gemini 2.5 Flash"},
                {"name": "models/gemini-1.5-pro", "displayName": "Gemini 1.5 Pro"},
                {"name": "models/text-embedding-004"},
            ]})

        provider = GoogleProvider("g-key", client=_mock_transport_client(handler, GEMINI_BASE))
        ids = [m.id for m in await provider.discover_models()]
        assert "gemini-1.5-pro" in ids
        assert ids.count("gemini-2.5-flash") == 1
        assert "text-embedding-004" not in ids


# ===========================================================================
# Test: OllamaProvider
# ===========================================================================

class TestOllamaProvider:

    def test_never_requires_credential(self):
        provider = OllamaProvider(OLLAMA_BASE)
        assert provider.is_configured
        assert provider.requires_credential is False

    @pytest.mark.asyncio
    async def test_chat(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={
                "model": "deepseek-v3",
                "message": {"role": "assistant", "content": "local answer"},
                "done": True,
            })

        provider = OllamaProvider(OLLAMA_BASE, client=_mock_transport_client(handler, OLLAMA_BASE))
        result = await provider.generate_response(
            "Hi", GenerationOptions(model="deepseek-v3", system_message="sys", max_tokens=256)
        )

        assert result.content == "local answer"
        assert result.provider_name == "ollama"
        assert seen[0]["stream"] is False
        assert seen[0]["messages"][0] == {"role": "system", "content": "sys"}
        assert seen[0]["options"]["num_predict"] == 256

    @pytest.mark.asyncio
    async def test_server_down_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OllamaProvider(OLLAMA_BASE, client=_mock_transport_client(handler, OLLAMA_BASE))
        with pytest.raises(ProviderUnavailableError):
            await provider.generate_response("Hi", GenerationOptions(model="llama3.1:8b"))

    @pytest.mark.asyncio
    async def test_unknown_model_is_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "model 'nope' not found"})

        provider = OllamaProvider(OLLAMA_BASE, client=_mock_transport_client(handler, OLLAMA_BASE))
        with pytest.raises(BackendRejectedRequestError, match="not found"):
            await provider.generate_response("Hi", GenerationOptions(model="nope"))

    @pytest.mark.asyncio
    async def test_discovery_lists_tags(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}, {"name": "deepseek-v3"}]})

        provider = OllamaProvider(OLLAMA_BASE, client=_mock_transport_client(handler, OLLAMA_BASE))
        assert [m.id for m in await provider.discover_models()] == ["llama3.1:8b", "deepseek-v3"]

    @pytest.mark.asyncio
    async def test_discovery_server_down_returns_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OllamaProvider(OLLAMA_BASE, client=_mock_transport_client(handler, OLLAMA_BASE))
        assert await provider.discover_models() == []


# ===========================================================================
# Test: client lifecycle
# ===========================================================================

def _tags_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}]})


@pytest.fixture
def built_clients(monkeypatch):
    """OllamaProvider whose default client factory is observable."""
    clients: list[httpx.AsyncClient] = []

    def factory(self):
        client = _mock_transport_client(_tags_handler, OLLAMA_BASE)
        clients.append(client)
        return client

    monkeypatch.setattr(OllamaProvider, "_create_client", factory)
    return clients


class TestClientLifecycle:

    def test_rebuilt_for_each_event_loop(self, built_clients):
        provider = OllamaProvider(OLLAMA_BASE)

        first = asyncio.run(provider.discover_models())
        second = asyncio.run(provider.discover_models())

        assert [m.id for m in first] == ["llama3.1:8b"]
        assert [m.id for m in second] == ["llama3.1:8b"]
        assert len(built_clients) == 2

    @pytest.mark.asyncio
    async def test_same_loop_reuses_client(self, built_clients):
        provider = OllamaProvider(OLLAMA_BASE)
        await provider.discover_models()
        await provider.discover_models()
        assert len(built_clients) == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_built_client(self, built_clients):
        provider = OllamaProvider(OLLAMA_BASE)
        await provider.discover_models()

        await provider.aclose()
        await provider.aclose()

        assert built_clients[0].is_closed
        assert [m.id for m in await provider.discover_models()] == ["llama3.1:8b"]
        assert len(built_clients) == 2

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self):
        client = _mock_transport_client(_tags_handler, OLLAMA_BASE)
        provider = OllamaProvider(OLLAMA_BASE, client=client)
        await provider.discover_models()

        await provider.aclose()

        assert not client.is_closed
        assert provider.client is client
        await client.aclose()

    @pytest.mark.asyncio
    async def test_sdk_client_closed_with_close(self, monkeypatch):
        sdk_client = MagicMock()
        sdk_client.close = AsyncMock()
        monkeypatch.setattr(OpenAIProvider, "_create_client", lambda self: sdk_client)
        provider = OpenAIProvider(api_key="sk-test")
        assert provider.client is sdk_client

        await provider.aclose()

        sdk_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_before_first_use_is_noop(self):
        await OpenAIProvider(api_key=None).aclose()
