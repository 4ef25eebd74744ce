"""
Provider adapter contract shared by every backend family.

An adapter owns one backend's wire format: it builds the native request,
performs the network call, maps failures onto the modelrelay error
taxonomy, and normalizes the native response. The tool-call round trip
is sequenced by ToolCallDriver through the hooks declared here, so
adapters never execute tools themselves.

Usage:
    provider = OpenAIProvider(api_key="sk-...")
    result = await provider.generate_response(
        "Summarize this memo", GenerationOptions(model="gpt-4.1")
    )
    print(result.content)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Optional

from modelrelay.exceptions import (
    AuthenticationRejectedError,
    BackendRejectedRequestError,
    MissingCredentialError,
    ProviderError,
    ProviderUnavailableError,
)
from modelrelay.llm.llm_config import ModelDescriptor, ProviderFamily
from modelrelay.llm.tools import (
    ToolCall,
    ToolCallDriver,
    ToolDefinition,
    ToolExecutor,
    ToolResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / Response Types
# ---------------------------------------------------------------------------

@dataclass
class GenerationOptions:
    """Per-call options. Adapters ignore what their backend cannot use."""

    model: str = ""
    system_message: Optional[str] = None
    tool_definitions: list[ToolDefinition] = field(default_factory=list)
    tool_choice: Optional[str] = None   # "auto", "any", "none" or a tool name
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def with_model(self, model: str) -> GenerationOptions:
        return replace(self, model=model)


@dataclass
class ProviderRequest:
    """A backend-native request: conversation plus call parameters."""

    model: str
    messages: list[dict[str, Any]]
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResultMetadata:
    """Routing facts attached by the orchestrator."""

    selected_model: str
    response_time_ms: float = 0.0
    task_type: str = ""
    reasoning_path: str = ""
    fallback_from: Optional[str] = None
    tools_available: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedResult:
    """
    The only object handed back to callers.

    ``raw_response`` keeps the backend-native payload; its shape differs
    per provider and callers should not depend on it.
    """

    content: str
    provider_name: str
    model_id: str
    raw_response: Any = None
    metadata: Optional[ResultMetadata] = None
    tool_results: list[ToolResult] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def response_to_dict(response: Any) -> dict[str, Any]:
    """SDK response objects (pydantic models) → plain dict."""
    if isinstance(response, dict):
        return response
    if hasattr(response, "model_dump"):
        return response.model_dump(exclude_none=True)
    raise TypeError(f"Unsupported response type: {type(response).__name__}")


def error_for_status(
    status_code: Optional[int],
    message: str,
    *,
    provider: str,
    model: Optional[str],
) -> ProviderError:
    """
    Map an HTTP status to the error taxonomy.

    401/403 → AuthenticationRejectedError
    408, 429, 5xx, unknown → ProviderUnavailableError
    other 4xx → BackendRejectedRequestError
    """
    kwargs: dict[str, Any] = {
        "provider": provider,
        "model": model,
        "status_code": status_code,
    }
    if status_code in (401, 403):
        return AuthenticationRejectedError(message, **kwargs)
    if status_code is None or status_code in (408, 429) or status_code >= 500:
        return ProviderUnavailableError(message, **kwargs)
    return BackendRejectedRequestError(message, **kwargs)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def merge_known_models(
    known: list[ModelDescriptor],
    discovered: list[ModelDescriptor],
) -> list[ModelDescriptor]:
    """Known models first, then discovered ones not already listed."""
    merged = list(known)
    seen = {m.id for m in merged}
    for model in discovered:
        if model.id not in seen:
            merged.append(model)
            seen.add(model.id)
    return merged


# ---------------------------------------------------------------------------
# Base Provider
# ---------------------------------------------------------------------------

class BaseProvider(ABC):
    """
    Abstract base for backend adapters.

    Subclasses implement the wire-format hooks; this class supplies the
    shared flow: prompt validation, the tool-call driver, the single
    documented model substitution, and never-raising discovery.
    """

    name: str = ""
    family: ProviderFamily
    requires_credential: bool = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        client: Any = None,
        tool_executor: Optional[ToolExecutor] = None,
        discovery_timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._client = client
        # An injected client belongs to the caller: never rebuilt or closed here
        self._owns_client = client is None
        self._client_loop: Optional[asyncio.AbstractEventLoop] = None
        self._tool_executor = tool_executor
        self._discovery_timeout = discovery_timeout

    # --- Configuration ---

    @property
    def is_configured(self) -> bool:
        """True when the adapter has what it needs to attempt a call."""
        return not self.requires_credential or bool(self._api_key)

    @property
    def tool_executor(self) -> Optional[ToolExecutor]:
        return self._tool_executor

    @tool_executor.setter
    def tool_executor(self, executor: Optional[ToolExecutor]) -> None:
        self._tool_executor = executor

    @property
    def client(self) -> Any:
        """
        The backend client, created on first use.

        A client this adapter built is tied to the event loop it was
        first used in; under a different loop (a second ``asyncio.run``)
        it is dropped and rebuilt.
        """
        if not self._owns_client:
            return self._client

        loop = _running_loop()
        if self._client is not None and self._client_loop is not loop:
            logger.debug("client_rebuilt_for_new_loop", extra={"provider": self.name})
            self._client = None

        if self._client is None:
            if not self.is_configured:
                raise MissingCredentialError(
                    f"No API key configured for {self.name}",
                    provider=self.name,
                )
            self._client = self._create_client()
            self._client_loop = loop
        return self._client

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the default SDK / HTTP client."""

    async def _close_client(self, client: Any) -> None:
        """Release the connections of a client built by _create_client."""
        await client.close()

    async def aclose(self) -> None:
        """
        Close the client this adapter built. Safe to call repeatedly;
        the next call builds a fresh client.
        """
        if not self._owns_client or self._client is None:
            return
        client, self._client = self._client, None
        if self._client_loop is _running_loop():
            await self._close_client(client)
        self._client_loop = None

    # --- Generation ---

    async def generate_response(
        self,
        prompt: str,
        options: GenerationOptions,
    ) -> NormalizedResult:
        """
        Run one generation, including at most one tool round trip.

        Raises:
            BackendRejectedRequestError: Empty prompt, or the backend
                refused the request and no substitute model exists.
            AuthenticationRejectedError: The backend refused the key.
            ProviderUnavailableError: Connection failure, 429 or 5xx.
        """
        if not prompt or not prompt.strip():
            raise BackendRejectedRequestError(
                "Prompt cannot be empty",
                provider=self.name,
                model=options.model,
            )

        driver = ToolCallDriver(self._tool_executor)
        raw = await driver.run(self, prompt, options)

        result = self.normalize(raw, driver.request.model)
        result.tool_results = list(driver.last_tool_results)
        return result

    async def send(self, request: ProviderRequest) -> dict[str, Any]:
        """
        One backend call, with a single model substitution on rejection.

        On substitution the request is rewritten to the substitute, so a
        tool follow-up built from it goes to the same model.
        """
        try:
            return await self._send_once(request)
        except BackendRejectedRequestError as exc:
            substitute = self.substitute_model(request.model)
            if substitute is None or substitute == request.model:
                raise
            logger.warning(
                "model_substituted",
                extra={
                    "provider": self.name,
                    "model": request.model,
                    "substitute": substitute,
                    "error": str(exc)[:200],
                },
            )
            self.apply_substitution(request, substitute)
            return await self._send_once(request)

    def substitute_model(self, model_id: str) -> Optional[str]:
        """Documented replacement for a model the backend refused, if any."""
        return None

    def apply_substitution(self, request: ProviderRequest, model_id: str) -> None:
        request.model = model_id

    # --- Wire-format hooks ---

    @abstractmethod
    def build_request(self, prompt: str, options: GenerationOptions) -> ProviderRequest:
        """Translate prompt + options (tools included) into a native request."""

    @abstractmethod
    async def _send_once(self, request: ProviderRequest) -> dict[str, Any]:
        """Perform the network call; map failures with error_for_status."""

    @abstractmethod
    def extract_tool_calls(self, raw: dict[str, Any]) -> list[ToolCall]:
        """Tool invocations in a native response, in invocation order."""

    @abstractmethod
    def extend_with_tool_results(
        self,
        request: ProviderRequest,
        raw: dict[str, Any],
        results: list[ToolResult],
    ) -> ProviderRequest:
        """Original conversation + assistant tool message + all results."""

    @abstractmethod
    def normalize(self, raw: dict[str, Any], model_id: str) -> NormalizedResult:
        """Pull the text out of a native response."""

    # --- Discovery ---

    async def discover_models(self) -> list[ModelDescriptor]:
        """
        Models this backend offers. Never raises.

        Empty when the adapter is not configured or the backend cannot
        be reached within the discovery timeout.
        """
        if not self.is_configured:
            return []

        try:
            return await asyncio.wait_for(
                self._list_models(), timeout=self._discovery_timeout
            )
        except Exception as e:
            logger.warning(
                "model_discovery_failed",
                extra={"provider": self.name, "error": str(e)[:200]},
            )
            return []

    @abstractmethod
    async def _list_models(self) -> list[ModelDescriptor]:
        """Query the backend for its models."""
