"""
Tool Use / Function Calling — provider-agnostic tools and the call driver.

Defines tools once and translates them to each backend's native
declaration format (OpenAI functions, Anthropic tool_use, Gemini
functionDeclarations). The ToolCallDriver runs a single tool round
trip on top of any provider adapter:

    DISPATCHED ──(no tool calls)──────────────────────────► RESOLVED
        │
        └─(tool calls)─► AWAITING_TOOL_RESULTS ─(one follow-up)─► RESOLVED

At most one follow-up is sent. Tool calls inside the follow-up response
are returned untouched.

Usage:
    from modelrelay.llm.tools import FunctionToolExecutor, ToolDefinition

    weather = ToolDefinition(
        name="get_weather",
        description="Current weather for a city",
        parameters={"city": {"type": "string"}},
        required=["city"],
    )

    executor = FunctionToolExecutor()
    executor.register("get_weather", fetch_weather)

    service = AIService(tool_executor=executor)
    result = await service.call_ai(
        "Is it raining in Oslo?",
        "gpt-4.1",
        GenerationOptions(tool_definitions=[weather]),
    )
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from modelrelay.exceptions import ToolExecutionError

if TYPE_CHECKING:
    from modelrelay.llm.providers.base import (
        BaseProvider,
        GenerationOptions,
        ProviderRequest,
    )

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool Definition
# ---------------------------------------------------------------------------

@dataclass
class ToolDefinition:
    """
    Provider-agnostic tool/function definition.

    ``parameters`` is either a complete JSON schema (it has a ``type``
    key, and is then passed through unmodified) or a plain map of
    property name → property schema, wrapped into an object schema
    together with ``required``.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    @property
    def schema(self) -> dict[str, Any]:
        if "type" in self.parameters:
            return self.parameters

        properties = {}
        for param_name, param_spec in self.parameters.items():
            if isinstance(param_spec, dict):
                properties[param_name] = param_spec
            else:
                properties[param_name] = {"type": "string", "description": str(param_spec)}

        return {
            "type": "object",
            "properties": properties,
            "required": self.required,
        }

    def to_openai(self) -> dict[str, Any]:
        """Convert to OpenAI function_calling format (also used by Ollama)."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema,
            },
        }

    def to_anthropic(self) -> dict[str, Any]:
        """Convert to Anthropic Claude tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.schema,
        }

    def to_gemini(self) -> dict[str, Any]:
        """Convert to a Gemini functionDeclaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.schema,
        }


# ---------------------------------------------------------------------------
# Tool Call (model wants to use a tool)
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A tool invocation requested inside a model response."""

    id: str                         # Provider's call id (synthesized where absent)
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""         # Raw JSON string when the provider sends one


# ---------------------------------------------------------------------------
# Tool Result (fed back to the model)
# ---------------------------------------------------------------------------

@dataclass
class ToolResult:
    """Outcome of one tool call. Exactly one of content / error is meaningful."""

    tool_call_id: str               # Must match the ToolCall.id
    name: str
    content: str = ""
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def payload(self) -> str:
        """Text the model sees for this result."""
        if self.error is not None:
            return json.dumps({"error": self.error})
        return self.content

    def to_openai(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.payload,
        }

    def to_anthropic(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": self.payload,
            "is_error": self.is_error,
        }

    def to_gemini(self) -> dict[str, Any]:
        if self.error is not None:
            response: dict[str, Any] = {"error": self.error}
        else:
            response = {"content": self.content}
        return {"functionResponse": {"name": self.name, "response": response}}


# ---------------------------------------------------------------------------
# Tool Executors
# ---------------------------------------------------------------------------

@runtime_checkable
class ToolExecutor(Protocol):
    """Anything that can run a named function for the model."""

    async def execute_function(self, name: str, arguments: dict[str, Any]) -> Any:
        ...


class FunctionToolExecutor:
    """
    Runs tools backed by plain Python callables.

    Callables may be sync or async and receive the model's arguments as
    keyword arguments. Any failure surfaces as ToolExecutionError.
    """

    def __init__(self, functions: Optional[dict[str, Callable[..., Any]]] = None) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(functions or {})

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        self._functions[name] = fn
        logger.debug("tool_registered", extra={"tool_name": name})

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    async def execute_function(self, name: str, arguments: dict[str, Any]) -> Any:
        fn = self._functions.get(name)
        if fn is None:
            raise ToolExecutionError(f"Unknown tool: {name}", tool_name=name)

        try:
            result = fn(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(
                f"Tool {name} failed: {e}",
                tool_name=name,
                details={"arguments": arguments},
            ) from e
        return result


# ---------------------------------------------------------------------------
# Tool-Call Protocol Driver
# ---------------------------------------------------------------------------

class DriverState(str, Enum):
    DISPATCHED = "dispatched"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    RESOLVED = "resolved"


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolCallDriver:
    """
    Drives one tool-calling turn against a provider adapter.

    One driver per call: it holds the state and the request of that call.
    The adapter supplies the wire-format hooks (build_request, send,
    extract_tool_calls, extend_with_tool_results); the driver only
    sequences them.
    """

    def __init__(self, executor: Optional[ToolExecutor] = None) -> None:
        self._executor = executor
        self.state = DriverState.DISPATCHED
        self.request: Optional[ProviderRequest] = None
        self.last_tool_calls: list[ToolCall] = []
        self.last_tool_results: list[ToolResult] = []
        self.follow_up_sent = False

    async def run(
        self,
        adapter: BaseProvider,
        prompt: str,
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Run the turn and return the final raw backend response."""
        self.state = DriverState.DISPATCHED
        self.request = adapter.build_request(prompt, options)
        raw = await adapter.send(self.request)

        calls = adapter.extract_tool_calls(raw)
        if not calls:
            self.state = DriverState.RESOLVED
            return raw

        self.state = DriverState.AWAITING_TOOL_RESULTS
        self.last_tool_calls = calls
        self.last_tool_results = await self.execute_all(calls)

        follow_up = adapter.extend_with_tool_results(
            self.request, raw, self.last_tool_results
        )
        self.request = follow_up
        self.state = DriverState.RESOLVED
        self.follow_up_sent = True
        final = await adapter.send(follow_up)

        leftover = adapter.extract_tool_calls(final)
        if leftover:
            logger.warning(
                "tool_round_limit_reached",
                extra={
                    "provider": adapter.name,
                    "model": follow_up.model,
                    "ignored_tool_calls": len(leftover),
                },
            )
        return final

    async def execute_all(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run every call concurrently; results keep the calls' order."""
        return list(await asyncio.gather(*(self._execute_one(c) for c in calls)))

    async def _execute_one(self, call: ToolCall) -> ToolResult:
        if self._executor is None:
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                error="No tool executor is configured",
            )

        try:
            result = await self._executor.execute_function(call.name, call.arguments)
        except Exception as e:
            logger.warning(
                "tool_execution_failed",
                extra={"tool_name": call.name, "error": str(e)[:200]},
            )
            return ToolResult(tool_call_id=call.id, name=call.name, error=str(e))

        logger.debug("tool_executed", extra={"tool_name": call.name})
        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            content=_stringify(result),
        )
