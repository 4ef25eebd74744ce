"""
AIService — the single entry point for model calls.

Resolves a model id to its provider family, checks the credential,
races the adapter call against the global timeout, falls back once to
a backup model chosen by the adaptive router, and records every
attempt's outcome.

Usage:
    from modelrelay.llm.service import AIService
    from modelrelay.llm.router import TaskContext

    service = AIService()

    # Direct call to a named model
    result = await service.call_ai("Summarize the memo", "claude-4")

    # Routed call: the router picks the model, with one fallback
    result = await service.call_intelligent_ai(
        TaskContext(task_type="risk_assessment", domain="finance"),
        "Assess the exposure in this portfolio.",
    )
    print(result.content, result.metadata.selected_model)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import Any, Iterator, Mapping, Optional

from modelrelay.config.settings import (
    CREDENTIAL_ENV_VARS,
    RelaySettings,
    load_settings,
)
from modelrelay.exceptions import (
    FallbackExhaustedError,
    MissingCredentialError,
    RequestTimedOutError,
)
from modelrelay.llm.llm_config import (
    ModelDescriptor,
    ProviderFamily,
    resolve_provider,
)
from modelrelay.llm.providers import (
    AnthropicProvider,
    BaseProvider,
    GenerationOptions,
    GoogleProvider,
    NormalizedResult,
    OllamaProvider,
    OpenAIProvider,
    ResultMetadata,
)
from modelrelay.llm.router import AdaptiveRouter, TaskContext
from modelrelay.llm.tools import ToolExecutor
from modelrelay.observability.logging_config import (
    clear_request_id,
    get_request_id,
    set_request_id,
)

logger = logging.getLogger(__name__)

# Task type recorded for call_ai, which has no task context
DIRECT_TASK_TYPE = "direct"

# Primary plus one backup
MAX_ATTEMPTS = 2


def _validate_prompt(prompt: Optional[str]) -> None:
    if prompt is None or not prompt.strip():
        raise ValueError("Prompt cannot be None or empty")


@contextlib.contextmanager
def request_scope() -> Iterator[str]:
    """Bind a fresh request id unless the caller already bound one."""
    existing = get_request_id()
    if existing is not None:
        yield existing
        return

    request_id = uuid.uuid4().hex[:12]
    set_request_id(request_id)
    try:
        yield request_id
    finally:
        clear_request_id()


class AIService:
    """
    Orchestrates provider adapters, the adaptive router and timeouts.

    Adapters for all four families are built from settings; pass
    ``providers`` to replace some or all of them.
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        *,
        providers: Optional[Mapping[ProviderFamily, BaseProvider]] = None,
        router: Optional[AdaptiveRouter] = None,
        tool_executor: Optional[ToolExecutor] = None,
    ):
        self._settings = settings if settings is not None else load_settings()
        self._router = router if router is not None else AdaptiveRouter()
        self._tool_executor = tool_executor
        self._providers = self._build_providers()
        if providers:
            self._providers.update(providers)

    def _build_providers(self) -> dict[ProviderFamily, BaseProvider]:
        s = self._settings
        common: dict[str, Any] = {
            "tool_executor": self._tool_executor,
            "discovery_timeout": s.discovery_timeout_seconds,
        }
        return {
            ProviderFamily.OPENAI: OpenAIProvider(
                s.credential_for(ProviderFamily.OPENAI), **common
            ),
            ProviderFamily.ANTHROPIC: AnthropicProvider(
                s.credential_for(ProviderFamily.ANTHROPIC), **common
            ),
            ProviderFamily.GOOGLE: GoogleProvider(
                s.credential_for(ProviderFamily.GOOGLE),
                base_url=s.google_base_url,
                **common,
            ),
            ProviderFamily.LOCAL: OllamaProvider(s.ollama_base_url, **common),
        }

    @property
    def router(self) -> AdaptiveRouter:
        return self._router

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    def resolve_provider(self, model_id: str) -> tuple[ProviderFamily, str]:
        return resolve_provider(model_id, self._settings.default_model)

    # --- Public API ---

    async def call_ai(
        self,
        prompt: str,
        model_id: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> NormalizedResult:
        """
        Call a named model directly. No fallback: the caller chose the model.

        Without ``model_id`` the configured ``settings.default_model`` is used.

        Raises:
            ValueError: Blank prompt.
            MissingCredentialError: The model's provider has no usable key.
            RequestTimedOutError: The call exceeded the global ceiling.
            ProviderError: The backend failed or refused the request.
        """
        _validate_prompt(prompt)
        options = options or GenerationOptions()
        model_id = model_id or self._settings.default_model

        with request_scope():
            result, model, elapsed_ms = await self._attempt(
                model_id, prompt, options, DIRECT_TASK_TYPE
            )
        result.metadata = ResultMetadata(
            selected_model=model,
            response_time_ms=elapsed_ms,
            task_type=DIRECT_TASK_TYPE,
            reasoning_path=f"Direct call to {model}",
            tools_available=len(options.tool_definitions),
        )
        return result

    async def call_intelligent_ai(
        self,
        task_context: TaskContext,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        budget_mode: str = "preferred",
    ) -> NormalizedResult:
        """
        Let the router pick the model, falling back once on failure.

        Raises:
            ValueError: Blank prompt or missing task_type.
            MissingCredentialError: The primary model's provider has no key.
            FallbackExhaustedError: Primary and backup both failed, or the
                router had no model other than the failed primary.
        """
        _validate_prompt(prompt)
        if task_context is None or not task_context.task_type:
            raise ValueError("Task context with task_type is required")
        options = options or GenerationOptions()

        with request_scope():
            return await self._call_with_fallback(
                task_context, prompt, options, budget_mode
            )

    async def _call_with_fallback(
        self,
        task_context: TaskContext,
        prompt: str,
        options: GenerationOptions,
        budget_mode: str,
    ) -> NormalizedResult:
        primary = self._router.select_model(task_context, budget_mode)
        model = primary
        errors: list[BaseException] = []

        for attempt in range(MAX_ATTEMPTS):
            enhanced = self._router.enhance_prompt(prompt, task_context, model)
            try:
                result, served, elapsed_ms = await self._attempt(
                    model, enhanced, options, task_context.task_type
                )
            except MissingCredentialError as e:
                if attempt == 0:
                    raise
                errors.append(e)
            except Exception as e:
                errors.append(e)
            else:
                is_fallback = attempt > 0
                result.metadata = ResultMetadata(
                    selected_model=served,
                    response_time_ms=elapsed_ms,
                    task_type=task_context.task_type,
                    reasoning_path=(
                        "Fallback selection due to primary model failure"
                        if is_fallback
                        else self._router.explain_selection(model, task_context)
                    ),
                    fallback_from=primary if is_fallback else None,
                    tools_available=len(options.tool_definitions),
                )
                return result

            if attempt == 0:
                model = self._router.select_model(
                    task_context.escalated(), budget_mode, exclude={primary}
                )
                if model == primary:
                    raise self._no_backup_error(
                        task_context, primary, errors[0]
                    ) from errors[0]
                logger.warning(
                    "llm_primary_failed",
                    extra={
                        "model": primary,
                        "fallback_model": model,
                        "task_type": task_context.task_type,
                        "error": str(errors[0])[:200],
                    },
                )

        logger.error(
            "llm_fallback_also_failed",
            extra={
                "model": model,
                "fallback_from": primary,
                "task_type": task_context.task_type,
                "primary_error": str(errors[0])[:100],
                "backup_error": str(errors[1])[:100],
            },
        )
        raise FallbackExhaustedError(
            f"Both primary ({primary}) and backup ({model}) models failed. "
            f"Errors: {errors[0]}; {errors[1]}",
            primary_model=primary,
            backup_model=model,
            primary_error=errors[0],
            backup_error=errors[1],
        ) from errors[1]

    @staticmethod
    def _no_backup_error(
        task_context: TaskContext,
        primary: str,
        error: BaseException,
    ) -> FallbackExhaustedError:
        """The router had nothing but the failed model to offer as backup."""
        logger.error(
            "llm_no_distinct_backup",
            extra={
                "model": primary,
                "task_type": task_context.task_type,
                "error": str(error)[:200],
            },
        )
        return FallbackExhaustedError(
            f"Primary model ({primary}) failed and no different backup model "
            f"is available. Error: {error}",
            primary_model=primary,
            primary_error=error,
        )

    async def discover_models(self) -> dict[str, list[ModelDescriptor]]:
        """Models per provider, queried concurrently. Never raises."""
        families = list(self._providers)
        found = await asyncio.gather(
            *(self._providers[f].discover_models() for f in families),
            return_exceptions=True,
        )

        catalog: dict[str, list[ModelDescriptor]] = {}
        for family, models in zip(families, found):
            if isinstance(models, BaseException):
                logger.warning(
                    "model_discovery_failed",
                    extra={"provider": family.value, "error": str(models)[:200]},
                )
                models = []
            catalog[family.value] = models
        return catalog

    async def get_available_providers(self) -> dict[str, bool]:
        """
        Whether each provider can take calls right now.

        Cloud providers: a usable credential is configured. Ollama: the
        server answers and has at least one model. ``deepseek``: Ollama
        serves at least one deepseek model.
        """
        availability: dict[str, bool] = {}
        for family, provider in self._providers.items():
            if provider.requires_credential:
                availability[family.value] = provider.is_configured
                continue

            models = await provider.discover_models()
            availability[family.value] = len(models) > 0
            if family is ProviderFamily.LOCAL:
                availability["deepseek"] = any(
                    "deepseek" in m.id.lower() for m in models
                )
        return availability

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Close every adapter's client. The service stays usable afterwards."""
        await asyncio.gather(*(p.aclose() for p in self._providers.values()))

    async def __aenter__(self) -> AIService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Internals ---

    def _provider_for(self, family: ProviderFamily) -> BaseProvider:
        provider = self._providers[family]
        if not provider.is_configured:
            env_var = CREDENTIAL_ENV_VARS.get(family, ("",))[0]
            raise MissingCredentialError(
                f"API key for {family.value} is not configured. "
                f"Set {env_var} in the environment.",
                provider=family.value,
                env_var=env_var,
            )
        return provider

    async def _attempt(
        self,
        model_id: str,
        prompt: str,
        options: GenerationOptions,
        task_type: str,
    ) -> tuple[NormalizedResult, str, float]:
        """
        One model call under the global timeout.

        Returns (result, resolved model id, elapsed ms). The outcome is
        recorded whether the call succeeds or fails; a missing
        credential fails before any call and is not recorded.
        """
        family, model = self.resolve_provider(model_id)
        provider = self._provider_for(family)
        ceiling = self._settings.request_timeout_seconds

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                provider.generate_response(prompt, options.with_model(model)),
                timeout=ceiling,
            )
        except asyncio.TimeoutError as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._router.record_outcome(model, task_type, elapsed_ms, success=False)
            logger.error(
                "llm_call_timed_out",
                extra={"model": model, "provider": family.value, "timeout_s": ceiling},
            )
            raise RequestTimedOutError(
                f"AI model {model} timed out after {ceiling:g} seconds",
                model=model,
                timeout_seconds=ceiling,
            ) from e
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._router.record_outcome(model, task_type, elapsed_ms, success=False)
            logger.warning(
                "llm_call_failed",
                extra={
                    "model": model,
                    "provider": family.value,
                    "task_type": task_type,
                    "duration_ms": round(elapsed_ms, 1),
                    "error": str(e)[:200],
                },
            )
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        self._router.record_outcome(model, task_type, elapsed_ms, success=True)
        logger.info(
            "llm_call_completed",
            extra={
                "model": model,
                "provider": family.value,
                "task_type": task_type,
                "duration_ms": round(elapsed_ms, 1),
                "tool_calls": len(result.tool_results),
            },
        )
        return result, model, elapsed_ms
