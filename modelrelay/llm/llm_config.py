"""
Capability Registry — known models, complexity tiers and provider resolution.

Static tables describing which models exist, what each is good at, and
which shortlist of models serves each task complexity tier. Nothing here
is mutated at runtime; the adaptive router reads these tables and keeps
its own statistics elsewhere.

Usage:
    from modelrelay.llm.llm_config import CapabilityRegistry, resolve_provider

    registry = CapabilityRegistry()
    tier = registry.tier_for_task("risk_assessment")
    # → ComplexityTier.COMPLEX

    resolve_provider("claude-4-opus")
    # → (ProviderFamily.ANTHROPIC, "claude-4-opus")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider Families
# ---------------------------------------------------------------------------

class ProviderFamily(str, Enum):
    """Backend families a model id can resolve to."""

    OPENAI = "openai"          # OpenAI-compatible chat completions
    ANTHROPIC = "anthropic"    # Anthropic messages API
    LOCAL = "ollama"           # Local Ollama server, no credential
    GOOGLE = "google"          # Gemini generateContent


class ComplexityTier(str, Enum):
    """Coarse task-difficulty buckets used to pick a model shortlist."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


# ---------------------------------------------------------------------------
# Data Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CapabilityProfile:
    """Per-model capability scores (1-10) and static metadata."""

    reasoning: int
    analysis: int
    creativity: int
    technical: int
    speed: int
    cost: int                       # 10 = most expensive
    domains: frozenset[str]
    max_tokens: int
    strengths: tuple[str, ...]
    has_web_search: bool = False
    pricing_input: float = 0.0      # USD per 1M input tokens
    pricing_output: float = 0.0     # USD per 1M output tokens
    api_notes: str = ""


@dataclass(frozen=True)
class TierConfig:
    """Ordered model shortlists for one complexity tier."""

    preferred: tuple[str, ...]
    budget: tuple[str, ...]
    description: str = ""

    def models_for(self, budget_mode: str) -> tuple[str, ...]:
        return self.budget if budget_mode == "budget" else self.preferred


@dataclass(frozen=True)
class ModelDescriptor:
    """A model a provider reports as available."""

    id: str
    display_name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "display_name": self.display_name}


# ---------------------------------------------------------------------------
# Default Tables
# ---------------------------------------------------------------------------

MODEL_CAPABILITIES: dict[str, CapabilityProfile] = {
    # --- OpenAI o-series ---
    "o3": CapabilityProfile(
        reasoning=10, analysis=10, creativity=9, technical=10, speed=6, cost=9,
        domains=frozenset({
            "complex_analysis", "strategic_planning", "research",
            "mathematical_reasoning",
        }),
        max_tokens=16000,
        strengths=(
            "elite_reasoning", "multi_step_logic",
            "complex_problem_solving", "web_search",
        ),
        has_web_search=True,
        pricing_input=10.00,
        pricing_output=40.00,
        api_notes="No system messages; reasoning-focused",
    ),
    "o4-mini": CapabilityProfile(
        reasoning=9, analysis=9, creativity=8, technical=9, speed=8, cost=3,
        domains=frozenset({
            "finance", "strategy", "analysis", "consulting", "business_planning",
        }),
        max_tokens=16000,
        strengths=(
            "cost_effective_reasoning", "business_analysis",
            "strategic_thinking", "web_search",
        ),
        has_web_search=True,
        pricing_input=1.10,
        pricing_output=4.40,
        api_notes="No system messages; best value for reasoning",
    ),
    "o3-pro": CapabilityProfile(
        reasoning=10, analysis=10, creativity=9, technical=10, speed=5, cost=10,
        domains=frozenset({
            "complex_analysis", "strategic_planning", "research",
            "mathematical_reasoning",
        }),
        max_tokens=32000,
        strengths=(
            "elite_reasoning", "professional_analysis",
            "web_search", "deep_research",
        ),
        has_web_search=True,
        pricing_input=20.00,
        pricing_output=80.00,
        api_notes="Professional tier with advanced reasoning",
    ),
    "o3-deep-research": CapabilityProfile(
        reasoning=10, analysis=10, creativity=9, technical=10, speed=4, cost=10,
        domains=frozenset({
            "deep_research", "comprehensive_analysis", "strategic_planning",
        }),
        max_tokens=32000,
        strengths=(
            "comprehensive_research", "thorough_analysis",
            "web_search", "deep_insights",
        ),
        has_web_search=True,
        pricing_input=15.00,
        pricing_output=60.00,
        api_notes="Deep research variant; slow but thorough",
    ),
    "o4-mini-deep-research": CapabilityProfile(
        reasoning=9, analysis=9, creativity=8, technical=9, speed=6, cost=4,
        domains=frozenset({
            "research", "analysis", "consulting", "business_intelligence",
        }),
        max_tokens=16000,
        strengths=(
            "cost_effective_research", "business_analysis",
            "web_search", "data_synthesis",
        ),
        has_web_search=True,
        pricing_input=2.00,
        pricing_output=8.00,
        api_notes="Cost-effective deep research",
    ),
    # --- Anthropic ---
    "claude-4": CapabilityProfile(
        reasoning=10, analysis=10, creativity=9, technical=9, speed=8, cost=7,
        domains=frozenset({
            "finance", "analysis", "reporting", "general", "complex_analysis",
        }),
        max_tokens=8000,
        strengths=(
            "balanced_performance", "reliability",
            "web_search", "nuanced_analysis",
        ),
        has_web_search=True,
        pricing_input=5.00,
        pricing_output=20.00,
        api_notes="Served as claude-sonnet-4",
    ),
    "claude-4-opus": CapabilityProfile(
        reasoning=10, analysis=10, creativity=10, technical=9, speed=6, cost=9,
        domains=frozenset({
            "creative_analysis", "strategic_thinking", "complex_reasoning",
        }),
        max_tokens=8000,
        strengths=(
            "creative_reasoning", "strategic_insights",
            "web_search", "comprehensive_analysis",
        ),
        has_web_search=True,
        pricing_input=15.00,
        pricing_output=75.00,
        api_notes="Served as claude-opus-4",
    ),
    # --- Local (Ollama) ---
    "deepseek-v3": CapabilityProfile(
        reasoning=8, analysis=8, creativity=7, technical=9, speed=9, cost=1,
        domains=frozenset({"finance", "analysis", "research", "local_processing"}),
        max_tokens=8000,
        strengths=(
            "cost_effective", "fast_processing", "local_control", "privacy",
        ),
        pricing_input=0.10,
        pricing_output=0.20,
        api_notes="Offline processing through Ollama",
    ),
    "deepseek-coder": CapabilityProfile(
        reasoning=8, analysis=9, creativity=6, technical=10, speed=9, cost=1,
        domains=frozenset({"technical_analysis", "coding", "data_analysis"}),
        max_tokens=8000,
        strengths=("technical_accuracy", "coding_excellence", "data_processing"),
        pricing_input=0.10,
        pricing_output=0.20,
        api_notes="Technical analysis through Ollama",
    ),
    # --- Legacy ---
    "o1-preview": CapabilityProfile(
        reasoning=10, analysis=10, creativity=8, technical=10, speed=5, cost=8,
        domains=frozenset({"complex_analysis", "strategic_planning", "research"}),
        max_tokens=32000,
        strengths=("advanced_reasoning", "complex_problem_solving"),
        pricing_input=15.00,
        pricing_output=60.00,
        api_notes="Legacy reasoning model",
    ),
}

TIER_TABLE: dict[ComplexityTier, TierConfig] = {
    ComplexityTier.SIMPLE: TierConfig(
        preferred=("o4-mini", "claude-4", "deepseek-v3"),
        budget=("o4-mini", "deepseek-v3", "claude-4"),
        description="Simple queries, data lookup, basic summaries",
    ),
    ComplexityTier.MODERATE: TierConfig(
        preferred=("o4-mini", "o3", "claude-4", "deepseek-v3"),
        budget=("o4-mini-deep-research", "claude-4", "deepseek-v3"),
        description="Analysis, comparisons, moderate research",
    ),
    ComplexityTier.COMPLEX: TierConfig(
        preferred=(
            "o3", "o3-pro", "o3-deep-research", "claude-4-opus", "deepseek-v3",
        ),
        budget=("o4-mini-deep-research", "claude-4", "deepseek-v3"),
        description="Deep analysis, multi-step reasoning, strategic thinking",
    ),
}

TASK_TIER_MAP: dict[str, ComplexityTier] = {
    "partner_assessment": ComplexityTier.COMPLEX,
    "principal_analysis": ComplexityTier.COMPLEX,
    "strategic_planning": ComplexityTier.COMPLEX,
    "financial_modeling": ComplexityTier.COMPLEX,
    "risk_assessment": ComplexityTier.COMPLEX,
    "investment_analysis": ComplexityTier.COMPLEX,
    "associate_research": ComplexityTier.MODERATE,
    "report_generation": ComplexityTier.MODERATE,
    "competitive_analysis": ComplexityTier.MODERATE,
    "market_analysis": ComplexityTier.MODERATE,
    "data_processing": ComplexityTier.SIMPLE,
    "summarization": ComplexityTier.SIMPLE,
}

# Returned by the router when a tier's shortlist has no registered model.
# Fixed id, not derived from MODEL_CAPABILITIES; keep the two in sync.
SAFE_DEFAULT_MODEL = "gpt-4o-mini"

# Where the orchestrator sends model ids that match no provider family.
DEFAULT_MODEL = "o4-mini"
DEFAULT_FAMILY = ProviderFamily.OPENAI


# ---------------------------------------------------------------------------
# Provider Resolution
# ---------------------------------------------------------------------------

# First match wins; claude goes first so "claude-*" never hits an o-series rule.
_FAMILY_PATTERNS: tuple[tuple[ProviderFamily, tuple[str, ...]], ...] = (
    (ProviderFamily.ANTHROPIC, ("claude",)),
    (ProviderFamily.OPENAI, ("gpt", "o1", "o3", "o4")),
    (ProviderFamily.GOOGLE, ("gemini",)),
    (ProviderFamily.LOCAL, ("llama", "deepseek", "ollama")),
)

_REASONING_PREFIXES = ("o1", "o3", "o4")


def family_for(model_id: str) -> Optional[ProviderFamily]:
    """The provider family a model id belongs to, or None if unrecognized."""
    lowered = (model_id or "").lower()
    for family, patterns in _FAMILY_PATTERNS:
        if any(p in lowered for p in patterns):
            return family
    return None


def resolve_provider(
    model_id: str,
    default_model: str = DEFAULT_MODEL,
) -> tuple[ProviderFamily, str]:
    """
    Map a model id to its provider family.

    Returns (family, model_id). Ids matching no family resolve to
    ``default_model`` on its own family; when that id is unrecognized
    too, to (DEFAULT_FAMILY, DEFAULT_MODEL).
    """
    family = family_for(model_id)
    if family is not None:
        return family, model_id

    default_family = family_for(default_model)
    if default_family is None:
        default_family, default_model = DEFAULT_FAMILY, DEFAULT_MODEL

    logger.info(
        "model_id_unrecognized",
        extra={"model": model_id, "fallback_model": default_model},
    )
    return default_family, default_model


def is_reasoning_model(model_id: str) -> bool:
    """o-series models: no system role, max_completion_tokens, fixed temperature."""
    return model_id.lower().startswith(_REASONING_PREFIXES)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@dataclass
class CapabilityRegistry:
    """
    Read-only view over the capability and tier tables.

    Pass custom tables to build a narrower registry (tests use this to
    check what the router does when a tier lists unregistered models).
    """

    profiles: Mapping[str, CapabilityProfile] = field(
        default_factory=lambda: dict(MODEL_CAPABILITIES)
    )
    tiers: Mapping[ComplexityTier, TierConfig] = field(
        default_factory=lambda: dict(TIER_TABLE)
    )
    task_tiers: Mapping[str, ComplexityTier] = field(
        default_factory=lambda: dict(TASK_TIER_MAP)
    )

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.profiles

    def __iter__(self) -> Iterator[str]:
        return iter(self.profiles)

    def __len__(self) -> int:
        return len(self.profiles)

    def get(self, model_id: str) -> Optional[CapabilityProfile]:
        return self.profiles.get(model_id)

    def model_ids(self) -> list[str]:
        return list(self.profiles)

    def tier(self, name: ComplexityTier | str) -> Optional[TierConfig]:
        try:
            return self.tiers.get(ComplexityTier(name))
        except ValueError:
            return None

    def tier_for_task(
        self,
        task_type: str,
        complexity: Optional[str] = None,
    ) -> ComplexityTier:
        """
        Look up a task type's tier.

        Unmapped task types use the caller's complexity hint, and
        MODERATE when there is none or it names no tier.
        """
        mapped = self.task_tiers.get(task_type)
        if mapped is not None:
            return mapped
        if complexity:
            try:
                return ComplexityTier(complexity)
            except ValueError:
                logger.warning(
                    "complexity_unknown",
                    extra={"task_type": task_type, "complexity": complexity},
                )
        return ComplexityTier.MODERATE
